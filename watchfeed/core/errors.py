"""
errors.py — Failure taxonomy for the ingestion / cache / feed pipeline.

Only InvalidQueryError and an unrecoverable AggregationFailure ever reach a
client as a non-200. Everything else is recovered where a safe default exists:

  SourceFetchError   → scheduler records a failed FetchResult, source yields []
  CacheReadError     → treated as a cache miss
  CacheWriteError    → logged and dropped
  AggregationFailure → route serves any cached entry, 500 only when none exists
"""

from typing import Iterable, Optional


class WatchfeedError(Exception):
    """Base class for all service errors."""


class SourceFetchError(WatchfeedError):
    """A single source could not be fetched or its payload could not be parsed."""

    def __init__(self, source_id: str, platform: str, reason: str) -> None:
        self.source_id = source_id
        self.platform = platform
        self.reason = reason
        super().__init__(f"{platform}/{source_id}: {reason}")


class CacheReadError(WatchfeedError):
    """The durable store could not be read."""


class CacheWriteError(WatchfeedError):
    """The durable store could not be written."""


class AggregationFailure(WatchfeedError):
    """Every source in a non-empty fetch cycle failed."""

    def __init__(self, failed: int, total: int) -> None:
        self.failed = failed
        self.total = total
        super().__init__(f"All {failed}/{total} sources failed in this cycle")


class InvalidQueryError(WatchfeedError):
    """A query parameter is outside its enumerated set of values."""

    def __init__(self, param: str, valid_values: Iterable[str], message: Optional[str] = None) -> None:
        self.param = param
        self.valid_values = list(valid_values)
        super().__init__(message or f"Invalid {param} parameter")
