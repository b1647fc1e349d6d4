"""
source_registry.py — Read-only view over the monitored source list.

The list itself is owned by an external collaborator and shipped as JSON
(settings.sources_path). It is loaded once per process; a changed file needs
a restart. Accepts either a bare list or {"sources": [...]}, and camelCase
keys (postsPerDay, fetchTier) as well as snake_case.
"""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from pydantic import ValidationError

from watchfeed.models.post import Source
from watchfeed.models.region import Region

logger = logging.getLogger(__name__)


def _normalise(record: dict) -> dict:
    # A measurement timestamp implies a measured rate
    if record.get("baselineMeasuredAt") and not ({"baselineMeasured", "baseline_measured"} & record.keys()):
        return {**record, "baselineMeasured": True}
    return record


class SourceRegistry:
    def __init__(self, sources: Iterable[Source], platforms: Optional[set[str]] = None) -> None:
        self._sources = list(sources)
        self.platforms = platforms

    @classmethod
    def from_file(cls, path: str | Path, platforms: Optional[set[str]] = None) -> "SourceRegistry":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        records = raw.get("sources", []) if isinstance(raw, dict) else raw

        sources = []
        for record in records:
            try:
                sources.append(Source.model_validate(_normalise(record)))
            except ValidationError as exc:
                logger.warning("Skipping invalid source record %r: %s", record.get("id"), exc.errors()[0]["msg"])
        logger.info("Loaded %d sources from %s", len(sources), path)
        return cls(sources, platforms=platforms)

    @property
    def all_sources(self) -> list[Source]:
        return list(self._sources)

    def by_id(self) -> dict[str, Source]:
        return {s.id: s for s in self._sources}

    def sources_for_region(self, region: str) -> list[Source]:
        """Enabled sources on a served platform; "all" selects every region."""
        return [
            s for s in self._sources
            if s.enabled
            and (self.platforms is None or s.platform in self.platforms)
            and (region == Region.ALL.value or s.region == region)
        ]
