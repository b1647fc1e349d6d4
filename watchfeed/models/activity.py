"""
activity.py — Derived activity models (never persisted).

RegionActivity
──────────────
  level          normal | elevated | critical  (ratio floor AND count floor)
  direction      above | below | normal        (ratio only; may disagree with level)
  multiplier     round(count / baseline, 1), 0 when baseline is 0
  percentChange  round((count - baseline) / baseline * 100), 0 when baseline is 0

SourceActivityProfile
─────────────────────
Per-source surge signal for sources present in the activity window.
"""

from enum import Enum

from watchfeed.models.post import CamelModel


class ActivityLevel(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    CRITICAL = "critical"


class Direction(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    NORMAL = "normal"


class RegionActivity(CamelModel):
    region: str
    level: ActivityLevel
    count: int
    baseline: int
    multiplier: float
    direction: Direction
    percent_change: int


class SourceActivityProfile(CamelModel):
    source_id: str
    baseline_posts_per_day: float
    recent_posts: int
    recent_window_hours: int
    anomaly_ratio: float
    is_anomalous: bool
