"""
region.py — Watchpoint regions.

Region ids double as cache-key variants and as the `region` query parameter
of GET /news, so the enum values are the wire values.
"""

from enum import Enum


class Region(str, Enum):
    ALL = "all"
    US = "us"
    LATAM = "latam"
    MIDDLE_EAST = "middle-east"
    EUROPE_RUSSIA = "europe-russia"
    ASIA = "asia"
    AFRICA = "africa"
    SEISMIC = "seismic"


# Values accepted by the `region` query parameter.
VALID_REGIONS: list[str] = [r.value for r in Region]

# Regions that get an activity entry on every response.
TRACKED_REGIONS: list[str] = [
    Region.US.value,
    Region.LATAM.value,
    Region.MIDDLE_EAST.value,
    Region.EUROPE_RUSSIA.value,
    Region.ASIA.value,
    Region.AFRICA.value,
]

# Too little source coverage for a meaningful ratio; always reported NORMAL.
SCORING_EXCLUDED_REGIONS: frozenset[str] = frozenset({
    Region.LATAM.value,
    Region.ASIA.value,
    Region.AFRICA.value,
})
