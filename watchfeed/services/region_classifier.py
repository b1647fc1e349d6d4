"""
region_classifier.py — Keyword-based region tagging for catch-all sources.

Sources registered under a specific region keep that region for every post.
Sources registered under "all" (wire services, aggregator accounts) get each
post scored against per-region keyword tiers:

  high   3 points  — names that almost never appear outside the region
  medium 2 points  — usually this region
  low    1 point   — weak hints

The top region wins when it scores >= 3. When the top region is "us" and a
foreign region scores at least as high, the foreign region wins: for a
US-heavy source list, "Congress approves Ukraine aid" is Ukraine news.
"""

import re
from dataclasses import dataclass, field

from watchfeed.models.region import Region

_MIN_SCORE = 3
_TIER_POINTS = {"high": 3, "medium": 2, "low": 1}


def _compile(words: list[str]) -> list[re.Pattern]:
    return [re.compile(rf"\b{w}\b", re.IGNORECASE) for w in words]


@dataclass
class RegionPatterns:
    high: list[re.Pattern] = field(default_factory=list)
    medium: list[re.Pattern] = field(default_factory=list)
    low: list[re.Pattern] = field(default_factory=list)


_PATTERNS: dict[str, RegionPatterns] = {
    Region.US.value: RegionPatterns(
        high=_compile([r"white\s+house", r"congress(?:ional)?", r"senate", r"pentagon",
                       r"supreme\s+court", r"fbi", r"homeland\s+security"]),
        medium=_compile([r"washington", r"governor", r"capitol", r"national\s+guard"]),
        low=_compile([r"american", r"federal", r"u\.s\."]),
    ),
    Region.LATAM.value: RegionPatterns(
        high=_compile([r"venezuela", r"maduro", r"caracas", r"bogot[aá]", r"brasil(?:ia)?",
                       r"brazil", r"lula", r"milei"]),
        medium=_compile([r"mexico", r"colombia", r"argentina", r"cuba", r"haiti", r"peru"]),
        low=_compile([r"latin\s+america", r"cartel"]),
    ),
    Region.MIDDLE_EAST.value: RegionPatterns(
        high=_compile([r"israel(?:i)?", r"gaza", r"hamas", r"hezbollah", r"idf", r"iran(?:ian)?",
                       r"tehran", r"houthi", r"west\s+bank"]),
        medium=_compile([r"syria", r"lebanon", r"yemen", r"iraq", r"beirut", r"damascus"]),
        low=_compile([r"middle\s+east", r"gulf", r"red\s+sea"]),
    ),
    Region.EUROPE_RUSSIA.value: RegionPatterns(
        high=_compile([r"ukrain(?:e|ian)", r"kyiv", r"zelensk(?:y|yy)", r"kremlin", r"putin",
                       r"moscow", r"kharkiv", r"crimea"]),
        medium=_compile([r"russia(?:n)?", r"nato", r"belarus", r"poland", r"baltic"]),
        low=_compile([r"europe(?:an)?", r"brussels"]),
    ),
    Region.ASIA.value: RegionPatterns(
        high=_compile([r"taiwan", r"beijing", r"pyongyang", r"north\s+korea", r"xi\s+jinping",
                       r"south\s+china\s+sea"]),
        medium=_compile([r"china", r"chinese", r"japan", r"seoul", r"philippines", r"pla"]),
        low=_compile([r"asia(?:n)?", r"indo-pacific"]),
    ),
    Region.AFRICA.value: RegionPatterns(
        high=_compile([r"sudan", r"khartoum", r"rsf", r"sahel", r"al-shabaab", r"tigray"]),
        medium=_compile([r"ethiopia", r"somalia", r"nigeria", r"congo", r"mali", r"niger"]),
        low=_compile([r"africa(?:n)?"]),
    ),
}


def score_region(text: str, region: str) -> int:
    """Return the keyword score of *text* for *region*."""
    patterns = _PATTERNS[region]
    score = 0
    for tier in ("high", "medium", "low"):
        for pattern in getattr(patterns, tier):
            if pattern.search(text):
                score += _TIER_POINTS[tier]
    return score


def detect_region(text: str) -> str | None:
    """Return the confidently detected region for *text*, or None."""
    scores = [(region, score_region(text, region)) for region in _PATTERNS]
    ranked = sorted((s for s in scores if s[1] > 0), key=lambda s: s[1], reverse=True)
    if not ranked or ranked[0][1] < _MIN_SCORE:
        return None

    top_region, top_score = ranked[0]
    if top_region == Region.US.value:
        for region, score in ranked[1:]:
            if score >= _MIN_SCORE and score >= top_score:
                return region
    return top_region


def classify_region(text: str, source_region: str) -> str:
    """
    Region for a post from a source registered under *source_region*.

    Region-specific sources always win; catch-all sources fall back to
    "all" when nothing is detected.
    """
    if source_region != Region.ALL.value:
        return source_region
    return detect_region(text) or Region.ALL.value
