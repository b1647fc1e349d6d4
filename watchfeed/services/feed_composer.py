"""
feed_composer.py — Turn a cached post list into the feed a client sees.

ORDER OF OPERATIONS
───────────────────
  1. region filter      (only when the entry was not already region-specific)
  2. time window        keep timestamp > now - hours
       └─ this is the FULL-WINDOW snapshot used for activity scoring, so a
          later `since` truncation can never skew the anomaly signal
  3. since              keep timestamp > since (regular feed only)
  4. priority merge     breaking ++ pinned ++ merge(context+event, regular)
  5. limit              plain slice, no per-region or per-tier rebalancing

The merge in step 4 is a linear two-pointer walk over two newest-first lists.
On equal timestamps the curated item goes first.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from watchfeed.models.post import Post, PriorityTag
from watchfeed.models.region import Region
from watchfeed.services.dedup import sort_newest_first


@dataclass
class ComposedFeed:
    items: list[Post]
    window_posts: list[Post]                       # full window, before `since`
    regular_posts: list[Post] = field(default_factory=list)  # window + since
    is_incremental: bool = False
    priority_count: int = 0

    @property
    def total_items(self) -> int:
        return len(self.regular_posts)


def filter_by_region(posts: Iterable[Post], region: str) -> list[Post]:
    if region == Region.ALL.value:
        return list(posts)
    return [p for p in posts if p.region == region]


def filter_by_time_window(
    posts: Iterable[Post],
    hours: int,
    now: Optional[datetime] = None,
) -> list[Post]:
    cutoff = (now or datetime.now(tz=timezone.utc)) - timedelta(hours=hours)
    return [p for p in posts if p.timestamp > cutoff]


def filter_since(posts: Iterable[Post], since: datetime) -> list[Post]:
    return [p for p in posts if p.timestamp > since]


def merge_newest_first(priority: list[Post], regular: list[Post]) -> list[Post]:
    """Two-pointer merge of two newest-first lists; `priority` wins ties."""
    merged = []
    i = j = 0
    while i < len(priority) and j < len(regular):
        if priority[i].timestamp >= regular[j].timestamp:
            merged.append(priority[i])
            i += 1
        else:
            merged.append(regular[j])
            j += 1
    merged.extend(priority[i:])
    merged.extend(regular[j:])
    return merged


def compose(
    regular_posts: list[Post],
    priority_posts: list[Post],
    window_hours: int,
    since: Optional[datetime],
    limit: int,
    now: Optional[datetime] = None,
) -> ComposedFeed:
    """
    Build the client feed from a newest-first regular list and curated posts.

    `regular_posts` must already be filtered to the requested region.
    """
    window = filter_by_time_window(regular_posts, window_hours, now=now)
    regular = filter_since(window, since) if since is not None else window

    by_tag: dict[PriorityTag, list[Post]] = {tag: [] for tag in PriorityTag}
    for post in priority_posts:
        if post.priority_tag is not None:
            by_tag[post.priority_tag].append(post)

    interleaved = sort_newest_first(by_tag[PriorityTag.CONTEXT] + by_tag[PriorityTag.EVENT])
    final = (
        by_tag[PriorityTag.BREAKING]
        + by_tag[PriorityTag.PINNED]
        + merge_newest_first(interleaved, regular)
    )

    return ComposedFeed(
        items=final[:limit],
        window_posts=window,
        regular_posts=regular,
        is_incremental=since is not None,
        priority_count=len(priority_posts),
    )
