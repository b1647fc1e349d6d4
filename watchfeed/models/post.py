"""
post.py — Pydantic models for sources, posts and curated priority posts.

Post
────
The normalized unit every platform fetcher produces. Immutable once
fetched (frozen model); a post disappears only by ageing out of the cache
window. `id` is the dedup key: "{source_id}-{sha256(guid)[:16]}" for
platform posts, "priority-{id}" for curated posts.

Wire shape (camelCase, see CamelModel):
  { "id", "title", "body", "sourceId", "sourceName", "region",
    "timestamp", "platform", "url", "priorityTag" }

Source
──────
Read-only registry record owned by the source-list collaborator.
`posts_per_day` is the measured-or-estimated daily rate; a non-integer
value (or baseline_measured=True) means it was measured.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for models serialised on the HTTP surface with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Platform(str, Enum):
    BLUESKY = "bluesky"
    TELEGRAM = "telegram"
    MASTODON = "mastodon"
    EDITORIAL = "editorial"


class PriorityTag(str, Enum):
    BREAKING = "breaking"
    PINNED = "pinned"
    CONTEXT = "context"
    EVENT = "event"


class Source(CamelModel):
    """A single monitored account / channel. Accepts camelCase keys (postsPerDay)."""

    model_config = ConfigDict(frozen=True)  # merged with CamelModel's config

    id: str
    name: str = ""
    platform: str                       # bluesky | telegram | mastodon
    handle: str                         # handle, channel name or @user@instance
    region: str = "all"
    fetch_tier: str = "osint"           # official | reporter | osint | ground
    posts_per_day: float = 0.0
    enabled: bool = True
    baseline_measured: bool = False

    @property
    def display_name(self) -> str:
        return self.name or self.handle


class Post(CamelModel):
    """A normalized post from any platform."""

    model_config = ConfigDict(frozen=True)  # merged with CamelModel's config

    id: str
    title: str
    body: str
    source_id: str
    source_name: str = ""
    region: str
    timestamp: datetime
    platform: str
    url: Optional[str] = None
    priority_tag: Optional[PriorityTag] = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Motor hands back naive datetimes for BSON dates; they are UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PriorityPost(BaseModel):
    """An externally curated item (editor desk) tagged for feed placement."""

    id: str
    title: str
    content: str = ""
    tag: PriorityTag
    region: str = "all"
    created_at: datetime
    url: Optional[str] = None

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def to_post(self) -> Post:
        return Post(
            id=f"priority-{self.id}",
            title=self.title,
            body=self.content or self.title,
            source_id="editorial",
            source_name="Editor",
            region=self.region,
            timestamp=self.created_at,
            platform=Platform.EDITORIAL.value,
            url=self.url,
            priority_tag=self.tag,
        )


class CacheEntry(BaseModel):
    """An ordered post snapshot for one cache key (region variant)."""

    key: str
    posts: list[Post] = Field(default_factory=list)
    fetched_at: datetime

    @field_validator("fetched_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(tz=timezone.utc)
        return (now - self.fetched_at).total_seconds()
