"""
dedup.py — Exact-id deduplication and newest-first ordering.

Every downstream window and merge assumes the feed is non-increasing by
timestamp, so nothing is cached without passing through dedupe_and_sort.
"""

from typing import Iterable

from watchfeed.models.post import Post


def dedupe(posts: Iterable[Post]) -> list[Post]:
    """Drop exact-id duplicates; the first occurrence wins."""
    seen: set[str] = set()
    unique = []
    for post in posts:
        if post.id in seen:
            continue
        seen.add(post.id)
        unique.append(post)
    return unique


def sort_newest_first(posts: Iterable[Post]) -> list[Post]:
    # sorted() is stable with reverse=True, so ties keep fetch order
    return sorted(posts, key=lambda p: p.timestamp, reverse=True)


def dedupe_and_sort(posts: Iterable[Post]) -> list[Post]:
    return sort_newest_first(dedupe(posts))


def is_newest_first(posts: list[Post]) -> bool:
    return all(a.timestamp >= b.timestamp for a, b in zip(posts, posts[1:]))
