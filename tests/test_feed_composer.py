"""
test_feed_composer.py — Dedup/sort invariants and the priority merge.
"""

from datetime import timedelta

from conftest import NOW
from watchfeed.models.post import PriorityPost
from watchfeed.services.dedup import dedupe, dedupe_and_sort, is_newest_first
from watchfeed.services.feed_composer import (
    compose,
    filter_by_region,
    filter_by_time_window,
    filter_since,
    merge_newest_first,
)


def _priority(pid: str, tag: str, minutes_ago: float, region: str = "all"):
    return PriorityPost(
        id=pid, title=f"{tag} {pid}", tag=tag, region=region,
        created_at=NOW - timedelta(minutes=minutes_ago),
    ).to_post()


class TestDedup:
    def test_first_seen_wins(self, make_post):
        a = make_post("same", minutes_ago=5, title="first")
        b = make_post("same", minutes_ago=1, title="second")
        out = dedupe([a, b])
        assert len(out) == 1
        assert out[0].title == "first"

    def test_sorted_newest_first(self, make_post):
        posts = [make_post("a", 30), make_post("b", 5), make_post("c", 60)]
        assert [p.id for p in dedupe_and_sort(posts)] == ["b", "a", "c"]

    def test_ties_keep_fetch_order(self, make_post):
        posts = [make_post("x", 10), make_post("y", 10), make_post("z", 10)]
        assert [p.id for p in dedupe_and_sort(posts)] == ["x", "y", "z"]

    def test_overlapping_fetches_yield_one_copy(self, make_post):
        shared = make_post("shared", 3)
        out = dedupe_and_sort([make_post("a", 1), shared, shared, make_post("b", 2)])
        assert [p.id for p in out].count("shared") == 1
        assert is_newest_first(out)


class TestFilters:
    def test_time_window_is_strict(self, make_post):
        posts = [make_post("in", 60), make_post("edge", 120), make_post("out", 180)]
        kept = filter_by_time_window(posts, hours=2, now=NOW)
        assert [p.id for p in kept] == ["in"]

    def test_since_is_strictly_newer(self, make_post):
        posts = [make_post("new", 1), make_post("same", 10)]
        kept = filter_since(posts, NOW - timedelta(minutes=10))
        assert [p.id for p in kept] == ["new"]

    def test_region_filter(self, make_post):
        posts = [make_post("u", region="us"), make_post("m", region="middle-east")]
        assert [p.id for p in filter_by_region(posts, "middle-east")] == ["m"]
        assert len(filter_by_region(posts, "all")) == 2


class TestMerge:
    def test_priority_wins_ties(self, make_post):
        regular = [make_post("r1", 10)]
        priority = [_priority("p1", "context", 10)]
        merged = merge_newest_first(priority, regular)
        assert [p.id for p in merged] == ["priority-p1", "r1"]

    def test_merge_preserves_descending_order(self, make_post):
        regular = [make_post(f"r{i}", i * 10) for i in range(5)]
        priority = [_priority("p1", "event", 15), _priority("p2", "context", 35)]
        merged = merge_newest_first(priority, regular)
        assert is_newest_first(merged)
        assert len(merged) == 7


class TestCompose:
    def test_breaking_then_pinned_then_merged(self, make_post):
        regular = dedupe_and_sort([make_post("r1", 5), make_post("r2", 50)])
        priority = [
            _priority("ctx", "context", 20),
            _priority("pin", "pinned", 600),
            _priority("brk", "breaking", 300),
        ]
        feed = compose(regular, priority, window_hours=6, since=None, limit=100, now=NOW)

        assert [p.id for p in feed.items] == ["priority-brk", "priority-pin", "r1", "priority-ctx", "r2"]
        assert is_newest_first(feed.items[2:])
        assert feed.priority_count == 3
        assert feed.total_items == 2

    def test_window_snapshot_ignores_since(self, make_post):
        regular = dedupe_and_sort([make_post("r1", 5), make_post("r2", 50), make_post("old", 600)])
        feed = compose(regular, [], window_hours=6, since=NOW - timedelta(minutes=10), limit=100, now=NOW)

        assert [p.id for p in feed.window_posts] == ["r1", "r2"]
        assert [p.id for p in feed.items] == ["r1"]
        assert feed.is_incremental

    def test_since_count_never_exceeds_total(self, make_post):
        regular = dedupe_and_sort([make_post(f"r{i}", i * 7) for i in range(40)])
        full = compose(regular, [], window_hours=6, since=None, limit=5000, now=NOW)
        for minutes in (0, 30, 120, 400):
            inc = compose(regular, [], window_hours=6, since=NOW - timedelta(minutes=minutes), limit=5000, now=NOW)
            assert inc.total_items <= full.total_items

    def test_limit_is_plain_slice(self, make_post):
        regular = dedupe_and_sort([make_post(f"r{i}", i) for i in range(10)])
        priority = [_priority("brk", "breaking", 1)]
        feed = compose(regular, priority, window_hours=6, since=None, limit=3, now=NOW)
        assert [p.id for p in feed.items] == ["priority-brk", "r0", "r1"]
        assert feed.total_items == 10
