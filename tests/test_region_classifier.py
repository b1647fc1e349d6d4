"""
test_region_classifier.py — Keyword region tagging for catch-all sources.
"""

import pytest

from watchfeed.services.region_classifier import classify_region, detect_region, score_region


class TestDetectRegion:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("IDF strikes targets in Gaza", "middle-east"),
            ("Explosions heard in Kyiv overnight", "europe-russia"),
            ("Maduro addresses crowds in Caracas", "latam"),
            ("PLA drills near Taiwan", "asia"),
            ("RSF shelling in Khartoum", "africa"),
            ("Senate passes the spending bill", "us"),
        ],
    )
    def test_detects_region(self, text, expected):
        assert detect_region(text) == expected

    def test_weak_hint_is_not_enough(self):
        assert detect_region("European markets close higher") is None

    def test_foreign_region_wins_us_tie(self):
        # congress (3) vs ukraine (3): the story is about Ukraine
        assert detect_region("Congress debates Ukraine package") == "europe-russia"

    def test_word_boundaries(self):
        assert score_region("A gulfstream jet landed", "middle-east") == 0


class TestClassifyRegion:
    def test_region_specific_source_always_wins(self):
        assert classify_region("Explosions in Kyiv", "middle-east") == "middle-east"

    def test_catch_all_source_uses_detection(self):
        assert classify_region("Explosions in Kyiv", "all") == "europe-russia"

    def test_catch_all_without_match_stays_all(self):
        assert classify_region("Weather is nice today", "all") == "all"
