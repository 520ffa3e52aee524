"""Unit tests for mood and flow normalization."""

import pytest

from gifts.period.mood import CANONICAL_MOODS, normalize_flow, normalize_mood


class TestMood:
    @pytest.mark.parametrize("mood", CANONICAL_MOODS)
    def test_canonical_passes_through(self, mood):
        assert normalize_mood(f" {mood} ") == mood

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("寮€蹇?", "开心"),
            ("骞哥", "幸福"),
            ("骞抽潤", "平静"),
            ("闅捐繃", "难过"),
            ("鐒﹁檻", "焦虑"),
        ],
    )
    def test_legacy_mis_encoded_values(self, raw, expected):
        assert normalize_mood(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "ecstatic"])
    def test_unknown_is_none(self, raw):
        assert normalize_mood(raw) is None


class TestFlow:
    def test_levels(self):
        assert normalize_flow(" Heavy ") == "heavy"
        assert normalize_flow("light") == "light"

    @pytest.mark.parametrize("raw", [None, 3, "spotting"])
    def test_unknown_is_none(self, raw):
        assert normalize_flow(raw) is None
