"""Mood and flow normalization for period tracker entries."""

from __future__ import annotations

CANONICAL_MOODS = ("开心", "幸福", "平静", "难过", "焦虑")
FLOW_LEVELS = frozenset({"light", "medium", "heavy"})

# Fragments seen in historically mis-encoded rows, checked in order.
_LEGACY_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("开心", ("开", "心", "寮", "蹇", "瀵")),
    ("幸福", ("幸", "福", "骞哥", "楠炲摜")),
    ("平静", ("平", "静", "骞抽", "楠炴娊")),
    ("难过", ("难", "过", "闅", "闃", "闂")),
    ("焦虑", ("焦", "虑", "鐒", "閻")),
)


def normalize_mood(value: object) -> str | None:
    """Map a stored or submitted mood to one of ``CANONICAL_MOODS``.

    Unknown values become None.
    """
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw in CANONICAL_MOODS:
        return raw
    for mood, markers in _LEGACY_MARKERS:
        if any(marker in raw for marker in markers):
            return mood
    return None


def normalize_flow(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    flow = value.strip().lower()
    return flow if flow in FLOW_LEVELS else None
