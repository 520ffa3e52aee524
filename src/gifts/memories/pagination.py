"""Memory list pagination and per-year statistics."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from gifts.db.base import to_iso


@dataclass(frozen=True)
class Pagination:
    enabled: bool
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _positive_int(value: object) -> int | None:
    try:
        parsed = int(str(value).strip(), 10)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def parse_pagination(page: object, limit: object, default_limit: int, max_limit: int) -> Pagination:
    """Pagination is enabled only when the client sent ``page`` or ``limit``."""
    enabled = page is not None or limit is not None
    requested = _positive_int(limit) or default_limit
    return Pagination(enabled=enabled, page=_positive_int(page) or 1, limit=min(requested, max_limit))


def pagination_meta(page: int, limit: int, total: int) -> dict[str, Any]:
    total = max(0, int(total or 0))
    limit = max(1, limit)
    total_pages = math.ceil(total / limit) if total > 0 else 1
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasMore": page < total_pages,
    }


def compute_year_stats(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """Count memories per year; the cover is the first memory seen for the year.

    Returns newest year first.
    """
    groups: dict[str, dict[str, Any]] = {}
    for row in rows:
        year = (to_iso(row.get("date")) or "")[:4]
        if not year:
            continue
        group = groups.setdefault(year, {"year": year, "count": 0, "coverMemoryId": row["id"]})
        group["count"] += 1
    return sorted(groups.values(), key=lambda g: g["year"], reverse=True)
