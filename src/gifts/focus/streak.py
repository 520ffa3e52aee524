"""Focus-session counters as a pure state transition."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta

from gifts.errors import BadRequest

MIN_SESSION_MINUTES = 1
MAX_SESSION_MINUTES = 240


def clamp_non_negative(value: object) -> int:
    try:
        parsed = int(str(value if value is not None else 0), 10)
    except ValueError:
        return 0
    return max(parsed, 0)


@dataclass(frozen=True)
class FocusSnapshot:
    today_focus_minutes: int = 0
    today_sessions: int = 0
    streak: int = 0
    total_sessions: int = 0
    last_focus_date: date | None = None

    @classmethod
    def from_row(cls, row: dict) -> FocusSnapshot:
        return cls(
            today_focus_minutes=clamp_non_negative(row.get("today_focus_minutes")),
            today_sessions=clamp_non_negative(row.get("today_sessions")),
            streak=clamp_non_negative(row.get("streak")),
            total_sessions=clamp_non_negative(row.get("total_sessions")),
            last_focus_date=row.get("last_focus_date"),
        )

    def as_row(self) -> dict:
        return {
            "today_focus_minutes": self.today_focus_minutes,
            "today_sessions": self.today_sessions,
            "streak": self.streak,
            "total_sessions": self.total_sessions,
            "last_focus_date": self.last_focus_date,
        }


def parse_focus_minutes(value: object) -> int:
    try:
        minutes = int(str(value).strip(), 10)
    except ValueError:
        minutes = 0
    if not MIN_SESSION_MINUTES <= minutes <= MAX_SESSION_MINUTES:
        raise BadRequest(f"focusMinutes must be between {MIN_SESSION_MINUTES} and {MAX_SESSION_MINUTES}")
    return minutes


def complete_session(previous: FocusSnapshot, today: date, minutes: int) -> FocusSnapshot:
    """Apply one completed session of ``minutes`` on ``today``.

    Same day: today's counters accumulate and the streak holds (seeded to 1 if
    it was 0). Day after the last session: the streak grows by one. Any longer
    gap, or no previous session: the streak restarts at 1.
    """
    if previous.last_focus_date == today:
        return replace(
            previous,
            today_focus_minutes=previous.today_focus_minutes + minutes,
            today_sessions=previous.today_sessions + 1,
            streak=previous.streak or 1,
            total_sessions=previous.total_sessions + 1,
        )

    consecutive = previous.last_focus_date is not None and today - previous.last_focus_date == timedelta(days=1)
    return FocusSnapshot(
        today_focus_minutes=minutes,
        today_sessions=1,
        streak=max(1, previous.streak + 1) if consecutive else 1,
        total_sessions=previous.total_sessions + 1,
        last_focus_date=today,
    )


def has_stale_today(snapshot: FocusSnapshot, today: date) -> bool:
    """True when "today" counters belong to an earlier day."""
    return (
        snapshot.last_focus_date is not None
        and snapshot.last_focus_date != today
        and (snapshot.today_focus_minutes > 0 or snapshot.today_sessions > 0)
    )
