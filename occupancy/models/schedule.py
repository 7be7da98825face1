"""Opening-hours models: one Timing per weekday, seven per WeeklySchedule."""

from dataclasses import dataclass
from datetime import date, time

from occupancy.models.common import DAYS_IN_WEEK, next_weekday_index


@dataclass(frozen=True)
class Timing:
    """One day's opening hours, or a closed marker.

    An open Timing always carries both times. ``opening > closing`` is
    allowed and means the venue stays open past midnight.
    """

    is_open: bool
    opening: time | None = None
    closing: time | None = None

    def __post_init__(self) -> None:
        if self.is_open and (self.opening is None or self.closing is None):
            raise ValueError("open Timing requires both opening and closing")
        if not self.is_open and (self.opening is not None or self.closing is not None):
            raise ValueError("closed Timing must not carry opening or closing")

    @classmethod
    def closed(cls) -> "Timing":
        return cls(is_open=False)

    @classmethod
    def open_between(cls, opening: time, closing: time) -> "Timing":
        return cls(is_open=True, opening=opening, closing=closing)

    @property
    def wraps_midnight(self) -> bool:
        return self.is_open and self.opening > self.closing  # type: ignore[operator]

    def to_json(self) -> dict:
        return {
            "opening": _format_time(self.opening),
            "closing": _format_time(self.closing),
            "open": self.is_open,
        }


@dataclass(frozen=True)
class WeeklySchedule:
    week_start: date
    timings: tuple[Timing, ...]

    def __post_init__(self) -> None:
        if len(self.timings) != DAYS_IN_WEEK:
            raise ValueError(
                f"WeeklySchedule needs {DAYS_IN_WEEK} timings, got {len(self.timings)}"
            )

    def timing_for(self, weekday: int) -> Timing:
        return self.timings[weekday]

    def timing_after(self, weekday: int) -> Timing:
        """Timing of the following day. Sunday wraps to this record's Monday."""
        return self.timings[next_weekday_index(weekday)]

    def to_json(self) -> dict:
        return {"timings": [t.to_json() for t in self.timings]}


def _format_time(value: time | None) -> str | None:
    if value is None:
        return None
    return value.strftime("%H:%M:%S")
