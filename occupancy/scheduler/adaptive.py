"""Opening-hours-aware scheduler: how long to sleep before the next cycle.

The policy is:

1. Closed today: sleep past midnight until the default opening time.
2. Before opening: sleep until opening.
3. Within hours: sleep to the next multiple of the poll interval counted
   from the top of the hour, so polls land on a shared grid.
4. Past closing (including a window that wraps past midnight): sleep until
   tomorrow's opening, or the default opening when tomorrow is closed.

Everything here is a pure function of (now, schedule, config).
"""

import logging
from datetime import UTC, datetime, time, timedelta

from occupancy.models.common import weekday_index
from occupancy.models.schedule import Timing, WeeklySchedule

logger = logging.getLogger(__name__)

DEFAULT_OPENING = time(6, 30)


class NoScheduleError(Exception):
    """Raised when a delay is requested before any schedule was scraped."""


def next_delay(
    now: datetime,
    schedule: WeeklySchedule | None,
    poll_interval: int,
    default_opening: time = DEFAULT_OPENING,
) -> timedelta:
    """Compute how long to suspend before the next cycle. Never negative."""
    if schedule is None:
        raise NoScheduleError("No schedule available")
    if poll_interval < 1:
        raise ValueError(f"poll_interval must be >= 1, got {poll_interval}")

    weekday = weekday_index(now)
    timing = schedule.timing_for(weekday)
    now_time = now.time().replace(tzinfo=None)

    if not timing.is_open:
        return _until(now, 1, default_opening)

    opening, closing = _hours(timing)

    if now_time < opening:
        return _until(now, 0, opening)

    if not timing.wraps_midnight and opening <= now_time < closing:
        since_hour = (
            now_time.minute * 60 + now_time.second + now_time.microsecond / 1_000_000
        )
        return timedelta(seconds=poll_interval - (since_hour % poll_interval))

    tomorrow = schedule.timing_after(weekday)
    if not tomorrow.is_open:
        return _until(now, 1, default_opening)
    return _until(now, 1, _hours(tomorrow)[0])


def is_standard_interval(now: datetime, schedule: WeeklySchedule | None) -> bool:
    """True iff ``now`` falls inside today's opening hours."""
    if schedule is None:
        raise NoScheduleError("No schedule available")
    timing = schedule.timing_for(weekday_index(now))
    if not timing.is_open or timing.wraps_midnight:
        return False
    opening, closing = _hours(timing)
    now_time = now.time().replace(tzinfo=None)
    return opening <= now_time < closing


class AdaptiveScheduler:
    """Holds the sleep policy configuration; stateless between calls."""

    def __init__(
        self,
        poll_interval: int,
        error_interval: int,
        default_opening: time = DEFAULT_OPENING,
    ):
        self.poll_interval = poll_interval
        self.error_interval = error_interval
        self.default_opening = default_opening

    def next_delay(self, now: datetime, schedule: WeeklySchedule | None) -> timedelta:
        delay = next_delay(now, schedule, self.poll_interval, self.default_opening)
        logger.info("Next cycle in %.0f seconds", delay.total_seconds())
        return delay

    def error_delay(self) -> timedelta:
        return timedelta(seconds=self.error_interval)

    def is_standard_interval(self, now: datetime, schedule: WeeklySchedule | None) -> bool:
        return is_standard_interval(now, schedule)


def _hours(timing: Timing) -> tuple[time, time]:
    # Timing construction guarantees both are present when open
    assert timing.opening is not None and timing.closing is not None
    return timing.opening, timing.closing


def _until(now: datetime, days_ahead: int, wake: time) -> timedelta:
    """Elapsed time from ``now`` to ``wake`` local time, ``days_ahead`` days later.

    Both ends are compared in UTC so a daylight-saving change in between
    lengthens or shortens the sleep by the shift.
    """
    wake_at = datetime.combine(now.date() + timedelta(days=days_ahead), wake, tzinfo=now.tzinfo)
    return wake_at.astimezone(UTC) - now.astimezone(UTC)
