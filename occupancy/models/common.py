"""Calendar helpers shared across models: weekday indexes, week starts, local time."""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)
DAYS_IN_WEEK = 7


def weekday_index(d: date | datetime) -> int:
    """Monday-based weekday index: Monday=0 .. Sunday=6."""
    return d.weekday()


def weekday_name(index: int) -> str:
    if not 0 <= index < DAYS_IN_WEEK:
        raise ValueError(f"weekday index must be in 0..6, got {index}")
    return WEEKDAY_NAMES[index]


def next_weekday_index(index: int) -> int:
    return (index + 1) % DAYS_IN_WEEK


def start_of_week(d: date | datetime) -> date:
    """Return the Monday on or before the given date."""
    if isinstance(d, datetime):
        d = d.date()
    return d - timedelta(days=weekday_index(d))


def local_now(tz_name: str) -> datetime:
    return datetime.now(ZoneInfo(tz_name))


def hhmm_key(value: datetime | time) -> str:
    """Store key for a sample taken at this instant, e.g. "0930"."""
    return value.strftime("%H%M")
