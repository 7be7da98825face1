"""Extract live occupancy and the week's opening hours from the venue page."""

import logging
import re
from datetime import date, datetime, time

from occupancy.models.common import DAYS_IN_WEEK
from occupancy.models.schedule import Timing, WeeklySchedule

logger = logging.getLogger(__name__)

OCCUPANCY_PATTERN = re.compile(r"Occupancy:\s+(\d+)%")
# One <dd> per weekday, Monday first
SCHEDULE_ENTRY_PATTERN = re.compile(
    r'<dd class="paired-values-list__value">(.*?)</dd>', re.DOTALL
)
HOURS_PATTERN = re.compile(r"^(.+?)\s+to\s+(.+?)$", re.IGNORECASE)
# "6.30am", "6:30 pm", "10.00 P.M."
CLOCK_PATTERN = re.compile(r"^(\d{1,2})\D(\d{2})\s*([ap])\.?m\.?$", re.IGNORECASE)
TAG_PATTERN = re.compile(r"<[^>]+>")
CLOSED_LABEL = "closed"


def parse_occupancy(html: str) -> int | None:
    """Return the live occupancy percentage, or None if absent or out of range."""
    m = OCCUPANCY_PATTERN.search(html)
    if m is None:
        logger.warning("Occupancy not found in page")
        return None
    value = int(m.group(1))
    if value > 100:
        logger.warning("Occupancy %d%% out of range", value)
        return None
    return value


def parse_clock(text: str) -> time | None:
    """Parse a 12-hour clock reading such as "6.30am"."""
    m = CLOCK_PATTERN.match(text.strip())
    if m is None:
        return None
    hour, minute, meridiem = m.groups()
    try:
        return datetime.strptime(f"{hour}:{minute} {meridiem}M", "%I:%M %p").time()
    except ValueError:
        return None


def parse_timing(entry: str) -> Timing | None:
    """Parse one schedule entry: "CLOSED" or "<clock> to <clock>"."""
    text = TAG_PATTERN.sub("", entry).strip()
    if text.lower() == CLOSED_LABEL:
        return Timing.closed()

    m = HOURS_PATTERN.match(text)
    if m is None:
        return None
    opening = parse_clock(m.group(1))
    closing = parse_clock(m.group(2))
    if opening is None or closing is None:
        return None
    return Timing.open_between(opening, closing)


def parse_schedule(html: str, week_start: date) -> WeeklySchedule | None:
    """Build the week's schedule from the page. Any malformed entry -> None."""
    entries = SCHEDULE_ENTRY_PATTERN.findall(html)
    if len(entries) != DAYS_IN_WEEK:
        logger.warning(
            "Expected %d schedule entries, found %d", DAYS_IN_WEEK, len(entries)
        )
        return None

    timings = []
    for index, entry in enumerate(entries):
        timing = parse_timing(entry)
        if timing is None:
            logger.warning("Unparseable schedule entry for weekday %d: %r", index, entry)
            return None
        timings.append(timing)

    return WeeklySchedule(week_start=week_start, timings=tuple(timings))
