"""Rolling historical window: per-weekday observations from the last N weeks.

Raw samples live in the remote store under ``data/{week_start}``, one child
per weekday index holding ``{"HHMM": occupancy}`` objects. The store returns
a week either as a JSON array (all weekday indexes present) or as an object
keyed by index (when some days are missing). Both decode into the same
per-weekday series, tagged with how many weeks back they were fetched from.

The window is rebuilt once per calendar week and cached on disk in between.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Protocol

from occupancy.models.common import DAYS_IN_WEEK, start_of_week, weekday_name
from occupancy.models.observation import HistoricalWindow, Observation, TimeOfDay
from occupancy.store.paths import StorePaths

logger = logging.getLogger(__name__)


class UnexpectedPayloadError(Exception):
    """The remote store returned JSON the window cannot interpret."""


class WindowStateError(Exception):
    """The cached window file exists but cannot be parsed."""


class SupportsGet(Protocol):
    async def get(self, path: str) -> Any: ...


@dataclass(frozen=True)
class PopulatedWeek:
    """Week returned as a JSON array, ordered by weekday index."""

    days: tuple[Any, ...]

    def day(self, index: int) -> Any:
        return self.days[index] if index < len(self.days) else None


@dataclass(frozen=True)
class SparseWeek:
    """Week returned as a JSON object keyed by weekday index."""

    days: dict[int, Any] = field(default_factory=dict)

    def day(self, index: int) -> Any:
        return self.days.get(index)


def decode_week_payload(raw: Any) -> PopulatedWeek | SparseWeek:
    if raw is None:
        return SparseWeek()
    if isinstance(raw, list):
        return PopulatedWeek(tuple(raw))
    if isinstance(raw, dict):
        days: dict[int, Any] = {}
        for key, value in raw.items():
            try:
                days[int(key)] = value
            except ValueError as e:
                raise UnexpectedPayloadError(f"Unexpected weekday key {key!r}") from e
        return SparseWeek(days)
    raise UnexpectedPayloadError(f"Unexpected week payload type: {type(raw).__name__}")


def decode_day_payload(raw: Any) -> list[tuple[TimeOfDay, int]]:
    if raw is None:
        return []
    if not isinstance(raw, dict):
        raise UnexpectedPayloadError(f"Unexpected day payload type: {type(raw).__name__}")

    samples = []
    for key, value in raw.items():
        try:
            time_of_day = TimeOfDay.from_key(key)
        except ValueError as e:
            raise UnexpectedPayloadError(f"Unexpected sample key {key!r}") from e
        if isinstance(value, bool) or not isinstance(value, int):
            raise UnexpectedPayloadError(f"Unexpected occupancy {value!r} at {key}")
        samples.append((time_of_day, value))
    return samples


def merge_week(
    per_weekday: list[list[Observation]],
    week: PopulatedWeek | SparseWeek,
    weeks_away: int,
) -> None:
    """Append one decoded week's samples to each weekday's series."""
    for index in range(DAYS_IN_WEEK):
        per_weekday[index].extend(
            Observation(time_of_day=t, occupancy=occ, weeks_away=weeks_away)
            for t, occ in decode_day_payload(week.day(index))
        )


async def build_window(
    store: SupportsGet, paths: StorePaths, weeks: int, today: date
) -> HistoricalWindow:
    """Fetch the ``weeks`` weeks preceding today's week and assemble a window."""
    for_date = start_of_week(today)
    week_starts = [for_date - timedelta(weeks=w) for w in range(1, weeks + 1)]
    payloads = await asyncio.gather(*(store.get(paths.week_data(ws)) for ws in week_starts))

    per_weekday: list[list[Observation]] = [[] for _ in range(DAYS_IN_WEEK)]
    for weeks_away, raw in enumerate(payloads):
        merge_week(per_weekday, decode_week_payload(raw), weeks_away)

    logger.info(
        "Built window for week of %s from %d weeks: %s observations per weekday",
        for_date, weeks, [len(s) for s in per_weekday],
    )
    return HistoricalWindow(
        for_date=for_date,
        per_weekday=tuple(tuple(s) for s in per_weekday),
    )


def load_window(path: str | Path) -> HistoricalWindow | None:
    """Load the cached window. Missing file -> None; unreadable -> WindowStateError."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        return HistoricalWindow.from_json(json.loads(path.read_text()))
    except (ValueError, KeyError, TypeError) as e:
        raise WindowStateError(f"Cannot parse window file {path}: {e}") from e


def save_window(window: HistoricalWindow, path: str | Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(window.to_json(), indent=2))
    os.replace(tmp, path)


def window_is_current(window: HistoricalWindow, today: date) -> bool:
    return start_of_week(window.for_date) == start_of_week(today)


def needs_prediction(window: HistoricalWindow, today: date) -> bool:
    return window.last_predicted is None or window.last_predicted < today


async def ensure_window(
    store: SupportsGet,
    paths: StorePaths,
    state_path: str | Path,
    weeks: int,
    today: date,
) -> HistoricalWindow:
    """Return this week's window, rebuilding and persisting it only when stale."""
    window = load_window(state_path)
    if window is not None and window_is_current(window, today):
        return window

    if window is None:
        logger.info("No cached window at %s, building", state_path)
    else:
        logger.info("Cached window is for %s, rebuilding for %s", window.for_date, today)
    window = await build_window(store, paths, weeks, today)
    save_window(window, state_path)
    return window


def window_summary(window: HistoricalWindow) -> dict:
    """Per-weekday observation counts and week spread, for operators."""
    return {
        "for_date": window.for_date.isoformat(),
        "last_predicted": (
            window.last_predicted.isoformat() if window.last_predicted else None
        ),
        "weekdays": [
            {
                "weekday": weekday_name(index),
                "observations": len(series),
                "weeks": sorted({obs.weeks_away for obs in series}),
            }
            for index, series in enumerate(window.per_weekday)
        ],
    }
