"""Observation and historical-window models for the k-NN predictor."""

from dataclasses import dataclass, replace
from datetime import date, time
from typing import TypeAlias

from occupancy.models.common import DAYS_IN_WEEK

# HHMM key -> predicted occupancy, ordered by time of day
PredictionCurve: TypeAlias = dict[str, int]


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """Time of day in the HHMM integer encoding (09:30 -> 930).

    Distance and stepping are plain integer arithmetic on the encoding, not
    true minutes: 0959 -> 1000 is a distance of 41. Stepping can therefore
    produce values such as 0960, which ``is_valid`` rejects.
    """

    value: int

    @classmethod
    def from_time(cls, t: time) -> "TimeOfDay":
        return cls(t.hour * 100 + t.minute)

    @classmethod
    def from_key(cls, key: str) -> "TimeOfDay":
        if not key.isdigit():
            raise ValueError(f"Invalid HHMM key: {key!r}")
        return cls(int(key))

    @property
    def hour(self) -> int:
        return self.value // 100

    @property
    def minute(self) -> int:
        return self.value % 100

    @property
    def key(self) -> str:
        return f"{self.value:04d}"

    @property
    def is_valid(self) -> bool:
        return 0 <= self.value and self.hour < 24 and self.minute < 60

    def distance_to(self, other: "TimeOfDay") -> int:
        return abs(self.value - other.value)

    def advance(self, minutes: int) -> "TimeOfDay":
        return TimeOfDay(self.value + minutes)


@dataclass(frozen=True)
class Observation:
    time_of_day: TimeOfDay
    occupancy: int
    weeks_away: int  # 0 = most recent week fetched


@dataclass(frozen=True)
class HistoricalWindow:
    for_date: date  # week start the window was assembled for
    per_weekday: tuple[tuple[Observation, ...], ...]
    last_predicted: date | None = None

    def __post_init__(self) -> None:
        if len(self.per_weekday) != DAYS_IN_WEEK:
            raise ValueError(
                f"HistoricalWindow needs {DAYS_IN_WEEK} series, got {len(self.per_weekday)}"
            )

    def series(self, weekday: int) -> tuple[Observation, ...]:
        return self.per_weekday[weekday]

    def with_last_predicted(self, day: date) -> "HistoricalWindow":
        return replace(self, last_predicted=day)

    def to_json(self) -> dict:
        return {
            "for_date": self.for_date.isoformat(),
            "last_predicted": (
                self.last_predicted.isoformat() if self.last_predicted else None
            ),
            "per_weekday": [
                [
                    {
                        "time": obs.time_of_day.key,
                        "occupancy": obs.occupancy,
                        "weeks_away": obs.weeks_away,
                    }
                    for obs in series
                ]
                for series in self.per_weekday
            ],
        }

    @classmethod
    def from_json(cls, data: dict) -> "HistoricalWindow":
        """Inverse of ``to_json``. Raises KeyError/ValueError/TypeError on bad input."""
        last = data["last_predicted"]
        return cls(
            for_date=date.fromisoformat(data["for_date"]),
            per_weekday=tuple(
                tuple(
                    Observation(
                        time_of_day=TimeOfDay.from_key(item["time"]),
                        occupancy=int(item["occupancy"]),
                        weeks_away=int(item["weeks_away"]),
                    )
                    for item in series
                )
                for series in data["per_weekday"]
            ),
            last_predicted=date.fromisoformat(last) if last else None,
        )

    @classmethod
    def empty(cls, for_date: date) -> "HistoricalWindow":
        return cls(for_date=for_date, per_weekday=((),) * DAYS_IN_WEEK)
