"""Remote store path layout, keyed by ISO week start and weekday index."""

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class StorePaths:
    root: str = "rs_data"

    def week_data(self, week_start: date) -> str:
        return f"{self.root}/data/{week_start.isoformat()}"

    def day_data(self, week_start: date, weekday: int) -> str:
        return f"{self.week_data(week_start)}/{weekday}"

    def prediction(self, week_start: date, weekday: int) -> str:
        return f"{self.root}/prediction/{week_start.isoformat()}/{weekday}"

    def schedule(self, week_start: date) -> str:
        return f"{self.root}/schedule/{week_start.isoformat()}"

    def latest_occupancy(self, day: date) -> str:
        return f"{self.root}/latest/{day.isoformat()}"

    def latest_schedule(self) -> str:
        return f"{self.root}/latest/schedule"
