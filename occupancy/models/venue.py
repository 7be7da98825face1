"""Scraped venue data models."""

from dataclasses import dataclass

from occupancy.models.schedule import WeeklySchedule


@dataclass(frozen=True)
class VenueSnapshot:
    """One scrape of the venue page. ``None`` fields mean the scrape failed."""

    occupancy: int | None
    schedule: WeeklySchedule | None

    @property
    def complete(self) -> bool:
        return self.occupancy is not None and self.schedule is not None
