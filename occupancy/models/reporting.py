"""Cycle reporting models."""

from dataclasses import dataclass, field


@dataclass
class CycleSummary:
    cycle: int
    started_at: str
    occupancy: int | None = None
    in_hours: bool = False
    delay_seconds: float = 0.0
    writes_attempted: int = 0
    writes_failed: int = 0
    forecast_written: bool = False
    forecast_points: int = 0
    duration_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
