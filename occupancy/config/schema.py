"""Pydantic v2 configuration schema with strict validation."""

from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

DEFAULT_USER_AGENT = "occupancy-forecaster/0.1.0"


class VenueConfig(BaseModel):
    model_config = {"extra": "forbid"}

    url: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    timezone: str = "Europe/London"
    timeout_seconds: float = Field(default=30.0, gt=0.0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value


class SchedulerConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: int = Field(default=300, ge=1)
    error_interval_seconds: int = Field(default=60, ge=1)
    # Wake-up time used when today (or tomorrow, after closing) has no hours
    default_opening: time = time(6, 30)


class PredictorConfig(BaseModel):
    model_config = {"extra": "forbid"}

    k_neighbours: int = Field(default=5, ge=1)
    history_weeks: int = Field(default=4, ge=1, le=52)
    frequency_minutes: int = Field(default=30, ge=1, le=60)


class StoreConfig(BaseModel):
    model_config = {"extra": "forbid"}

    database_url: str = ""
    service_key_path: str = "serviceAccountKey.json.secret"
    root: str = "rs_data"
    timeout_seconds: float = Field(default=30.0, gt=0.0)


class OpsConfig(BaseModel):
    model_config = {"extra": "forbid"}

    state_path: str = "data/window.json"
    log_dir: str = "logs"
    max_log_files: int = Field(default=30, ge=1)


class OccupancyConfig(BaseModel):
    model_config = {"extra": "forbid"}

    venue: VenueConfig = VenueConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    predictor: PredictorConfig = PredictorConfig()
    store: StoreConfig = StoreConfig()
    ops: OpsConfig = OpsConfig()
