"""Shared test fixtures."""

from datetime import date, time
from pathlib import Path

import pytest
import yaml

from occupancy.config.schema import OccupancyConfig, OpsConfig, StoreConfig
from occupancy.models.schedule import Timing, WeeklySchedule

# Monday
WEEK_START = date(2024, 1, 8)


@pytest.fixture
def default_config() -> OccupancyConfig:
    """Return default OccupancyConfig."""
    return OccupancyConfig()


@pytest.fixture
def tmp_config(tmp_path: Path) -> OccupancyConfig:
    """Default config with local state and logs redirected to tmp_path."""
    return OccupancyConfig(
        store=StoreConfig(database_url="https://test-db.example.com"),
        ops=OpsConfig(
            state_path=str(tmp_path / "window.json"),
            log_dir=str(tmp_path / "logs"),
        ),
    )


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "venue": {"url": "https://venue.example.com/gym"},
        "scheduler": {"poll_interval_seconds": 600},
        "predictor": {"k_neighbours": 3},
        "ops": {"state_path": str(tmp_path / "window.json")},
    }
    path = tmp_path / "test_config.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path


@pytest.fixture
def weekly_schedule() -> WeeklySchedule:
    """Mon-Thu 06:30-22:00, Fri 06:30-21:00, Sat 08:00-18:00, Sun closed."""
    weekday = Timing.open_between(time(6, 30), time(22, 0))
    return WeeklySchedule(
        week_start=WEEK_START,
        timings=(
            weekday,
            weekday,
            weekday,
            weekday,
            Timing.open_between(time(6, 30), time(21, 0)),
            Timing.open_between(time(8, 0), time(18, 0)),
            Timing.closed(),
        ),
    )


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the path to the test fixtures directory."""
    return Path(__file__).parent / "fixtures"
