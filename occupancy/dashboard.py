"""Occupancy dashboard: read-only FastAPI view of daemon state, window and forecasts."""

from datetime import UTC, datetime, time
from pathlib import Path

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from occupancy import daemon
from occupancy.config.loader import load_config
from occupancy.config.schema import OccupancyConfig
from occupancy.models.common import DAYS_IN_WEEK, weekday_name
from occupancy.models.observation import TimeOfDay
from occupancy.predict.knn import predict_range
from occupancy.predict.window import WindowStateError, load_window, window_summary

CONFIG_PATH = Path("ops") / "configs" / "default.yaml"

app = FastAPI(title="Occupancy Dashboard", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def _config() -> OccupancyConfig:
    if not CONFIG_PATH.exists():
        return OccupancyConfig()
    return load_config(CONFIG_PATH)


def _window(config: OccupancyConfig):
    try:
        window = load_window(config.ops.state_path)
    except WindowStateError as e:
        raise HTTPException(500, str(e)) from e
    if window is None:
        raise HTTPException(404, "No cached window")
    return window


def _parse_hhmm(value: str) -> time:
    try:
        return time.fromisoformat(value)
    except ValueError as e:
        raise HTTPException(422, f"Invalid time {value!r}, use HH:MM") from e


@app.get("/api/status")
def get_status():
    """Daemon state as last persisted by the loop."""
    state = daemon.read_state()
    return {
        "running": daemon.PID_FILE.exists(),
        "state": state,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@app.get("/api/window")
def get_window():
    """Per-weekday observation counts of the cached window."""
    return window_summary(_window(_config()))


@app.get("/api/forecast/{weekday}")
def get_forecast(weekday: int, opening: str | None = None, closing: str = "23:59"):
    """Forecast curve for a weekday, computed from the cached window."""
    if not 0 <= weekday < DAYS_IN_WEEK:
        raise HTTPException(422, f"weekday must be in 0..{DAYS_IN_WEEK - 1}")
    config = _config()
    opening_time = _parse_hhmm(opening) if opening else config.scheduler.default_opening
    closing_time = _parse_hhmm(closing)
    window = _window(config)

    curve = predict_range(
        window.series(weekday),
        TimeOfDay.from_time(opening_time),
        TimeOfDay.from_time(closing_time),
        config.predictor.frequency_minutes,
        config.predictor.k_neighbours,
    )
    return {
        "weekday": weekday,
        "name": weekday_name(weekday),
        "for_date": window.for_date.isoformat(),
        "curve": curve,
    }


@app.get("/api/config")
def get_config():
    """Effective configuration."""
    return _config().model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8777)
