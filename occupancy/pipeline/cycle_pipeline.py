"""Cycle pipeline: scrape, decide the next wake-up, then store samples and forecasts.

A cycle is split in two so the caller can overlap its sleep with the writes:
``plan`` scrapes and computes the delay up front, ``execute`` dispatches the
remote-store writes and the (at most daily) forecast concurrently.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from occupancy.config.schema import OccupancyConfig
from occupancy.ingest.venue_scraper import VenueScraper
from occupancy.models.common import (
    hhmm_key,
    local_now,
    start_of_week,
    weekday_index,
    weekday_name,
)
from occupancy.models.observation import TimeOfDay
from occupancy.models.reporting import CycleSummary
from occupancy.models.schedule import WeeklySchedule
from occupancy.predict.knn import predict_range
from occupancy.predict.window import (
    UnexpectedPayloadError,
    WindowStateError,
    ensure_window,
    needs_prediction,
    save_window,
)
from occupancy.scheduler.adaptive import AdaptiveScheduler
from occupancy.store.client import AuthError, RemoteStore, RemoteStoreError
from occupancy.store.credentials import ServiceKey
from occupancy.store.paths import StorePaths

logger = logging.getLogger(__name__)

# Errors that mean continuing would corrupt forecasts
FATAL_ERRORS = (UnexpectedPayloadError, WindowStateError)


@dataclass(frozen=True)
class CyclePlan:
    now: datetime
    delay: timedelta
    occupancy: int | None = None
    schedule: WeeklySchedule | None = None
    in_hours: bool = False
    error: str | None = None


class CyclePipeline:
    def __init__(
        self,
        config: OccupancyConfig,
        scraper: VenueScraper,
        store: RemoteStore,
        scheduler: AdaptiveScheduler | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.scraper = scraper
        self.store = store
        self.scheduler = scheduler or AdaptiveScheduler(
            config.scheduler.poll_interval_seconds,
            config.scheduler.error_interval_seconds,
            config.scheduler.default_opening,
        )
        self.paths = StorePaths(config.store.root)
        self.clock = clock or (lambda: local_now(config.venue.timezone))

    async def close(self) -> None:
        await self.scraper.close()
        await self.store.close()

    async def plan(self, now: datetime | None = None) -> CyclePlan:
        """Scrape and decide the delay before the next cycle.

        Without an explicit ``now`` the clock is read after the scrape, so the
        time spent fetching the page does not push wake-ups off the poll grid.
        """
        if now is None:
            snapshot = await self.scraper.scrape(self.clock().date())
            now = self.clock()
        else:
            snapshot = await self.scraper.scrape(now.date())
        if not snapshot.complete:
            logger.warning(
                "Scrape incomplete (occupancy=%s, schedule=%s), retrying in %ds",
                snapshot.occupancy,
                "ok" if snapshot.schedule else None,
                self.scheduler.error_interval,
            )
            return CyclePlan(now=now, delay=self.scheduler.error_delay(), error="Scrape failed")

        try:
            await self.store.ensure_credential()
        except AuthError as e:
            logger.error("Store authentication failed: %s", e)
            return CyclePlan(
                now=now,
                delay=self.scheduler.error_delay(),
                occupancy=snapshot.occupancy,
                schedule=snapshot.schedule,
                error="Store auth failed",
            )

        return CyclePlan(
            now=now,
            delay=self.scheduler.next_delay(now, snapshot.schedule),
            occupancy=snapshot.occupancy,
            schedule=snapshot.schedule,
            in_hours=self.scheduler.is_standard_interval(now, snapshot.schedule),
        )

    async def execute(self, plan: CyclePlan, cycle: int = 0) -> CycleSummary:
        """Dispatch the plan's writes and forecast concurrently."""
        start_time = time.monotonic()
        summary = CycleSummary(
            cycle=cycle,
            started_at=plan.now.isoformat(),
            occupancy=plan.occupancy,
            in_hours=plan.in_hours,
            delay_seconds=plan.delay.total_seconds(),
        )
        if plan.error is not None:
            summary.errors.append(plan.error)
            return summary
        if not plan.in_hours:
            logger.info("Outside opening hours, nothing to store")
            return summary

        writes = self._writes(plan)
        summary.writes_attempted = len(writes)
        results = await asyncio.gather(
            *(job for _, job in writes),
            self._forecast(plan),
            return_exceptions=True,
        )
        *write_results, forecast_result = results

        for (label, _), result in zip(writes, write_results):
            if isinstance(result, RemoteStoreError):
                summary.writes_failed += 1
                summary.errors.append(f"{label} write failed: {result}")
            elif isinstance(result, BaseException):
                raise result

        if isinstance(forecast_result, FATAL_ERRORS):
            raise forecast_result
        if isinstance(forecast_result, RemoteStoreError):
            summary.errors.append(f"forecast failed: {forecast_result}")
        elif isinstance(forecast_result, BaseException):
            raise forecast_result
        elif forecast_result is not None:
            summary.forecast_written = forecast_result > 0
            summary.forecast_points = forecast_result

        summary.duration_seconds = time.monotonic() - start_time
        return summary

    def _writes(self, plan: CyclePlan) -> list[tuple[str, Awaitable[None]]]:
        assert plan.schedule is not None and plan.occupancy is not None
        day = plan.now.date()
        week_start = start_of_week(day)
        sample = {hhmm_key(plan.now): plan.occupancy}
        schedule_json = plan.schedule.to_json()
        return [
            ("sample", self.store.update(self.paths.day_data(week_start, weekday_index(day)), sample)),
            ("schedule", self.store.set(self.paths.schedule(week_start), schedule_json)),
            ("latest sample", self.store.set(self.paths.latest_occupancy(day), sample)),
            ("latest schedule", self.store.set(self.paths.latest_schedule(), schedule_json)),
        ]

    async def _forecast(self, plan: CyclePlan) -> int | None:
        """Forecast today's curve once per day. Returns points written, None if not due."""
        assert plan.schedule is not None
        today = plan.now.date()
        state_path = self.config.ops.state_path
        window = await ensure_window(
            self.store,
            self.paths,
            state_path,
            self.config.predictor.history_weeks,
            today,
        )
        if not needs_prediction(window, today):
            return None

        weekday = weekday_index(today)
        timing = plan.schedule.timing_for(weekday)
        assert timing.opening is not None and timing.closing is not None
        curve = predict_range(
            window.series(weekday),
            TimeOfDay.from_time(timing.opening),
            TimeOfDay.from_time(timing.closing),
            self.config.predictor.frequency_minutes,
            self.config.predictor.k_neighbours,
        )
        if curve:
            await self.store.set(self.paths.prediction(start_of_week(today), weekday), curve)
            logger.info("Stored %d-point forecast for %s", len(curve), weekday_name(weekday))
        else:
            logger.warning("No forecast for %s: no usable history", weekday_name(weekday))

        save_window(window.with_last_predicted(today), state_path)
        return len(curve)


def build_pipeline(config: OccupancyConfig) -> CyclePipeline:
    """Wire the scraper and store clients from config."""
    scraper = VenueScraper(
        config.venue.url,
        config.venue.user_agent,
        config.venue.timeout_seconds,
    )
    store = RemoteStore(
        ServiceKey.from_file(config.store.service_key_path),
        config.store.database_url or None,
        config.store.timeout_seconds,
    )
    return CyclePipeline(config, scraper, store)
