"""Tests for the occupancy daemon."""

import asyncio
import json
import logging
import os
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from occupancy.config.schema import OccupancyConfig, OpsConfig, StoreConfig
from occupancy.daemon import OccupancyDaemon, daemon_status, stop_daemon
from occupancy.models.reporting import CycleSummary
from occupancy.pipeline.cycle_pipeline import CyclePlan
from occupancy.predict.window import WindowStateError


@pytest.fixture
def tmp_data(tmp_path, monkeypatch):
    """Redirect PID/state files to temp directory."""
    pid_file = tmp_path / "daemon.pid"
    state_file = tmp_path / "daemon_state.json"
    monkeypatch.setattr("occupancy.daemon.PID_FILE", pid_file)
    monkeypatch.setattr("occupancy.daemon.PID_DIR", tmp_path)
    monkeypatch.setattr("occupancy.daemon.STATE_FILE", state_file)
    return {"pid": pid_file, "state": state_file, "dir": tmp_path}


class FakePipeline:
    """Scripted pipeline: one plan, one summary or exception per cycle."""

    def __init__(self, delay=timedelta(0), summary_errors=(), execute_error=None, plan_error=None):
        self.delay = delay
        self.summary_errors = list(summary_errors)
        self.execute_error = execute_error
        self.plan_error = plan_error
        self.events: list[str] = []
        self.closed = False

    async def plan(self, now=None):
        now = now or datetime(2024, 1, 15, 9, 7, 30, tzinfo=UTC)
        if self.plan_error is not None:
            raise self.plan_error
        return CyclePlan(now=now, delay=self.delay, occupancy=42, in_hours=True)

    async def execute(self, plan, cycle=0):
        self.events.append("execute-start")
        await asyncio.sleep(0.01)
        self.events.append("execute-end")
        if self.execute_error is not None:
            raise self.execute_error
        return CycleSummary(
            cycle=cycle,
            started_at=plan.now.isoformat(),
            occupancy=plan.occupancy,
            in_hours=plan.in_hours,
            delay_seconds=plan.delay.total_seconds(),
            errors=list(self.summary_errors),
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def config(tmp_path) -> OccupancyConfig:
    return OccupancyConfig(
        store=StoreConfig(service_key_path=str(tmp_path / "missing-key.json")),
        ops=OpsConfig(log_dir=str(tmp_path / "logs"), max_log_files=3),
    )


@pytest.fixture
def daemon_with(config):
    created = []

    def _make(pipeline):
        d = OccupancyDaemon(config, pipeline=pipeline)
        d._running = True
        created.append(d)
        return d

    yield _make
    for d in created:
        d._remove_log_handler()


class TestLifecycle:
    def test_start_writes_state_and_cleans_pid(self, tmp_data, config):
        daemon = OccupancyDaemon(config, pipeline=FakePipeline())
        with patch.object(daemon, "_loop", new_callable=AsyncMock), patch.object(daemon, "_setup_signals"):
            assert daemon.start() == 0

        assert tmp_data["state"].exists()
        assert not tmp_data["pid"].exists()

    def test_missing_service_key_fails_start(self, tmp_data, config):
        assert OccupancyDaemon(config).start() == 1
        assert not tmp_data["pid"].exists()

    def test_fatal_error_exits_1(self, tmp_data, config):
        pipeline = FakePipeline(plan_error=WindowStateError("corrupt"))
        daemon = OccupancyDaemon(config, pipeline=pipeline)
        with patch.object(daemon, "_setup_signals"):
            assert daemon.start() == 1
        assert pipeline.closed
        assert not tmp_data["pid"].exists()

    def test_prevents_duplicate_start(self, tmp_data, config):
        tmp_data["pid"].write_text(str(os.getpid()))
        with pytest.raises(SystemExit):
            OccupancyDaemon(config)._check_not_already_running()

    def test_cleans_stale_pid(self, tmp_data, config):
        tmp_data["pid"].write_text("999999999")
        OccupancyDaemon(config)._check_not_already_running()
        assert not tmp_data["pid"].exists()


class TestCycle:
    @pytest.mark.asyncio
    async def test_successful_cycle(self, tmp_data, daemon_with):
        daemon = daemon_with(FakePipeline())
        assert await daemon._run_one_cycle() is True
        assert daemon._total_successes == 1
        assert daemon._last_summary.occupancy == 42

    @pytest.mark.asyncio
    async def test_sleep_overlaps_execute(self, tmp_data, daemon_with):
        pipeline = FakePipeline(delay=timedelta(seconds=5))
        daemon = daemon_with(pipeline)

        async def fake_sleep(seconds):
            pipeline.events.append(f"sleep-start {seconds:.0f}")

        with patch.object(daemon, "_sleep", side_effect=fake_sleep):
            await daemon._run_one_cycle()

        assert pipeline.events.index("sleep-start 5") < pipeline.events.index("execute-end")

    @pytest.mark.asyncio
    async def test_cycle_with_errors(self, tmp_data, daemon_with):
        daemon = daemon_with(FakePipeline(summary_errors=["Scrape failed"]))
        assert await daemon._run_one_cycle() is False
        assert daemon._total_failures == 1

    @pytest.mark.asyncio
    async def test_crashed_execute_keeps_running(self, tmp_data, daemon_with):
        daemon = daemon_with(FakePipeline(execute_error=RuntimeError("boom")))
        assert await daemon._run_one_cycle() is False
        assert daemon._total_failures == 1
        assert daemon._running

    @pytest.mark.asyncio
    async def test_crashed_plan_waits_error_interval(self, tmp_data, daemon_with):
        daemon = daemon_with(FakePipeline(plan_error=RuntimeError("boom")))
        with patch.object(daemon, "_sleep", new_callable=AsyncMock) as sleep:
            assert await daemon._run_one_cycle() is False
        sleep.assert_awaited_once_with(60)

    @pytest.mark.asyncio
    async def test_fatal_execute_propagates(self, tmp_data, daemon_with):
        daemon = daemon_with(FakePipeline(delay=timedelta(hours=1), execute_error=WindowStateError("x")))
        with pytest.raises(WindowStateError):
            await daemon._run_one_cycle()

    @pytest.mark.asyncio
    async def test_sleep_returns_when_stopped(self, config):
        daemon = OccupancyDaemon(config)
        daemon._running = False
        await asyncio.wait_for(daemon._sleep(3600), timeout=1)


class TestLogFiles:
    def test_daily_file_and_rotation(self, tmp_data, config, tmp_path):
        log_dir = tmp_path / "logs"
        log_dir.mkdir()
        for day in range(1, 6):
            (log_dir / f"occupancy_2024-01-0{day}.log").write_text("old")

        daemon = OccupancyDaemon(config)
        daemon._ensure_log_handler(datetime(2024, 1, 9).date())
        try:
            logging.getLogger("occupancy.test").warning("hello")
            names = sorted(p.name for p in log_dir.glob("occupancy_*.log"))
            assert names == [
                "occupancy_2024-01-04.log",
                "occupancy_2024-01-05.log",
                "occupancy_2024-01-09.log",
            ]
        finally:
            daemon._remove_log_handler()
        assert "hello" in (log_dir / "occupancy_2024-01-09.log").read_text()


class TestDaemonState:
    def test_save_state(self, tmp_data, config):
        daemon = OccupancyDaemon(config)
        daemon._total_cycles = 10
        daemon._total_successes = 8
        daemon._total_failures = 2
        daemon._started_at = "2024-01-15T00:00:00+00:00"
        daemon._save_state()

        state = json.loads(tmp_data["state"].read_text())
        assert state["total_cycles"] == 10
        assert state["total_successes"] == 8
        assert state["poll_interval"] == 300
        assert state["last_occupancy"] is None

    def test_status_no_state(self, tmp_data, capsys):
        assert daemon_status() == 1
        assert "No daemon state" in capsys.readouterr().out

    def test_status_with_state(self, tmp_data, capsys):
        tmp_data["state"].write_text(json.dumps({
            "pid": 999999999,
            "total_cycles": 5,
            "total_successes": 4,
            "total_failures": 1,
            "last_occupancy": 37,
        }))
        assert daemon_status() == 0
        out = capsys.readouterr().out
        assert "stopped" in out
        assert "Last occupancy: 37" in out


class TestStopDaemon:
    def test_no_pid_file(self, tmp_data, capsys):
        assert stop_daemon() == 1

    def test_stale_pid(self, tmp_data):
        tmp_data["pid"].write_text("999999999")
        tmp_data["state"].write_text("{}")
        assert stop_daemon() == 0
        assert not tmp_data["pid"].exists()
        assert not tmp_data["state"].exists()

    def test_corrupt_pid(self, tmp_data):
        tmp_data["pid"].write_text("not-a-pid")
        assert stop_daemon() == 1
        assert not tmp_data["pid"].exists()
