"""Occupancy daemon: samples the venue and forecasts on an opening-hours schedule.

Each cycle scrapes once, computes how long to sleep, and starts sleeping
straight away while that cycle's writes and forecast run alongside.

Usage:
    python -m occupancy daemon --config ops/configs/default.yaml
    python -m occupancy daemon --status
    python -m occupancy daemon --stop
"""

import asyncio
import json
import logging
import os
import signal
import sys
import time
from datetime import UTC, date, datetime
from pathlib import Path

from occupancy.config.loader import config_hash
from occupancy.config.schema import OccupancyConfig
from occupancy.models.common import local_now
from occupancy.models.reporting import CycleSummary
from occupancy.pipeline.cycle_pipeline import FATAL_ERRORS, CyclePipeline, build_pipeline
from occupancy.store.client import RemoteStoreError

logger = logging.getLogger(__name__)

PID_DIR = Path("data")
PID_FILE = PID_DIR / "daemon.pid"
STATE_FILE = PID_DIR / "daemon_state.json"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class OccupancyDaemon:
    """Runs the cycle pipeline forever with signal handling and daily log files."""

    def __init__(self, config: OccupancyConfig, pipeline: CyclePipeline | None = None):
        self.config = config
        self.pipeline = pipeline
        self.log_dir = Path(config.ops.log_dir)
        self._running = False
        self._total_cycles = 0
        self._total_successes = 0
        self._total_failures = 0
        self._started_at: str | None = None
        self._last_summary: CycleSummary | None = None
        self._file_handler: logging.FileHandler | None = None
        self._log_date: date | None = None

    def start(self) -> int:
        """Start the daemon loop. Returns a process exit code."""
        if self.pipeline is None:
            try:
                self.pipeline = build_pipeline(self.config)
            except (OSError, ValueError, RemoteStoreError) as e:
                logger.error("Cannot start daemon: %s", e)
                print(f"❌ Cannot start daemon: {e}")
                return 1

        self._check_not_already_running()
        self._write_pid()
        self._setup_signals()
        self._running = True
        self._started_at = datetime.now(UTC).isoformat()

        logger.info(
            "Daemon started: config=%s poll=%ds error=%ds pid=%d",
            config_hash(self.config),
            self.config.scheduler.poll_interval_seconds,
            self.config.scheduler.error_interval_seconds,
            os.getpid(),
        )
        print(f"🔄 Occupancy daemon started (pid {os.getpid()})")
        print(f"   Logs: {self.log_dir}/")
        print("   Stop: python -m occupancy daemon --stop")

        exit_code = 0
        try:
            asyncio.run(self._loop())
        except KeyboardInterrupt:
            logger.info("Daemon interrupted by keyboard")
        except FATAL_ERRORS:
            logger.exception("Fatal error, stopping daemon")
            exit_code = 1
        finally:
            self._cleanup()
        return exit_code

    async def _loop(self) -> None:
        assert self.pipeline is not None
        try:
            while self._running:
                await self._run_one_cycle()
                self._save_state()
        finally:
            await self.pipeline.close()

    async def _run_one_cycle(self) -> bool:
        """Run one cycle, including its sleep. Returns True on success."""
        assert self.pipeline is not None
        self._total_cycles += 1
        now = local_now(self.config.venue.timezone)
        self._ensure_log_handler(now.date())
        logger.info("=== Cycle #%d starting ===", self._total_cycles)

        try:
            plan = await self.pipeline.plan()
        except FATAL_ERRORS:
            raise
        except Exception:
            self._total_failures += 1
            logger.exception("Cycle #%d crashed while planning", self._total_cycles)
            await self._sleep(self.config.scheduler.error_interval_seconds)
            return False

        # The sleep does not depend on the writes, so it starts now
        sleeper = asyncio.create_task(self._sleep(plan.delay.total_seconds()))
        try:
            summary = await self.pipeline.execute(plan, self._total_cycles)
        except FATAL_ERRORS:
            sleeper.cancel()
            raise
        except Exception:
            self._total_failures += 1
            logger.exception("Cycle #%d crashed", self._total_cycles)
            await sleeper
            return False

        self._last_summary = summary
        if summary.ok:
            self._total_successes += 1
            logger.info(
                "Cycle #%d OK: occupancy=%s in_hours=%s forecast_points=%d next in %.0fs",
                self._total_cycles,
                summary.occupancy,
                summary.in_hours,
                summary.forecast_points,
                summary.delay_seconds,
            )
        else:
            self._total_failures += 1
            logger.warning(
                "Cycle #%d completed with errors: %s", self._total_cycles, summary.errors
            )

        await sleeper
        return summary.ok

    async def _sleep(self, seconds: float) -> None:
        """Sleep in short slices so a stop signal is honoured promptly."""
        deadline = time.monotonic() + seconds
        while self._running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(1.0, remaining))

    def _ensure_log_handler(self, today: date) -> None:
        """Write each day's log to its own file, keeping the newest few."""
        if self._log_date == today and self._file_handler is not None:
            return
        self._remove_log_handler()

        self.log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.log_dir / f"occupancy_{today.isoformat()}.log")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
        self._file_handler = handler
        self._log_date = today
        self._rotate_logs()

    def _remove_log_handler(self) -> None:
        if self._file_handler is None:
            return
        logging.getLogger().removeHandler(self._file_handler)
        self._file_handler.close()
        self._file_handler = None

    def _rotate_logs(self) -> None:
        """Keep only the most recent log files."""
        if not self.log_dir.exists():
            return
        logs = sorted(self.log_dir.glob("occupancy_*.log"))
        max_files = self.config.ops.max_log_files
        if len(logs) > max_files:
            for old in logs[: len(logs) - max_files]:
                old.unlink(missing_ok=True)

    def _setup_signals(self) -> None:
        """SIGTERM/SIGINT let the current cycle finish, then end the loop."""
        def _request_stop(signum: int, frame: object) -> None:
            name = signal.Signals(signum).name
            logger.info("Received %s, stopping after the current cycle", name)
            print(f"\n⏹️  {name}: stopping after the current cycle...")
            self._running = False

        for signum in (signal.SIGTERM, signal.SIGINT):
            signal.signal(signum, _request_stop)

    def _check_not_already_running(self) -> None:
        """Exit if a live daemon already owns the PID file; drop a stale one."""
        pid = _read_pid()
        if pid is None:
            PID_FILE.unlink(missing_ok=True)
            return
        alive = _pid_alive(pid)
        if alive is False:
            logger.info("Removing stale PID file for pid %d", pid)
            PID_FILE.unlink(missing_ok=True)
            return
        if alive is None:
            print(f"❌ Daemon may be running (pid {pid}), can't verify.")
        else:
            print(f"❌ Daemon already running (pid {pid}). Stop it first:")
            print("   python -m occupancy daemon --stop")
        sys.exit(1)

    def _write_pid(self) -> None:
        PID_DIR.mkdir(parents=True, exist_ok=True)
        PID_FILE.write_text(str(os.getpid()))

    def _save_state(self) -> None:
        """Persist loop counters and the last cycle's outcome for status reporting."""
        last = self._last_summary
        state = {
            "pid": os.getpid(),
            "started_at": self._started_at,
            "poll_interval": self.config.scheduler.poll_interval_seconds,
            "total_cycles": self._total_cycles,
            "total_successes": self._total_successes,
            "total_failures": self._total_failures,
            "last_occupancy": last.occupancy if last else None,
            "last_in_hours": last.in_hours if last else None,
            "last_delay_seconds": last.delay_seconds if last else None,
            "last_update": datetime.now(UTC).isoformat(),
        }
        PID_DIR.mkdir(parents=True, exist_ok=True)
        STATE_FILE.write_text(json.dumps(state, indent=2))

    def _cleanup(self) -> None:
        PID_FILE.unlink(missing_ok=True)
        self._save_state()
        summary = (
            f"{self._total_cycles} cycles "
            f"({self._total_successes} ok, {self._total_failures} failed)"
        )
        logger.info("Daemon stopped: %s", summary)
        self._remove_log_handler()
        print(f"⏹️  Daemon stopped: {summary}")


def _read_pid() -> int | None:
    """PID from the PID file, or None when absent or unreadable."""
    try:
        return int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _pid_alive(pid: int) -> bool | None:
    """True/False when the process can be probed, None when permission is denied."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return None
    return True


def read_state() -> dict | None:
    if not STATE_FILE.exists():
        return None
    return json.loads(STATE_FILE.read_text())


def stop_daemon(wait_seconds: int = 60) -> int:
    """Send SIGTERM to the running daemon and wait for it to exit."""
    if not PID_FILE.exists():
        print("No daemon running (no PID file found)")
        return 1
    pid = _read_pid()
    if pid is None:
        print("Corrupt PID file, removing")
        PID_FILE.unlink(missing_ok=True)
        return 1

    if _pid_alive(pid) is False:
        print(f"Daemon not running (stale pid {pid}), cleaning up")
        PID_FILE.unlink(missing_ok=True)
        STATE_FILE.unlink(missing_ok=True)
        return 0

    print(f"Stopping daemon (pid {pid})...")
    os.kill(pid, signal.SIGTERM)
    # An in-flight cycle finishes its writes before the loop notices
    deadline = time.monotonic() + wait_seconds
    while time.monotonic() < deadline:
        time.sleep(1)
        if _pid_alive(pid) is False:
            print("✅ Daemon stopped")
            PID_FILE.unlink(missing_ok=True)
            return 0

    print(f"⚠️  Daemon didn't stop in {wait_seconds}s, sending SIGKILL")
    os.kill(pid, signal.SIGKILL)
    PID_FILE.unlink(missing_ok=True)
    return 0


def daemon_status() -> int:
    """Print the last persisted daemon state."""
    state = read_state()
    if state is None:
        print("No daemon state found")
        return 1

    pid = state.get("pid")
    running = isinstance(pid, int) and _pid_alive(pid) is not False
    print(f"{'🟢' if running else '🔴'} Daemon {'running' if running else 'stopped'}")
    for label, key in (
        ("PID", "pid"),
        ("Started", "started_at"),
        ("Poll interval (s)", "poll_interval"),
        ("Total cycles", "total_cycles"),
        ("Successes", "total_successes"),
        ("Failures", "total_failures"),
        ("Last occupancy", "last_occupancy"),
        ("Last in hours", "last_in_hours"),
        ("Last update", "last_update"),
    ):
        print(f"  {label}: {state.get(key, '?')}")
    return 0
