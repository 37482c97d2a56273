"""
Interval scheduler for automatic Spond synchronization.

Runs a sync callback every interval until SIGTERM/SIGINT, guarded by a
PID file so only one scheduler runs per config directory. A cycle that
finds a sync already running (for example one started from the HTTP
server on the same lock) is skipped rather than queued.
"""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from spond_sync.sync.engine import SyncInProgressError
from spond_sync.sync.report import SyncReport
from spond_sync.utils.paths import resolve_config_dir

logger = logging.getLogger(__name__)

DEFAULT_PID_FILE_NAME = "daemon.pid"


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when the PID file cannot be read or written."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when another scheduler holds the PID file."""

    pass


def default_pid_file() -> Path:
    return resolve_config_dir() / DEFAULT_PID_FILE_NAME


@dataclass
class DaemonStats:
    """Counters for one scheduler lifetime."""

    started_at: datetime = field(default_factory=datetime.now)
    cycles: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    skipped: int = 0
    last_run_at: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None

    def record(self, status: str, error: str | None = None) -> None:
        self.last_status = status
        self.last_error = error
        if status == "success":
            self.succeeded += 1
        elif status == "partial":
            self.partial += 1
        elif status == "skipped":
            self.skipped += 1
        else:
            self.failed += 1


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class PIDFileManager:
    """Creates, reads and removes the scheduler's PID file."""

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or default_pid_file()

    def read(self) -> int | None:
        """
        PID stored in the file, or None if there is no file.

        Raises:
            PIDFileError: If the file exists but does not hold a PID
        """
        if not self.pid_file.exists():
            return None
        try:
            content = self.pid_file.read_text().strip()
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e
        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e

    def running_pid(self) -> int | None:
        """PID of a live scheduler, ignoring stale files."""
        pid = self.read()
        if pid is not None and _process_alive(pid):
            return pid
        return None

    def create(self) -> None:
        """
        Write the current PID, replacing a stale file.

        Raises:
            DaemonAlreadyRunningError: If the recorded process is alive
            PIDFileError: If the file cannot be written
        """
        existing = self.read()
        if existing is not None:
            if _process_alive(existing):
                raise DaemonAlreadyRunningError(
                    f"Daemon already running with PID {existing}"
                )
            logger.warning(f"Removing stale PID file (process {existing} not running)")
            self.remove()

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.write_text(str(os.getpid()))
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e
        logger.debug(f"Created PID file: {self.pid_file}")

    def remove(self) -> None:
        if not self.pid_file.exists():
            return
        try:
            self.pid_file.unlink()
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e
        logger.debug(f"Removed PID file: {self.pid_file}")


class DaemonScheduler:
    """
    Runs a Spond sync at a fixed interval.

    Usage:
        scheduler = DaemonScheduler(
            lambda: service.sync(options),
            interval=1800,
            cancel_sync=service.cancel_sync,
        )
        scheduler.run()  # blocks until SIGTERM/SIGINT

    Attributes:
        interval: Seconds between the start of one wait and the next sync
        stats: Counters for this scheduler's lifetime
    """

    def __init__(
        self,
        run_sync: Callable[[], SyncReport],
        interval: int = 3600,
        pid_file: Path | None = None,
        run_immediately: bool = True,
        cancel_sync: Callable[[], object] | None = None,
    ):
        if interval < 1:
            raise ValueError(f"Interval must be at least 1 second, got {interval}")
        self.run_sync = run_sync
        self.interval = interval
        self.run_immediately = run_immediately
        self.cancel_sync = cancel_sync
        self._pid_manager = PIDFileManager(pid_file)
        self._running = False
        self._shutdown_requested = False
        self._previous_handlers: dict[int, object] = {}
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    def is_running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Request shutdown; a sync in progress stops before its next step."""
        logger.info("Stop requested")
        self._request_shutdown()

    def _handle_signal(self, signum: int, frame: object) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        if self.cancel_sync is not None:
            self.cancel_sync()

    def _install_signal_handlers(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._previous_handlers.clear()

    def run_cycle(self) -> str:
        """
        Run one sync and update the statistics.

        Returns:
            The cycle status: success, partial, failed or skipped
        """
        self.stats.cycles += 1
        self.stats.last_run_at = datetime.now()
        logger.info(f"Starting scheduled sync (cycle #{self.stats.cycles})")

        try:
            report = self.run_sync()
        except SyncInProgressError:
            logger.info("Another sync is running; skipping this cycle")
            self.stats.record("skipped")
            return "skipped"
        except Exception as e:
            # The scheduler outlives any single failed cycle
            logger.exception(f"Scheduled sync failed: {e}")
            self.stats.record("failed", str(e))
            return "failed"

        status = report.status()
        first_error = report.errors[0].message if report.errors else None
        self.stats.record(status, first_error)
        if status == "success":
            logger.info("Scheduled sync completed successfully")
        else:
            logger.warning(
                f"Scheduled sync finished with status {status}: "
                f"{len(report.errors)} error(s)"
            )
        return status

    def _wait(self, seconds: int) -> bool:
        """
        Sleep in short steps until the interval passes or shutdown is requested.

        Wall-clock time is used so a suspended machine syncs on wake.

        Returns:
            False if shutdown was requested
        """
        deadline = time.time() + seconds
        while not self._shutdown_requested:
            remaining = deadline - time.time()
            if remaining <= 0:
                break
            time.sleep(min(1.0, remaining))
        return not self._shutdown_requested

    def run(self) -> None:
        """
        Run until a shutdown signal arrives.

        Raises:
            DaemonAlreadyRunningError: If another scheduler is running
            PIDFileError: If the PID file cannot be written
        """
        self._pid_manager.create()
        logger.info(
            f"Daemon started (PID: {os.getpid()}, interval: {self.interval}s, "
            f"PID file: {self.pid_file})"
        )
        self._install_signal_handlers()
        self._running = True
        self._shutdown_requested = False
        self.stats = DaemonStats()

        try:
            if self.run_immediately:
                self.run_cycle()
            while self._wait(self.interval):
                self.run_cycle()
        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info("Daemon stopped")

    @classmethod
    def get_running_pid(cls, pid_file: Path | None = None) -> int | None:
        return PIDFileManager(pid_file).running_pid()

    @classmethod
    def stop_running_daemon(cls, pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to a running scheduler.

        Returns:
            True if a signal was sent
        """
        pid = cls.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running daemon found")
            return False
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} not found")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending signal to PID {pid}")
            return False
        logger.info(f"Sent SIGTERM to daemon (PID: {pid})")
        return True


__all__ = [
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "default_pid_file",
]
