"""
Sync engine for Spond event synchronization.

Orchestrates one sync run: selects the requested direction, runs the
import, export and attendance pipelines, folds their results into one
report, records last-sync timestamps for the links that ran, and writes
a sync log entry.

Partial success is the normal case. A failing pipeline becomes an entry
in the report's error list and the remaining pipelines still run.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from spond_sync.api.spond_api import SpondAPI, SpondAPIError
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.attendance import AttendancePipeline
from spond_sync.sync.event import EventValidationError
from spond_sync.sync.exporter import ExportPipeline
from spond_sync.sync.importer import ImportPipeline
from spond_sync.sync.links import SyncKind, TeamLinkRegistry
from spond_sync.sync.matcher import MatchConfig
from spond_sync.sync.report import (
    DEFAULT_DAYS_AHEAD,
    DEFAULT_DAYS_BEHIND,
    SyncReport,
    SyncWindow,
    error_from_exception,
)
from spond_sync.utils.logging import setup_matching_logger

logger = logging.getLogger(__name__)


class SyncInProgressError(Exception):
    """Raised when a sync is requested while another one is running."""

    pass


class SyncDirection(str, Enum):
    IMPORT = "import"
    EXPORT = "export"
    BOTH = "both"

    @property
    def includes_import(self) -> bool:
        return self in (SyncDirection.IMPORT, SyncDirection.BOTH)

    @property
    def includes_export(self) -> bool:
        return self in (SyncDirection.EXPORT, SyncDirection.BOTH)


class RunState(str, Enum):
    """Orchestrator state: IDLE -> RUNNING -> COMPLETED | FAILED."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncOptions:
    """What one run should do."""

    direction: SyncDirection = SyncDirection.BOTH
    sync_events: bool = True
    sync_attendance: bool = True
    days_ahead: int = DEFAULT_DAYS_AHEAD
    days_behind: int = DEFAULT_DAYS_BEHIND

    @property
    def label(self) -> str:
        """Short description stored in the sync log."""
        if self.sync_events and self.sync_attendance:
            return "full"
        return "events" if self.sync_events else "attendance"


class SyncEngine:
    """
    Runs sync passes between the local database and Spond.

    At most one run is active per lock. Pass the same lock to every
    engine that shares a database so runs are never interleaved.
    A cancel_event shared the same way lets another thread stop the
    running pass before its next pipeline step.

    Usage:
        engine = SyncEngine(api, SyncDatabase('/path/to/spond_sync.db'))
        report = engine.run(SyncOptions(direction=SyncDirection.IMPORT))
        print(report.to_dict())
    """

    def __init__(
        self,
        api: SpondAPI,
        database: SyncDatabase,
        registry: Optional[TeamLinkRegistry] = None,
        match_config: Optional[MatchConfig] = None,
        lock: Optional[threading.Lock] = None,
        enable_matching_log: bool = False,
        matching_log_dir: Optional[Path] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.api = api
        self.database = database
        self.registry = registry or TeamLinkRegistry(database)
        self.importer = ImportPipeline(api, database, self.registry, match_config)
        self.exporter = ExportPipeline(api, database, self.registry, match_config)
        self.attendance = AttendancePipeline(api, database, self.registry)
        self.enable_matching_log = enable_matching_log
        self.matching_log_dir = matching_log_dir

        self._lock = lock or threading.Lock()
        self._cancelled = cancel_event or threading.Event()
        self.state = RunState.IDLE
        self.last_report: Optional[SyncReport] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def cancel(self) -> None:
        """Stop the current run before its next pipeline starts."""
        self._cancelled.set()

    def run(
        self, options: Optional[SyncOptions] = None, now: Optional[datetime] = None
    ) -> SyncReport:
        """
        Perform one sync run.

        Args:
            options: Direction, toggles and window; defaults sync both ways
            now: Reference time for the window (defaults to current time)

        Returns:
            Aggregate SyncReport

        Raises:
            SyncInProgressError: If another run holds the lock
        """
        options = options or SyncOptions()
        if not self._lock.acquire(blocking=False):
            raise SyncInProgressError("A Spond sync is already running")

        try:
            self._cancelled.clear()
            self.state = RunState.RUNNING
            if self.enable_matching_log:
                setup_matching_logger(log_dir=self.matching_log_dir).info(
                    f"Sync run: direction={options.direction.value}, "
                    f"events={options.sync_events}, "
                    f"attendance={options.sync_attendance}"
                )

            log_id = self.database.start_sync_log(
                options.label, options.direction.value
            )
            try:
                report = self._run(options, now or datetime.now(timezone.utc))
            except Exception:
                self.state = RunState.FAILED
                self.database.complete_sync_log(
                    log_id, "failed", {}, "Sync aborted by an unexpected error"
                )
                raise

            status = report.status()
            self.database.complete_sync_log(
                log_id, status, report.counts(), _error_summary(report)
            )
            self.database.update_last_sync()
            self.state = RunState.FAILED if status == "failed" else RunState.COMPLETED
            self.last_report = report

            logger.info(
                f"Sync {status}: {report.imported} imported, {report.updated} "
                f"updated, {report.exported} exported, {report.attendance_updated} "
                f"attendance updated, {len(report.errors)} error(s), "
                f"{len(report.warnings)} warning(s)"
            )
            return report
        finally:
            self._lock.release()

    def _run(self, options: SyncOptions, now: datetime) -> SyncReport:
        window = SyncWindow.around(now, options.days_ahead, options.days_behind)
        report = SyncReport()
        logger.info(
            f"Starting {options.direction.value} sync for "
            f"{window.start.date()} to {window.end.date()}"
        )

        if options.direction.includes_import:
            if options.sync_events:
                self._step(
                    report,
                    "import",
                    lambda: self.importer.run(
                        window, include_attendance=options.sync_attendance
                    ),
                )
            if options.sync_attendance:
                skip = set(report.ran_for.get(SyncKind.ATTENDANCE.value, set()))
                self._step(
                    report,
                    "attendance",
                    lambda: self.attendance.run(window, skip_teams=skip),
                )

        if options.direction.includes_export and options.sync_events:
            self._step(report, "export", lambda: self.exporter.run(window))

        for kind in SyncKind:
            for team_id in sorted(report.ran_for.get(kind.value, set())):
                self.registry.record_sync(team_id, kind, now)

        return report

    def _step(
        self, report: SyncReport, name: str, pipeline: Callable[[], SyncReport]
    ) -> None:
        """Run one pipeline, turning its failure into a report entry."""
        if self._cancelled.is_set():
            logger.info(f"Sync cancelled before {name}")
            return
        try:
            report.merge(pipeline())
        except (SpondAPIError, EventValidationError, sqlite3.Error) as e:
            logger.error(f"{name.capitalize()} pipeline failed: {e}")
            report.add_error(error_from_exception(e, {"pipeline": name}))


def _error_summary(report: SyncReport) -> Optional[str]:
    if not report.errors:
        return None
    messages = [e.message for e in report.errors[:3]]
    more = len(report.errors) - len(messages)
    if more > 0:
        messages.append(f"... and {more} more")
    return "; ".join(messages)
