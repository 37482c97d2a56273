"""
Attendance import from Spond.

Attendance only ever flows from Spond into the local database. It
refreshes the summary counts and per-member responses of events that
are already linked to a Spond event; it never creates events.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from spond_sync.api.spond_api import RemoteAuthFailure, SpondAPI, SpondAPIError
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.event import (
    Attendance,
    EventValidationError,
    LocalEvent,
    format_timestamp,
)
from spond_sync.sync.links import SyncKind, TeamLinkRegistry
from spond_sync.sync.report import (
    ItemOutcome,
    SyncReport,
    SyncWindow,
    error_from_exception,
    invalid_row_error,
)

logger = logging.getLogger(__name__)


def store_attendance(
    database: SyncDatabase,
    event_id: int,
    attendance: Attendance,
    synced_at: Optional[datetime] = None,
) -> bool:
    """
    Write attendance for an event if it differs from what is stored.

    Returns:
        True if counts or member responses changed and were written
    """
    row = database.get_event(event_id)
    if row is None:
        raise LookupError(f"Event {event_id} not found")

    stored = LocalEvent.from_row(row).attendance
    stored_responses = {
        p["spond_member_id"]: p["response"] for p in database.get_participants(event_id)
    }
    new_responses = {r.member_id: r.response for r in attendance.records}

    if stored == attendance.summary and stored_responses == new_responses:
        return False

    database.update_event_attendance(
        event_id,
        attendance.summary.to_dict(),
        synced_at or datetime.now(timezone.utc),
    )
    database.replace_participants(
        event_id,
        [
            {
                "spond_member_id": r.member_id,
                "first_name": r.first_name,
                "last_name": r.last_name,
                "email": r.email,
                "response": r.response,
                "response_time": format_timestamp(r.response_time),
            }
            for r in attendance.records
        ],
    )
    return True


class AttendancePipeline:
    """
    Refreshes attendance of linked events for attendance-enabled teams.

    Usage:
        pipeline = AttendancePipeline(api, db, registry)
        report = pipeline.run(SyncWindow.around())
    """

    def __init__(
        self,
        api: SpondAPI,
        database: SyncDatabase,
        registry: Optional[TeamLinkRegistry] = None,
    ):
        self.api = api
        self.database = database
        self.registry = registry or TeamLinkRegistry(database)

    def run(
        self,
        window: SyncWindow,
        skip_teams: Optional[set[int]] = None,
    ) -> SyncReport:
        """
        Refresh attendance for every linked event in the window.

        Args:
            window: Events starting in this range are refreshed
            skip_teams: Teams whose attendance was already refreshed
                        during this run
        """
        report = SyncReport()
        skip_teams = skip_teams or set()

        for link in self.registry.get_active_links(SyncKind.ATTENDANCE):
            if link.team_id in skip_teams:
                continue

            rows = self.database.list_events_in_range(
                window.start, window.end, team_id=link.team_id, linked=True
            )
            logger.debug(
                f"Refreshing attendance for {len(rows)} event(s) of team {link.team_id}"
            )
            for row in rows:
                try:
                    event = LocalEvent.from_row(row)
                except EventValidationError as e:
                    logger.warning(f"Skipping unreadable local event {row.get('id')}: {e}")
                    error = invalid_row_error(row, e)
                    report.add_error(error)
                    report.outcomes.append(
                        ItemOutcome.skipped(error.message, row.get("id"), row.get("spond_id"))
                    )
                    continue
                context = {
                    "eventId": event.id,
                    "spondId": event.remote_id,
                    "teamId": link.team_id,
                    "team": link.team_name,
                }
                try:
                    changed = self._refresh(event)
                except RemoteAuthFailure as e:
                    report.add_error(error_from_exception(e, context))
                    return report
                except (SpondAPIError, EventValidationError, sqlite3.Error) as e:
                    logger.warning(f"Attendance refresh failed for event {event.id}: {e}")
                    error = error_from_exception(e, context)
                    report.add_error(error)
                    report.outcomes.append(
                        ItemOutcome.failed(error, event.id, event.remote_id)
                    )
                    continue

                if changed:
                    report.attendance_updated += 1
                    report.outcomes.append(
                        ItemOutcome.updated(event.id, event.remote_id, ["attendance"])
                    )
                else:
                    report.outcomes.append(
                        ItemOutcome.unchanged(event.id, event.remote_id)
                    )

            report.mark_ran(SyncKind.ATTENDANCE.value, link.team_id)

        logger.info(f"Attendance refresh updated {report.attendance_updated} event(s)")
        return report

    def refresh_event(self, event_id: int) -> Attendance:
        """
        Refresh attendance for a single event.

        Raises:
            LookupError: If the event does not exist
            EventValidationError: If the event is not linked to Spond
        """
        row = self.database.get_event(event_id)
        if row is None:
            raise LookupError(f"Event {event_id} not found")

        event = LocalEvent.from_row(row)
        if not event.remote_id:
            raise EventValidationError(f"Event {event_id} is not linked to Spond")

        attendance = self.api.fetch_attendance(event.remote_id)
        store_attendance(self.database, event_id, attendance)
        return attendance

    def _refresh(self, event: LocalEvent) -> bool:
        attendance = self.api.fetch_attendance(event.remote_id)  # type: ignore[arg-type]
        return store_attendance(self.database, event.id, attendance)  # type: ignore[arg-type]
