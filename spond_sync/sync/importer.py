"""
Import pipeline: Spond events into the local database.

For every active import-enabled link the pipeline:
1. Lists the group's Spond events in the sync window
2. Looks each one up locally by Spond id (an exact id always wins)
3. For a known event, applies only the attributes the link allows,
   mirroring the cancelled flag, and only when something differs
4. For an unknown event, checks local events of the same team for a
   probable duplicate (warning only) and creates a new local event
5. Optionally refreshes attendance for the imported events

Classification (plan) is separate from writing (apply) so previews
and live runs make identical decisions.
"""

import copy
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from spond_sync.api.spond_api import RemoteAuthFailure, SpondAPI, SpondAPIError
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.attendance import store_attendance
from spond_sync.sync.event import (
    Attendance,
    EventValidationError,
    LocalEvent,
    RemoteEvent,
    mirror_cancelled,
)
from spond_sync.sync.links import (
    SyncKind,
    TeamLinkRegistry,
    TeamSyncLink,
    apply_fields,
)
from spond_sync.sync.matcher import (
    EventMatcher,
    MatchBand,
    MatchCandidate,
    MatchConfig,
)
from spond_sync.sync.report import (
    ErrorKind,
    ItemOutcome,
    SyncError,
    SyncReport,
    SyncWindow,
    error_from_exception,
    invalid_row_error,
)

logger = logging.getLogger(__name__)

# Event table column for each LocalEvent attribute an import may change
_ATTRIBUTE_COLUMNS = {
    "title": "title",
    "description": "description",
    "start": "start_time",
    "end": "end_time",
    "location": "location",
    "event_type": "event_type",
    "status": "status",
}


class ImportAction(str, Enum):
    """What an import will do with one remote event."""

    IMPORT = "import"
    UPDATE = "update"
    UNCHANGED = "unchanged"


@dataclass
class ImportDecision:
    """Classification of one remote event for one link."""

    link: TeamSyncLink
    remote: RemoteEvent
    action: ImportAction
    proposed: LocalEvent
    existing: Optional[LocalEvent] = None
    changes: list[str] = field(default_factory=list)
    candidate: Optional[MatchCandidate] = None

    @property
    def duplicate_suspected(self) -> bool:
        return self.candidate is not None and self.candidate.band == MatchBand.HIGH

    def context(self) -> dict:
        return {
            "spondId": self.remote.id,
            "eventId": self.existing.id if self.existing else None,
            "teamId": self.link.team_id,
            "team": self.link.team_name,
            "groupId": self.link.group_id,
        }


@dataclass
class ImportPlan:
    """Decisions for one window plus the links that could not be listed."""

    window: SyncWindow
    decisions: list[ImportDecision] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)
    # Remote events skipped because their local row could not be loaded
    rejected: list[SyncError] = field(default_factory=list)
    listed_links: list[TeamSyncLink] = field(default_factory=list)

    def count(self, action: ImportAction) -> int:
        return sum(1 for d in self.decisions if d.action == action)


def build_matcher(
    registry: TeamLinkRegistry, config: Optional[MatchConfig] = None
) -> EventMatcher:
    """Matcher aware of every active link's group and team name."""
    team_groups: dict[int, set[str]] = {}
    team_names: dict[int, str] = {}
    for link in registry.get_active_links():
        team_groups.setdefault(link.team_id, set()).add(link.group_id)
        if link.team_name:
            team_names[link.team_id] = link.team_name
    return EventMatcher(config, team_groups=team_groups, team_names=team_names)


class ImportPipeline:
    """
    Pulls Spond events into the local database.

    Usage:
        pipeline = ImportPipeline(api, db, registry)
        plan = pipeline.plan(SyncWindow.around())
        report = pipeline.apply(plan)

        # or both steps at once
        report = pipeline.run(SyncWindow.around())
    """

    def __init__(
        self,
        api: SpondAPI,
        database: SyncDatabase,
        registry: Optional[TeamLinkRegistry] = None,
        match_config: Optional[MatchConfig] = None,
    ):
        self.api = api
        self.database = database
        self.registry = registry or TeamLinkRegistry(database)
        self.match_config = match_config or MatchConfig()

    # =========================================================================
    # Classification
    # =========================================================================

    def plan(self, window: SyncWindow) -> ImportPlan:
        """
        Classify every remote event in the window without writing.

        Raises:
            RemoteAuthFailure: If Spond rejects the credentials
        """
        plan = ImportPlan(window=window)
        matcher = build_matcher(self.registry, self.match_config)
        seen: set[str] = set()

        for link in self.registry.get_active_links(SyncKind.IMPORT):
            try:
                remotes = self.api.list_events_in_range(
                    [link.fetch_group_id],
                    window.start,
                    window.end,
                    subgroup_id=link.subgroup_id,
                )
            except RemoteAuthFailure:
                raise
            except SpondAPIError as e:
                logger.warning(f"Could not list Spond events for {link.display_name}: {e}")
                plan.errors.append(
                    error_from_exception(
                        e,
                        {
                            "teamId": link.team_id,
                            "team": link.team_name,
                            "groupId": link.group_id,
                        },
                    )
                )
                continue

            plan.listed_links.append(link)
            unlinked_locals = self._unlinked_locals(link, window, plan)

            for remote in sorted(remotes, key=lambda r: (r.start, r.id)):
                # An event addressed to several linked groups is imported once
                if remote.id in seen:
                    continue
                seen.add(remote.id)

                row = self.database.get_event_by_spond_id(remote.id)
                existing = None
                if row is not None:
                    try:
                        existing = LocalEvent.from_row(row)
                    except EventValidationError as e:
                        logger.warning(
                            f"Skipping Spond event {remote.id}: its local event "
                            f"{row.get('id')} is unreadable: {e}"
                        )
                        plan.rejected.append(
                            invalid_row_error(
                                row, e, spondId=remote.id, groupId=link.group_id
                            )
                        )
                        continue
                plan.decisions.append(
                    self._classify(link, remote, existing, unlinked_locals, matcher)
                )

        logger.debug(
            f"Import plan: {plan.count(ImportAction.IMPORT)} new, "
            f"{plan.count(ImportAction.UPDATE)} to update, "
            f"{plan.count(ImportAction.UNCHANGED)} unchanged"
        )
        return plan

    def _unlinked_locals(
        self, link: TeamSyncLink, window: SyncWindow, plan: ImportPlan
    ) -> list[LocalEvent]:
        """Match candidates of a link's team; unreadable rows are reported and left out."""
        events = []
        for row in self.database.list_events_in_range(
            window.start, window.end, team_id=link.team_id, linked=False
        ):
            try:
                events.append(LocalEvent.from_row(row))
            except EventValidationError as e:
                logger.warning(f"Local event {row.get('id')} left out of matching: {e}")
                plan.errors.append(invalid_row_error(row, e))
        return events

    def _classify(
        self,
        link: TeamSyncLink,
        remote: RemoteEvent,
        existing: Optional[LocalEvent],
        unlinked_locals: list[LocalEvent],
        matcher: EventMatcher,
    ) -> ImportDecision:
        incoming = LocalEvent.from_remote(remote, link.team_id, link.fetch_group_id)

        if existing is not None:
            proposed = copy.deepcopy(existing)
            changes = apply_fields(link.fields, proposed, incoming)

            status = mirror_cancelled(existing.status, remote.cancelled)
            if status != existing.status:
                proposed.status = status
                changes.append("status")

            return ImportDecision(
                link=link,
                remote=remote,
                action=ImportAction.UPDATE if changes else ImportAction.UNCHANGED,
                existing=existing,
                proposed=proposed,
                changes=changes,
            )

        candidate = matcher.best_local_match(remote, unlinked_locals)
        return ImportDecision(
            link=link,
            remote=remote,
            action=ImportAction.IMPORT,
            proposed=incoming,
            candidate=candidate,
        )

    # =========================================================================
    # Writing
    # =========================================================================

    def apply(self, plan: ImportPlan, include_attendance: bool = True) -> SyncReport:
        """
        Write a plan's decisions.

        Item failures are recorded and the remaining items still run. A
        remote authentication failure stops the pipeline.

        Args:
            plan: Decisions from plan()
            include_attendance: Refresh attendance for links that enable it
        """
        report = SyncReport()
        for error in plan.errors:
            report.add_error(error)
        for error in plan.rejected:
            report.add_error(error)
            report.outcomes.append(
                ItemOutcome.skipped(
                    error.message, error.context.get("eventId"), error.context.get("spondId")
                )
            )

        for decision in plan.decisions:
            try:
                outcome = self._apply_decision(decision, include_attendance, report)
            except RemoteAuthFailure as e:
                report.add_error(error_from_exception(e, decision.context()))
                return report
            except (SpondAPIError, EventValidationError, sqlite3.Error) as e:
                logger.warning(f"Import of Spond event {decision.remote.id} failed: {e}")
                error = error_from_exception(e, decision.context())
                report.add_error(error)
                outcome = ItemOutcome.failed(
                    error,
                    decision.existing.id if decision.existing else None,
                    decision.remote.id,
                )
            report.outcomes.append(outcome)

        for link in plan.listed_links:
            report.mark_ran(SyncKind.IMPORT.value, link.team_id)
            if include_attendance and link.import_attendance:
                report.mark_ran(SyncKind.ATTENDANCE.value, link.team_id)

        logger.info(
            f"Import finished: {report.imported} imported, {report.updated} updated, "
            f"{report.attendance_updated} attendance updated, {len(report.errors)} error(s)"
        )
        return report

    def run(self, window: SyncWindow, include_attendance: bool = True) -> SyncReport:
        """Plan and apply in one step."""
        try:
            plan = self.plan(window)
        except RemoteAuthFailure as e:
            report = SyncReport()
            report.add_error(error_from_exception(e, {"pipeline": "import"}))
            return report
        return self.apply(plan, include_attendance=include_attendance)

    def _apply_decision(
        self,
        decision: ImportDecision,
        include_attendance: bool,
        report: SyncReport,
    ) -> ItemOutcome:
        remote = decision.remote

        # Fetch attendance before writing so a failed fetch leaves no partial item
        attendance: Optional[Attendance] = None
        if include_attendance and decision.link.import_attendance:
            attendance = self.api.fetch_attendance(remote.id)

        proposed = decision.proposed

        if decision.action == ImportAction.IMPORT:
            event_id = self.database.insert_event(proposed.to_row())
            report.imported += 1
            candidate = decision.candidate if decision.duplicate_suspected else None
            if candidate is not None:
                report.add_error(
                    SyncError(
                        kind=ErrorKind.DUPLICATE_SUSPECTED,
                        message=(
                            f"Imported '{remote.heading}' looks like local event "
                            f"{candidate.local.id} (score {candidate.score})"
                        ),
                        context={**decision.context(), "eventId": event_id},
                    )
                )
                outcome = ItemOutcome.created_with_warning(event_id, remote.id, candidate)
            else:
                outcome = ItemOutcome.created(event_id, remote.id)
        else:
            existing = decision.existing
            if existing is None or existing.id is None:
                raise EventValidationError(
                    f"Spond event {remote.id} has no local event to update"
                )
            event_id = existing.id
            if decision.action == ImportAction.UPDATE:
                row = proposed.to_row()
                self.database.update_event(
                    event_id,
                    {
                        _ATTRIBUTE_COLUMNS[name]: row[_ATTRIBUTE_COLUMNS[name]]
                        for name in decision.changes
                    },
                )
                report.updated += 1
                outcome = ItemOutcome.updated(event_id, remote.id, decision.changes)
            else:
                outcome = ItemOutcome.unchanged(event_id, remote.id)

        if attendance is not None and store_attendance(
            self.database, event_id, attendance, datetime.now(timezone.utc)
        ):
            report.attendance_updated += 1

        return outcome
