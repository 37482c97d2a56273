"""
Export pipeline: local events out to Spond.

An event is eligible for export when it has no Spond id yet, belongs to
a team whose active link enables export, and starts inside the window.
Each eligible event is compared with the linked group's Spond events;
a probable duplicate is reported as a warning and the export still
goes ahead. The created Spond id is written back so the event is never
exported twice. Export never writes attendance.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from spond_sync.api.spond_api import RemoteAuthFailure, SpondAPI, SpondAPIError
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.event import EventValidationError, LocalEvent, RemoteEvent
from spond_sync.sync.importer import build_matcher
from spond_sync.sync.links import SyncKind, TeamLinkRegistry, TeamSyncLink
from spond_sync.sync.matcher import MatchCandidate, MatchConfig
from spond_sync.sync.report import (
    ErrorKind,
    ExportDiagnostic,
    ItemOutcome,
    SyncError,
    SyncReport,
    SyncWindow,
    error_from_exception,
    invalid_row_error,
)

logger = logging.getLogger(__name__)


class ExportAction(str, Enum):
    """Classification of one local event in the window."""

    EXPORT = "export"
    ALREADY_EXPORTED = "already_exported"
    NO_TEAM = "no_team"
    TEAM_NOT_LINKED = "team_not_linked"
    INVALID = "invalid"


@dataclass
class ExportDecision:
    """What an export will do with one local event."""

    local: LocalEvent
    action: ExportAction
    link: Optional[TeamSyncLink] = None
    candidate: Optional[MatchCandidate] = None
    reason: Optional[str] = None

    def context(self) -> dict:
        return {
            "eventId": self.local.id,
            "teamId": self.local.team_id,
            "team": self.link.team_name if self.link else None,
            "groupId": self.link.group_id if self.link else None,
        }


@dataclass
class ExportPlan:
    window: SyncWindow
    decisions: list[ExportDecision] = field(default_factory=list)
    diagnostic: ExportDiagnostic = field(default_factory=ExportDiagnostic)
    errors: list[SyncError] = field(default_factory=list)
    # Rows in the window that could not be loaded as events
    rejected: list[SyncError] = field(default_factory=list)
    links: list[TeamSyncLink] = field(default_factory=list)

    def by_action(self, action: ExportAction) -> list[ExportDecision]:
        return [d for d in self.decisions if d.action == action]


class EventNotLinkedError(Exception):
    """Raised when pushing an update for an event that was never exported."""

    pass


class ExportPipeline:
    """
    Pushes local events to Spond.

    Usage:
        pipeline = ExportPipeline(api, db, registry)
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

    def plan(self, window: SyncWindow) -> ExportPlan:
        """
        Classify every local event in the window without writing.

        Diagnostic counters are checked in a fixed order: already
        exported, then no team, then team not linked for export.

        Raises:
            RemoteAuthFailure: If Spond rejects the credentials
        """
        plan = ExportPlan(window=window)
        export_links = {
            link.team_id: link
            for link in self.registry.get_active_links(SyncKind.EXPORT)
        }
        plan.links = list(export_links.values())
        matcher = build_matcher(self.registry, self.match_config)
        remote_cache: dict[int, list[RemoteEvent]] = {}

        for row in self.database.list_events_in_range(window.start, window.end):
            plan.diagnostic.total_in_range += 1
            try:
                local = LocalEvent.from_row(row)
            except EventValidationError as e:
                logger.warning(f"Skipping unreadable local event {row.get('id')}: {e}")
                plan.rejected.append(invalid_row_error(row, e))
                continue

            if local.remote_id:
                plan.diagnostic.already_exported += 1
                plan.decisions.append(ExportDecision(local, ExportAction.ALREADY_EXPORTED))
                continue
            if local.team_id is None:
                plan.diagnostic.no_team += 1
                plan.decisions.append(ExportDecision(local, ExportAction.NO_TEAM))
                continue
            link = export_links.get(local.team_id)
            if link is None:
                plan.diagnostic.team_not_linked += 1
                plan.decisions.append(
                    ExportDecision(local, ExportAction.TEAM_NOT_LINKED)
                )
                continue

            plan.diagnostic.eligible += 1
            try:
                local.validate_for_export()
            except EventValidationError as e:
                plan.decisions.append(
                    ExportDecision(local, ExportAction.INVALID, link=link, reason=str(e))
                )
                continue

            if link.team_id not in remote_cache:
                remote_cache[link.team_id] = self._list_remote(link, window, plan)
            candidate = matcher.best_remote_match(local, remote_cache[link.team_id])
            plan.decisions.append(
                ExportDecision(local, ExportAction.EXPORT, link=link, candidate=candidate)
            )

        logger.debug(f"Export diagnostic: {plan.diagnostic.to_dict()}")
        return plan

    def _list_remote(
        self, link: TeamSyncLink, window: SyncWindow, plan: ExportPlan
    ) -> list[RemoteEvent]:
        """Remote events of a link's group; empty (with an error) if unavailable."""
        try:
            return self.api.list_events_in_range(
                [link.fetch_group_id],
                window.start,
                window.end,
                subgroup_id=link.subgroup_id,
            )
        except RemoteAuthFailure:
            raise
        except SpondAPIError as e:
            logger.warning(
                f"Could not list Spond events for {link.display_name}; "
                f"exporting without duplicate check: {e}"
            )
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
            return []

    # =========================================================================
    # Writing
    # =========================================================================

    def apply(self, plan: ExportPlan) -> SyncReport:
        """
        Create Spond events for every exportable decision.

        Item failures are recorded and the remaining items still run. A
        remote authentication failure stops the pipeline.
        """
        report = SyncReport(export_diagnostic=plan.diagnostic)
        for error in plan.errors:
            report.add_error(error)
        for error in plan.rejected:
            report.add_error(error)
            report.outcomes.append(
                ItemOutcome.skipped(error.message, error.context.get("eventId"))
            )

        for decision in plan.decisions:
            local = decision.local
            if decision.action == ExportAction.INVALID:
                error = SyncError(
                    kind=ErrorKind.VALIDATION_ERROR,
                    message=decision.reason or "Event cannot be exported",
                    context=decision.context(),
                )
                report.add_error(error)
                report.outcomes.append(ItemOutcome.skipped(error.message, local.id))
                continue
            if decision.action != ExportAction.EXPORT:
                report.outcomes.append(ItemOutcome.skipped(decision.action.value, local.id))
                continue

            try:
                outcome = self._export(decision, report)
            except RemoteAuthFailure as e:
                report.add_error(error_from_exception(e, decision.context()))
                return report
            except (SpondAPIError, EventValidationError, sqlite3.Error) as e:
                logger.warning(f"Export of event {local.id} failed: {e}")
                error = error_from_exception(e, decision.context())
                report.add_error(error)
                outcome = ItemOutcome.failed(error, local.id)
            report.outcomes.append(outcome)

        for link in plan.links:
            report.mark_ran(SyncKind.EXPORT.value, link.team_id)

        logger.info(
            f"Export finished: {report.exported} exported, {len(report.errors)} error(s)"
        )
        return report

    def run(self, window: SyncWindow) -> SyncReport:
        """Plan and apply in one step."""
        try:
            plan = self.plan(window)
        except RemoteAuthFailure as e:
            report = SyncReport()
            report.add_error(error_from_exception(e, {"pipeline": "export"}))
            return report
        return self.apply(plan)

    def _export(self, decision: ExportDecision, report: SyncReport) -> ItemOutcome:
        local = decision.local
        link = decision.link
        if link is None or local.id is None:
            raise EventValidationError(f"Event {local.id} has no export link")

        subgroups = [link.group_id] if link.is_subgroup else None
        payload = local.to_remote_payload(link.fetch_group_id, subgroups)
        remote_id = self.api.create_event(link.fetch_group_id, payload)

        try:
            self.database.update_event(
                local.id, {"spond_id": remote_id, "spond_group_id": link.fetch_group_id}
            )
        except sqlite3.Error:
            logger.error(
                f"Created Spond event {remote_id} but could not link it to "
                f"local event {local.id}; remove one of them before the next export"
            )
            raise
        report.exported += 1

        candidate = decision.candidate
        if candidate is None:
            return ItemOutcome.created(local.id, remote_id)

        report.add_error(
            SyncError(
                kind=ErrorKind.DUPLICATE_SUSPECTED,
                message=(
                    f"Exported '{local.heading}' looks like Spond event "
                    f"'{candidate.remote.heading}' (score {candidate.score})"
                ),
                context={**decision.context(), "spondId": remote_id},
            )
        )
        return ItemOutcome.created_with_warning(local.id, remote_id, candidate)

    # =========================================================================
    # Updates of already exported events
    # =========================================================================

    def push_update(self, event_id: int) -> LocalEvent:
        """
        Push a local event's current details to its Spond event.

        Attendance is never pushed.

        Raises:
            LookupError: If the event does not exist
            EventNotLinkedError: If the event has no Spond id
        """
        row = self.database.get_event(event_id)
        if row is None:
            raise LookupError(f"Event {event_id} not found")

        local = LocalEvent.from_row(row)
        if not local.remote_id:
            raise EventNotLinkedError(f"Event {event_id} has not been exported to Spond")

        self.api.update_event(local.remote_id, local.to_remote_update())
        return local
