"""
Dry-run previews of import and export.

Previews call the pipelines' plan() step and stop before apply(), so
every classification shown to an operator is the one a live run would
make if nothing changes on Spond in between.
"""

import logging
from typing import Any

from spond_sync.sync.exporter import ExportAction, ExportDecision, ExportPipeline
from spond_sync.sync.importer import ImportAction, ImportDecision, ImportPipeline
from spond_sync.sync.report import SyncWindow

logger = logging.getLogger(__name__)


class PreviewGenerator:
    """
    Builds read-only import/export previews.

    Usage:
        preview = PreviewGenerator(importer, exporter)
        data = preview.import_preview(SyncWindow.around())
    """

    def __init__(self, importer: ImportPipeline, exporter: ExportPipeline):
        self.importer = importer
        self.exporter = exporter

    def import_preview(self, window: SyncWindow) -> dict[str, Any]:
        """
        Classify the Spond events an import would process.

        Raises:
            RemoteAuthFailure: If Spond rejects the credentials
        """
        plan = self.importer.plan(window)
        events = [_import_item(d) for d in plan.decisions]

        summary = {
            "totalInSpond": len(plan.decisions) + len(plan.rejected),
            "willImport": plan.count(ImportAction.IMPORT),
            "willUpdate": plan.count(ImportAction.UPDATE),
            "unchanged": plan.count(ImportAction.UNCHANGED),
            "cancelled": sum(1 for d in plan.decisions if d.remote.cancelled),
            "withAttendance": sum(
                1 for d in plan.decisions if d.link.import_attendance
            ),
            "duplicatesSuspected": sum(
                1 for d in plan.decisions if d.duplicate_suspected
            ),
            "skipped": len(plan.rejected),
        }
        return {
            "summary": summary,
            "events": events,
            "errors": [e.to_dict() for e in [*plan.errors, *plan.rejected]],
            "window": _window_dict(window),
        }

    def export_preview(self, window: SyncWindow) -> dict[str, Any]:
        """
        Classify the local events an export would consider.

        Events with a probable Spond duplicate are listed under
        ``conflicts``; a live export still creates them.

        Raises:
            RemoteAuthFailure: If Spond rejects the credentials
        """
        plan = self.exporter.plan(window)

        ready = []
        conflicts = []
        for decision in plan.by_action(ExportAction.EXPORT):
            item = _export_item(decision)
            if decision.candidate is None:
                ready.append(item)
            else:
                item["conflict"] = decision.candidate.to_dict()
                item["message"] = (
                    f"Possible duplicate of Spond event "
                    f"'{decision.candidate.remote.heading}' "
                    f"({decision.candidate.band.value} match)"
                )
                conflicts.append(item)

        already = [_export_item(d) for d in plan.by_action(ExportAction.ALREADY_EXPORTED)]

        cannot = []
        for action, reason in (
            (ExportAction.INVALID, None),
            (ExportAction.NO_TEAM, "Event has no team"),
            (ExportAction.TEAM_NOT_LINKED, "Team is not linked for export"),
        ):
            for decision in plan.by_action(action):
                item = _export_item(decision)
                item["reason"] = reason or decision.reason
                cannot.append(item)
        for error in plan.rejected:
            cannot.append(
                {
                    "id": error.context.get("eventId"),
                    "heading": f"Event {error.context.get('eventId')}",
                    "teamId": error.context.get("teamId"),
                    "reason": error.message,
                }
            )

        return {
            "summary": {
                "totalInRange": plan.diagnostic.total_in_range,
                "readyToExport": len(ready),
                "alreadyExported": len(already),
                "conflicts": len(conflicts),
                "cannotExport": len(cannot),
            },
            "diagnostic": plan.diagnostic.to_dict(),
            "readyToExport": ready,
            "alreadyExported": already,
            "conflicts": conflicts,
            "cannotExport": cannot,
            "errors": [e.to_dict() for e in [*plan.errors, *plan.rejected]],
            "window": _window_dict(window),
        }


def _import_item(decision: ImportDecision) -> dict[str, Any]:
    item = decision.remote.to_dict()
    item.update(
        {
            "action": decision.action.value,
            "teamId": decision.link.team_id,
            "teamName": decision.link.team_name,
            "localEventId": decision.existing.id if decision.existing else None,
            "changes": list(decision.changes),
            "duplicateSuspected": decision.duplicate_suspected,
            "candidate": decision.candidate.to_dict() if decision.candidate else None,
        }
    )
    return item


def _export_item(decision: ExportDecision) -> dict[str, Any]:
    item = decision.local.to_dict()
    if decision.link is not None:
        item["teamName"] = decision.link.team_name
        item["spondGroupName"] = decision.link.display_name
    return item


def _window_dict(window: SyncWindow) -> dict[str, str]:
    return {"start": window.start.isoformat(), "end": window.end.isoformat()}
