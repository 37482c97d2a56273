"""
Result types for sync runs.

Every item a pipeline touches ends in exactly one ItemOutcome. The
outcomes, together with normalized SyncError entries and the export
diagnostic counters, are folded into one SyncReport per run.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from spond_sync.api.spond_api import RemoteAuthFailure, RemoteUnavailable, SpondAPIError
from spond_sync.sync.event import EventValidationError

if TYPE_CHECKING:
    from spond_sync.sync.matcher import MatchCandidate

DEFAULT_DAYS_AHEAD = 60
DEFAULT_DAYS_BEHIND = 7


class ErrorKind(str, Enum):
    """Normalized error categories surfaced to operators."""

    REMOTE_AUTH_FAILURE = "remote_auth_failure"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    VALIDATION_ERROR = "validation_error"
    DUPLICATE_SUSPECTED = "duplicate_suspected"
    INTERNAL_ERROR = "internal_error"


class OutcomeKind(str, Enum):
    """What happened to one item."""

    CREATED = "created"
    CREATED_WITH_WARNING = "created_with_warning"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncError:
    """
    One actionable problem from a run.

    ``context`` carries identifiers only (eventId, spondId, teamId,
    team, groupId); ``message`` never contains a raw remote response.
    """

    kind: ErrorKind
    message: str
    context: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": dict(self.context),
        }


@dataclass
class ItemOutcome:
    """
    Tagged result for one event processed by a pipeline.

    ``candidate`` is set for CREATED_WITH_WARNING, ``reason`` for
    SKIPPED, ``error`` for FAILED.
    """

    kind: OutcomeKind
    local_id: Optional[int] = None
    remote_id: Optional[str] = None
    candidate: Optional["MatchCandidate"] = None
    reason: Optional[str] = None
    error: Optional[SyncError] = None
    changed: list[str] = field(default_factory=list)

    @classmethod
    def created(cls, local_id: Optional[int], remote_id: Optional[str]) -> "ItemOutcome":
        return cls(OutcomeKind.CREATED, local_id=local_id, remote_id=remote_id)

    @classmethod
    def created_with_warning(
        cls,
        local_id: Optional[int],
        remote_id: Optional[str],
        candidate: "MatchCandidate",
    ) -> "ItemOutcome":
        return cls(
            OutcomeKind.CREATED_WITH_WARNING,
            local_id=local_id,
            remote_id=remote_id,
            candidate=candidate,
        )

    @classmethod
    def updated(
        cls, local_id: Optional[int], remote_id: Optional[str], changed: list[str]
    ) -> "ItemOutcome":
        return cls(
            OutcomeKind.UPDATED, local_id=local_id, remote_id=remote_id, changed=changed
        )

    @classmethod
    def unchanged(cls, local_id: Optional[int], remote_id: Optional[str]) -> "ItemOutcome":
        return cls(OutcomeKind.UNCHANGED, local_id=local_id, remote_id=remote_id)

    @classmethod
    def skipped(
        cls,
        reason: str,
        local_id: Optional[int] = None,
        remote_id: Optional[str] = None,
    ) -> "ItemOutcome":
        return cls(
            OutcomeKind.SKIPPED, local_id=local_id, remote_id=remote_id, reason=reason
        )

    @classmethod
    def failed(
        cls,
        error: SyncError,
        local_id: Optional[int] = None,
        remote_id: Optional[str] = None,
    ) -> "ItemOutcome":
        return cls(OutcomeKind.FAILED, local_id=local_id, remote_id=remote_id, error=error)


@dataclass
class ExportDiagnostic:
    """Why local events in the window were or were not exported."""

    total_in_range: int = 0
    eligible: int = 0
    already_exported: int = 0
    no_team: int = 0
    team_not_linked: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalInRange": self.total_in_range,
            "eligible": self.eligible,
            "alreadyExported": self.already_exported,
            "noTeam": self.no_team,
            "teamNotLinked": self.team_not_linked,
        }


@dataclass(frozen=True)
class SyncWindow:
    """The [now - days_behind, now + days_ahead] range of one run."""

    start: datetime
    end: datetime

    @classmethod
    def around(
        cls,
        now: Optional[datetime] = None,
        days_ahead: int = DEFAULT_DAYS_AHEAD,
        days_behind: int = DEFAULT_DAYS_BEHIND,
    ) -> "SyncWindow":
        now = now or datetime.now(timezone.utc)
        return cls(
            start=now - timedelta(days=days_behind),
            end=now + timedelta(days=days_ahead),
        )


@dataclass
class SyncReport:
    """
    Aggregate result of one orchestrated run.

    ``success`` is true when no errors were recorded; duplicate
    warnings do not count as errors.
    """

    imported: int = 0
    updated: int = 0
    exported: int = 0
    attendance_updated: int = 0
    errors: list[SyncError] = field(default_factory=list)
    warnings: list[SyncError] = field(default_factory=list)
    outcomes: list[ItemOutcome] = field(default_factory=list)
    export_diagnostic: Optional[ExportDiagnostic] = None
    # Team ids per sync kind ("import", "export", "attendance") that ran
    ran_for: dict[str, set[int]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def add_error(self, error: SyncError) -> None:
        """
        Record a problem.

        Duplicate suspicions go to warnings. Only the first remote
        authentication failure is kept, and an error identical to one
        already recorded (an unreadable row seen by two pipelines) is
        dropped.
        """
        if error.kind == ErrorKind.DUPLICATE_SUSPECTED:
            self.warnings.append(error)
            return
        if error.kind == ErrorKind.REMOTE_AUTH_FAILURE and any(
            e.kind == ErrorKind.REMOTE_AUTH_FAILURE for e in self.errors
        ):
            return
        if error in self.errors:
            return
        self.errors.append(error)

    def mark_ran(self, kind: str, team_id: int) -> None:
        self.ran_for.setdefault(kind, set()).add(team_id)

    def merge(self, other: "SyncReport") -> None:
        """Fold another report (one pipeline's result) into this one."""
        self.imported += other.imported
        self.updated += other.updated
        self.exported += other.exported
        self.attendance_updated += other.attendance_updated
        self.outcomes.extend(other.outcomes)
        for error in [*other.errors, *other.warnings]:
            self.add_error(error)
        if other.export_diagnostic is not None:
            self.export_diagnostic = other.export_diagnostic
        for kind, team_ids in other.ran_for.items():
            self.ran_for.setdefault(kind, set()).update(team_ids)

    def status(self) -> str:
        """Summary status as stored in the sync log."""
        if not self.errors:
            return "success"
        if self.imported or self.updated or self.exported or self.attendance_updated:
            return "partial"
        return "failed"

    def counts(self) -> dict[str, int]:
        return {
            "imported": self.imported,
            "updated": self.updated,
            "exported": self.exported,
            "attendance_updated": self.attendance_updated,
            "errors": len(self.errors),
        }

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "status": self.status(),
            "imported": self.imported,
            "updated": self.updated,
            "exported": self.exported,
            "attendanceUpdated": self.attendance_updated,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
        if self.export_diagnostic is not None:
            data["exportDiagnostic"] = self.export_diagnostic.to_dict()
        return data


def error_from_exception(exc: Exception, context: dict[str, Any]) -> SyncError:
    """
    Normalize an exception into a SyncError.

    Spond rejecting a request (4xx other than auth or rate limiting)
    is reported as a validation error of the item that caused it.
    """
    if isinstance(exc, RemoteAuthFailure):
        kind = ErrorKind.REMOTE_AUTH_FAILURE
    elif isinstance(exc, RemoteUnavailable):
        kind = ErrorKind.REMOTE_UNAVAILABLE
    elif isinstance(exc, EventValidationError):
        kind = ErrorKind.VALIDATION_ERROR
    elif isinstance(exc, SpondAPIError):
        if exc.status_code is not None and 400 <= exc.status_code < 500:
            kind = ErrorKind.VALIDATION_ERROR
        else:
            kind = ErrorKind.REMOTE_UNAVAILABLE
    else:
        kind = ErrorKind.INTERNAL_ERROR
    return SyncError(kind=kind, message=str(exc), context=dict(context))


def invalid_row_error(
    row: dict[str, Any], exc: EventValidationError, **context: Any
) -> SyncError:
    """A VALIDATION_ERROR for a local event row that could not be loaded."""
    return SyncError(
        kind=ErrorKind.VALIDATION_ERROR,
        message=str(exc),
        context={"eventId": row.get("id"), "teamId": row.get("team_id"), **context},
    )
