"""
Unit tests for sync run results.

Tests error recording rules, merging pipeline reports and the summary
status written to the sync log.
"""

from spond_sync.api.spond_api import RemoteAuthFailure, SpondAPIError
from spond_sync.sync.event import EventValidationError
from spond_sync.sync.report import (
    ErrorKind,
    ExportDiagnostic,
    ItemOutcome,
    SyncError,
    SyncReport,
    error_from_exception,
    invalid_row_error,
)


def error(kind=ErrorKind.REMOTE_UNAVAILABLE, message="down", **context):
    return SyncError(kind=kind, message=message, context=context)


class TestAddError:
    """Tests for SyncReport.add_error."""

    def test_duplicate_suspicion_is_a_warning(self):
        report = SyncReport()
        report.add_error(error(ErrorKind.DUPLICATE_SUSPECTED, "looks alike"))

        assert report.success
        assert len(report.warnings) == 1

    def test_only_first_auth_failure_kept(self):
        report = SyncReport()
        report.add_error(error(ErrorKind.REMOTE_AUTH_FAILURE, "rejected"))
        report.add_error(error(ErrorKind.REMOTE_AUTH_FAILURE, "rejected again"))

        assert [e.message for e in report.errors] == ["rejected"]

    def test_identical_error_recorded_once(self):
        report = SyncReport()
        report.add_error(error(eventId=1))
        report.add_error(error(eventId=1))
        report.add_error(error(eventId=2))

        assert [e.context["eventId"] for e in report.errors] == [1, 2]


class TestMergeAndStatus:
    """Tests for folding pipeline reports together."""

    def test_merge_sums_counts_and_keeps_diagnostic(self):
        total = SyncReport(imported=1)
        export = SyncReport(exported=2, export_diagnostic=ExportDiagnostic(eligible=2))
        export.add_error(error(eventId=5))
        export.outcomes.append(ItemOutcome.created(5, "R1"))
        export.mark_ran("export", 3)

        total.merge(export)

        assert total.counts() == {
            "imported": 1,
            "updated": 0,
            "exported": 2,
            "attendance_updated": 0,
            "errors": 1,
        }
        assert total.export_diagnostic.eligible == 2
        assert total.ran_for == {"export": {3}}
        assert len(total.outcomes) == 1

    def test_status(self):
        assert SyncReport().status() == "success"

        partial = SyncReport(updated=1)
        partial.add_error(error())
        assert partial.status() == "partial"

        failed = SyncReport()
        failed.add_error(error())
        assert failed.status() == "failed"

    def test_to_dict_uses_camel_case(self):
        data = SyncReport(attendance_updated=2, export_diagnostic=ExportDiagnostic()).to_dict()

        assert data["attendanceUpdated"] == 2
        assert data["exportDiagnostic"]["totalInRange"] == 0
        assert data["success"] is True


class TestErrorNormalization:
    """Tests for turning exceptions and bad rows into SyncError entries."""

    def test_auth_failure(self):
        result = error_from_exception(RemoteAuthFailure("rejected", 401), {"teamId": 1})
        assert result.kind == ErrorKind.REMOTE_AUTH_FAILURE
        assert result.context == {"teamId": 1}

    def test_client_error_is_validation(self):
        result = error_from_exception(SpondAPIError("bad payload", 400), {})
        assert result.kind == ErrorKind.VALIDATION_ERROR

    def test_server_error_without_status_is_unavailable(self):
        result = error_from_exception(SpondAPIError("odd"), {})
        assert result.kind == ErrorKind.REMOTE_UNAVAILABLE

    def test_other_exceptions_are_internal(self):
        assert error_from_exception(KeyError("x"), {}).kind == ErrorKind.INTERNAL_ERROR

    def test_invalid_row_error(self):
        row = {"id": 4, "team_id": 2, "status": "archived"}
        result = invalid_row_error(
            row, EventValidationError("Unknown event status: 'archived'"), spondId="E1"
        )

        assert result.kind == ErrorKind.VALIDATION_ERROR
        assert result.message == "Unknown event status: 'archived'"
        assert result.context == {"eventId": 4, "teamId": 2, "spondId": "E1"}
