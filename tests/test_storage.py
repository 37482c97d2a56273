"""
Unit tests for the storage module.

Tests the SyncDatabase class for teams, events, sync settings,
participants, the Spond account and the sync log.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW, add_event
from spond_sync.storage.db import SyncDatabase


class TestSyncDatabaseInitialization:
    """Tests for database initialization."""

    def test_create_in_memory_database(self):
        db = SyncDatabase(":memory:")
        assert db.db_path == ":memory:"

    def test_initialize_creates_tables(self, db):
        with db.connection() as conn:
            tables = {
                row["name"]
                for row in conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table'"
                )
            }
        assert {
            "teams",
            "events",
            "sync_settings",
            "event_participants",
            "spond_config",
            "sync_log",
        } <= tables

    def test_initialize_is_idempotent(self, db):
        db.initialize()
        db.initialize()
        assert db.list_teams() == []

    def test_file_database_persists(self, tmp_path):
        db_path = str(tmp_path / "spond.db")
        first = SyncDatabase(db_path)
        first.initialize()
        first.create_team("Lions")

        second = SyncDatabase(db_path)
        second.initialize()
        assert [t["name"] for t in second.list_teams()] == ["Lions"]

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.connection() as conn:
                conn.execute("INSERT INTO teams (name) VALUES ('Ghost')")
                raise RuntimeError("boom")
        assert db.list_teams() == []


class TestTeams:
    """Tests for team operations."""

    def test_create_and_get_team(self, db):
        team_id = db.create_team("Lions", "Flag Football")
        team = db.get_team(team_id)

        assert team["name"] == "Lions"
        assert team["sport"] == "Flag Football"
        assert team["imported_from_spond"] == 0
        assert team["spond_import_date"] is None

    def test_imported_team_records_import_date(self, db):
        team = db.get_team(db.create_team("Bears", imported_from_spond=True))
        assert team["imported_from_spond"] == 1
        assert team["spond_import_date"] is not None

    def test_get_missing_team(self, db):
        assert db.get_team(999) is None


class TestEvents:
    """Tests for event operations."""

    def test_insert_and_get_event(self, db):
        event_id = add_event(db, title="Practice", location="Main Field")
        row = db.get_event(event_id)

        assert row["title"] == "Practice"
        assert row["location"] == "Main Field"
        assert row["spond_id"] is None

    def test_unknown_column_rejected(self, db):
        with pytest.raises(ValueError, match="Unknown column"):
            db.insert_event({"start_time": NOW.isoformat(), "bogus": 1})

    def test_update_event(self, db):
        event_id = add_event(db)
        db.update_event(event_id, {"title": "Renamed", "spond_id": "E1"})

        row = db.get_event(event_id)
        assert row["title"] == "Renamed"
        assert db.get_event_by_spond_id("E1")["id"] == event_id

    def test_spond_id_is_unique(self, db):
        add_event(db, spond_id="E1")
        with pytest.raises(sqlite3.IntegrityError):
            add_event(db, spond_id="E1")

    def test_list_events_in_range(self, db, team_id):
        inside = add_event(db, start=NOW + timedelta(days=1), team_id=team_id)
        add_event(db, start=NOW + timedelta(days=90), team_id=team_id)
        linked = add_event(db, start=NOW + timedelta(days=2), spond_id="E1")

        start, end = NOW - timedelta(days=7), NOW + timedelta(days=60)
        all_ids = [r["id"] for r in db.list_events_in_range(start, end)]
        assert all_ids == [inside, linked]

        team_ids = [r["id"] for r in db.list_events_in_range(start, end, team_id=team_id)]
        assert team_ids == [inside]

        assert [r["id"] for r in db.list_events_in_range(start, end, linked=True)] == [
            linked
        ]
        assert [r["id"] for r in db.list_events_in_range(start, end, linked=False)] == [
            inside
        ]

    def test_count_synced_events(self, db):
        add_event(db, spond_id="E1")
        add_event(db)
        assert db.count_synced_events() == 1

    def test_update_event_attendance(self, db):
        event_id = add_event(db)
        synced = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
        db.update_event_attendance(event_id, {"accepted": 5, "declined": 2}, synced)

        row = db.get_event(event_id)
        assert row["attendance_accepted"] == 5
        assert row["attendance_declined"] == 2
        assert row["attendance_unanswered"] == 0
        assert row["attendance_last_sync"] == synced.isoformat()


class TestParticipants:
    """Tests for per-member attendance rows."""

    def test_replace_participants_upserts_and_prunes(self, db):
        event_id = add_event(db)
        db.replace_participants(
            event_id,
            [
                {"spond_member_id": "M1", "first_name": "Ann", "response": "accepted"},
                {"spond_member_id": "M2", "first_name": "Bo", "response": "declined"},
            ],
        )
        db.replace_participants(
            event_id,
            [{"spond_member_id": "M1", "first_name": "Ann", "response": "declined"}],
        )

        participants = db.get_participants(event_id)
        assert [(p["spond_member_id"], p["response"]) for p in participants] == [
            ("M1", "declined")
        ]

    def test_empty_response_clears_participants(self, db):
        event_id = add_event(db)
        db.replace_participants(
            event_id, [{"spond_member_id": "M1", "response": "accepted"}]
        )
        db.replace_participants(event_id, [])
        assert db.get_participants(event_id) == []


class TestSyncSettings:
    """Tests for sync settings rows."""

    def _values(self, team_id, group_id="G1"):
        return {"team_id": team_id, "spond_group_id": group_id, "spond_group_name": "Lions"}

    def test_insert_and_get(self, db, team_id):
        db.insert_sync_settings(self._values(team_id))
        row = db.get_sync_settings(team_id)

        assert row["spond_group_id"] == "G1"
        assert row["team_name"] == "Lions"
        assert row["sync_events_import"] == 1
        assert row["sync_events_export"] == 0

    def test_one_active_row_per_team(self, db, team_id):
        db.insert_sync_settings(self._values(team_id, "G1"))
        with pytest.raises(sqlite3.IntegrityError):
            db.insert_sync_settings(self._values(team_id, "G2"))

    def test_deactivate_keeps_row(self, db, team_id):
        db.insert_sync_settings(self._values(team_id))

        assert db.deactivate_sync_settings(team_id) is True
        assert db.deactivate_sync_settings(team_id) is False
        assert db.get_sync_settings(team_id) is None
        assert db.get_sync_settings(team_id, active_only=False)["is_active"] == 0
        assert db.list_sync_settings() == []
        assert len(db.list_sync_settings(active_only=False)) == 1

    def test_update_sync_timestamp(self, db, team_id):
        db.insert_sync_settings(self._values(team_id))
        assert db.update_sync_timestamp(team_id, "last_import_sync", NOW)
        assert db.get_sync_settings(team_id)["last_import_sync"] == NOW.isoformat()

    def test_update_sync_timestamp_rejects_unknown_column(self, db, team_id):
        with pytest.raises(ValueError):
            db.update_sync_timestamp(team_id, "is_active", NOW)


class TestSpondConfig:
    """Tests for the stored Spond account."""

    def test_no_config_initially(self, db):
        assert db.get_spond_config() is None

    def test_save_overwrites_single_row(self, db):
        db.save_spond_config("a@example.com", "one")
        db.save_spond_config("b@example.com", "two", auto_sync=True, sync_interval_minutes=15)

        config = db.get_spond_config()
        assert config["username"] == "b@example.com"
        assert config["auto_sync"] == 1
        assert config["sync_interval_minutes"] == 15

    def test_update_last_sync_and_clear(self, db):
        db.save_spond_config("a@example.com", "one")
        db.update_last_sync(NOW)
        assert db.get_spond_config()["last_sync"] == NOW.isoformat()

        db.clear_spond_config()
        assert db.get_spond_config() is None


class TestSyncLog:
    """Tests for the sync run log."""

    def test_start_and_complete(self, db):
        log_id = db.start_sync_log("full", "both")
        db.complete_sync_log(
            log_id,
            "partial",
            {"imported": 3, "exported": 1, "errors": 2},
            "Listing failed",
        )

        entry = db.list_sync_log()[0]
        assert entry["status"] == "partial"
        assert entry["imported"] == 3
        assert entry["exported"] == 1
        assert entry["error_count"] == 2
        assert entry["error_message"] == "Listing failed"
        assert entry["completed_at"] is not None

    def test_newest_first(self, db):
        first = db.start_sync_log("events", "import")
        second = db.start_sync_log("events", "export")
        assert [e["id"] for e in db.list_sync_log(limit=1)] == [second]
        assert [e["id"] for e in db.list_sync_log()] == [second, first]
