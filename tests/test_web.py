"""
Tests for the HTTP API.

Runs the FastAPI application in-process with TestClient against an
in-memory database and a mocked Spond client.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import add_event, make_remote
from spond_sync.api.spond_api import RemoteAuthFailure, RemoteUnavailable
from spond_sync.config.settings import AppSettings
from spond_sync.service import SpondService
from spond_sync.sync.event import RemoteGroup
from spond_sync.web import create_app
from spond_sync.web.app import status_for

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def service(tmp_path, db, api):
    api.list_groups.return_value = [
        RemoteGroup.from_api_response({"id": "G1", "name": "Lions Club"}),
        RemoteGroup.from_api_response({"id": "G2", "name": "Flag Bears"}),
    ]
    settings = AppSettings(
        config_dir=tmp_path, database_path=":memory:", api_tokens=[TOKEN]
    )
    return SpondService(settings, database=db, api_factory=MagicMock(return_value=api))


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


@pytest.fixture
def configured(client):
    response = client.post(
        "/api/spond/configure",
        json={"username": "coach@example.com", "password": "secret"},
        headers=AUTH,
    )
    assert response.status_code == 200
    return client


class TestAuthentication:
    """Tests for bearer-token protection."""

    def test_health_is_public(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token(self, client):
        assert client.get("/api/spond/status").status_code == 401

    def test_wrong_token(self, client):
        response = client.get(
            "/api/spond/status", headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    def test_no_tokens_configured_rejects_everything(self, service):
        service.settings.api_tokens = []
        client = TestClient(create_app(service))
        assert client.get("/api/spond/status", headers=AUTH).status_code == 401

    def test_valid_token(self, client):
        response = client.get("/api/spond/status", headers=AUTH)
        assert response.status_code == 200
        assert response.json()["configured"] is False


class TestConfiguration:
    """Tests for account configuration endpoints."""

    def test_configure(self, configured, api):
        api.authenticate.assert_called_once()
        status = configured.get("/api/spond/status", headers=AUTH).json()
        assert status["configured"] is True
        assert status["username"] == "coach@example.com"

    def test_configure_accepts_camel_case(self, client, db):
        client.post(
            "/api/spond/configure",
            json={
                "username": "coach@example.com",
                "password": "secret",
                "autoSync": True,
                "syncIntervalMinutes": 30,
            },
            headers=AUTH,
        )
        assert db.get_spond_config()["sync_interval_minutes"] == 30

    def test_configure_requires_password(self, client):
        response = client.post(
            "/api/spond/configure", json={"username": "coach@example.com"}, headers=AUTH
        )
        assert response.status_code == 422

    def test_rejected_credentials(self, client, api):
        api.authenticate.side_effect = RemoteAuthFailure(
            "Invalid email or password for Spond", 401
        )
        response = client.post(
            "/api/spond/configure",
            json={"username": "coach@example.com", "password": "wrong"},
            headers=AUTH,
        )
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Invalid email or password for Spond",
        }

    def test_remove_configuration(self, configured):
        response = configured.delete("/api/spond/configure", headers=AUTH)
        assert response.json()["success"] is True
        assert configured.get("/api/spond/status", headers=AUTH).json()["configured"] is False

    def test_test_without_configuration(self, client):
        response = client.post("/api/spond/test", headers=AUTH)
        assert response.status_code == 400


class TestGroupsAndLinks:
    """Tests for group and link endpoints."""

    def test_groups(self, configured):
        groups = configured.get("/api/spond/groups", headers=AUTH).json()["groups"]
        assert [g["id"] for g in groups] == ["G1", "G2"]

    def test_spond_unavailable(self, configured, api):
        api.list_groups.side_effect = RemoteUnavailable("Cannot reach Spond", None)
        response = configured.get("/api/spond/groups", headers=AUTH)
        assert response.status_code == 502

    def test_link_and_list(self, configured, team_id):
        response = configured.post(
            "/api/spond/link/team",
            json={"teamId": team_id, "spondGroupId": "G1", "syncEventsExport": True},
            headers=AUTH,
        )
        assert response.status_code == 200
        link = response.json()["link"]
        assert link["spondGroupName"] == "Lions Club"
        assert link["syncEventsExport"] is True

        settings = configured.get("/api/spond/sync-settings", headers=AUTH).json()["settings"]
        assert [s["teamId"] for s in settings] == [team_id]
        single = configured.get(f"/api/spond/sync-settings/{team_id}", headers=AUTH)
        assert single.json()["settings"]["spondGroupId"] == "G1"

    def test_link_unknown_team(self, configured):
        response = configured.post(
            "/api/spond/link/team", json={"teamId": 99, "spondGroupId": "G1"}, headers=AUTH
        )
        assert response.status_code == 404

    def test_link_conflict(self, configured, team_id):
        configured.post(
            "/api/spond/link/team", json={"teamId": team_id, "spondGroupId": "G1"}, headers=AUTH
        )
        response = configured.post(
            "/api/spond/link/team", json={"teamId": team_id, "spondGroupId": "G2"}, headers=AUTH
        )
        assert response.status_code == 409
        assert "unlink it first" in response.json()["error"]

    def test_unlink(self, configured, team_id):
        configured.post(
            "/api/spond/link/team", json={"teamId": team_id, "spondGroupId": "G1"}, headers=AUTH
        )
        assert configured.delete(f"/api/spond/link/team/{team_id}", headers=AUTH).status_code == 200
        assert configured.delete(f"/api/spond/link/team/{team_id}", headers=AUTH).status_code == 404
        assert configured.get(f"/api/spond/sync-settings/{team_id}", headers=AUTH).status_code == 404

    def test_save_and_delete_sync_settings(self, configured, team_id):
        body = {"teamId": team_id, "spondGroupId": "G1", "syncEventsExport": True}
        configured.post("/api/spond/sync-settings", json=body, headers=AUTH)

        body["syncEventTitle"] = False
        response = configured.post("/api/spond/sync-settings", json=body, headers=AUTH)

        settings = response.json()["settings"]
        assert settings["syncEventTitle"] is False
        assert settings["syncEventsExport"] is True

        url = f"/api/spond/sync-settings/{team_id}"
        assert configured.delete(url, headers=AUTH).json()["success"] is True
        assert configured.delete(url, headers=AUTH).status_code == 404
        inactive = configured.get(
            "/api/spond/sync-settings?includeInactive=true", headers=AUTH
        ).json()["settings"]
        assert inactive[0]["isActive"] is False

    def test_import_teams(self, configured):
        groups = configured.get("/api/spond/groups-for-import", headers=AUTH).json()["groups"]

        response = configured.post(
            "/api/spond/import-teams",
            json={"groups": [groups[1]], "syncEventsExport": True},
            headers=AUTH,
        )

        body = response.json()
        assert body["imported"] == 1
        assert body["teams"][0]["sport"] == "Flag Football"
        assert body["teams"][0]["link"]["syncEventsExport"] is True

    def test_import_teams_requires_groups(self, configured):
        response = configured.post("/api/spond/import-teams", json={"groups": []}, headers=AUTH)
        assert response.status_code == 422


class TestSync:
    """Tests for sync and preview endpoints."""

    def test_sync_requires_configuration(self, client):
        response = client.post("/api/spond/sync", headers=AUTH)
        assert response.status_code == 400
        assert "not configured" in response.json()["error"]

    def test_sync_default(self, configured):
        body = configured.post("/api/spond/sync", headers=AUTH).json()
        assert body["success"] is True
        assert body["status"] == "success"

    def test_sync_with_body(self, configured, api, db, team_id):
        configured.post(
            "/api/spond/link/team",
            json={"teamId": team_id, "spondGroupId": "G1", "syncEventsExport": True},
            headers=AUTH,
        )
        add_event(db, start=datetime.now(timezone.utc) + timedelta(days=2), team_id=team_id)
        api.create_event.return_value = "R1"

        body = configured.post(
            "/api/spond/sync", json={"direction": "export", "daysAhead": 30}, headers=AUTH
        ).json()

        assert body["exported"] == 1
        assert body["exportDiagnostic"]["eligible"] == 1

    def test_sync_with_settings(self, configured):
        response = configured.post(
            "/api/spond/sync-with-settings", json={"direction": "import"}, headers=AUTH
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_sync_with_settings_is_same_as_sync(self, configured, api, team_id):
        configured.post(
            "/api/spond/link/team",
            json={"teamId": team_id, "spondGroupId": "G1", "syncEventsImport": False},
            headers=AUTH,
        )
        api.list_events_in_range.return_value = [
            make_remote("E1", start=datetime.now(timezone.utc) + timedelta(days=2))
        ]

        via_settings = configured.post(
            "/api/spond/sync-with-settings", json={"direction": "import"}, headers=AUTH
        ).json()
        via_sync = configured.post(
            "/api/spond/sync", json={"direction": "import"}, headers=AUTH
        ).json()

        # The link has import switched off, so neither route imports
        assert via_settings["imported"] == 0
        assert via_settings == via_sync

    def test_sync_invalid_direction(self, configured):
        response = configured.post("/api/spond/sync", json={"direction": "up"}, headers=AUTH)
        assert response.status_code == 422

    def test_sync_by_type_attendance(self, configured):
        body = configured.post("/api/spond/sync/attendance", headers=AUTH).json()
        assert body["eventsUpdated"] == 0

    def test_sync_unknown_type(self, configured):
        response = configured.post("/api/spond/sync/everything", headers=AUTH)
        assert response.status_code == 400

    def test_sync_in_progress(self, configured, service):
        service.lock.acquire()
        try:
            response = configured.post("/api/spond/sync", headers=AUTH)
        finally:
            service.lock.release()
        assert response.status_code == 409

    def test_previews(self, configured):
        imports = configured.get("/api/spond/import-preview?daysAhead=10", headers=AUTH)
        exports = configured.get("/api/spond/export-preview", headers=AUTH)
        assert imports.json()["summary"]["totalInSpond"] == 0
        assert exports.json()["summary"]["totalInRange"] == 0


class TestSingleEvents:
    """Tests for per-event endpoints."""

    def test_participants_missing_event(self, configured):
        assert configured.get("/api/spond/participants/event/404", headers=AUTH).status_code == 404

    def test_participants(self, configured, db):
        event_id = add_event(db, spond_id="E1")
        body = configured.get(f"/api/spond/participants/event/{event_id}", headers=AUTH).json()
        assert body["spondId"] == "E1"
        assert body["participants"] == []

    def test_event_attendance(self, configured, db):
        event_id = add_event(db, spond_id="E1")
        response = configured.post(
            f"/api/spond/sync/attendance/event/{event_id}", headers=AUTH
        )
        assert response.json()["participants"] == 0

    def test_push_unexported_event(self, configured, db):
        event_id = add_event(db)
        response = configured.put(f"/api/spond/push/event/{event_id}", headers=AUTH)
        assert response.status_code == 400

    def test_push_event(self, configured, db, api):
        event_id = add_event(db, spond_id="R1")
        response = configured.put(f"/api/spond/push/event/{event_id}", headers=AUTH)
        assert response.json()["spondId"] == "R1"
        api.update_event.assert_called_once()


class TestStatusFor:
    """Tests for exception-to-status mapping."""

    def test_auth_failure_before_generic_api_error(self):
        assert status_for(RemoteAuthFailure("x", 401)) == 401
        assert status_for(RemoteUnavailable("x", 503)) == 502

    def test_unknown_error(self):
        assert status_for(RuntimeError("x")) == 500
