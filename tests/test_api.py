"""
Unit tests for the Spond API module.

Tests the SpondAPI class against a mocked requests session.
"""

import threading
import time
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import requests

from conftest import NOW, remote_payload
from spond_sync.api.spond_api import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_EVENTS,
    RemoteAuthFailure,
    RemoteUnavailable,
    SpondAPI,
    SpondAPIError,
    SpondCredentials,
)


def response(status=200, body=None):
    """Fake requests.Response."""
    mock = MagicMock(spec=requests.Response)
    mock.status_code = status
    mock.content = b"" if body is None else b"{...}"
    mock.text = "" if body is None else str(body)
    mock.json.return_value = body
    return mock


LOGIN_OK = response(200, {"loginToken": "token-1"})


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def spond(session):
    return SpondAPI(SpondCredentials("coach@example.com", "secret"), session=session)


class TestSpondAPIInitialization:
    """Tests for client construction."""

    def test_defaults(self, spond):
        assert spond.base_url == DEFAULT_BASE_URL
        assert spond.max_events == DEFAULT_MAX_EVENTS
        assert not spond.is_authenticated

    def test_base_url_gets_trailing_slash(self, session):
        api = SpondAPI(
            SpondCredentials("a", "b"), base_url="http://localhost:9000/api", session=session
        )
        assert api.base_url == "http://localhost:9000/api/"

    def test_password_not_in_repr(self):
        assert "secret" not in repr(SpondCredentials("coach@example.com", "secret"))


class TestAuthentication:
    """Tests for login and session renewal."""

    def test_authenticate_stores_token(self, spond, session):
        session.request.return_value = LOGIN_OK
        spond.authenticate()

        assert spond.is_authenticated
        method, url = session.request.call_args.args
        assert method == "POST"
        assert url == DEFAULT_BASE_URL + "login"
        assert session.request.call_args.kwargs["json"] == {
            "email": "coach@example.com",
            "password": "secret",
        }

    def test_rejected_credentials(self, spond, session):
        session.request.return_value = response(401, {"error": "nope"})
        with pytest.raises(RemoteAuthFailure, match="Invalid email or password"):
            spond.authenticate()

    def test_login_rate_limited(self, spond, session):
        session.request.return_value = response(429, {})
        with pytest.raises(RemoteUnavailable):
            spond.authenticate()

    def test_login_without_token(self, spond, session):
        session.request.return_value = response(200, {})
        with pytest.raises(RemoteAuthFailure, match="no session token"):
            spond.authenticate()

    def test_network_error_is_unavailable(self, spond, session):
        session.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(RemoteUnavailable, match="Cannot reach Spond"):
            spond.authenticate()

    def test_expired_session_reauthenticates_once(self, spond, session):
        session.request.side_effect = [
            LOGIN_OK,
            response(401, {}),
            LOGIN_OK,
            response(200, []),
        ]
        assert spond.list_groups() == []
        assert session.request.call_count == 4

    def test_second_rejection_raises_auth_failure(self, spond, session):
        session.request.side_effect = [
            LOGIN_OK,
            response(401, {}),
            LOGIN_OK,
            response(401, {}),
        ]
        with pytest.raises(RemoteAuthFailure, match="after re-authentication"):
            spond.list_groups()
        assert not spond.is_authenticated

    def test_token_renewed_by_another_thread_is_reused(self, spond, session):
        spond._token = "token-2"
        assert spond._renew_session("token-1") == "token-2"
        session.request.assert_not_called()

    def test_concurrent_requests_log_in_once(self, spond, session):
        logins = []

        def request(method, url, **kwargs):
            if url.endswith("login"):
                logins.append(url)
                time.sleep(0.05)
                return response(200, {"loginToken": "token-1"})
            return response(200, [])

        session.request.side_effect = request
        threads = [threading.Thread(target=spond.list_groups) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(logins) == 1
        assert spond.is_authenticated

    def test_bearer_header_sent(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, [])]
        spond.list_groups()
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer token-1"


class TestGroups:
    """Tests for group listing."""

    def test_list_groups(self, spond, session):
        session.request.side_effect = [
            LOGIN_OK,
            response(
                200,
                [
                    {
                        "id": "G1",
                        "name": "Lions Club",
                        "subGroups": [{"id": "S1", "name": "U12"}],
                    },
                    {"name": "no id"},
                ],
            ),
        ]
        groups = spond.list_groups()

        assert [g.id for g in groups] == ["G1"]
        assert groups[0].subgroups[0].parent_id == "G1"

    def test_get_group_uses_cache(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, [{"id": "G1", "name": "A"}])]
        assert spond.get_group("G1").name == "A"
        assert spond.get_group("G2") is None
        assert session.request.call_count == 2


class TestEvents:
    """Tests for event operations."""

    def test_list_events_in_range(self, spond, session):
        session.request.side_effect = [
            LOGIN_OK,
            response(200, [remote_payload("E1"), {"id": "BAD"}]),
        ]
        start, end = NOW, NOW + timedelta(days=7)

        events = spond.list_events_in_range(["G1"], start, end, subgroup_id="S1")

        assert [e.id for e in events] == ["E1"]
        params = session.request.call_args.kwargs["params"]
        assert params["GroupId"] == "G1"
        assert params["subgroupId"] == "S1"
        assert params["minStartTimestamp"] == "2026-10-18T12:00:00.000Z"
        assert params["maxStartTimestamp"] == "2026-10-25T12:00:00.000Z"
        assert params["max"] == DEFAULT_MAX_EVENTS

    def test_events_in_several_groups_returned_once(self, spond, session):
        session.request.side_effect = [
            LOGIN_OK,
            response(200, [remote_payload("E1")]),
            response(200, [remote_payload("E1"), remote_payload("E2")]),
        ]
        events = spond.list_events_in_range(["G1", "G2"], NOW, NOW + timedelta(days=1))
        assert sorted(e.id for e in events) == ["E1", "E2"]

    def test_server_error_is_unavailable(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(503, {"error": "busy"})]
        with pytest.raises(RemoteUnavailable) as exc_info:
            spond.list_events_in_range(["G1"], NOW, NOW)
        assert exc_info.value.status_code == 503

    def test_client_error_keeps_status(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(400, {"error": "bad"})]
        with pytest.raises(SpondAPIError) as exc_info:
            spond.list_events_in_range(["G1"], NOW, NOW)
        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, RemoteUnavailable)

    def test_create_event_returns_id(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, {"id": "NEW"})]
        remote_id = spond.create_event("G1", {"heading": "Practice"})

        assert remote_id == "NEW"
        body = session.request.call_args.kwargs["json"]
        assert body["recipients"]["group"] == {"id": "G1"}

    def test_create_event_without_id_fails(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, {})]
        with pytest.raises(SpondAPIError, match="no event id"):
            spond.create_event("G1", {"heading": "Practice"})

    def test_update_event_posts(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, None)]
        spond.update_event("E1", {"heading": "Renamed"})

        method, url = session.request.call_args.args
        assert method == "POST"
        assert url.endswith("sponds/E1")

    def test_unreadable_body(self, spond, session):
        bad = response(200, {})
        bad.json.side_effect = ValueError("not json")
        session.request.side_effect = [LOGIN_OK, bad]
        with pytest.raises(SpondAPIError, match="unreadable"):
            spond.create_event("G1", {"heading": "Practice"})


class TestAttendance:
    """Tests for attendance fetching."""

    def test_fetch_attendance_fills_names_from_group(self, spond, session):
        event = remote_payload(
            "E1", responses={"acceptedIds": ["M1"], "declinedIds": ["M2"]}
        )
        session.request.side_effect = [
            LOGIN_OK,
            response(200, event),
            response(
                200,
                [
                    {
                        "id": "G1",
                        "name": "Lions Club",
                        "members": [{"id": "M1", "firstName": "Ann", "lastName": "Berg"}],
                    }
                ],
            ),
        ]

        attendance = spond.fetch_attendance("E1")

        assert attendance.summary.accepted == 1
        assert attendance.summary.declined == 1
        names = {r.member_id: r.first_name for r in attendance.records}
        assert names == {"M1": "Ann", "M2": "Unknown"}

    def test_fetch_attendance_for_deleted_event(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(404, {})]
        attendance = spond.fetch_attendance("GONE")
        assert attendance.records == []
        assert attendance.summary.total == 0


class TestConnection:
    """Tests for the connection check."""

    def test_success(self, spond, session):
        session.request.side_effect = [LOGIN_OK, response(200, [{"id": "G1", "name": "A"}])]
        result = spond.test_connection()
        assert result["success"] is True
        assert result["groupCount"] == 1

    def test_failure_is_reported_not_raised(self, spond, session):
        session.request.return_value = response(401, {})
        result = spond.test_connection()
        assert result["success"] is False
        assert "Invalid email or password" in result["message"]
