"""
Shared fixtures for the spond_sync test suite.

Provides an in-memory database, a mocked Spond client and helpers for
building remote payloads and local event rows.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import MagicMock

import pytest

from spond_sync.api.spond_api import SpondAPI
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.event import Attendance, RemoteEvent, format_timestamp
from spond_sync.sync.links import TeamLinkRegistry, TeamSyncLink
from spond_sync.sync.report import SyncWindow

# Reference time used by pipeline tests
NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def remote_payload(
    event_id: str,
    heading: str = "Practice",
    start: Optional[datetime] = None,
    duration_minutes: int = 90,
    group_id: str = "G1",
    group_name: str = "Lions Club",
    subgroups: Optional[list[dict[str, str]]] = None,
    location: Optional[str] = None,
    cancelled: bool = False,
    event_type: str = "EVENT",
    responses: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Spond event JSON as returned by the API."""
    start = start or NOW + timedelta(days=2)
    data: dict[str, Any] = {
        "id": event_id,
        "heading": heading,
        "startTimestamp": start.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        "endTimestamp": (start + timedelta(minutes=duration_minutes)).strftime(
            "%Y-%m-%dT%H:%M:%S.000Z"
        ),
        "recipients": {
            "group": {"id": group_id, "name": group_name},
            "subGroups": subgroups or [],
        },
        "cancelled": cancelled,
        "type": event_type,
    }
    if location:
        data["location"] = {"address": location}
    if responses is not None:
        data["responses"] = responses
    return data


def make_remote(event_id: str, **kwargs: Any) -> RemoteEvent:
    return RemoteEvent.from_api_response(remote_payload(event_id, **kwargs))


def add_event(
    db: SyncDatabase,
    title: str = "Practice",
    start: Optional[datetime] = None,
    duration_minutes: Optional[int] = 90,
    team_id: Optional[int] = None,
    location: Optional[str] = None,
    spond_id: Optional[str] = None,
    event_type: str = "Practice",
    status: str = "Planned",
) -> int:
    """Insert a local event row and return its id."""
    start = start or NOW + timedelta(days=2)
    end = start + timedelta(minutes=duration_minutes) if duration_minutes else None
    return db.insert_event(
        {
            "title": title,
            "event_type": event_type,
            "start_time": format_timestamp(start),
            "end_time": format_timestamp(end),
            "team_id": team_id,
            "location": location,
            "status": status,
            "spond_id": spond_id,
        }
    )


@pytest.fixture
def db():
    """Initialized in-memory database."""
    database = SyncDatabase(":memory:")
    database.initialize()
    return database


@pytest.fixture
def registry(db):
    return TeamLinkRegistry(db)


@pytest.fixture
def team_id(db):
    """A team named Lions."""
    return db.create_team("Lions", "Flag Football")


@pytest.fixture
def linked_team(db, registry, team_id):
    """The Lions team linked to group G1 with import, export and attendance on."""
    registry.upsert_link(
        TeamSyncLink(
            team_id=team_id,
            group_id="G1",
            group_name="Lions Club",
            export_events=True,
        )
    )
    return team_id


@pytest.fixture
def api():
    """Mocked Spond client with no events and empty attendance."""
    mock = MagicMock(spec=SpondAPI)
    mock.list_events_in_range.return_value = []
    mock.fetch_attendance.return_value = Attendance()
    mock.list_groups.return_value = []
    return mock


@pytest.fixture
def window():
    return SyncWindow.around(NOW, days_ahead=60, days_behind=7)
