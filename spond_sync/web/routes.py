"""
API routes for the Spond integration.

Request and response bodies use camelCase keys. Handlers are plain
functions; FastAPI runs them in its thread pool because every call ends
in blocking HTTP or SQLite I/O.
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from spond_sync.service import SpondService
from spond_sync.web.auth import get_service, require_token

router = APIRouter(
    prefix="/api/spond", tags=["spond"], dependencies=[Depends(require_token)]
)


class CamelModel(BaseModel):
    """Request body accepting camelCase keys (snake_case also works)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConfigureRequest(CamelModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    auto_sync: bool = False
    sync_interval_minutes: int = Field(default=60, ge=1)


class ConnectionTestRequest(CamelModel):
    username: Optional[str] = None
    password: Optional[str] = None


class WindowRequest(CamelModel):
    days_ahead: Optional[int] = Field(default=None, ge=0)
    days_behind: Optional[int] = Field(default=None, ge=0)


class SyncRequest(WindowRequest):
    direction: Literal["import", "export", "both"] = "both"
    sync_events: bool = True
    sync_attendance: bool = True


class LinkToggles(CamelModel):
    sync_events_import: bool = True
    sync_events_export: bool = False
    sync_attendance_import: bool = True
    sync_event_title: bool = True
    sync_event_description: bool = True
    sync_event_time: bool = True
    sync_event_location: bool = True
    sync_event_type: bool = True


class LinkRequest(LinkToggles):
    team_id: int
    spond_group_id: str = Field(min_length=1)
    spond_group_name: Optional[str] = None
    spond_parent_group_id: Optional[str] = None
    spond_parent_group_name: Optional[str] = None
    is_subgroup: bool = False
    is_active: bool = True


class ImportGroup(CamelModel):
    id: str = Field(min_length=1)
    name: str = ""
    activity: Optional[str] = None
    parent_group_id: Optional[str] = None
    parent_group_name: Optional[str] = None
    is_subgroup: bool = False


class ImportTeamsRequest(LinkToggles):
    groups: list[ImportGroup] = Field(min_length=1)
    sport: Optional[str] = None


# Single-purpose sync endpoints: (direction, sync events, sync attendance)
SYNC_TYPES = {
    "events": ("import", True, False),
    "attendance": ("import", False, True),
    "import": ("import", True, True),
    "export": ("export", True, False),
    "full": ("both", True, True),
}


def _days(
    days_ahead: Optional[int] = Query(default=None, alias="daysAhead", ge=0),
    days_behind: Optional[int] = Query(default=None, alias="daysBehind", ge=0),
) -> WindowRequest:
    return WindowRequest(days_ahead=days_ahead, days_behind=days_behind)


# =============================================================================
# Configuration and status
# =============================================================================


@router.post("/configure")
def configure(
    body: ConfigureRequest, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    """Verify and store the Spond account."""
    return service.configure(
        body.username, body.password, body.auto_sync, body.sync_interval_minutes
    )


@router.delete("/configure")
def remove_configuration(service: SpondService = Depends(get_service)) -> dict[str, Any]:
    service.clear_configuration()
    return {"success": True, "message": "Spond integration removed"}


@router.post("/test")
def test_connection(
    body: Optional[ConnectionTestRequest] = None,
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    """Test the given credentials, or the stored account when none are given."""
    body = body or ConnectionTestRequest()
    return service.test_connection(body.username, body.password)


@router.get("/status")
def get_status(service: SpondService = Depends(get_service)) -> dict[str, Any]:
    return service.status()


# =============================================================================
# Groups, teams and links
# =============================================================================


@router.get("/groups")
def list_groups(service: SpondService = Depends(get_service)) -> dict[str, Any]:
    return {"groups": service.groups()}


@router.get("/groups-for-import")
def list_groups_for_import(
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    return {"groups": service.groups_for_import()}


@router.post("/import-teams")
def import_teams(
    body: ImportTeamsRequest, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    """Create a local team and link for each posted Spond group."""
    teams = service.import_teams(
        [g.model_dump(by_alias=True) for g in body.groups],
        sport=body.sport,
        toggles=body.model_dump(by_alias=True, exclude={"groups", "sport"}),
    )
    return {"success": True, "imported": len(teams), "teams": teams}


@router.post("/link/team")
def link_team(
    body: LinkRequest, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    link = service.link_team(body.model_dump(by_alias=True))
    return {"success": True, "link": link.to_dict()}


@router.delete("/link/team/{team_id}")
def unlink_team(
    team_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    if not service.unlink_team(team_id):
        raise LookupError(f"Team {team_id} has no active Spond link")
    return {"success": True}


@router.get("/sync-settings")
def list_sync_settings(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    links = service.list_links(active_only=not include_inactive)
    return {"settings": [link.to_dict() for link in links]}


@router.get("/sync-settings/{team_id}")
def get_sync_settings(
    team_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    link = service.get_link(team_id)
    if link is None:
        raise LookupError(f"Team {team_id} has no active Spond link")
    return {"settings": link.to_dict()}


@router.post("/sync-settings")
def save_sync_settings(
    body: LinkRequest, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    link = service.link_team(body.model_dump(by_alias=True))
    return {"success": True, "settings": link.to_dict()}


@router.delete("/sync-settings/{team_id}")
def delete_sync_settings(
    team_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    if not service.unlink_team(team_id):
        raise LookupError(f"Team {team_id} has no active Spond link")
    return {"success": True}


# =============================================================================
# Previews
# =============================================================================


@router.get("/import-preview")
def import_preview(
    window: WindowRequest = Depends(_days),
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    return service.preview_import(window.days_ahead, window.days_behind)


@router.get("/export-preview")
def export_preview(
    window: WindowRequest = Depends(_days),
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    return service.preview_export(window.days_ahead, window.days_behind)


# =============================================================================
# Sync
# =============================================================================


def _run_sync(service: SpondService, body: SyncRequest) -> dict[str, Any]:
    options = service.sync_options(
        body.direction,
        sync_events=body.sync_events,
        sync_attendance=body.sync_attendance,
        days_ahead=body.days_ahead,
        days_behind=body.days_behind,
    )
    return service.sync(options).to_dict()


@router.post("/sync")
def sync(
    body: Optional[SyncRequest] = None, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    """
    Run a sync; both directions, events and attendance by default.

    Each team takes part only in the kinds of sync its link enables.
    """
    return _run_sync(service, body or SyncRequest())


@router.post("/sync-with-settings")
def sync_with_settings(
    body: Optional[SyncRequest] = None, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    """Same as POST /sync, kept for clients that still call it."""
    return sync(body, service)


@router.post("/sync/attendance/event/{event_id}")
def sync_event_attendance(
    event_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    attendance = service.refresh_event_attendance(event_id)
    return {
        "success": True,
        "eventId": event_id,
        "attendance": attendance.summary.to_dict(),
        "participants": len(attendance.records),
    }


@router.post("/sync/{sync_type}")
def sync_by_type(
    sync_type: str,
    body: Optional[WindowRequest] = None,
    service: SpondService = Depends(get_service),
) -> dict[str, Any]:
    """Run one kind of sync: events, attendance, import, export or full."""
    if sync_type not in SYNC_TYPES:
        raise ValueError(
            f"Unknown sync type '{sync_type}'. "
            f"Use one of: {', '.join(sorted(SYNC_TYPES))}"
        )
    direction, events, attendance = SYNC_TYPES[sync_type]
    body = body or WindowRequest()
    result = _run_sync(
        service,
        SyncRequest(
            direction=direction,
            sync_events=events,
            sync_attendance=attendance,
            days_ahead=body.days_ahead,
            days_behind=body.days_behind,
        ),
    )
    if sync_type == "attendance":
        result["eventsUpdated"] = result["attendanceUpdated"]
    return result


# =============================================================================
# Single events
# =============================================================================


@router.get("/participants/event/{event_id}")
def get_participants(
    event_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    return service.participants(event_id)


@router.put("/push/event/{event_id}")
def push_event(
    event_id: int, service: SpondService = Depends(get_service)
) -> dict[str, Any]:
    """Push a local event's details to its Spond event."""
    event = service.push_event(event_id)
    return {"success": True, "eventId": event_id, "spondId": event.remote_id}
