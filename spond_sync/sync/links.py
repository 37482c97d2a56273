"""
Team-link registry for Spond synchronization.

A link binds one local team to one Spond group or subgroup and carries
the sync policy for that pair:
- whether events are imported, exported, and attendance imported
- which event attributes an import may overwrite
- when each kind of sync last ran

At most one link per team is active at a time. Links are deactivated,
never deleted, so their history survives an unlink.
"""

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from spond_sync.sync.event import LocalEvent, parse_timestamp

if TYPE_CHECKING:
    from spond_sync.storage.db import SyncDatabase

logger = logging.getLogger(__name__)


class LinkConflictError(Exception):
    """Raised when a team already has an active link to a different group."""

    pass


class SyncKind(str, Enum):
    """The three independent kinds of sync a link can enable."""

    IMPORT = "import"
    EXPORT = "export"
    ATTENDANCE = "attendance"


class SyncField(str, Enum):
    """Event attributes an import is allowed to overwrite."""

    TITLE = "title"
    DESCRIPTION = "description"
    TIME = "time"
    LOCATION = "location"
    TYPE = "type"


ALL_FIELDS: frozenset[SyncField] = frozenset(SyncField)

# LocalEvent attributes governed by each field toggle
FIELD_ATTRIBUTES: dict[SyncField, tuple[str, ...]] = {
    SyncField.TITLE: ("title",),
    SyncField.DESCRIPTION: ("description",),
    SyncField.TIME: ("start", "end"),
    SyncField.LOCATION: ("location",),
    SyncField.TYPE: ("event_type",),
}

_FIELD_COLUMNS: dict[SyncField, str] = {
    SyncField.TITLE: "sync_event_title",
    SyncField.DESCRIPTION: "sync_event_description",
    SyncField.TIME: "sync_event_time",
    SyncField.LOCATION: "sync_event_location",
    SyncField.TYPE: "sync_event_type",
}

_KIND_TIMESTAMP_COLUMNS: dict[SyncKind, str] = {
    SyncKind.IMPORT: "last_import_sync",
    SyncKind.EXPORT: "last_export_sync",
    SyncKind.ATTENDANCE: "last_attendance_sync",
}

_FIELD_PAYLOAD_KEYS: dict[SyncField, str] = {
    SyncField.TITLE: "syncEventTitle",
    SyncField.DESCRIPTION: "syncEventDescription",
    SyncField.TIME: "syncEventTime",
    SyncField.LOCATION: "syncEventLocation",
    SyncField.TYPE: "syncEventType",
}


def apply_fields(
    fields: frozenset[SyncField], target: LocalEvent, incoming: LocalEvent
) -> list[str]:
    """
    Copy the attributes governed by ``fields`` from incoming to target.

    Attributes are only written when they differ, so applying the same
    data twice reports no changes the second time.

    Returns:
        Names of the attributes that changed
    """
    changed: list[str] = []
    for sync_field in SyncField:
        if sync_field not in fields:
            continue
        for attribute in FIELD_ATTRIBUTES[sync_field]:
            new_value = getattr(incoming, attribute)
            if getattr(target, attribute) != new_value:
                setattr(target, attribute, new_value)
                changed.append(attribute)
    return changed


@dataclass
class TeamSyncLink:
    """
    Sync policy between one local team and one Spond group or subgroup.

    For a subgroup link, ``group_id`` is the subgroup and
    ``parent_group_id`` the group Spond files its events under.
    """

    team_id: int
    group_id: str
    group_name: str = ""
    parent_group_id: Optional[str] = None
    parent_group_name: Optional[str] = None
    is_subgroup: bool = False
    import_events: bool = True
    export_events: bool = False
    import_attendance: bool = True
    fields: frozenset[SyncField] = field(default_factory=lambda: ALL_FIELDS)
    active: bool = True
    last_import: Optional[datetime] = None
    last_export: Optional[datetime] = None
    last_attendance: Optional[datetime] = None
    team_name: Optional[str] = None
    id: Optional[int] = None

    def enabled_for(self, kind: SyncKind) -> bool:
        if kind == SyncKind.IMPORT:
            return self.import_events
        if kind == SyncKind.EXPORT:
            return self.export_events
        return self.import_attendance

    @property
    def fetch_group_id(self) -> str:
        """Group id used when listing or creating events on Spond."""
        if self.is_subgroup and self.parent_group_id:
            return self.parent_group_id
        return self.group_id

    @property
    def subgroup_id(self) -> Optional[str]:
        return self.group_id if self.is_subgroup else None

    @property
    def display_name(self) -> str:
        if self.is_subgroup and self.parent_group_name:
            return f"{self.parent_group_name} / {self.group_name}"
        return self.group_name or self.group_id

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "TeamSyncLink":
        return cls(
            id=row.get("id"),
            team_id=row["team_id"],
            team_name=row.get("team_name"),
            group_id=row["spond_group_id"],
            group_name=row.get("spond_group_name") or "",
            parent_group_id=row.get("spond_parent_group_id"),
            parent_group_name=row.get("spond_parent_group_name"),
            is_subgroup=bool(row.get("is_subgroup")),
            import_events=bool(row.get("sync_events_import")),
            export_events=bool(row.get("sync_events_export")),
            import_attendance=bool(row.get("sync_attendance_import")),
            fields=frozenset(
                f for f, column in _FIELD_COLUMNS.items() if row.get(column)
            ),
            active=bool(row.get("is_active")),
            last_import=parse_timestamp(row.get("last_import_sync")),
            last_export=parse_timestamp(row.get("last_export_sync")),
            last_attendance=parse_timestamp(row.get("last_attendance_sync")),
        )

    def to_row(self) -> dict[str, Any]:
        row: dict[str, Any] = {
            "team_id": self.team_id,
            "spond_group_id": self.group_id,
            "spond_group_name": self.group_name,
            "spond_parent_group_id": self.parent_group_id,
            "spond_parent_group_name": self.parent_group_name,
            "is_subgroup": int(self.is_subgroup),
            "sync_events_import": int(self.import_events),
            "sync_events_export": int(self.export_events),
            "sync_attendance_import": int(self.import_attendance),
            "is_active": int(self.active),
        }
        for sync_field, column in _FIELD_COLUMNS.items():
            row[column] = int(sync_field in self.fields)
        return row

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TeamSyncLink":
        """
        Create a link from a camelCase request body.

        Missing toggles take their defaults: import events and
        attendance on, export off, every field on.
        """
        fields = frozenset(
            f for f, key in _FIELD_PAYLOAD_KEYS.items() if payload.get(key, True)
        )
        is_subgroup = bool(payload.get("isSubgroup", False))
        return cls(
            team_id=int(payload["teamId"]),
            group_id=str(payload["spondGroupId"]),
            group_name=payload.get("spondGroupName") or "",
            parent_group_id=payload.get("spondParentGroupId"),
            parent_group_name=payload.get("spondParentGroupName"),
            is_subgroup=is_subgroup,
            import_events=bool(payload.get("syncEventsImport", True)),
            export_events=bool(payload.get("syncEventsExport", False)),
            import_attendance=bool(payload.get("syncAttendanceImport", True)),
            fields=fields,
            active=bool(payload.get("isActive", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "teamId": self.team_id,
            "teamName": self.team_name,
            "spondGroupId": self.group_id,
            "spondGroupName": self.group_name,
            "spondParentGroupId": self.parent_group_id,
            "spondParentGroupName": self.parent_group_name,
            "isSubgroup": self.is_subgroup,
            "syncEventsImport": self.import_events,
            "syncEventsExport": self.export_events,
            "syncAttendanceImport": self.import_attendance,
            "isActive": self.active,
            "lastImportSync": _iso(self.last_import),
            "lastExportSync": _iso(self.last_export),
            "lastAttendanceSync": _iso(self.last_attendance),
        }
        for sync_field, key in _FIELD_PAYLOAD_KEYS.items():
            data[key] = sync_field in self.fields
        return data


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class TeamLinkRegistry:
    """
    Durable team-to-group links backed by the ``sync_settings`` table.

    Usage:
        registry = TeamLinkRegistry(db)
        registry.upsert_link(TeamSyncLink(team_id=1, group_id="G1"))
        for link in registry.get_active_links(SyncKind.IMPORT):
            ...
        registry.record_sync(1, SyncKind.IMPORT)
    """

    def __init__(self, database: "SyncDatabase"):
        self.database = database

    def get_active_links(self, kind: Optional[SyncKind] = None) -> list[TeamSyncLink]:
        """Active links, optionally only those enabling one kind of sync."""
        links = [
            TeamSyncLink.from_row(row)
            for row in self.database.list_sync_settings(active_only=True)
        ]
        if kind is None:
            return links
        return [link for link in links if link.enabled_for(kind)]

    def get_link(self, team_id: int) -> Optional[TeamSyncLink]:
        """The team's active link, if any."""
        row = self.database.get_sync_settings(team_id, active_only=True)
        return TeamSyncLink.from_row(row) if row else None

    def upsert_link(self, link: TeamSyncLink) -> TeamSyncLink:
        """
        Create or update a link.

        Updating the team's active link to the same group changes its
        policy. A previously deactivated link to the same group is
        reactivated in place, keeping its timestamps.

        Raises:
            LinkConflictError: If the team already has an active link to
                a different group
        """
        current = self.database.get_sync_settings(link.team_id, active_only=True)
        if current and current["spond_group_id"] != link.group_id and link.active:
            raise LinkConflictError(
                f"Team {link.team_id} is already linked to Spond group "
                f"'{current['spond_group_name'] or current['spond_group_id']}'; "
                "unlink it first"
            )

        existing = self.database.get_sync_settings_for_group(
            link.team_id, link.group_id
        )
        values = link.to_row()
        try:
            if existing:
                self.database.update_sync_settings(existing["id"], values)
                settings_id = existing["id"]
            else:
                settings_id = self.database.insert_sync_settings(values)
        except sqlite3.IntegrityError as e:
            # Another writer activated a link for this team in between
            raise LinkConflictError(
                f"Team {link.team_id} already has an active link"
            ) from e

        logger.info(
            f"Linked team {link.team_id} to Spond group {link.display_name} "
            f"(import={link.import_events}, export={link.export_events}, "
            f"attendance={link.import_attendance})"
        )
        row = self.database.get_sync_settings_for_group(link.team_id, link.group_id)
        if row is None:
            return replace(link, id=settings_id)
        return TeamSyncLink.from_row(row)

    def deactivate_link(self, team_id: int) -> bool:
        """
        Soft-unlink a team.

        Returns True if an active link was deactivated.
        """
        deactivated = self.database.deactivate_sync_settings(team_id)
        if deactivated:
            logger.info(f"Unlinked team {team_id}")
        return deactivated

    def record_sync(
        self, team_id: int, kind: SyncKind, timestamp: Optional[datetime] = None
    ) -> None:
        """Set the last-sync timestamp of one kind on the team's active link."""
        when = timestamp or datetime.now(timezone.utc)
        self.database.update_sync_timestamp(
            team_id, _KIND_TIMESTAMP_COLUMNS[kind], when
        )
