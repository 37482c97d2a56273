"""
Event data models for Spond synchronization.

Provides normalized representations of both sides of the sync with
methods for:
- Converting Spond API responses into RemoteGroup / RemoteEvent objects
- Converting database rows to and from LocalEvent objects
- Inferring the local event type from Spond's activity category
- Building the create/update payloads sent to Spond
- Summarizing attendance responses into counts
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class EventValidationError(Exception):
    """Raised when an event is missing data required for an operation."""

    pass


class EventType(str, Enum):
    """Local event categories."""

    GAME = "Game"
    PRACTICE = "Practice"
    MEETING = "Meeting"
    OTHER = "Other"


class EventStatus(str, Enum):
    """Lifecycle status of a local event."""

    PLANNED = "Planned"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"


# Status names written by older versions of the events table
_LEGACY_STATUSES = {
    "scheduled": EventStatus.PLANNED,
    "postponed": EventStatus.CANCELLED,
}


# Spond event categories used when creating events
REMOTE_TYPE_MATCH = "MATCH"
REMOTE_TYPE_EVENT = "EVENT"

# Heading keywords checked before the remote category, in order
_HEADING_KEYWORDS: list[tuple[tuple[str, ...], EventType]] = [
    (("practice", "training"), EventType.PRACTICE),
    (("game", "match"), EventType.GAME),
    (("meeting",), EventType.MEETING),
]

_REMOTE_TYPE_MAP = {
    "MATCH": EventType.GAME,
    "TRAINING": EventType.PRACTICE,
    "PRACTICE": EventType.PRACTICE,
    "MEETING": EventType.MEETING,
}

# Attendance response buckets as named by Spond
ATTENDANCE_BUCKETS = ("accepted", "declined", "unanswered", "waiting", "unconfirmed")


def parse_event_type(value: Any) -> EventType:
    """Read a stored event type; empty means Other, case is ignored."""
    if value is None or value == "":
        return EventType.OTHER
    for event_type in EventType:
        if str(value).strip().lower() == event_type.value.lower():
            return event_type
    raise EventValidationError(f"Unknown event type: {value!r}")


def parse_status(value: Any) -> EventStatus:
    """
    Read a stored event status.

    Empty means Planned. Matching ignores case, and the legacy names
    "scheduled" and "postponed" map to Planned and Cancelled.

    Raises:
        EventValidationError: If the value is not a known status
    """
    if value is None or value == "":
        return EventStatus.PLANNED
    key = str(value).strip().lower()
    if key in _LEGACY_STATUSES:
        return _LEGACY_STATUSES[key]
    for status in EventStatus:
        if key == status.value.lower():
            return status
    raise EventValidationError(f"Unknown event status: {value!r}")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts datetime objects, strings with a trailing 'Z' or an explicit
    offset, and naive strings (interpreted as UTC). Returns None for
    empty values.

    Raises:
        EventValidationError: If the value cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise EventValidationError(f"Invalid timestamp: {value!r}") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime for storage (ISO 8601, UTC)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def to_remote_timestamp(value: datetime) -> str:
    """Format a datetime the way Spond expects it (millisecond precision, 'Z')."""
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def infer_event_type(heading: Optional[str], remote_type: Optional[str]) -> EventType:
    """
    Infer the local event type for a Spond event.

    Keywords in the heading win over Spond's category because clubs
    commonly create training sessions as generic events.
    """
    heading_lower = (heading or "").lower()
    for keywords, event_type in _HEADING_KEYWORDS:
        if any(keyword in heading_lower for keyword in keywords):
            return event_type

    return _REMOTE_TYPE_MAP.get((remote_type or "").upper(), EventType.OTHER)


def remote_type_for(event_type: EventType) -> str:
    """Spond category used when exporting a local event of this type."""
    return REMOTE_TYPE_MATCH if event_type == EventType.GAME else REMOTE_TYPE_EVENT


def mirror_cancelled(current: EventStatus, cancelled: bool) -> EventStatus:
    """
    Apply Spond's cancelled flag to a local status.

    A cancelled remote event always cancels locally. An un-cancelled
    remote event re-opens a cancelled local event as Planned and
    otherwise leaves the status alone, so Confirmed survives.
    """
    if cancelled:
        return EventStatus.CANCELLED
    if current == EventStatus.CANCELLED:
        return EventStatus.PLANNED
    return current


# =============================================================================
# Attendance
# =============================================================================


@dataclass
class AttendanceSummary:
    """Per-bucket response counts for one event."""

    accepted: int = 0
    declined: int = 0
    unanswered: int = 0
    waiting: int = 0
    unconfirmed: int = 0

    @property
    def total(self) -> int:
        return (
            self.accepted
            + self.declined
            + self.unanswered
            + self.waiting
            + self.unconfirmed
        )

    @classmethod
    def from_responses(cls, responses: Optional[dict[str, Any]]) -> "AttendanceSummary":
        """
        Count the members in each bucket of a Spond ``responses`` object.

        Both member-object lists (``accepted``) and id lists
        (``acceptedIds``) are understood.
        """
        responses = responses or {}
        counts = {}
        for bucket in ATTENDANCE_BUCKETS:
            members = responses.get(bucket)
            if members is None:
                members = responses.get(f"{bucket}Ids")
            counts[bucket] = len(members) if isinstance(members, list) else 0
        return cls(**counts)

    def to_dict(self) -> dict[str, int]:
        return {
            "accepted": self.accepted,
            "declined": self.declined,
            "unanswered": self.unanswered,
            "waiting": self.waiting,
            "unconfirmed": self.unconfirmed,
            "total": self.total,
        }


@dataclass
class AttendanceRecord:
    """One member's response to an event."""

    member_id: str
    response: str
    first_name: str = "Unknown"
    last_name: str = ""
    email: Optional[str] = None
    response_time: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "memberId": self.member_id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "response": self.response,
            "responseTime": format_timestamp(self.response_time),
        }


@dataclass
class Attendance:
    """Attendance for one remote event: counts plus per-member responses."""

    summary: AttendanceSummary = field(default_factory=AttendanceSummary)
    records: list[AttendanceRecord] = field(default_factory=list)

    @classmethod
    def from_event_response(
        cls,
        event: dict[str, Any],
        members: Optional[dict[str, dict[str, Any]]] = None,
    ) -> "Attendance":
        """
        Build attendance from a single-event API response.

        Args:
            event: Event payload including its ``responses`` object
            members: Optional member lookup (id -> member dict) used to
                     fill in names the response entries leave out
        """
        members = members or {}
        responses = event.get("responses") or {}
        records: list[AttendanceRecord] = []

        for bucket in ATTENDANCE_BUCKETS:
            entries = responses.get(bucket)
            if entries is None:
                entries = responses.get(f"{bucket}Ids") or []

            for entry in entries:
                if isinstance(entry, str):
                    entry = {"id": entry}
                member_id = entry.get("id")
                if not member_id:
                    continue
                known = members.get(member_id, {})
                records.append(
                    AttendanceRecord(
                        member_id=member_id,
                        response=bucket,
                        first_name=entry.get("firstName")
                        or known.get("firstName")
                        or "Unknown",
                        last_name=entry.get("lastName") or known.get("lastName") or "",
                        email=entry.get("email") or known.get("email"),
                        response_time=parse_timestamp(entry.get("respondedTime")),
                    )
                )

        summary = AttendanceSummary(
            **{
                bucket: sum(1 for r in records if r.response == bucket)
                for bucket in ATTENDANCE_BUCKETS
            }
        )
        return cls(summary=summary, records=records)


# =============================================================================
# Remote (Spond) models
# =============================================================================


@dataclass
class RemoteGroup:
    """
    A Spond group or subgroup.

    Subgroups carry their parent's id and name so a flattened list can
    be presented and linked without losing the hierarchy.
    """

    id: str
    name: str
    activity: Optional[str] = None
    member_count: int = 0
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None
    subgroups: list["RemoteGroup"] = field(default_factory=list)
    members: dict[str, dict[str, Any]] = field(default_factory=dict, repr=False)

    @property
    def is_subgroup(self) -> bool:
        return self.parent_id is not None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteGroup":
        """
        Create a RemoteGroup (with its subgroups) from a Spond group payload.

        Example API response structure::

            {
                'id': 'G1', 'name': 'Lions Club', 'activity': 'football',
                'members': [{'id': 'M1', 'firstName': 'Ann', ...}],
                'subGroups': [{'id': 'S1', 'name': 'U12', 'members': ['M1']}]
            }
        """
        if not data.get("id"):
            raise EventValidationError("Group payload without id")

        members = {
            m["id"]: m
            for m in data.get("members") or []
            if isinstance(m, dict) and m.get("id")
        }
        group = cls(
            id=data["id"],
            name=data.get("name") or "",
            activity=data.get("activity"),
            member_count=len(data.get("members") or []),
            members=members,
        )
        for sub in data.get("subGroups") or []:
            if not sub.get("id"):
                continue
            group.subgroups.append(
                cls(
                    id=sub["id"],
                    name=sub.get("name") or "",
                    activity=group.activity,
                    member_count=len(sub.get("members") or []),
                    parent_id=group.id,
                    parent_name=group.name,
                )
            )
        return group

    def flatten(self) -> list["RemoteGroup"]:
        """This group followed by its subgroups."""
        return [self, *self.subgroups]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "activity": self.activity,
            "memberCount": self.member_count,
            "isSubgroup": self.is_subgroup,
            "parentGroupId": self.parent_id,
            "parentGroupName": self.parent_name,
        }


@dataclass
class RemoteEvent:
    """
    Normalized Spond event.

    Attributes:
        id: Spond event id
        heading: Event title on Spond
        start: Start time (aware UTC)
        end: End time (aware UTC), optional
        group_id: Recipient group id
        subgroup_ids: Recipient subgroup ids (may be empty)
        cancelled: Spond's cancelled flag
        remote_type: Spond category (EVENT, MATCH, ...)
        attendance: Response counts when the payload included them
    """

    id: str
    heading: str
    start: datetime
    end: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    subgroup_ids: list[str] = field(default_factory=list)
    subgroup_names: list[str] = field(default_factory=list)
    cancelled: bool = False
    remote_type: Optional[str] = None
    attendance: Optional[AttendanceSummary] = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RemoteEvent":
        """
        Create a RemoteEvent from a Spond event payload.

        Raises:
            EventValidationError: If the id or start time is missing
        """
        event_id = data.get("id")
        if not event_id:
            raise EventValidationError("Event payload without id")

        start = parse_timestamp(data.get("startTimestamp"))
        if start is None:
            raise EventValidationError(f"Event {event_id} has no start time")

        location_data = data.get("location") or {}
        location = location_data.get("address") or location_data.get("feature")

        recipients = data.get("recipients") or {}
        group = recipients.get("group") or {}
        subgroups = [s for s in recipients.get("subGroups") or [] if s.get("id")]

        responses = data.get("responses")
        return cls(
            id=event_id,
            heading=data.get("heading") or "",
            description=data.get("description") or None,
            start=start,
            end=parse_timestamp(data.get("endTimestamp")),
            location=location or None,
            group_id=group.get("id"),
            group_name=group.get("name"),
            subgroup_ids=[s["id"] for s in subgroups],
            subgroup_names=[s.get("name") or "" for s in subgroups],
            cancelled=bool(data.get("cancelled", False)),
            remote_type=data.get("type") or data.get("spilesType"),
            attendance=AttendanceSummary.from_responses(responses)
            if responses
            else None,
        )

    @property
    def local_event_type(self) -> EventType:
        return infer_event_type(self.heading, self.remote_type)

    @property
    def local_status(self) -> EventStatus:
        return EventStatus.CANCELLED if self.cancelled else EventStatus.PLANNED

    def targets_group(self, group_id: str) -> bool:
        """True if the event is addressed to the group or one of its subgroups."""
        return group_id == self.group_id or group_id in self.subgroup_ids

    def group_names(self) -> list[str]:
        """Names of every recipient group, subgroups first."""
        return [n for n in [*self.subgroup_names, self.group_name or ""] if n]

    def to_dict(self) -> dict[str, Any]:
        return {
            "spondId": self.id,
            "heading": self.heading,
            "description": self.description,
            "startTime": format_timestamp(self.start),
            "endTime": format_timestamp(self.end),
            "location": self.location,
            "groupId": self.group_id,
            "groupName": self.group_name,
            "subgroupIds": list(self.subgroup_ids),
            "cancelled": self.cancelled,
            "eventType": self.local_event_type.value,
            "attendance": self.attendance.to_dict() if self.attendance else None,
        }


# =============================================================================
# Local model
# =============================================================================

@dataclass
class LocalEvent:
    """
    Event owned by the club database.

    ``remote_id`` is set once the event has been exported to Spond or
    imported from it; an event with a remote id is never exported again.
    The attendance summary is only ever written by import.
    """

    title: str
    start: datetime
    event_type: EventType = EventType.OTHER
    end: Optional[datetime] = None
    description: Optional[str] = None
    team_id: Optional[int] = None
    location: Optional[str] = None
    status: EventStatus = EventStatus.PLANNED
    remote_id: Optional[str] = None
    remote_group_id: Optional[str] = None
    attendance: Optional[AttendanceSummary] = None
    attendance_last_sync: Optional[datetime] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "LocalEvent":
        """
        Create a LocalEvent from an ``events`` table row.

        Raises:
            EventValidationError: If the row has no usable start time or
                an unknown type or status
        """
        start = parse_timestamp(row.get("start_time"))
        if start is None:
            raise EventValidationError(f"Event {row.get('id')} has no start time")
        attendance = None
        if row.get("attendance_last_sync") is not None:
            attendance = AttendanceSummary(
                accepted=row.get("attendance_accepted") or 0,
                declined=row.get("attendance_declined") or 0,
                unanswered=row.get("attendance_unanswered") or 0,
                waiting=row.get("attendance_waiting") or 0,
                unconfirmed=row.get("attendance_unconfirmed") or 0,
            )
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            description=row.get("description"),
            event_type=parse_event_type(row.get("event_type")),
            start=start,
            end=parse_timestamp(row.get("end_time")),
            team_id=row.get("team_id"),
            location=row.get("location"),
            status=parse_status(row.get("status")),
            remote_id=row.get("spond_id"),
            remote_group_id=row.get("spond_group_id"),
            attendance=attendance,
            attendance_last_sync=parse_timestamp(row.get("attendance_last_sync")),
        )

    def to_row(self) -> dict[str, Any]:
        """Column values for the ``events`` table (attendance excluded)."""
        return {
            "title": self.title,
            "description": self.description,
            "event_type": self.event_type.value,
            "start_time": format_timestamp(self.start),
            "end_time": format_timestamp(self.end),
            "team_id": self.team_id,
            "location": self.location,
            "status": self.status.value,
            "spond_id": self.remote_id,
            "spond_group_id": self.remote_group_id,
        }

    @classmethod
    def from_remote(
        cls, remote: RemoteEvent, team_id: Optional[int], group_id: str
    ) -> "LocalEvent":
        """New local event carrying every attribute of a remote event."""
        return cls(
            title=remote.heading,
            description=remote.description,
            event_type=remote.local_event_type,
            start=remote.start,
            end=remote.end,
            team_id=team_id,
            location=remote.location,
            status=remote.local_status,
            remote_id=remote.id,
            remote_group_id=group_id,
        )

    @property
    def heading(self) -> str:
        """Title used on Spond: title, else first description line, else type."""
        if self.title:
            return self.title
        if self.description:
            first_line = self.description.split("\n")[0].strip()
            if first_line:
                return first_line
        return f"{self.event_type.value} Event"

    def validate_for_export(self) -> None:
        """
        Check the event carries everything Spond requires.

        Raises:
            EventValidationError: If the end time is missing or not after start
        """
        if self.end is None:
            raise EventValidationError("Event has no end time")
        if self.end <= self.start:
            raise EventValidationError("Event end time is not after its start time")

    def to_remote_payload(
        self, group_id: str, subgroup_ids: Optional[list[str]] = None
    ) -> dict[str, Any]:
        """Build the Spond create payload for this event."""
        self.validate_for_export()
        recipients: dict[str, Any] = {"group": {"id": group_id}}
        if subgroup_ids:
            recipients["subGroups"] = [{"id": sid} for sid in subgroup_ids]

        payload: dict[str, Any] = {
            "heading": self.heading,
            "description": self.description or "",
            "spilesType": remote_type_for(self.event_type),
            "startTimestamp": to_remote_timestamp(self.start),
            "endTimestamp": to_remote_timestamp(self.end),  # type: ignore[arg-type]
            "recipients": recipients,
            "autoAccept": False,
        }
        if self.location:
            payload["location"] = {"address": self.location}
        return payload

    def to_remote_update(self) -> dict[str, Any]:
        """Build the partial Spond update payload for this event."""
        payload: dict[str, Any] = {
            "heading": self.heading,
            "description": self.description or "",
            "startTimestamp": to_remote_timestamp(self.start),
            "cancelled": self.status == EventStatus.CANCELLED,
        }
        if self.end is not None:
            payload["endTimestamp"] = to_remote_timestamp(self.end)
        if self.location:
            payload["location"] = {"address": self.location}
        return payload

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "heading": self.heading,
            "description": self.description,
            "eventType": self.event_type.value,
            "startTime": format_timestamp(self.start),
            "endTime": format_timestamp(self.end),
            "teamId": self.team_id,
            "location": self.location,
            "status": self.status.value,
            "spondId": self.remote_id,
            "spondGroupId": self.remote_group_id,
            "attendance": self.attendance.to_dict() if self.attendance else None,
        }
