"""
Spond API client for event synchronization.

Provides a typed interface to the Spond platform for:
- Credential login exchanged for a session token
- Listing groups (with subgroups and members)
- Listing events of one or more groups in a date range
- Creating and updating events
- Fetching attendance responses for an event

The client never retries on its own; retry policy belongs to the
caller. An expired session is re-authenticated once, and a second
consecutive rejection is raised as RemoteAuthFailure.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import requests

from spond_sync.sync.event import (
    Attendance,
    EventValidationError,
    RemoteEvent,
    RemoteGroup,
    to_remote_timestamp,
)

DEFAULT_BASE_URL = "https://api.spond.com/core/v1/"

# Seconds before an individual request is abandoned
DEFAULT_TIMEOUT = 30.0

# Spond caps event listings; ask for enough to cover a sync window
DEFAULT_MAX_EVENTS = 500

# Truncation length for response bodies written to the debug log
_DEBUG_BODY_LIMIT = 500

logger = logging.getLogger(__name__)


class SpondAPIError(Exception):
    """Raised when a Spond API operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailable(SpondAPIError):
    """Raised when Spond cannot be reached, is rate limiting, or returns 5xx."""

    pass


class RemoteAuthFailure(SpondAPIError):
    """Raised when the credentials are rejected or the session cannot be renewed."""

    pass


@dataclass(frozen=True)
class SpondCredentials:
    """Login for the Spond account used by the sync."""

    username: str
    password: str = field(repr=False)


class SpondAPI:
    """
    Spond API wrapper.

    Attributes:
        credentials: Account used to log in
        base_url: API root, ending with a slash
        timeout: Per-request timeout in seconds
        max_events: Maximum events requested per listing

    One client may be shared between threads; logins and session
    renewal are serialized so a rejected token is renewed only once.

    Usage:
        api = SpondAPI(SpondCredentials("coach@example.com", "secret"))
        api.authenticate()

        groups = api.list_groups()
        events = api.list_events_in_range(["G1"], start, end)
        remote_id = api.create_event("G1", payload)
        attendance = api.fetch_attendance(remote_id)
    """

    def __init__(
        self,
        credentials: SpondCredentials,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        max_events: int = DEFAULT_MAX_EVENTS,
        session: Optional[requests.Session] = None,
    ):
        self.credentials = credentials
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.max_events = max_events
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._groups: Optional[list[RemoteGroup]] = None
        self._auth_lock = threading.RLock()

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    # =========================================================================
    # Session
    # =========================================================================

    def authenticate(self) -> None:
        """
        Log in and cache the session token.

        Raises:
            RemoteAuthFailure: If the credentials are rejected
            RemoteUnavailable: If Spond cannot be reached or is rate limiting
            SpondAPIError: For any other failure
        """
        with self._auth_lock:
            self._login()

    def reauthenticate(self) -> None:
        """Drop the cached session and log in again."""
        with self._auth_lock:
            self._token = None
            self._login()

    def _session_token(self) -> Optional[str]:
        """The current token, logging in first if there is none."""
        with self._auth_lock:
            if self._token is None:
                self._login()
            return self._token

    def _renew_session(self, rejected: Optional[str]) -> Optional[str]:
        """Replace a rejected token unless another thread already did."""
        with self._auth_lock:
            if self._token == rejected:
                logger.info("Spond session expired, re-authenticating")
                self._token = None
                self._login()
            return self._token

    def _login(self) -> None:
        logger.debug(f"Logging in to Spond as {self.credentials.username}")
        response = self._send(
            "POST",
            "login",
            json={
                "email": self.credentials.username,
                "password": self.credentials.password,
            },
        )

        if response.status_code in (401, 403):
            self._log_body("login", response)
            raise RemoteAuthFailure(
                "Invalid email or password for Spond", response.status_code
            )
        if response.status_code == 429:
            raise RemoteUnavailable(
                "Too many Spond login attempts; wait a few minutes and try again",
                429,
            )
        self._raise_for_status(response, "Login")

        token = self._json(response, "Login").get("loginToken")
        if not token:
            raise RemoteAuthFailure("Spond login returned no session token")

        self._token = token
        self._groups = None
        logger.info("Authenticated with Spond")

    # =========================================================================
    # Groups
    # =========================================================================

    def list_groups(self) -> list[RemoteGroup]:
        """List every group (with subgroups) the account can see."""
        data = self._request(
            "GET", "groups/", "List groups", params={"includeMembers": "true"}
        )
        groups: list[RemoteGroup] = []
        for item in data or []:
            try:
                groups.append(RemoteGroup.from_api_response(item))
            except EventValidationError as e:
                logger.warning(f"Skipping malformed Spond group: {e}")

        self._groups = groups
        logger.debug(
            f"Retrieved {len(groups)} group(s), "
            f"{sum(len(g.subgroups) for g in groups)} subgroup(s)"
        )
        return groups

    def get_group(self, group_id: str) -> Optional[RemoteGroup]:
        """Find a top-level group by id, loading the group list if needed."""
        if self._groups is None:
            self.list_groups()
        for group in self._groups or []:
            if group.id == group_id:
                return group
        return None

    # =========================================================================
    # Events
    # =========================================================================

    def list_events_in_range(
        self,
        group_ids: Iterable[str],
        start: datetime,
        end: datetime,
        subgroup_id: Optional[str] = None,
    ) -> list[RemoteEvent]:
        """
        List events of the given groups starting within [start, end].

        Malformed events are logged and left out. Events addressed to
        several of the groups are returned once.
        """
        events: dict[str, RemoteEvent] = {}
        for group_id in group_ids:
            params: dict[str, Any] = {
                "GroupId": group_id,
                "minStartTimestamp": to_remote_timestamp(start),
                "maxStartTimestamp": to_remote_timestamp(end),
                "max": self.max_events,
            }
            if subgroup_id:
                params["subgroupId"] = subgroup_id

            data = self._request("GET", "sponds/", "List events", params=params)
            for item in data or []:
                try:
                    event = RemoteEvent.from_api_response(item)
                except EventValidationError as e:
                    logger.warning(f"Skipping malformed Spond event: {e}")
                    continue
                events.setdefault(event.id, event)

        logger.debug(f"Retrieved {len(events)} Spond event(s)")
        return list(events.values())

    def create_event(self, group_id: str, payload: dict[str, Any]) -> str:
        """
        Create an event in a group.

        Args:
            group_id: Group the event is filed under
            payload: Event body (see LocalEvent.to_remote_payload)

        Returns:
            The new Spond event id
        """
        body = dict(payload)
        recipients = dict(body.get("recipients") or {})
        recipients["group"] = {"id": group_id}
        body["recipients"] = recipients

        data = self._request("POST", "sponds", "Create event", json=body)
        remote_id = (data or {}).get("id")
        if not remote_id:
            raise SpondAPIError("Create event returned no event id")

        logger.info(f"Created Spond event {remote_id} in group {group_id}")
        return str(remote_id)

    def update_event(self, remote_id: str, payload: dict[str, Any]) -> None:
        """Apply a partial update to an existing event."""
        # Spond uses POST for updates
        self._request("POST", f"sponds/{remote_id}", "Update event", json=payload)
        logger.info(f"Updated Spond event {remote_id}")

    # =========================================================================
    # Attendance
    # =========================================================================

    def fetch_attendance(self, event_id: str) -> Attendance:
        """
        Fetch member responses for an event.

        Names missing from the responses are filled in from the group's
        member list. An event Spond no longer knows has no attendance.
        """
        data = self._request(
            "GET", f"sponds/{event_id}", "Fetch attendance", missing_ok=True
        )
        if data is None:
            return Attendance()

        members: dict[str, dict[str, Any]] = {}
        group_id = ((data.get("recipients") or {}).get("group") or {}).get("id")
        if group_id:
            group = self.get_group(group_id)
            if group is not None:
                members = group.members

        return Attendance.from_event_response(data, members)

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def test_connection(self) -> dict[str, Any]:
        """
        Log in and list groups.

        Returns:
            {"success": bool, "message": str, "groupCount": int}
        """
        try:
            self.reauthenticate()
            groups = self.list_groups()
        except SpondAPIError as e:
            logger.warning(f"Spond connection test failed: {e}")
            return {"success": False, "message": str(e), "groupCount": 0}

        return {
            "success": True,
            "message": f"Connected successfully. Found {len(groups)} group(s).",
            "groupCount": len(groups),
        }

    # =========================================================================
    # HTTP plumbing
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        missing_ok: bool = False,
    ) -> Any:
        """
        Send an authenticated request and decode its JSON body.

        Logs in first if there is no session. A 401 triggers exactly one
        re-authentication and replay.
        """
        token = self._session_token()
        response = self._send(method, path, params=params, json=json, token=token)
        if response.status_code == 401:
            token = self._renew_session(token)
            response = self._send(method, path, params=params, json=json, token=token)
            if response.status_code == 401:
                with self._auth_lock:
                    if self._token == token:
                        self._token = None
                raise RemoteAuthFailure(
                    f"{operation} rejected after re-authentication", 401
                )

        if missing_ok and response.status_code == 404:
            return None

        self._raise_for_status(response, operation)
        if not response.content:
            return None
        return self._json(response, operation)

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> requests.Response:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return self.session.request(
                method,
                self.base_url + path,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.debug(f"{method} {path} failed: {e}")
            raise RemoteUnavailable(
                f"Cannot reach Spond ({type(e).__name__})"
            ) from e

    def _raise_for_status(self, response: requests.Response, operation: str) -> None:
        status = response.status_code
        if status < 400:
            return

        self._log_body(operation, response)
        if status == 429 or status >= 500:
            raise RemoteUnavailable(f"{operation} failed: Spond returned {status}", status)
        raise SpondAPIError(f"{operation} failed: Spond returned {status}", status)

    def _json(self, response: requests.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            self._log_body(operation, response)
            raise SpondAPIError(f"{operation} returned an unreadable response") from e

    def _log_body(self, operation: str, response: requests.Response) -> None:
        logger.debug(
            f"{operation} response {response.status_code}: "
            f"{response.text[:_DEBUG_BODY_LIMIT]}"
        )
