"""
Application service for the Spond integration.

SpondService owns everything a front end (HTTP, CLI, daemon) needs: the
database, the team-link registry, the stored Spond account and the run
lock shared by every sync started through it. The Spond client is built
from the stored account on first use, so credentials are always an
explicit object handed to the client rather than module-level state.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from spond_sync.api.spond_api import SpondAPI, SpondCredentials
from spond_sync.config.settings import AppSettings
from spond_sync.storage.db import SyncDatabase
from spond_sync.sync.attendance import AttendancePipeline
from spond_sync.sync.engine import SyncDirection, SyncEngine, SyncOptions
from spond_sync.sync.event import Attendance, LocalEvent
from spond_sync.sync.exporter import ExportPipeline
from spond_sync.sync.links import TeamLinkRegistry, TeamSyncLink
from spond_sync.sync.preview import PreviewGenerator
from spond_sync.sync.report import SyncReport, SyncWindow
from spond_sync.utils.paths import default_log_dir

logger = logging.getLogger(__name__)

SPORT_FLAG = "Flag Football"
SPORT_TACKLE = "Tackle Football"

# Keys of a link request body that set sync toggles
LINK_TOGGLE_KEYS = (
    "syncEventsImport",
    "syncEventsExport",
    "syncAttendanceImport",
    "syncEventTitle",
    "syncEventDescription",
    "syncEventTime",
    "syncEventLocation",
    "syncEventType",
)


class NotConfiguredError(Exception):
    """Raised when a Spond operation is requested before an account is stored."""

    pass


def guess_sport(name: str, activity: Optional[str] = None) -> str:
    """Flag Football when the group name or activity mentions flag, else Tackle."""
    combined = f"{name} {activity or ''}".lower()
    return SPORT_FLAG if "flag" in combined else SPORT_TACKLE


class SpondService:
    """
    Facade over storage, the Spond client and the sync pipelines.

    Usage:
        service = SpondService(AppSettings.load())
        service.configure("coach@example.com", "secret")
        report = service.sync(service.sync_options("import"))
    """

    def __init__(
        self,
        settings: AppSettings,
        database: Optional[SyncDatabase] = None,
        lock: Optional[threading.Lock] = None,
        api_factory: Optional[Callable[[SpondCredentials], SpondAPI]] = None,
    ):
        self.settings = settings
        if database is None:
            if settings.database_path is None:
                raise ValueError("No database path configured")
            if settings.database_path != ":memory:":
                Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
            database = SyncDatabase(settings.database_path)
        self.database = database
        self.database.initialize()
        self.registry = TeamLinkRegistry(self.database)
        self.lock = lock or threading.Lock()
        self._cancel_event = threading.Event()
        self._api_factory = api_factory or self._default_api
        self._api: Optional[SpondAPI] = None
        self._api_lock = threading.Lock()

    def _default_api(self, credentials: SpondCredentials) -> SpondAPI:
        return SpondAPI(
            credentials,
            base_url=self.settings.api_base_url,
            timeout=self.settings.api_timeout,
            max_events=self.settings.api_max_events,
        )

    # =========================================================================
    # Account configuration
    # =========================================================================

    @property
    def is_configured(self) -> bool:
        return self.database.get_spond_config() is not None

    @property
    def log_dir(self) -> Path:
        if self.settings.log_dir:
            return Path(self.settings.log_dir).expanduser()
        return default_log_dir(self.settings.config_dir)

    @property
    def api(self) -> SpondAPI:
        """
        Client for the stored account, shared by every caller.

        Raises:
            NotConfiguredError: If no account has been configured
        """
        with self._api_lock:
            if self._api is None:
                config = self.database.get_spond_config()
                if config is None:
                    raise NotConfiguredError(
                        "Spond is not configured; run 'configure' first"
                    )
                self._api = self._api_factory(
                    SpondCredentials(config["username"], config["password"])
                )
            return self._api

    def configure(
        self,
        username: str,
        password: str,
        auto_sync: bool = False,
        sync_interval_minutes: int = 60,
    ) -> dict[str, Any]:
        """
        Verify and store Spond credentials.

        Raises:
            RemoteAuthFailure: If Spond rejects the credentials
            RemoteUnavailable: If Spond cannot be reached
        """
        api = self._api_factory(SpondCredentials(username, password))
        api.authenticate()
        self.database.save_spond_config(
            username, password, auto_sync, sync_interval_minutes
        )
        with self._api_lock:
            self._api = api
        logger.info(f"Spond account configured for {username}")
        return {"success": True, "message": "Spond integration configured"}

    def clear_configuration(self) -> None:
        self.database.clear_spond_config()
        with self._api_lock:
            self._api = None
        logger.info("Spond configuration removed")

    def test_connection(
        self, username: Optional[str] = None, password: Optional[str] = None
    ) -> dict[str, Any]:
        """
        Check that Spond accepts a login and lists groups.

        Given credentials are tested without being stored; otherwise the
        stored account is used.
        """
        if username and password:
            api = self._api_factory(SpondCredentials(username, password))
        else:
            api = self.api
        return api.test_connection()

    def status(self) -> dict[str, Any]:
        config = self.database.get_spond_config()
        return {
            "configured": config is not None,
            "connected": self._api is not None and self._api.is_authenticated,
            "username": config["username"] if config else None,
            "autoSync": bool(config["auto_sync"]) if config else False,
            "syncIntervalMinutes": config["sync_interval_minutes"] if config else None,
            "lastSync": config["last_sync"] if config else None,
            "syncedGroups": len(self.registry.get_active_links()),
            "syncedEvents": self.database.count_synced_events(),
            "syncRunning": self.lock.locked(),
            "recentRuns": self.database.list_sync_log(limit=5),
        }

    # =========================================================================
    # Groups and links
    # =========================================================================

    def groups(self) -> list[dict[str, Any]]:
        """Spond groups and subgroups, each with the local team linked to it."""
        linked = {link.group_id: link for link in self.registry.get_active_links()}
        result = []
        for group in self.api.list_groups():
            for item in group.flatten():
                data = item.to_dict()
                link = linked.get(item.id)
                data["linkedTeam"] = (
                    {"teamId": link.team_id, "teamName": link.team_name}
                    if link
                    else None
                )
                result.append(data)
        return result

    def groups_for_import(self) -> list[dict[str, Any]]:
        """Groups and subgroups without an active link."""
        return [g for g in self.groups() if g["linkedTeam"] is None]

    def list_links(self, active_only: bool = True) -> list[TeamSyncLink]:
        return [
            TeamSyncLink.from_row(row)
            for row in self.database.list_sync_settings(active_only=active_only)
        ]

    def get_link(self, team_id: int) -> Optional[TeamSyncLink]:
        return self.registry.get_link(team_id)

    def link_team(self, payload: dict[str, Any]) -> TeamSyncLink:
        """
        Create or update a team's link from a camelCase request body.

        Group names and hierarchy missing from the body are looked up on
        Spond.

        Raises:
            LookupError: If the team or the Spond group does not exist
            LinkConflictError: If the team is linked to another group
        """
        team_id = int(payload["teamId"])
        if self.database.get_team(team_id) is None:
            raise LookupError(f"Team {team_id} not found")

        payload = dict(payload)
        if not payload.get("spondGroupName"):
            group_id = str(payload["spondGroupId"])
            group = self._find_group(group_id)
            if group is None:
                raise LookupError(f"Spond group {group_id} not found")
            payload.update(
                {
                    "spondGroupName": group["name"],
                    "spondParentGroupId": group["parentGroupId"],
                    "spondParentGroupName": group["parentGroupName"],
                    "isSubgroup": group["isSubgroup"],
                }
            )
        return self.registry.upsert_link(TeamSyncLink.from_payload(payload))

    def _find_group(self, group_id: str) -> Optional[dict[str, Any]]:
        for group in self.api.list_groups():
            for item in group.flatten():
                if item.id == group_id:
                    return item.to_dict()
        return None

    def unlink_team(self, team_id: int) -> bool:
        return self.registry.deactivate_link(team_id)

    def import_teams(
        self,
        groups: list[dict[str, Any]],
        sport: Optional[str] = None,
        toggles: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Create a local team and an active link for each Spond group.

        Args:
            groups: Group dicts as returned by groups_for_import()
            sport: Sport for every team; guessed per group when omitted
            toggles: Link toggles (see LINK_TOGGLE_KEYS) applied to every link
        """
        toggles = {k: v for k, v in (toggles or {}).items() if k in LINK_TOGGLE_KEYS}
        imported = []
        for group in groups:
            name = group.get("name") or str(group["id"])
            team_sport = sport or guess_sport(name, group.get("activity"))
            team_id = self.database.create_team(
                name, team_sport, imported_from_spond=True
            )
            link = self.registry.upsert_link(
                TeamSyncLink.from_payload(
                    {
                        **toggles,
                        "teamId": team_id,
                        "spondGroupId": group["id"],
                        "spondGroupName": name,
                        "spondParentGroupId": group.get("parentGroupId"),
                        "spondParentGroupName": group.get("parentGroupName"),
                        "isSubgroup": group.get("isSubgroup", False),
                    }
                )
            )
            logger.info(f"Imported Spond group '{name}' as team {team_id} ({team_sport})")
            imported.append(
                {
                    "teamId": team_id,
                    "teamName": name,
                    "sport": team_sport,
                    "link": link.to_dict(),
                }
            )
        return imported

    # =========================================================================
    # Sync and preview
    # =========================================================================

    def sync_options(
        self,
        direction: str = "both",
        sync_events: bool = True,
        sync_attendance: bool = True,
        days_ahead: Optional[int] = None,
        days_behind: Optional[int] = None,
    ) -> SyncOptions:
        """
        Options for one run; the window defaults come from the settings.

        Raises:
            ValueError: If direction is not import, export or both
        """
        return SyncOptions(
            direction=SyncDirection(direction),
            sync_events=sync_events,
            sync_attendance=sync_attendance,
            days_ahead=self.settings.days_ahead if days_ahead is None else days_ahead,
            days_behind=(
                self.settings.days_behind if days_behind is None else days_behind
            ),
        )

    def window(
        self, days_ahead: Optional[int] = None, days_behind: Optional[int] = None
    ) -> SyncWindow:
        options = self.sync_options(days_ahead=days_ahead, days_behind=days_behind)
        return SyncWindow.around(None, options.days_ahead, options.days_behind)

    def engine(self) -> SyncEngine:
        return SyncEngine(
            self.api,
            self.database,
            registry=self.registry,
            match_config=self.settings.match_config,
            lock=self.lock,
            enable_matching_log=self.settings.verbose,
            matching_log_dir=self.log_dir,
            cancel_event=self._cancel_event,
        )

    def sync(self, options: Optional[SyncOptions] = None) -> SyncReport:
        """
        Run one sync.

        Raises:
            NotConfiguredError: If no account has been configured
            SyncInProgressError: If another sync holds the run lock
        """
        return self.engine().run(options or self.sync_options())

    def cancel_sync(self) -> bool:
        """
        Ask the running sync to stop before its next pipeline step.

        Returns:
            False if no sync was running
        """
        if not self.lock.locked():
            return False
        logger.info("Cancelling the running sync")
        self._cancel_event.set()
        return True

    def preview_import(
        self, days_ahead: Optional[int] = None, days_behind: Optional[int] = None
    ) -> dict[str, Any]:
        engine = self.engine()
        preview = PreviewGenerator(engine.importer, engine.exporter)
        return preview.import_preview(self.window(days_ahead, days_behind))

    def preview_export(
        self, days_ahead: Optional[int] = None, days_behind: Optional[int] = None
    ) -> dict[str, Any]:
        engine = self.engine()
        preview = PreviewGenerator(engine.importer, engine.exporter)
        return preview.export_preview(self.window(days_ahead, days_behind))

    # =========================================================================
    # Single events
    # =========================================================================

    def refresh_event_attendance(self, event_id: int) -> Attendance:
        """
        Refresh attendance of one linked event.

        Raises:
            LookupError: If the event does not exist
            EventValidationError: If the event is not linked to Spond
        """
        pipeline = AttendancePipeline(self.api, self.database, self.registry)
        return pipeline.refresh_event(event_id)

    def participants(self, event_id: int) -> dict[str, Any]:
        """
        Stored attendance of one event.

        Raises:
            LookupError: If the event does not exist
        """
        row = self.database.get_event(event_id)
        if row is None:
            raise LookupError(f"Event {event_id} not found")
        event = LocalEvent.from_row(row)
        return {
            "eventId": event_id,
            "spondId": event.remote_id,
            "summary": event.attendance.to_dict() if event.attendance else None,
            "lastSync": row["attendance_last_sync"],
            "participants": [
                {
                    "memberId": p["spond_member_id"],
                    "firstName": p["first_name"],
                    "lastName": p["last_name"],
                    "email": p["email"],
                    "response": p["response"],
                    "responseTime": p["response_time"],
                }
                for p in self.database.get_participants(event_id)
            ],
        }

    def push_event(self, event_id: int) -> LocalEvent:
        """
        Push a local event's details to its Spond event.

        Raises:
            LookupError: If the event does not exist
            EventNotLinkedError: If the event was never exported
        """
        pipeline = ExportPipeline(
            self.api, self.database, self.registry, self.settings.match_config
        )
        return pipeline.push_update(event_id)
