"""
SQLite database module for Spond sync state.

Provides persistent storage for teams, events, team-to-group sync links,
per-member attendance, the Spond account configuration and a log of
sync runs. Every write is a single-row statement (or a short batch on
one connection) so an interrupted sync leaves consistent rows behind.
"""

import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

# SQL Schema. Timestamps are ISO 8601 text in UTC.
SCHEMA = """
CREATE TABLE IF NOT EXISTS teams (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    sport TEXT,
    active INTEGER NOT NULL DEFAULT 1,
    imported_from_spond INTEGER NOT NULL DEFAULT 0,
    spond_import_date TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY,
    title TEXT NOT NULL DEFAULT '',
    description TEXT,
    event_type TEXT NOT NULL DEFAULT 'Other',
    start_time TEXT NOT NULL,
    end_time TEXT,
    team_id INTEGER REFERENCES teams(id),
    location TEXT,
    status TEXT NOT NULL DEFAULT 'Planned',
    spond_id TEXT,
    spond_group_id TEXT,
    attendance_accepted INTEGER,
    attendance_declined INTEGER,
    attendance_unanswered INTEGER,
    attendance_waiting INTEGER,
    attendance_unconfirmed INTEGER,
    attendance_last_sync TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_events_spond_id
    ON events(spond_id) WHERE spond_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_time);
CREATE INDEX IF NOT EXISTS idx_events_team ON events(team_id);

CREATE TABLE IF NOT EXISTS sync_settings (
    id INTEGER PRIMARY KEY,
    team_id INTEGER NOT NULL REFERENCES teams(id),
    spond_group_id TEXT NOT NULL,
    spond_group_name TEXT,
    spond_parent_group_id TEXT,
    spond_parent_group_name TEXT,
    is_subgroup INTEGER NOT NULL DEFAULT 0,
    sync_events_import INTEGER NOT NULL DEFAULT 1,
    sync_events_export INTEGER NOT NULL DEFAULT 0,
    sync_attendance_import INTEGER NOT NULL DEFAULT 1,
    sync_event_title INTEGER NOT NULL DEFAULT 1,
    sync_event_description INTEGER NOT NULL DEFAULT 1,
    sync_event_time INTEGER NOT NULL DEFAULT 1,
    sync_event_location INTEGER NOT NULL DEFAULT 1,
    sync_event_type INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_import_sync TEXT,
    last_export_sync TEXT,
    last_attendance_sync TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(team_id, spond_group_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_settings_active_team
    ON sync_settings(team_id) WHERE is_active = 1;

CREATE TABLE IF NOT EXISTS event_participants (
    id INTEGER PRIMARY KEY,
    event_id INTEGER NOT NULL REFERENCES events(id),
    spond_member_id TEXT NOT NULL,
    first_name TEXT,
    last_name TEXT,
    email TEXT,
    response TEXT NOT NULL,
    response_time TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(event_id, spond_member_id)
);

CREATE INDEX IF NOT EXISTS idx_participants_event ON event_participants(event_id);

CREATE TABLE IF NOT EXISTS spond_config (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    username TEXT NOT NULL,
    password TEXT NOT NULL,
    auto_sync INTEGER NOT NULL DEFAULT 0,
    sync_interval_minutes INTEGER NOT NULL DEFAULT 60,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_sync TEXT,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY,
    sync_type TEXT NOT NULL,
    direction TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    imported INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    exported INTEGER NOT NULL DEFAULT 0,
    attendance_updated INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    started_at TEXT NOT NULL,
    completed_at TEXT
);
"""

# Columns callers may write through insert_event / update_event
EVENT_COLUMNS = (
    "title",
    "description",
    "event_type",
    "start_time",
    "end_time",
    "team_id",
    "location",
    "status",
    "spond_id",
    "spond_group_id",
)

# Columns callers may write through insert/update_sync_settings
SYNC_SETTINGS_COLUMNS = (
    "team_id",
    "spond_group_id",
    "spond_group_name",
    "spond_parent_group_id",
    "spond_parent_group_name",
    "is_subgroup",
    "sync_events_import",
    "sync_events_export",
    "sync_attendance_import",
    "sync_event_title",
    "sync_event_description",
    "sync_event_time",
    "sync_event_location",
    "sync_event_type",
    "is_active",
)

SYNC_TIMESTAMP_COLUMNS = ("last_import_sync", "last_export_sync", "last_attendance_sync")


def utc_now_iso() -> str:
    """Current time as stored in the database."""
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _check_columns(values: dict[str, Any], allowed: Iterable[str]) -> None:
    unknown = set(values) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown column(s): {', '.join(sorted(unknown))}")


class SyncDatabase:
    """
    SQLite database manager for events and Spond sync state.

    Provides methods for:
    - Teams and events (the local side of the sync)
    - Team-to-group sync settings and their last-sync timestamps
    - Per-member attendance rows
    - The stored Spond account configuration
    - A log of sync runs

    Usage:
        db = SyncDatabase('/path/to/spond_sync.db')
        db.initialize()

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file, or ':memory:' for in-memory database
        """
        self.db_path = db_path
        self._shared_connection: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a database connection.

        For in-memory databases, returns a shared connection to ensure
        schema persists across operations. For file databases, creates
        a new connection each time.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                # Request handlers may run on worker threads
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
                self._shared_connection.execute("PRAGMA foreign_keys = ON")
            return self._shared_connection

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Commits on success and rolls back on any exception.

        Usage:
            with db.connection() as conn:
                conn.execute("SELECT * FROM events")
        """
        conn = self._get_connection()
        is_shared = self.db_path == ":memory:"
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            if not is_shared:
                conn.close()

    def initialize(self) -> None:
        """Create all tables and indexes if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Team Operations
    # =========================================================================

    def create_team(
        self,
        name: str,
        sport: Optional[str] = None,
        imported_from_spond: bool = False,
    ) -> int:
        """
        Insert a team.

        Returns:
            The new team id
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO teams (name, sport, imported_from_spond, spond_import_date)
                VALUES (?, ?, ?, ?)
                """,
                (
                    name,
                    sport,
                    int(imported_from_spond),
                    utc_now_iso() if imported_from_spond else None,
                ),
            )
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def get_team(self, team_id: int) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM teams WHERE id = ?", (team_id,)
            ).fetchone()
            return dict(row) if row else None

    def list_teams(self, active_only: bool = True) -> list[dict[str, Any]]:
        query = "SELECT * FROM teams"
        if active_only:
            query += " WHERE active = 1"
        query += " ORDER BY name"
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query).fetchall()]

    # =========================================================================
    # Event Operations
    # =========================================================================

    def insert_event(self, values: dict[str, Any]) -> int:
        """
        Insert an event row.

        Args:
            values: Column values (see EVENT_COLUMNS); start_time is required

        Returns:
            The new event id
        """
        _check_columns(values, EVENT_COLUMNS)
        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO events ({', '.join(columns)}) "  # nosec B608
            f"VALUES ({placeholders})"
        )
        with self.connection() as conn:
            cursor = conn.execute(sql, [values[c] for c in columns])
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def update_event(self, event_id: int, changes: dict[str, Any]) -> None:
        """Update the given columns of one event row."""
        if not changes:
            return
        _check_columns(changes, EVENT_COLUMNS)
        assignments = [f"{column} = ?" for column in changes]
        assignments.append("updated_at = ?")
        params = [*changes.values(), utc_now_iso(), event_id]
        sql = f"UPDATE events SET {', '.join(assignments)} WHERE id = ?"  # nosec B608
        with self.connection() as conn:
            conn.execute(sql, params)

    def get_event(self, event_id: int) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE id = ?", (event_id,)
            ).fetchone()
            return dict(row) if row else None

    def get_event_by_spond_id(self, spond_id: str) -> Optional[dict[str, Any]]:
        """Look up the local event linked to a Spond event id."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM events WHERE spond_id = ?", (spond_id,)
            ).fetchone()
            return dict(row) if row else None

    def list_events_in_range(
        self,
        start: datetime,
        end: datetime,
        team_id: Optional[int] = None,
        linked: Optional[bool] = None,
    ) -> list[dict[str, Any]]:
        """
        List events whose start time lies within [start, end].

        Args:
            start: Window start
            end: Window end
            team_id: Restrict to one team
            linked: True for events with a Spond id, False for events
                    without one, None for both
        """
        clauses = ["start_time >= ?", "start_time <= ?"]
        params: list[Any] = [_iso(start), _iso(end)]
        if team_id is not None:
            clauses.append("team_id = ?")
            params.append(team_id)
        if linked is True:
            clauses.append("spond_id IS NOT NULL")
        elif linked is False:
            clauses.append("spond_id IS NULL")

        sql = (
            f"SELECT * FROM events WHERE {' AND '.join(clauses)} "  # nosec B608
            "ORDER BY start_time, id"
        )
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    def update_event_attendance(
        self,
        event_id: int,
        counts: dict[str, int],
        synced_at: Optional[datetime] = None,
    ) -> None:
        """Store attendance summary counts for an event."""
        with self.connection() as conn:
            conn.execute(
                """
                UPDATE events SET
                    attendance_accepted = ?,
                    attendance_declined = ?,
                    attendance_unanswered = ?,
                    attendance_waiting = ?,
                    attendance_unconfirmed = ?,
                    attendance_last_sync = ?
                WHERE id = ?
                """,
                (
                    counts.get("accepted", 0),
                    counts.get("declined", 0),
                    counts.get("unanswered", 0),
                    counts.get("waiting", 0),
                    counts.get("unconfirmed", 0),
                    _iso(synced_at) or utc_now_iso(),
                    event_id,
                ),
            )

    def count_synced_events(self) -> int:
        """Number of events linked to a Spond event."""
        with self.connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM events WHERE spond_id IS NOT NULL"
            ).fetchone()
            return int(row["n"])

    # =========================================================================
    # Participant Operations
    # =========================================================================

    def replace_participants(
        self, event_id: int, participants: list[dict[str, Any]]
    ) -> None:
        """
        Store the member responses for one event.

        Each participant is upserted on (event, member); members no longer
        present in the response are removed.
        """
        now = utc_now_iso()
        member_ids = [p["spond_member_id"] for p in participants]
        with self.connection() as conn:
            for p in participants:
                conn.execute(
                    """
                    INSERT INTO event_participants (
                        event_id, spond_member_id, first_name, last_name,
                        email, response, response_time, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(event_id, spond_member_id) DO UPDATE SET
                        first_name = excluded.first_name,
                        last_name = excluded.last_name,
                        email = excluded.email,
                        response = excluded.response,
                        response_time = excluded.response_time,
                        updated_at = excluded.updated_at
                    """,
                    (
                        event_id,
                        p["spond_member_id"],
                        p.get("first_name"),
                        p.get("last_name"),
                        p.get("email"),
                        p["response"],
                        p.get("response_time"),
                        now,
                    ),
                )
            if member_ids:
                placeholders = ", ".join("?" for _ in member_ids)
                conn.execute(
                    "DELETE FROM event_participants "  # nosec B608
                    f"WHERE event_id = ? AND spond_member_id NOT IN ({placeholders})",
                    [event_id, *member_ids],
                )
            else:
                conn.execute(
                    "DELETE FROM event_participants WHERE event_id = ?", (event_id,)
                )

    def get_participants(self, event_id: int) -> list[dict[str, Any]]:
        with self.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM event_participants
                WHERE event_id = ?
                ORDER BY response, last_name, first_name
                """,
                (event_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    # =========================================================================
    # Sync Settings Operations
    # =========================================================================

    _SETTINGS_SELECT = """
        SELECT s.*, t.name AS team_name
        FROM sync_settings s
        LEFT JOIN teams t ON t.id = s.team_id
    """

    def get_sync_settings(
        self, team_id: int, active_only: bool = True
    ) -> Optional[dict[str, Any]]:
        """
        Get the sync settings row for a team.

        With active_only=False the most recently updated row is returned.
        """
        sql = self._SETTINGS_SELECT + " WHERE s.team_id = ?"
        if active_only:
            sql += " AND s.is_active = 1"
        sql += " ORDER BY s.is_active DESC, s.updated_at DESC LIMIT 1"
        with self.connection() as conn:
            row = conn.execute(sql, (team_id,)).fetchone()
            return dict(row) if row else None

    def get_sync_settings_for_group(
        self, team_id: int, group_id: str
    ) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(
                self._SETTINGS_SELECT
                + " WHERE s.team_id = ? AND s.spond_group_id = ?",
                (team_id, group_id),
            ).fetchone()
            return dict(row) if row else None

    def list_sync_settings(self, active_only: bool = True) -> list[dict[str, Any]]:
        sql = self._SETTINGS_SELECT
        if active_only:
            sql += " WHERE s.is_active = 1"
        sql += " ORDER BY t.name, s.id"
        with self.connection() as conn:
            return [dict(row) for row in conn.execute(sql).fetchall()]

    def insert_sync_settings(self, values: dict[str, Any]) -> int:
        """
        Insert a sync settings row.

        Raises:
            sqlite3.IntegrityError: If the team already has an active row
        """
        _check_columns(values, SYNC_SETTINGS_COLUMNS)
        columns = list(values)
        placeholders = ", ".join("?" for _ in columns)
        sql = (
            f"INSERT INTO sync_settings ({', '.join(columns)}) "  # nosec B608
            f"VALUES ({placeholders})"
        )
        with self.connection() as conn:
            cursor = conn.execute(sql, [values[c] for c in columns])
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def update_sync_settings(self, settings_id: int, changes: dict[str, Any]) -> None:
        if not changes:
            return
        _check_columns(changes, SYNC_SETTINGS_COLUMNS)
        assignments = [f"{column} = ?" for column in changes]
        assignments.append("updated_at = ?")
        params = [*changes.values(), utc_now_iso(), settings_id]
        sql = (
            f"UPDATE sync_settings SET {', '.join(assignments)} "  # nosec B608
            "WHERE id = ?"
        )
        with self.connection() as conn:
            conn.execute(sql, params)

    def deactivate_sync_settings(self, team_id: int) -> bool:
        """
        Mark a team's active sync settings inactive.

        Timestamps are kept. Returns True if a row was deactivated.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_settings SET is_active = 0, updated_at = ?
                WHERE team_id = ? AND is_active = 1
                """,
                (utc_now_iso(), team_id),
            )
            return cursor.rowcount > 0

    def update_sync_timestamp(
        self, team_id: int, column: str, timestamp: datetime
    ) -> bool:
        """
        Set one last-sync timestamp on a team's active settings row.

        Returns True if a row was updated.
        """
        if column not in SYNC_TIMESTAMP_COLUMNS:
            raise ValueError(f"Unknown sync timestamp column: {column}")
        with self.connection() as conn:
            cursor = conn.execute(
                f"UPDATE sync_settings SET {column} = ? "  # nosec B608
                "WHERE team_id = ? AND is_active = 1",
                (_iso(timestamp), team_id),
            )
            return cursor.rowcount > 0

    # =========================================================================
    # Spond Account Configuration
    # =========================================================================

    def get_spond_config(self) -> Optional[dict[str, Any]]:
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM spond_config WHERE id = 1 AND is_active = 1"
            ).fetchone()
            return dict(row) if row else None

    def save_spond_config(
        self,
        username: str,
        password: str,
        auto_sync: bool = False,
        sync_interval_minutes: int = 60,
    ) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO spond_config (
                    id, username, password, auto_sync, sync_interval_minutes,
                    is_active, updated_at
                ) VALUES (1, ?, ?, ?, ?, 1, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username = excluded.username,
                    password = excluded.password,
                    auto_sync = excluded.auto_sync,
                    sync_interval_minutes = excluded.sync_interval_minutes,
                    is_active = 1,
                    updated_at = excluded.updated_at
                """,
                (
                    username,
                    password,
                    int(auto_sync),
                    sync_interval_minutes,
                    utc_now_iso(),
                ),
            )

    def clear_spond_config(self) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM spond_config")

    def update_last_sync(self, timestamp: Optional[datetime] = None) -> None:
        with self.connection() as conn:
            conn.execute(
                "UPDATE spond_config SET last_sync = ? WHERE id = 1",
                (_iso(timestamp) or utc_now_iso(),),
            )

    # =========================================================================
    # Sync Log Operations
    # =========================================================================

    def start_sync_log(self, sync_type: str, direction: str) -> int:
        with self.connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_log (sync_type, direction, status, started_at)
                VALUES (?, ?, 'running', ?)
                """,
                (sync_type, direction, utc_now_iso()),
            )
            return int(cursor.lastrowid)  # type: ignore[arg-type]

    def complete_sync_log(
        self,
        log_id: int,
        status: str,
        counts: dict[str, int],
        error_message: Optional[str] = None,
    ) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                UPDATE sync_log SET
                    status = ?,
                    imported = ?,
                    updated = ?,
                    exported = ?,
                    attendance_updated = ?,
                    error_count = ?,
                    error_message = ?,
                    completed_at = ?
                WHERE id = ?
                """,
                (
                    status,
                    counts.get("imported", 0),
                    counts.get("updated", 0),
                    counts.get("exported", 0),
                    counts.get("attendance_updated", 0),
                    counts.get("errors", 0),
                    error_message,
                    utc_now_iso(),
                    log_id,
                ),
            )

    def list_sync_log(self, limit: int = 20) -> list[dict[str, Any]]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM sync_log ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
            return [dict(row) for row in rows]
