"""
Command-line interface for spond_sync.

Provides CLI commands to configure the Spond account, link teams to
Spond groups, preview and run syncs, serve the HTTP API and run the
automatic sync daemon.

Usage:
    # Show help
    spond-sync --help

    # Store the Spond account
    spond-sync configure --username coach@example.com

    # Link a team and sync
    spond-sync link 3 GROUP_ID --export
    spond-sync preview import
    spond-sync sync --direction both
"""

import sqlite3
import sys
from pathlib import Path
from typing import NoReturn

import click

from spond_sync import __version__
from spond_sync.api.spond_api import SpondAPIError
from spond_sync.cli.formatters import (
    echo_json,
    show_export_preview,
    show_groups,
    show_import_preview,
    show_links,
    show_report,
)
from spond_sync.config import AppSettings, ConfigError, ConfigLoader
from spond_sync.service import NotConfiguredError, SpondService
from spond_sync.sync.engine import SyncInProgressError
from spond_sync.sync.event import EventValidationError
from spond_sync.sync.exporter import EventNotLinkedError
from spond_sync.sync.links import LinkConflictError, SyncField
from spond_sync.utils import resolve_config_dir
from spond_sync.utils.paths import default_log_dir
from spond_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging

# Failures reported as a red message and exit status 1
COMMAND_ERRORS = (
    NotConfiguredError,
    SpondAPIError,
    SyncInProgressError,
    LinkConflictError,
    EventValidationError,
    EventNotLinkedError,
    LookupError,
    ValueError,
    sqlite3.Error,
)

FIELD_NAMES = [f.value for f in SyncField]


def _fail(message: str) -> NoReturn:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)
    sys.exit(1)


def get_service(ctx: click.Context) -> SpondService:
    """The command's SpondService, created on first use."""
    if "service" not in ctx.obj:
        ctx.obj["service"] = SpondService(ctx.obj["settings"])
    return ctx.obj["service"]


@click.group()
@click.version_option(version=__version__, prog_name="spond-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="SPOND_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.spond-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="SPOND_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Two-way event sync between the club database and Spond.

    Imports Spond events and attendance for linked teams, exports local
    events to Spond, and warns about probable duplicates.
    """
    ctx.ensure_object(dict)
    resolved_config_dir = resolve_config_dir(config_dir)
    ctx.obj["config_dir"] = resolved_config_dir

    config = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir, config_file=config_file)
        config = loader.load_and_validate()
    except ConfigError as e:
        # The CLI still works on defaults
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = AppSettings.from_dict(config, config_dir=resolved_config_dir)
    settings.verbose = verbose or settings.verbose
    ctx.obj["settings"] = settings
    ctx.obj["verbose"] = settings.verbose

    log_dir = (
        Path(settings.log_dir).expanduser()
        if settings.log_dir
        else default_log_dir(settings.config_dir)
    )
    setup_logging(verbose=settings.verbose, log_dir=log_dir, enable_file_logging=True)
    if settings.log_retention_count > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Account Commands
# =============================================================================


@cli.command("configure")
@click.option("--username", "-u", help="Spond login (email address).")
@click.option("--password", "-p", help="Spond password (prompted when omitted).")
@click.option(
    "--auto-sync/--no-auto-sync",
    default=False,
    help="Let the daemon sync at the stored interval.",
)
@click.option(
    "--interval-minutes",
    type=click.IntRange(min=1),
    default=60,
    show_default=True,
    help="Automatic sync interval in minutes.",
)
@click.option("--clear", is_flag=True, help="Remove the stored Spond account.")
@click.pass_context
def configure_command(
    ctx: click.Context,
    username: str | None,
    password: str | None,
    auto_sync: bool,
    interval_minutes: int,
    clear: bool,
) -> None:
    """
    Store the Spond account used for syncing.

    The credentials are verified with Spond before they are saved.

    Examples:

        spond-sync configure --username coach@example.com

        spond-sync configure --clear
    """
    service = get_service(ctx)

    if clear:
        service.clear_configuration()
        click.echo(click.style("Spond configuration removed.", fg="green"))
        return

    if not username:
        username = click.prompt("Spond username")
    if not password:
        password = click.prompt("Spond password", hide_input=True)

    try:
        service.configure(username, password, auto_sync, interval_minutes)
    except COMMAND_ERRORS as e:
        _fail(str(e))
    click.echo(click.style(f"Spond account {username} configured.", fg="green"))


@cli.command("test")
@click.pass_context
def test_command(ctx: click.Context) -> None:
    """Check that the stored Spond account can log in and list groups."""
    try:
        result = get_service(ctx).test_connection()
    except COMMAND_ERRORS as e:
        _fail(str(e))

    if result["success"]:
        click.echo(click.style(result["message"], fg="green"))
    else:
        _fail(result["message"])


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def status_command(ctx: click.Context, as_json: bool) -> None:
    """Show configuration, link and last-sync status."""
    settings: AppSettings = ctx.obj["settings"]
    try:
        status = get_service(ctx).status()
    except COMMAND_ERRORS as e:
        _fail(str(e))

    if as_json:
        echo_json(status)
        return

    click.echo(f"spond-sync v{__version__}")
    click.echo(f"Config directory: {settings.config_dir}")
    click.echo(f"Database: {settings.database_path}")
    click.echo()

    if status["configured"]:
        click.echo(f"Spond account: {click.style(status['username'], fg='green')}")
        auto = (
            f"every {status['syncIntervalMinutes']} min"
            if status["autoSync"]
            else "off"
        )
        click.echo(f"Automatic sync: {auto}")
    else:
        click.echo(f"Spond account: {click.style('Not configured', fg='red')}")

    click.echo(f"Linked teams: {status['syncedGroups']}")
    click.echo(f"Events linked to Spond: {status['syncedEvents']}")
    click.echo(f"Last sync: {status['lastSync'] or 'never'}")

    if status["recentRuns"]:
        click.echo("\nRecent runs:")
        for run in status["recentRuns"]:
            click.echo(
                f"  {run['started_at'][:19]}  {run['direction']:<6} {run['status']:<8} "
                f"+{run['imported']} ~{run['updated']} ^{run['exported']} "
                f"attendance {run['attendance_updated']}, errors {run['error_count']}"
            )


# =============================================================================
# Group and Link Commands
# =============================================================================


@cli.command("groups")
@click.option("--unlinked", is_flag=True, help="Only groups without a linked team.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def groups_command(ctx: click.Context, unlinked: bool, as_json: bool) -> None:
    """List Spond groups and subgroups."""
    service = get_service(ctx)
    try:
        groups = service.groups_for_import() if unlinked else service.groups()
    except COMMAND_ERRORS as e:
        _fail(str(e))

    if as_json:
        echo_json(groups)
    else:
        show_groups(groups)


@cli.command("links")
@click.option("--all", "show_all", is_flag=True, help="Include inactive links.")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def links_command(ctx: click.Context, show_all: bool, as_json: bool) -> None:
    """List team-to-group links."""
    links = [
        link.to_dict() for link in get_service(ctx).list_links(active_only=not show_all)
    ]
    if as_json:
        echo_json(links)
    else:
        show_links(links)


@cli.command("link")
@click.argument("team_id", type=int)
@click.argument("group_id")
@click.option("--import/--no-import", "import_events", default=True,
              help="Import Spond events for this team.")
@click.option("--export/--no-export", "export_events", default=False,
              help="Export this team's events to Spond.")
@click.option("--attendance/--no-attendance", default=True,
              help="Import attendance for this team's events.")
@click.option(
    "--fields",
    default=",".join(FIELD_NAMES),
    show_default=True,
    help="Comma-separated event fields updated by import.",
)
@click.pass_context
def link_command(
    ctx: click.Context,
    team_id: int,
    group_id: str,
    import_events: bool,
    export_events: bool,
    attendance: bool,
    fields: str,
) -> None:
    """
    Link TEAM_ID to the Spond group or subgroup GROUP_ID.

    Examples:

        spond-sync link 3 8A1C2F --export

        spond-sync link 3 8A1C2F --fields title,time
    """
    selected = {f.strip() for f in fields.split(",") if f.strip()}
    unknown = selected - set(FIELD_NAMES)
    if unknown:
        _fail(
            f"Unknown field(s): {', '.join(sorted(unknown))}. "
            f"Use: {', '.join(FIELD_NAMES)}"
        )

    payload = {
        "teamId": team_id,
        "spondGroupId": group_id,
        "syncEventsImport": import_events,
        "syncEventsExport": export_events,
        "syncAttendanceImport": attendance,
    }
    for name in FIELD_NAMES:
        payload[f"syncEvent{name.capitalize()}"] = name in selected

    try:
        link = get_service(ctx).link_team(payload)
    except COMMAND_ERRORS as e:
        _fail(str(e))
    click.echo(
        click.style(f"Linked team {team_id} to {link.display_name}.", fg="green")
    )


@cli.command("unlink")
@click.argument("team_id", type=int)
@click.pass_context
def unlink_command(ctx: click.Context, team_id: int) -> None:
    """Deactivate TEAM_ID's Spond link (sync history is kept)."""
    if get_service(ctx).unlink_team(team_id):
        click.echo(click.style(f"Unlinked team {team_id}.", fg="green"))
    else:
        _fail(f"Team {team_id} has no active Spond link")


@cli.command("import-teams")
@click.argument("group_ids", nargs=-1)
@click.option("--all", "import_all", is_flag=True, help="Import every unlinked group.")
@click.option("--sport", help="Sport for the new teams (guessed when omitted).")
@click.option("--export/--no-export", "export_events", default=False,
              help="Enable export on the new links.")
@click.pass_context
def import_teams_command(
    ctx: click.Context,
    group_ids: tuple[str, ...],
    import_all: bool,
    sport: str | None,
    export_events: bool,
) -> None:
    """
    Create local teams from unlinked Spond groups.

    Examples:

        spond-sync import-teams 8A1C2F 9B3D4E

        spond-sync import-teams --all --sport "Flag Football"
    """
    if not group_ids and not import_all:
        _fail("Give one or more GROUP_IDS or --all")

    service = get_service(ctx)
    try:
        available = service.groups_for_import()
        if import_all:
            selected = available
        else:
            by_id = {g["id"]: g for g in available}
            missing = [gid for gid in group_ids if gid not in by_id]
            if missing:
                _fail(f"Not an unlinked Spond group: {', '.join(missing)}")
            selected = [by_id[gid] for gid in group_ids]

        teams = service.import_teams(
            selected, sport=sport, toggles={"syncEventsExport": export_events}
        )
    except COMMAND_ERRORS as e:
        _fail(str(e))

    for team in teams:
        click.echo(f"  + {team['teamName']} ({team['sport']}) -> team {team['teamId']}")
    click.echo(click.style(f"Imported {len(teams)} team(s).", fg="green"))


# =============================================================================
# Sync Commands
# =============================================================================


def _window_options(func):
    func = click.option(
        "--days-behind",
        type=click.IntRange(min=0),
        default=None,
        help="Days before today to include (default from config, 7).",
    )(func)
    func = click.option(
        "--days-ahead",
        type=click.IntRange(min=0),
        default=None,
        help="Days after today to include (default from config, 60).",
    )(func)
    return func


@cli.command("preview")
@click.argument("direction", type=click.Choice(["import", "export"]))
@_window_options
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def preview_command(
    ctx: click.Context,
    direction: str,
    days_ahead: int | None,
    days_behind: int | None,
    as_json: bool,
) -> None:
    """Show what an import or export would do, without writing anything."""
    service = get_service(ctx)
    try:
        if direction == "import":
            preview = service.preview_import(days_ahead, days_behind)
        else:
            preview = service.preview_export(days_ahead, days_behind)
    except COMMAND_ERRORS as e:
        _fail(str(e))

    if as_json:
        echo_json(preview)
    elif direction == "import":
        show_import_preview(preview)
    else:
        show_export_preview(preview)


@cli.command("sync")
@click.option(
    "--direction",
    "-d",
    type=click.Choice(["import", "export", "both"]),
    default="both",
    show_default=True,
)
@click.option("--events/--no-events", default=True, help="Sync events.")
@click.option("--attendance/--no-attendance", default=True, help="Import attendance.")
@_window_options
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON.")
@click.pass_context
def sync_command(
    ctx: click.Context,
    direction: str,
    events: bool,
    attendance: bool,
    days_ahead: int | None,
    days_behind: int | None,
    as_json: bool,
) -> None:
    """
    Run a sync for every linked team.

    Exits with status 1 when the run recorded errors.

    Examples:

        spond-sync sync

        spond-sync sync --direction import --no-attendance --days-ahead 14
    """
    service = get_service(ctx)
    try:
        options = service.sync_options(
            direction, events, attendance, days_ahead, days_behind
        )
        report = service.sync(options).to_dict()
    except COMMAND_ERRORS as e:
        _fail(str(e))

    if as_json:
        echo_json(report)
    else:
        show_report(report)
    if not report["success"]:
        sys.exit(1)


@cli.command("attendance")
@click.argument("event_id", type=int, required=False)
@_window_options
@click.pass_context
def attendance_command(
    ctx: click.Context,
    event_id: int | None,
    days_ahead: int | None,
    days_behind: int | None,
) -> None:
    """
    Import attendance from Spond.

    With EVENT_ID only that event is refreshed; otherwise every linked
    event in the window of attendance-enabled teams.
    """
    service = get_service(ctx)
    try:
        if event_id is not None:
            attendance = service.refresh_event_attendance(event_id)
            summary = attendance.summary
            click.echo(
                f"Event {event_id}: {summary.accepted} accepted, "
                f"{summary.declined} declined, {summary.unanswered} unanswered, "
                f"{summary.waiting} waiting, {summary.unconfirmed} unconfirmed"
            )
            return

        options = service.sync_options(
            "import",
            sync_events=False,
            sync_attendance=True,
            days_ahead=days_ahead,
            days_behind=days_behind,
        )
        report = service.sync(options).to_dict()
    except COMMAND_ERRORS as e:
        _fail(str(e))

    show_report(report)
    if not report["success"]:
        sys.exit(1)


# =============================================================================
# Server Command
# =============================================================================


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default from config).")
@click.option("--port", type=int, default=None, help="Port (default from config).")
@click.pass_context
def serve_command(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve the /api/spond HTTP API."""
    import uvicorn

    from spond_sync.web.app import create_app

    settings: AppSettings = ctx.obj["settings"]
    if not settings.api_tokens:
        click.echo(
            click.style(
                "Warning: no api_tokens configured; every API request will be "
                "rejected.",
                fg="yellow",
            ),
            err=True,
        )

    app = create_app(get_service(ctx))
    uvicorn.run(app, host=host or settings.host, port=port or settings.port)


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage the automatic sync daemon.

    Examples:

        spond-sync daemon start --interval 30m

        spond-sync daemon status

        spond-sync daemon stop
    """
    pass


def _pid_file(ctx: click.Context) -> Path:
    from spond_sync.daemon.scheduler import DEFAULT_PID_FILE_NAME

    return ctx.obj["config_dir"] / DEFAULT_PID_FILE_NAME


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help=(
        "Sync interval (e.g. '30m', '1h'). Defaults to the stored automatic "
        "sync interval, then the config value, then '1h'."
    ),
)
@click.option("--no-initial-sync", is_flag=True, help="Skip the sync on startup.")
@click.pass_context
def daemon_start_command(
    ctx: click.Context, interval: str | None, no_initial_sync: bool
) -> None:
    """
    Run syncs in the foreground until SIGTERM or Ctrl+C.

    Each cycle syncs both directions with the configured window.
    """
    from spond_sync.daemon import DaemonError, DaemonScheduler, parse_interval

    logger = get_logger(__name__)
    settings: AppSettings = ctx.obj["settings"]
    service = get_service(ctx)

    if interval is None:
        stored = service.database.get_spond_config()
        if stored and stored["auto_sync"]:
            interval = f"{stored['sync_interval_minutes']}m"
        else:
            interval = settings.daemon_interval

    try:
        seconds = parse_interval(interval)
    except ValueError as e:
        _fail(str(e))

    if not service.is_configured:
        _fail("Spond is not configured; run 'configure' first")

    scheduler = DaemonScheduler(
        lambda: service.sync(service.sync_options()),
        interval=seconds,
        pid_file=_pid_file(ctx),
        run_immediately=not no_initial_sync,
        cancel_sync=service.cancel_sync,
    )
    click.echo(f"Starting daemon with {interval} sync interval (Ctrl+C to stop)")
    try:
        scheduler.run()
    except DaemonError as e:
        logger.error(f"Daemon failed: {e}")
        _fail(str(e))

    stats = scheduler.stats
    click.echo(
        f"Daemon stopped after {stats.cycles} cycle(s): {stats.succeeded} ok, "
        f"{stats.partial} partial, {stats.failed} failed, {stats.skipped} skipped"
    )


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """Show whether the daemon is running."""
    from spond_sync.daemon import DaemonScheduler, PIDFileError

    try:
        pid = DaemonScheduler.get_running_pid(_pid_file(ctx))
    except PIDFileError as e:
        _fail(str(e))

    if pid is None:
        click.echo(f"Daemon: {click.style('Not running', fg='yellow')}")
    else:
        click.echo(f"Daemon: {click.style(f'Running (PID {pid})', fg='green')}")


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """Stop the running daemon."""
    from spond_sync.daemon import DaemonScheduler, PIDFileError

    try:
        stopped = DaemonScheduler.stop_running_daemon(_pid_file(ctx))
    except PIDFileError as e:
        _fail(str(e))

    if stopped:
        click.echo(click.style("Stop signal sent to daemon.", fg="green"))
    else:
        _fail("No running daemon found")
