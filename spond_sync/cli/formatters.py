"""CLI output formatting functions.

This module contains functions for displaying sync reports, previews,
groups and links on the command line.
"""

import json
from typing import Any

import click

# Items shown per section before collapsing into "... and N more"
MAX_LISTED = 10


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _echo_limited(lines: list[str]) -> None:
    for line in lines[:MAX_LISTED]:
        click.echo(line)
    if len(lines) > MAX_LISTED:
        click.echo(f"  ... and {len(lines) - MAX_LISTED} more")


def _echo_issues(title: str, issues: list[dict[str, Any]], color: str) -> None:
    if not issues:
        return
    click.echo(click.style(f"\n{title} ({len(issues)}):", fg=color))
    lines = []
    for issue in issues:
        context = issue.get("context") or {}
        where = context.get("team") or context.get("eventId") or context.get("spondId")
        prefix = f"[{where}] " if where else ""
        lines.append(f"  - {prefix}{issue['message']}")
    _echo_limited(lines)


def show_report(report: dict[str, Any]) -> None:
    """
    Display a sync report.

    Args:
        report: SyncReport.to_dict() output
    """
    click.echo("\nSync results:")
    click.echo(f"  Imported:            {report['imported']}")
    click.echo(f"  Updated:             {report['updated']}")
    click.echo(f"  Exported:            {report['exported']}")
    click.echo(f"  Attendance updated:  {report['attendanceUpdated']}")

    diagnostic = report.get("exportDiagnostic")
    if diagnostic:
        click.echo(
            f"\nExport: {diagnostic['totalInRange']} in range, "
            f"{diagnostic['eligible']} eligible, "
            f"{diagnostic['alreadyExported']} already exported, "
            f"{diagnostic['noTeam']} without team, "
            f"{diagnostic['teamNotLinked']} team not linked"
        )

    _echo_issues("Warnings", report["warnings"], "yellow")
    _echo_issues("Errors", report["errors"], "red")

    if report["success"]:
        click.echo(click.style("\nSync completed successfully!", fg="green"))
    else:
        click.echo(click.style("\nSync completed with errors.", fg="yellow"))


def show_import_preview(preview: dict[str, Any]) -> None:
    summary = preview["summary"]
    click.echo(
        f"\nImport preview ({preview['window']['start'][:10]} to "
        f"{preview['window']['end'][:10]}):"
    )
    click.echo(f"  Events in Spond:       {summary['totalInSpond']}")
    click.echo(f"  New (will import):     {summary['willImport']}")
    click.echo(f"  Changed (will update): {summary['willUpdate']}")
    click.echo(f"  Unchanged:             {summary['unchanged']}")
    click.echo(f"  Cancelled in Spond:    {summary['cancelled']}")
    click.echo(f"  With attendance:       {summary['withAttendance']}")
    if summary.get("skipped"):
        click.echo(f"  Skipped (unreadable):  {summary['skipped']}")

    if summary["duplicatesSuspected"]:
        click.echo(
            click.style(
                f"  Possible duplicates:   {summary['duplicatesSuspected']}",
                fg="yellow",
            )
        )

    lines = []
    for event in preview["events"]:
        if event["action"] == "unchanged":
            continue
        marker = "+" if event["action"] == "import" else "~"
        changes = f" ({', '.join(event['changes'])})" if event["changes"] else ""
        lines.append(
            f"  {marker} {event['startTime'][:16]} {event['heading']} "
            f"[{event['teamName'] or event['teamId']}]{changes}"
        )
    if lines:
        click.echo("\nChanges:")
        _echo_limited(lines)

    _echo_issues("Errors", preview["errors"], "red")


def show_export_preview(preview: dict[str, Any]) -> None:
    summary = preview["summary"]
    click.echo(
        f"\nExport preview ({preview['window']['start'][:10]} to "
        f"{preview['window']['end'][:10]}):"
    )
    click.echo(f"  Local events in range: {summary['totalInRange']}")
    click.echo(f"  Ready to export:       {summary['readyToExport']}")
    click.echo(f"  Already exported:      {summary['alreadyExported']}")
    click.echo(f"  Possible duplicates:   {summary['conflicts']}")
    click.echo(f"  Cannot export:         {summary['cannotExport']}")

    if preview["readyToExport"]:
        click.echo("\nReady to export:")
        _echo_limited(
            [f"  + {e['startTime'][:16]} {e['heading']}" for e in preview["readyToExport"]]
        )
    if preview["conflicts"]:
        click.echo(click.style("\nPossible duplicates (will still export):", fg="yellow"))
        _echo_limited([f"  ! {e['heading']}: {e['message']}" for e in preview["conflicts"]])
    if preview["cannotExport"]:
        click.echo("\nCannot export:")
        _echo_limited(
            [f"  - {e['heading']}: {e['reason']}" for e in preview["cannotExport"]]
        )

    _echo_issues("Errors", preview["errors"], "red")


def show_groups(groups: list[dict[str, Any]]) -> None:
    if not groups:
        click.echo("No Spond groups found.")
        return
    for group in groups:
        indent = "    " if group["isSubgroup"] else "  "
        linked = group.get("linkedTeam")
        suffix = (
            click.style(f" -> {linked['teamName'] or linked['teamId']}", fg="green")
            if linked
            else ""
        )
        click.echo(
            f"{indent}{group['name']} ({group['id']}, "
            f"{group['memberCount']} members){suffix}"
        )


def show_links(links: list[dict[str, Any]]) -> None:
    if not links:
        click.echo("No teams are linked to Spond.")
        return
    for link in links:
        directions = [
            name
            for name, key in (
                ("import", "syncEventsImport"),
                ("export", "syncEventsExport"),
                ("attendance", "syncAttendanceImport"),
            )
            if link[key]
        ]
        state = "" if link["isActive"] else click.style(" (inactive)", fg="yellow")
        group = link["spondGroupName"] or link["spondGroupId"]
        if link["isSubgroup"] and link["spondParentGroupName"]:
            group = f"{link['spondParentGroupName']} / {group}"
        click.echo(
            f"  Team {link['teamId']} {link['teamName'] or ''} -> {group} "
            f"[{', '.join(directions) or 'no sync'}]{state}"
        )
        click.echo(
            f"    Last import: {link['lastImportSync'] or 'never'}, "
            f"export: {link['lastExportSync'] or 'never'}, "
            f"attendance: {link['lastAttendanceSync'] or 'never'}"
        )
