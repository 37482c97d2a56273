"""CLI package for spond_sync."""

from spond_sync.cli.formatters import (
    echo_json,
    show_export_preview,
    show_groups,
    show_import_preview,
    show_links,
    show_report,
)
from spond_sync.cli.main import cli, get_service

__all__ = [
    "cli",
    "echo_json",
    "get_service",
    "show_export_preview",
    "show_groups",
    "show_import_preview",
    "show_links",
    "show_report",
]
