"""
Entry point for running spond_sync as a module.

Usage:
    python -m spond_sync --help
    python -m spond_sync configure --username coach@example.com
    python -m spond_sync sync --direction import
"""

from spond_sync.cli import cli

if __name__ == "__main__":
    cli()
