"""Command-line interface for notesync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- account: Manage remote storage accounts
- sync: Synchronize all notes
- sync-note: Synchronize one note
- initial-sync: First synchronization of a new account
- cloud-notes: List remote notes
- notes-dir: Show or set the local notes directory
- commit-page / cloud-pages / use-cloud-page: Page-level sync
"""

from __future__ import annotations

import click

from notesync.client.cli.account import account
from notesync.client.cli.config import (
    configure_logging,
    get_config_dir,
    get_config_file,
    get_notes_dir,
    load_config,
    save_config,
)
from notesync.client.cli.sync import (
    cloud_notes,
    cloud_pages,
    commit_page,
    initial_sync,
    notes_dir,
    sync,
    sync_note,
    use_cloud_page,
)


@click.group()
@click.version_option(package_name="notesync")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """notesync - Note synchronization with OneDrive and Baidu Netdisk."""
    configure_logging(verbose)


# Account commands
cli.add_command(account)

# Sync commands
cli.add_command(sync)
cli.add_command(sync_note)
cli.add_command(initial_sync)
cli.add_command(cloud_notes)
cli.add_command(notes_dir)

# Page commands
cli.add_command(commit_page)
cli.add_command(cloud_pages)
cli.add_command(use_cloud_page)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "get_config_dir",
    "get_config_file",
    "get_notes_dir",
    "load_config",
    "save_config",
]
