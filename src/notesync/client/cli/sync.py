"""Sync commands for the notesync CLI.

Commands:
- sync: Full sync of all notes with an account
- sync-note: Sync a single note
- initial-sync: First-connection sync with a chosen strategy
- cloud-notes: List notes in the remote sync folder
- commit-page: Upload one page of a sync-enabled note
- cloud-pages: List remote pages of a note
- use-cloud-page: Replace a local page with its remote version
- notes-dir: Show or set the local notes directory
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import click

from notesync.client.accounts import Account, AccountsManager
from notesync.client.cli.account import (
    account_option,
    connect_context,
    fail,
    get_accounts,
    resolve_account,
)
from notesync.client.cli.config import get_notes_dir, load_config, save_config
from notesync.client.store import FileNoteStore
from notesync.client.sync import (
    ConflictAction,
    ConflictResolution,
    InitialSyncStrategy,
    NoteSyncStatus,
    PageSync,
    SyncEngine,
    SyncProgress,
)
from notesync.core.errors import (
    AuthenticationError,
    NotAuthenticatedError,
    NoteSyncError,
    TokenRefreshError,
)

REPORT_ONLY = "report"


def _format_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M") if ms else "-"


def _print_progress(progress: SyncProgress) -> None:
    click.echo(
        f"[{progress.current}/{progress.total}] {progress.operation.value} {progress.note_name}"
    )


@contextmanager
def _session(accounts: AccountsManager, account: Account, quiet: bool = False) -> Iterator[tuple[SyncEngine, PageSync]]:
    """Open an account and yield its sync engine and page sync.

    Authentication failures mark the account disconnected and exit.
    """
    store = FileNoteStore(get_notes_dir())
    with connect_context(account) as ctx:
        engine = SyncEngine(
            store,
            ctx.provider,
            account.to_sync_settings(),
            progress_callback=None if quiet else _print_progress,
        )
        try:
            yield engine, PageSync(store, ctx.provider)
        except (AuthenticationError, NotAuthenticatedError, TokenRefreshError) as e:
            accounts.mark_disconnected(account.id)
            fail(f"{e}. Run 'notesync account connect' to sign in again.")
        except NoteSyncError as e:
            fail(str(e))
    accounts.touch(account.id)


@click.command()
@account_option
@click.option(
    "--on-conflict",
    type=click.Choice([REPORT_ONLY] + [a.value for a in ConflictAction]),
    default=REPORT_ONLY,
    show_default=True,
    help="Resolve detected conflicts with this action instead of only reporting them.",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print per-note progress.")
def sync(account_id: str | None, on_conflict: str, quiet: bool) -> None:
    """Synchronize all notes with the account's sync folder."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target, quiet) as (engine, _):
        result = engine.sync()
        click.echo(
            f"Sync {result.state.value}: {result.uploaded} uploaded, "
            f"{result.downloaded} downloaded, {len(result.conflicts)} conflicts"
        )
        for error in result.errors:
            click.echo(f"  failed {error.operation.value} {error.note_name}: {error.error}", err=True)
        for conflict in result.conflicts:
            if on_conflict == REPORT_ONLY:
                click.echo(f"  conflict: {conflict.note_name} ({conflict.note_id})")
                continue
            resolution = ConflictResolution(
                action=ConflictAction(on_conflict),
                save_conflict_copy=target.sync_settings.save_conflict_copy,
            )
            outcome = engine.resolve_conflict(conflict, resolution)
            copies = f", copies: {', '.join(outcome.copies)}" if outcome.copies else ""
            click.echo(f"  resolved {conflict.note_name} with {on_conflict}{copies}")
    if result.errors:
        raise SystemExit(1)


@click.command("sync-note")
@click.argument("note_id")
@account_option
def sync_note(note_id: str, account_id: str | None) -> None:
    """Synchronize a single note."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target) as (engine, _):
        result = engine.sync_note(note_id)
    click.echo(f"{note_id}: {result.status.value} - {result.message}")
    if result.status is NoteSyncStatus.ERROR:
        raise SystemExit(1)


@click.command("initial-sync")
@click.option(
    "--strategy",
    type=click.Choice([s.value for s in InitialSyncStrategy]),
    default=InitialSyncStrategy.SMART_MERGE.value,
    show_default=True,
)
@account_option
@click.option("--force", is_flag=True, help="Run even if notes were synced before.")
def initial_sync(strategy: str, account_id: str | None, force: bool) -> None:
    """Run the first synchronization of a newly connected account."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target) as (engine, _):
        if not force and not engine.needs_initial_sync():
            click.echo("Initial sync not needed; use 'notesync sync'.")
            return
        result = engine.perform_initial_sync(InitialSyncStrategy(strategy))
    click.echo(
        f"Initial sync ({strategy}): {result.uploaded} uploaded, "
        f"{result.downloaded} downloaded, {result.merged} merged"
    )
    for error in result.errors:
        click.echo(f"  failed {error.operation.value} {error.note_name}: {error.error}", err=True)
    if result.errors:
        raise SystemExit(1)


@click.command("cloud-notes")
@account_option
def cloud_notes(account_id: str | None) -> None:
    """List notes stored in the remote sync folder."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target, quiet=True) as (engine, _):
        notes = engine.get_cloud_notes()
    if not notes:
        click.echo("No notes in the sync folder.")
        return
    for note in notes:
        local = "local" if note.exists_locally else "cloud only"
        click.echo(f"{note.id}  {_format_time(note.updated_at)}  {note.size} B  [{local}]")


@click.command("commit-page")
@click.argument("note_id")
@click.argument("page_id")
@account_option
def commit_page(note_id: str, page_id: str, account_id: str | None) -> None:
    """Upload one page of a sync-enabled note."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target, quiet=True) as (_, pages):
        result = pages.commit_page(note_id, page_id)
    if not result.success:
        fail(result.error or "Commit failed")
    click.echo("Page unchanged, nothing to commit." if result.skipped else f"Committed page {page_id}")


@click.command("cloud-pages")
@click.argument("note_id")
@account_option
def cloud_pages(note_id: str, account_id: str | None) -> None:
    """List the remote pages of a note and their status."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target, quiet=True) as (_, pages):
        items = pages.get_cloud_pages(note_id)
    if not items:
        click.echo("No pages in the cloud for this note.")
        return
    for page in items:
        click.echo(f"{page.page_id}  {_format_time(page.updated_at)}  [{page.status.value}]")


@click.command("use-cloud-page")
@click.argument("note_id")
@click.argument("page_id")
@account_option
def use_cloud_page(note_id: str, page_id: str, account_id: str | None) -> None:
    """Replace a local page with its remote version."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with _session(accounts, target, quiet=True) as (_, pages):
        page = pages.use_cloud_version(note_id, page_id)
    click.echo(f"Applied cloud version of page {page.id} ({page.title})")


@click.command("notes-dir")
@click.argument("path", required=False, type=click.Path(file_okay=False))
def notes_dir(path: str | None) -> None:
    """Show or set the local notes directory."""
    if path is None:
        click.echo(str(get_notes_dir()))
        return
    config = load_config()
    config["notes_dir"] = str(Path(path).expanduser().resolve())
    save_config(config)
    click.echo(f"Notes directory set to {config['notes_dir']}")
