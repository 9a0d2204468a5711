"""Account commands for the notesync CLI.

Commands:
- account add: Register a OneDrive or Baidu Netdisk account
- account list: Show configured accounts
- account connect: Sign in to an account
- account disconnect: Forget an account's tokens
- account remove: Delete an account
- account set-default: Choose the default account
- account set-folder: Change the remote sync folder
- account settings: Change wifi-only / conflict-copy flags
- account quota: Show remote storage usage
"""

from __future__ import annotations

import sys

import click

from notesync.client.accounts import (
    Account,
    AccountContext,
    AccountNotFoundError,
    AccountsManager,
    open_account,
    remove_account_tokens,
)
from notesync.client.auth import ConsoleAuthorizationFlow, LoopbackAuthorizationFlow
from notesync.client.auth.flow import AuthorizationFlow
from notesync.client.cli.config import get_config_dir
from notesync.client.keystore import KeyStoreError
from notesync.core.config import ConfigError
from notesync.core.errors import NoteSyncError
from notesync.core.types import Provider


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def get_accounts() -> AccountsManager:
    """Load the accounts file from the config directory."""
    return AccountsManager(get_config_dir())


def resolve_account(accounts: AccountsManager, account_id: str | None) -> Account:
    """Return the named account, or the default one."""
    if account_id:
        try:
            return accounts.get(account_id)
        except AccountNotFoundError:
            fail(f"Unknown account: {account_id}")
    account = accounts.get_default()
    if account is None:
        fail("No account configured. Run 'notesync account add' first.")
    assert account is not None
    return account


def connect_context(account: Account, flow: AuthorizationFlow | None = None) -> AccountContext:
    """Open the service context of an account, exiting on configuration errors."""
    try:
        return open_account(account, get_config_dir(), flow=flow)
    except ConfigError as e:
        fail(str(e))
        raise
    except KeyStoreError as e:
        fail(
            f"{e}. Restore the file or delete it and run 'notesync account connect' "
            "again for each account."
        )
        raise


def format_bytes(size: int) -> str:
    """Human-readable byte count."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


account_option = click.option("--account", "account_id", default=None, help="Account id (default account if omitted).")


@click.group()
def account() -> None:
    """Manage remote storage accounts."""


@account.command("add")
@click.argument("provider", type=click.Choice([p.value for p in Provider]))
@click.option("--name", "display_name", default=None, help="Display name for the account.")
@click.option("--folder", default=None, help="Remote sync folder.")
def add(provider: str, display_name: str | None, folder: str | None) -> None:
    """Add a OneDrive or Baidu Netdisk account."""
    accounts = get_accounts()
    provider_enum = Provider(provider)
    name = display_name or ("OneDrive" if provider_enum is Provider.ONEDRIVE else "Baidu Netdisk")
    created = accounts.create(provider_enum, name, folder)
    click.echo(f"Added account {created.id} ({name}), sync folder: {created.sync_folder}")
    if accounts.default_account_id == created.id:
        click.echo("This is now the default account.")


@account.command("list")
def list_accounts() -> None:
    """List configured accounts."""
    accounts = get_accounts()
    items = accounts.list_accounts()
    if not items:
        click.echo("No accounts configured.")
        return
    for item in items:
        marker = "*" if item.id == accounts.default_account_id else " "
        status = "connected" if item.connected else "disconnected"
        user = f" as {item.user_info.display_name}" if item.user_info else ""
        click.echo(
            f"{marker} {item.id}  {item.provider.value}  {item.display_name}  "
            f"{item.sync_folder}  [{status}{user}]"
        )


@account.command()
@account_option
@click.option("--force", is_flag=True, help="Force the provider login page (switch user).")
@click.option("--console", "use_console", is_flag=True, help="Paste the redirect URL instead of using a local listener.")
def connect(account_id: str | None, force: bool, use_console: bool) -> None:
    """Sign in to an account through the provider's consent page."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    flow: AuthorizationFlow = ConsoleAuthorizationFlow() if use_console else LoopbackAuthorizationFlow()
    with connect_context(target, flow) as ctx:
        try:
            user_info = ctx.tokens.authenticate(force_reauth=force)
        except NoteSyncError as e:
            fail(str(e))
        accounts.mark_connected(target.id, user_info)
    click.echo(f"Connected {target.display_name} as {user_info.display_name}")


@account.command()
@account_option
def disconnect(account_id: str | None) -> None:
    """Forget the tokens of an account."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    remove_account_tokens(get_config_dir(), target.id)
    accounts.mark_disconnected(target.id)
    click.echo(f"Disconnected {target.display_name}")


@account.command()
@click.argument("account_id")
def remove(account_id: str) -> None:
    """Delete an account and its tokens."""
    accounts = get_accounts()
    try:
        accounts.delete(account_id)
    except AccountNotFoundError:
        fail(f"Unknown account: {account_id}")
    remove_account_tokens(get_config_dir(), account_id)
    click.echo(f"Removed account {account_id}")


@account.command("set-default")
@click.argument("account_id")
def set_default(account_id: str) -> None:
    """Make an account the default."""
    accounts = get_accounts()
    try:
        accounts.set_default(account_id)
    except AccountNotFoundError:
        fail(f"Unknown account: {account_id}")
    click.echo(f"Default account: {account_id}")


@account.command("set-folder")
@click.argument("folder")
@account_option
def set_folder(folder: str, account_id: str | None) -> None:
    """Change the remote sync folder of an account."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    updated = accounts.set_sync_folder(target.id, folder)
    click.echo(f"Sync folder for {updated.id}: {updated.sync_folder}")


@account.command()
@account_option
@click.option("--wifi-only/--any-network", default=None, help="Only sync on unmetered connections.")
@click.option("--conflict-copy/--no-conflict-copy", default=None, help="Keep the losing side of resolved conflicts.")
def settings(account_id: str | None, wifi_only: bool | None, conflict_copy: bool | None) -> None:
    """Show or change sync settings of an account."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    if wifi_only is not None or conflict_copy is not None:
        target = accounts.update_sync_settings(target.id, wifi_only, conflict_copy)
    click.echo(f"wifi-only: {target.sync_settings.wifi_only}")
    click.echo(f"conflict-copy: {target.sync_settings.save_conflict_copy}")


@account.command()
@account_option
def quota(account_id: str | None) -> None:
    """Show remote storage usage."""
    accounts = get_accounts()
    target = resolve_account(accounts, account_id)
    with connect_context(target) as ctx:
        try:
            usage = ctx.provider.get_quota()
        except NoteSyncError as e:
            fail(str(e))
    click.echo(
        f"Used {format_bytes(usage.used)} of {format_bytes(usage.total)} "
        f"({usage.percent_used:.1f}%), {format_bytes(usage.remaining)} free"
    )
