"""acctcli — Click-based CLI entry point."""

import getpass
import logging
import sys
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

import click

from acctctl.config import (
    DB_FILE,
    DEFAULT_BACKUP_PATH,
    DEFAULT_R2_BACKUP_PATH,
    HTTP_TIMEOUT_SECONDS,
    LOG_FILE,
    LOGS_DIR,
    STATE_DIR,
)
from acctctl.core.account_service import AccountService
from acctctl.core.backup import BackupCoordinator
from acctctl.core.client_registry import ArchiveClientRegistry, credentials_for, r2_credentials_for
from acctctl.core.cloudflare_client import CloudflareAPIError, CloudflareClient, sanitize_token
from acctctl.core.errors import AcctctlError, OperationResult
from acctctl.core.local_store import LocalStore
from acctctl.core.models import Account, R2BackupConfig, RemoteConfig, StorageType, now_millis
from acctctl.core.restore import RestoreCoordinator, RestoreReport

logger = logging.getLogger("acctctl")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    # Also log to file if the logs directory exists
    if LOG_FILE.parent.exists():
        handlers.append(logging.FileHandler(str(LOG_FILE), encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@dataclass
class App:
    """Wired-up core objects shared by every command."""

    store: LocalStore
    registry: ArchiveClientRegistry
    backups: BackupCoordinator
    restores: RestoreCoordinator
    accounts: AccountService
    cloudflare: CloudflareClient

    def close(self) -> None:
        if self.backups.worker.pending:
            click.echo("Waiting for auto-backup to finish…", err=True)
        self.backups.worker.stop(timeout=HTTP_TIMEOUT_SECONDS * 2)
        self.store.close()


def build_app(db_path: Path | str) -> App:
    store = LocalStore(db_path)
    registry = ArchiveClientRegistry()
    cloudflare = CloudflareClient()
    backups = BackupCoordinator(store, registry)
    return App(
        store=store,
        registry=registry,
        backups=backups,
        restores=RestoreCoordinator(store, registry),
        accounts=AccountService(store, backups, cloudflare),
        cloudflare=cloudflare,
    )


def _fail(message: str) -> None:
    click.echo(message, err=True)
    raise SystemExit(1)


def _unwrap(result: OperationResult):
    """Return the value of *result* or abort with its error."""
    if not result.succeeded:
        _fail(f"Error: {result.error}")
    return result.value


def _require_account(app: App, local_id: int) -> Account:
    account = app.store.get_account(local_id)
    if account is None:
        _fail(f"Account {local_id} not found.  Run 'acctcli account list'.")
    return account


def _fmt_time(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000).strftime("%Y-%m-%d %H:%M")


def _print_report(report: RestoreReport) -> None:
    click.echo(f"  {report.restored_accounts} account(s), {report.restored_zones} zone(s)")
    if report.dropped_zones:
        click.echo(click.style(
            f"  ⚠ Dropped {report.dropped_count} zone(s) with no matching account: "
            f"{', '.join(report.dropped_zones)}",
            fg="yellow",
        ))


# ======================================================================
# CLI group
# ======================================================================

@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """acctctl — Cloudflare account store with WebDAV backup."""
    _setup_logging(verbose)
    app = build_app(DB_FILE)
    ctx.obj = app
    ctx.call_on_close(app.close)


pass_app = click.make_pass_decorator(App)


# ======================================================================
# init
# ======================================================================

@cli.command()
@pass_app
def init(app: App) -> None:
    """Initialise the acctctl state directory (~/.acctctl/)."""
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    click.echo(f"Initialised acctctl state in {STATE_DIR} ({app.store.count_accounts()} account(s))")


# ======================================================================
# account
# ======================================================================

@cli.group()
def account() -> None:
    """Manage locally stored Cloudflare accounts."""


@account.command("add")
@click.option("--name", required=True, help="Display name.")
@click.option("--account-id", required=True, help="Cloudflare account ID.")
@click.option("--default", "make_default", is_flag=True, help="Make this the default account.")
@click.option("--r2-access-key-id", default=None, help="R2 S3 access key ID.")
@click.option("--r2-secret-access-key", default=None, help="R2 S3 secret access key.")
@click.option("--skip-verify", is_flag=True, help="Store the token without checking it.")
@pass_app
def account_add(app: App, name: str, account_id: str, make_default: bool,
                r2_access_key_id: str | None, r2_secret_access_key: str | None,
                skip_verify: bool) -> None:
    """Add an account (the API token is prompted for)."""
    raw_token = getpass.getpass("Cloudflare API token: ")
    try:
        token = sanitize_token(raw_token)
    except ValueError as exc:
        _fail(str(exc))

    if not skip_verify:
        click.echo("Verifying token with Cloudflare…")
        try:
            if not app.cloudflare.verify_token(token):
                _fail("Token is not active.")
        except CloudflareAPIError as exc:
            _fail(f"Token verification failed: {exc}")

    is_default = make_default or app.store.count_accounts() == 0
    local_id = app.accounts.create_account(Account(
        external_account_id=account_id,
        display_name=name,
        api_token=token,
        is_default=is_default,
        r2_access_key_id=r2_access_key_id,
        r2_secret_access_key=r2_secret_access_key,
    ))
    click.echo(f"Added account {name} (id {local_id}){' [default]' if is_default else ''}")


@account.command("list")
@pass_app
def account_list(app: App) -> None:
    """List stored accounts."""
    accounts = app.accounts.list_accounts()
    if not accounts:
        click.echo("No accounts.  Run 'acctcli account add'.")
        return
    for a in accounts:
        marker = "*" if a.is_default else " "
        zones = len(app.store.list_zones_by_account(a.local_id))
        click.echo(
            f"{marker} {a.local_id:>4}  {a.display_name:20s} {a.external_account_id}  "
            f"({zones} zone(s), updated {_fmt_time(a.updated_at)})"
        )


@account.command("update")
@click.argument("local_id", type=int)
@click.option("--name", default=None, help="New display name.")
@click.option("--account-id", default=None, help="New Cloudflare account ID.")
@click.option("--token", "change_token", is_flag=True, help="Prompt for a new API token.")
@click.option("--r2-keys", "change_r2", is_flag=True, help="Prompt for new R2 access keys.")
@pass_app
def account_update(app: App, local_id: int, name: str | None, account_id: str | None,
                   change_token: bool, change_r2: bool) -> None:
    """Edit a stored account."""
    current = _require_account(app, local_id)
    changes: dict = {}
    if name:
        changes["display_name"] = name
    if account_id:
        changes["external_account_id"] = account_id
    if change_token:
        try:
            changes["api_token"] = sanitize_token(getpass.getpass("New API token: "))
        except ValueError as exc:
            _fail(str(exc))
    if change_r2:
        changes["r2_access_key_id"] = click.prompt("R2 access key ID").strip()
        changes["r2_secret_access_key"] = getpass.getpass("R2 secret access key: ").strip()
    if not changes:
        _fail("Nothing to update.")
    app.accounts.update_account(replace(current, **changes))
    click.echo(f"Updated account {local_id}.")


@account.command("remove")
@click.argument("local_id", type=int)
@click.confirmation_option(prompt="Delete this account and all of its zones?")
@pass_app
def account_remove(app: App, local_id: int) -> None:
    """Delete an account and its zones."""
    if not app.accounts.delete_account(local_id):
        _fail(f"Account {local_id} not found.")
    click.echo(f"Deleted account {local_id}.")


@account.command("default")
@click.argument("local_id", type=int)
@pass_app
def account_default(app: App, local_id: int) -> None:
    """Make an account the default."""
    try:
        app.accounts.set_default_account(local_id)
    except AcctctlError as exc:
        _fail(str(exc))
    click.echo(f"Account {local_id} is now the default.")


# ======================================================================
# zone
# ======================================================================

@cli.group()
def zone() -> None:
    """Manage the zones stored for each account."""


@zone.command("refresh")
@click.argument("local_id", type=int)
@pass_app
def zone_refresh(app: App, local_id: int) -> None:
    """Fetch an account's zones from Cloudflare."""
    _require_account(app, local_id)
    try:
        zones = app.accounts.refresh_zones(local_id)
    except CloudflareAPIError as exc:
        _fail(f"Fetching zones failed: {exc}")
    click.echo(f"Account {local_id}: {len(zones)} zone(s) stored.")


@zone.command("list")
@click.argument("local_id", type=int)
@pass_app
def zone_list(app: App, local_id: int) -> None:
    """List an account's stored zones."""
    _require_account(app, local_id)
    zones = app.accounts.list_zones(local_id)
    if not zones:
        click.echo("No zones stored.  Run 'acctcli zone refresh'.")
        return
    for z in zones:
        marker = "*" if z.is_selected else " "
        paused = " (paused)" if z.paused else ""
        click.echo(f"{marker} {z.name:30s} {z.external_zone_id}  {z.status}{paused}")


@zone.command("select")
@click.argument("local_id", type=int)
@click.argument("zone_id")
@pass_app
def zone_select(app: App, local_id: int, zone_id: str) -> None:
    """Select the working zone for an account."""
    try:
        app.accounts.select_zone(local_id, zone_id)
    except AcctctlError as exc:
        _fail(str(exc))
    click.echo(f"Selected zone {zone_id} for account {local_id}.")


# ======================================================================
# remote
# ======================================================================

@cli.group()
def remote() -> None:
    """Configure the WebDAV backup archive."""


@remote.command("configure")
@click.option("--url", required=True, help="WebDAV base URL.")
@click.option("--username", required=True, help="WebDAV user name.")
@click.option("--path", "backup_path", default=DEFAULT_BACKUP_PATH, show_default=True,
              help="Directory for backup files.")
@click.option("--auto-backup/--no-auto-backup", default=False,
              help="Back up automatically after every account change.")
@click.option("--skip-test", is_flag=True, help="Save without testing the connection.")
@pass_app
def remote_configure(app: App, url: str, username: str, backup_path: str,
                     auto_backup: bool, skip_test: bool) -> None:
    """Store WebDAV settings (the password is prompted for)."""
    password = getpass.getpass("WebDAV password: ")
    previous = app.store.get_remote_config()
    config = RemoteConfig(
        url=url,
        username=username,
        password=password,
        backup_path=backup_path,
        auto_backup=auto_backup,
        created_at=previous.created_at if previous else now_millis(),
    )
    if not skip_test:
        click.echo("Testing connection…")
        if not app.registry.for_config(config).test_connection():
            app.registry.evict(credentials_for(config))
            _fail("Connection test failed.  Check the URL and credentials, or use --skip-test.")
    if previous is not None:
        app.registry.evict(credentials_for(previous))
    app.store.save_remote_config(config)
    click.echo(f"Remote archive saved (auto-backup {'on' if auto_backup else 'off'}).")


@remote.command("show")
@pass_app
def remote_show(app: App) -> None:
    """Show the stored WebDAV settings."""
    config = app.store.get_remote_config()
    if config is None:
        click.echo("No remote archive configured.")
        return
    click.echo(f"URL:         {config.url}")
    click.echo(f"Username:    {config.username}")
    click.echo(f"Backup path: {config.backup_path}")
    click.echo(f"Auto-backup: {'on' if config.auto_backup else 'off'}")


@remote.command("test")
@pass_app
def remote_test(app: App) -> None:
    """Test the stored WebDAV settings."""
    config = app.store.get_remote_config()
    if config is None:
        _fail("No remote archive configured.")
    try:
        app.registry.for_config(config).check_connection()
    except AcctctlError as exc:
        _fail(f"Connection failed: {exc}")
    click.echo("Connection OK.")


@remote.command("clear")
@click.confirmation_option(prompt="Remove the stored WebDAV settings?")
@pass_app
def remote_clear(app: App) -> None:
    """Forget the stored WebDAV settings."""
    config = app.store.get_remote_config()
    if config is not None:
        app.registry.evict(credentials_for(config))
    app.store.delete_remote_config()
    click.echo("Remote archive settings removed.")


# ======================================================================
# r2
# ======================================================================

def _evict_r2(app: App, config: R2BackupConfig) -> None:
    account = app.store.get_account(config.account_local_id)
    if account is not None and account.has_r2_credentials:
        app.registry.evict(r2_credentials_for(config, account))


@cli.group()
def r2() -> None:
    """Configure the Cloudflare R2 backup bucket."""


@r2.command("configure")
@click.option("--account", "account_local_id", type=int, required=True,
              help="Local id of the account whose R2 keys sign requests.")
@click.option("--bucket", required=True, help="R2 bucket name.")
@click.option("--path", "backup_path", default=DEFAULT_R2_BACKUP_PATH, show_default=True,
              help="Key prefix for backup files.")
@click.option("--auto-backup/--no-auto-backup", default=False,
              help="Back up automatically after every account change.")
@click.option("--skip-test", is_flag=True, help="Save without testing the bucket.")
@pass_app
def r2_configure(app: App, account_local_id: int, bucket: str, backup_path: str,
                 auto_backup: bool, skip_test: bool) -> None:
    """Store R2 backup settings."""
    account = _require_account(app, account_local_id)
    if not account.has_r2_credentials:
        _fail(f"Account {account_local_id} has no R2 keys.  "
              f"Run 'acctcli account update {account_local_id} --r2-keys'.")
    previous = app.store.get_r2_backup_config()
    config = R2BackupConfig(
        account_local_id=account_local_id,
        bucket_name=bucket,
        backup_path=backup_path,
        auto_backup=auto_backup,
        created_at=previous.created_at if previous else now_millis(),
    )
    if not skip_test:
        click.echo("Testing bucket access…")
        if not app.registry.for_r2_config(config, account).test_connection():
            app.registry.evict(r2_credentials_for(config, account))
            _fail("Bucket test failed.  Check the bucket name and R2 keys, or use --skip-test.")
    if previous is not None:
        _evict_r2(app, previous)
    app.store.save_r2_backup_config(config)
    click.echo(f"R2 backup saved (auto-backup {'on' if auto_backup else 'off'}).")


@r2.command("show")
@pass_app
def r2_show(app: App) -> None:
    """Show the stored R2 settings."""
    config = app.store.get_r2_backup_config()
    if config is None:
        click.echo("No R2 backup configured.")
        return
    account = app.store.get_account(config.account_local_id)
    owner = account.display_name if account else "missing"
    click.echo(f"Account:     {config.account_local_id} ({owner})")
    click.echo(f"Bucket:      {config.bucket_name}")
    click.echo(f"Backup path: {config.backup_path or '/'}")
    click.echo(f"Auto-backup: {'on' if config.auto_backup else 'off'}")


@r2.command("test")
@pass_app
def r2_test(app: App) -> None:
    """Test the stored R2 settings."""
    try:
        app.registry.target(app.store, StorageType.R2).archive.check_connection()
    except AcctctlError as exc:
        _fail(f"Connection failed: {exc}")
    click.echo("Connection OK.")


@r2.command("clear")
@click.confirmation_option(prompt="Remove the stored R2 settings?")
@pass_app
def r2_clear(app: App) -> None:
    """Forget the stored R2 settings."""
    config = app.store.get_r2_backup_config()
    if config is not None:
        _evict_r2(app, config)
    app.store.delete_r2_backup_config()
    click.echo("R2 backup settings removed.")


# ======================================================================
# backup
# ======================================================================

storage_option = click.option(
    "--storage",
    type=click.Choice([s.value for s in StorageType]),
    default=StorageType.WEBDAV.value,
    show_default=True,
    callback=lambda ctx, param, value: StorageType(value),
    help="Archive to use.",
)


@cli.group()
def backup() -> None:
    """Back up and restore accounts via the WebDAV or R2 archive."""


@backup.command("now")
@storage_option
@pass_app
def backup_now(app: App, storage: StorageType) -> None:
    """Upload a snapshot of all accounts and zones."""
    file_name = _unwrap(app.backups.backup_now(storage=storage))
    click.echo(f"Backed up to {file_name}")


@backup.command("list")
@storage_option
@pass_app
def backup_list(app: App, storage: StorageType) -> None:
    """List archived snapshots, newest first."""
    names = _unwrap(app.restores.list_available_snapshots(storage))
    if not names:
        click.echo("No backups found.")
        return
    for name in names:
        click.echo(f"  {name}")


@backup.command("restore")
@click.argument("file_name")
@storage_option
@click.confirmation_option(prompt="Replace ALL local accounts and zones with this backup?")
@pass_app
def backup_restore(app: App, file_name: str, storage: StorageType) -> None:
    """Replace local data with an archived snapshot."""
    report = _unwrap(app.restores.restore(file_name, storage))
    click.echo(f"Restored from {file_name}:")
    _print_report(report)


@backup.command("delete")
@click.argument("file_name")
@storage_option
@click.confirmation_option(prompt="Delete this backup from the archive?")
@pass_app
def backup_delete(app: App, file_name: str, storage: StorageType) -> None:
    """Delete an archived snapshot."""
    if _unwrap(app.restores.delete_snapshot(file_name, storage)):
        click.echo(f"Deleted {file_name}.")
    else:
        click.echo(f"{file_name} was not in the archive.")


# ======================================================================
# export / import
# ======================================================================

@cli.command("export")
@click.argument("dest", type=click.Path(dir_okay=False, path_type=Path))
@pass_app
def export_cmd(app: App, dest: Path) -> None:
    """Write all accounts and zones to a local JSON file."""
    app.accounts.export_to_file(dest)
    click.echo(f"Exported {app.store.count_accounts()} account(s) to {dest}")


@cli.command("import")
@click.argument("src", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_app
def import_cmd(app: App, src: Path) -> None:
    """Add the accounts from a local JSON file (existing accounts are kept)."""
    try:
        report = app.accounts.import_from_file(src)
    except AcctctlError as exc:
        _fail(f"Import failed: {exc}")
    click.echo(f"Imported from {src}:")
    _print_report(report)


if __name__ == "__main__":
    cli()
