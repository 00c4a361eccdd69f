"""Account service — account and zone mutations with auto-backup hooks."""

import logging
import sqlite3
from dataclasses import replace
from pathlib import Path

from acctctl.core import snapshot_codec
from acctctl.core.backup import BackupCoordinator
from acctctl.core.cloudflare_client import CloudflareClient
from acctctl.core.errors import AccountNotFound, LocalStoreError, MalformedSnapshot
from acctctl.core.local_store import LocalStore
from acctctl.core.models import Account, Zone, now_millis
from acctctl.core.restore import RestoreReport, insert_snapshot
from acctctl.core.snapshot_codec import Snapshot

logger = logging.getLogger(__name__)


class AccountService:
    """Front door for account/zone writes.

    Create, update, delete and import notify the backup coordinator once the
    write has committed; the notification never affects the caller.
    """

    def __init__(
        self,
        store: LocalStore,
        backups: BackupCoordinator,
        cloudflare: CloudflareClient | None = None,
    ) -> None:
        self._store = store
        self._backups = backups
        self._cf = cloudflare or CloudflareClient()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        local_id = self._store.insert_account(account)
        logger.info("Created account %s (%s)", account.display_name, local_id)
        self._backups.on_mutation("create")
        return local_id

    def update_account(self, account: Account) -> Account:
        updated = replace(account, updated_at=now_millis())
        self._store.update_account(updated)
        self._backups.on_mutation("update")
        return updated

    def delete_account(self, local_id: int) -> bool:
        """Delete an account and its zones.  Returns False if it didn't exist."""
        if not self._store.delete_account(local_id):
            return False
        logger.info("Deleted account %s", local_id)
        self._backups.on_mutation("delete")
        return True

    def set_default_account(self, local_id: int) -> None:
        self._store.set_default_account(local_id)

    def list_accounts(self) -> list[Account]:
        return self._store.list_accounts()

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    def refresh_zones(self, local_id: int) -> list[Zone]:
        """Fetch the account's zones from Cloudflare and upsert them locally.

        The currently selected zone stays selected if it is still returned.
        """
        account = self._store.get_account(local_id)
        if account is None:
            raise AccountNotFound(local_id)

        remote = self._cf.list_zones(account.api_token, account.external_account_id)
        selected = self._store.get_selected_zone(local_id)
        selected_id = selected.external_zone_id if selected else None
        now = now_millis()
        with self._store.transaction():
            for z in remote:
                existing = self._store.get_zone(z["id"])
                self._store.insert_zone(Zone(
                    external_zone_id=z["id"],
                    owner_account_local_id=local_id,
                    name=z["name"],
                    status=z["status"],
                    type=z.get("type"),
                    paused=z.get("paused", False),
                    is_selected=z["id"] == selected_id,
                    created_at=existing.created_at if existing else now,
                    updated_at=now,
                ))
        logger.info("Refreshed %d zone(s) for account %s", len(remote), local_id)
        return self._store.list_zones_by_account(local_id)

    def select_zone(self, local_id: int, zone_id: str) -> None:
        self._store.set_selected_zone(local_id, zone_id)

    def list_zones(self, local_id: int) -> list[Zone]:
        return self._store.list_zones_by_account(local_id)

    # ------------------------------------------------------------------
    # Export / Import
    # ------------------------------------------------------------------

    def export_accounts(self) -> bytes:
        """Snapshot document of every local account and zone."""
        with self._store.write_lock:
            accounts = self._store.list_accounts()
            zones = {a.local_id: self._store.list_zones_by_account(a.local_id) for a in accounts}
        return snapshot_codec.encode(accounts, zones)

    def export_to_file(self, dest: Path) -> Path:
        dest.write_bytes(self.export_accounts())
        return dest

    def import_accounts(self, snapshot: Snapshot) -> RestoreReport:
        """Append the snapshot's accounts (fresh local ids) and their zones.

        Existing accounts are kept; zones already present move to the
        imported owner.  Runs as one transaction.
        """
        try:
            with self._store.transaction():
                report = insert_snapshot(self._store, snapshot)
        except (sqlite3.Error, OverflowError) as exc:
            raise LocalStoreError(f"Import rolled back: {exc}") from exc
        logger.info(
            "Imported %d account(s), %d zone(s)", report.restored_accounts, report.restored_zones
        )
        if report.restored_accounts:
            self._backups.on_mutation("import")
        return report

    def import_from_file(self, src: Path) -> RestoreReport:
        try:
            data = src.read_bytes()
        except OSError as exc:
            raise MalformedSnapshot(f"Cannot read import file: {exc}") from exc
        report = self.import_accounts(snapshot_codec.decode(data))
        report.file_name = src.name
        return report
