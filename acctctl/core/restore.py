"""Restore coordinator — full replace of the local store from an archived snapshot."""

import logging
import sqlite3
from dataclasses import dataclass, field, replace

from acctctl.core import snapshot_codec
from acctctl.core.client_registry import ArchiveClientRegistry
from acctctl.core.errors import (
    AcctctlError,
    LocalStoreError,
    OperationResult,
    OrphanZoneOnRestore,
)
from acctctl.core.local_store import LocalStore
from acctctl.core.models import StorageType
from acctctl.core.snapshot_codec import Snapshot

logger = logging.getLogger(__name__)


@dataclass
class RestoreReport:
    """What a restore or import wrote into the local store."""

    restored_accounts: int = 0
    restored_zones: int = 0
    dropped_zones: list[str] = field(default_factory=list)
    file_name: str | None = None
    account_ids: dict[str, int] = field(default_factory=dict, repr=False)

    @property
    def dropped_count(self) -> int:
        return len(self.dropped_zones)


def insert_snapshot(store: LocalStore, snapshot: Snapshot, *, strict: bool = False) -> RestoreReport:
    """Insert every account and zone of *snapshot* into *store*.

    Accounts get fresh local ids; zones are re-linked through a map of
    external account id → new local id, kept on the report as
    ``account_ids``.  When two snapshot accounts share an external id the
    later one owns the zones.  Zones whose owner is not in the map are
    dropped and reported, or raise ``OrphanZoneOnRestore`` when *strict*
    is set.

    Callers wrap this in ``store.transaction()``.
    """
    report = RestoreReport()
    for entry in snapshot.accounts:
        local_id = store.insert_account(replace(entry.account, local_id=None))
        report.account_ids[entry.account.external_account_id] = local_id
        report.restored_accounts += 1

    for entry in snapshot.accounts:
        for snap_zone in entry.zones:
            owner = report.account_ids.get(snap_zone.owner_external_id)
            if owner is None:
                if strict:
                    raise OrphanZoneOnRestore(snap_zone.external_zone_id, snap_zone.owner_external_id)
                logger.warning(
                    "Dropping zone %s: no account '%s' in snapshot",
                    snap_zone.external_zone_id,
                    snap_zone.owner_external_id,
                )
                report.dropped_zones.append(snap_zone.external_zone_id)
                continue
            store.insert_zone(snap_zone.to_zone(owner))
            report.restored_zones += 1
    return report


class RestoreCoordinator:
    """Lists, downloads and applies archived snapshots."""

    def __init__(
        self,
        store: LocalStore,
        registry: ArchiveClientRegistry,
        *,
        strict_orphans: bool = False,
    ) -> None:
        self._store = store
        self._registry = registry
        self._strict = strict_orphans

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_available_snapshots(self, storage: StorageType = StorageType.WEBDAV) -> OperationResult:
        """Snapshot file names at the configured path, newest first."""
        try:
            target = self._registry.target(self._store, storage)
            names = target.archive.list(target.backup_path)
        except AcctctlError as exc:
            logger.error("Listing %s snapshots failed: %s", storage.value, exc)
            return OperationResult.failed(exc)
        backups = sorted((n for n in names if snapshot_codec.is_backup_file_name(n)), reverse=True)
        return OperationResult.ok(backups)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(self, file_name: str, storage: StorageType = StorageType.WEBDAV) -> OperationResult:
        """Download *file_name* and replace all local data with it.

        On success the result holds a ``RestoreReport``.  On any failure the
        local store is left exactly as it was.
        """
        try:
            target = self._registry.target(self._store, storage)
            data = target.archive.download(target.file_path(file_name))
            snapshot = snapshot_codec.decode(data)
            report = self.restore_snapshot(snapshot)
        except AcctctlError as exc:
            logger.error("Restore of %s from %s failed: %s", file_name, storage.value, exc)
            return OperationResult.failed(exc)
        report.file_name = file_name
        logger.info(
            "Restored %d account(s), %d zone(s) from %s (%d dropped)",
            report.restored_accounts, report.restored_zones, file_name, report.dropped_count,
        )
        return OperationResult.ok(report)

    def restore_snapshot(self, snapshot: Snapshot) -> RestoreReport:
        """Full replace of the local store, as one transaction.

        Zones are deleted before accounts because they hold the foreign key.
        The R2 settings follow their account to its new local id.  Database
        failures surface as ``LocalStoreError`` after the rollback.
        """
        try:
            with self._store.transaction():
                r2_owner = self._r2_owner_external_id()
                self._store.delete_all_zones()
                self._store.delete_all_accounts()
                report = insert_snapshot(self._store, snapshot, strict=self._strict)
                if r2_owner is not None:
                    self._repoint_r2_config(r2_owner, report)
        except (sqlite3.Error, OverflowError) as exc:
            raise LocalStoreError(f"Restore rolled back: {exc}") from exc
        return report

    def _r2_owner_external_id(self) -> str | None:
        config = self._store.get_r2_backup_config()
        if config is None:
            return None
        owner = self._store.get_account(config.account_local_id)
        return owner.external_account_id if owner else None

    def _repoint_r2_config(self, owner_external_id: str, report: RestoreReport) -> None:
        new_id = report.account_ids.get(owner_external_id)
        if new_id is None:
            logger.warning(
                "R2 backup account '%s' is not in the snapshot; run 'acctcli r2 configure'",
                owner_external_id,
            )
            return
        self._store.set_r2_backup_account(new_id)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_snapshot(self, file_name: str, storage: StorageType = StorageType.WEBDAV) -> OperationResult:
        """Remove an archived snapshot.  The value is False if it was already gone."""
        try:
            target = self._registry.target(self._store, storage)
            deleted = target.archive.delete(target.file_path(file_name))
        except AcctctlError as exc:
            logger.error("Deleting %s failed: %s", file_name, exc)
            return OperationResult.failed(exc)
        return OperationResult.ok(deleted)
