"""Local store — SQLite persistence for accounts, zones and the remote config.

Every write goes through one re-entrant lock and joins an enclosing
``transaction()`` when there is one, so restore and bulk import can run a
whole delete-and-reinsert sequence atomically.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from acctctl.core.errors import (
    AccountNotFound,
    ReferentialIntegrityViolation,
    ZoneNotFound,
)
from acctctl.core.models import Account, R2BackupConfig, RemoteConfig, Zone, now_millis

logger = logging.getLogger(__name__)

_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS accounts (
        local_id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_account_id TEXT NOT NULL,
        display_name TEXT NOT NULL,
        api_token TEXT NOT NULL,
        default_zone_id TEXT,
        is_default INTEGER NOT NULL DEFAULT 0,
        r2_access_key_id TEXT,
        r2_secret_access_key TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS zones (
        external_zone_id TEXT PRIMARY KEY,
        owner_account_local_id INTEGER NOT NULL
            REFERENCES accounts(local_id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        status TEXT NOT NULL,
        type TEXT,
        paused INTEGER NOT NULL DEFAULT 0,
        is_selected INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS remote_config (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        url TEXT NOT NULL,
        username TEXT NOT NULL,
        password TEXT NOT NULL,
        backup_path TEXT NOT NULL,
        auto_backup INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",
    # No foreign key: the row outlives a restore and is re-pointed afterwards
    """CREATE TABLE IF NOT EXISTS r2_backup_config (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        account_local_id INTEGER NOT NULL,
        bucket_name TEXT NOT NULL,
        backup_path TEXT NOT NULL,
        auto_backup INTEGER NOT NULL DEFAULT 0,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_zones_owner ON zones(owner_account_local_id)",
    # At most one default account, at most one selected zone per owner
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_single_default "
    "ON accounts(is_default) WHERE is_default = 1",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_zones_single_selected "
    "ON zones(owner_account_local_id) WHERE is_selected = 1",
)


class LocalStore:
    """SQLite-backed store for the Account → Zone graph."""

    def __init__(self, db_path: Path | str = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = sqlite3.connect(
            self.db_path, isolation_level=None, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        for statement in _SCHEMA:
            self._conn.execute(statement)

    @property
    def write_lock(self) -> threading.RLock:
        """Single-writer lock shared by every structural operation."""
        return self._lock

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed block as one SQLite transaction.

        Nested calls join the outermost transaction.  Any exception rolls
        back everything done since the outermost ``BEGIN``.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def insert_account(self, account: Account) -> int:
        """Insert *account* and return its freshly assigned local id.

        Any ``local_id`` already set on *account* is ignored.
        """
        with self.transaction() as conn:
            if account.is_default:
                conn.execute("UPDATE accounts SET is_default = 0 WHERE is_default = 1")
            cur = conn.execute(
                """INSERT INTO accounts (external_account_id, display_name, api_token,
                    default_zone_id, is_default, r2_access_key_id, r2_secret_access_key,
                    created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    account.external_account_id,
                    account.display_name,
                    account.api_token,
                    account.default_zone_id,
                    int(account.is_default),
                    account.r2_access_key_id,
                    account.r2_secret_access_key,
                    account.created_at,
                    account.updated_at,
                ),
            )
            local_id = cur.lastrowid
        logger.debug("Inserted account %s as local id %d", account.external_account_id, local_id)
        return local_id

    def update_account(self, account: Account) -> None:
        """Overwrite the row identified by ``account.local_id``."""
        if account.local_id is None:
            raise ValueError("Cannot update an account without a local id.")
        with self.transaction() as conn:
            if account.is_default:
                conn.execute(
                    "UPDATE accounts SET is_default = 0 WHERE is_default = 1 AND local_id != ?",
                    (account.local_id,),
                )
            cur = conn.execute(
                """UPDATE accounts SET external_account_id = ?, display_name = ?,
                    api_token = ?, default_zone_id = ?, is_default = ?,
                    r2_access_key_id = ?, r2_secret_access_key = ?, updated_at = ?
                WHERE local_id = ?""",
                (
                    account.external_account_id,
                    account.display_name,
                    account.api_token,
                    account.default_zone_id,
                    int(account.is_default),
                    account.r2_access_key_id,
                    account.r2_secret_access_key,
                    account.updated_at,
                    account.local_id,
                ),
            )
            if cur.rowcount == 0:
                raise AccountNotFound(account.local_id)

    def delete_account(self, local_id: int) -> bool:
        """Delete an account; its zones go with it.  Returns True if it existed."""
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM accounts WHERE local_id = ?", (local_id,))
            return cur.rowcount > 0

    def set_default_account(self, local_id: int) -> None:
        """Make *local_id* the only default account."""
        with self.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM accounts WHERE local_id = ?", (local_id,)
            ).fetchone() is None:
                raise AccountNotFound(local_id)
            conn.execute("UPDATE accounts SET is_default = 0 WHERE is_default = 1")
            conn.execute(
                "UPDATE accounts SET is_default = 1, updated_at = ? WHERE local_id = ?",
                (now_millis(), local_id),
            )

    def get_account(self, local_id: int) -> Account | None:
        rows = self._query("SELECT * FROM accounts WHERE local_id = ?", (local_id,))
        return _row_to_account(rows[0]) if rows else None

    def get_default_account(self) -> Account | None:
        rows = self._query("SELECT * FROM accounts WHERE is_default = 1 LIMIT 1")
        return _row_to_account(rows[0]) if rows else None

    def list_accounts(self) -> list[Account]:
        """All accounts, default first, then by display name."""
        rows = self._query(
            "SELECT * FROM accounts ORDER BY is_default DESC, display_name ASC, local_id ASC"
        )
        return [_row_to_account(r) for r in rows]

    def count_accounts(self) -> int:
        return self._query("SELECT COUNT(*) FROM accounts")[0][0]

    def delete_all_accounts(self) -> int:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM accounts").rowcount

    # ------------------------------------------------------------------
    # Zones
    # ------------------------------------------------------------------

    def insert_zone(self, zone: Zone) -> None:
        """Insert or replace a zone keyed by its external id.

        Raises ``ReferentialIntegrityViolation`` if the owner does not exist.
        """
        with self.transaction() as conn:
            try:
                if zone.is_selected:
                    conn.execute(
                        """UPDATE zones SET is_selected = 0
                        WHERE owner_account_local_id = ? AND external_zone_id != ?""",
                        (zone.owner_account_local_id, zone.external_zone_id),
                    )
                conn.execute(
                    """INSERT INTO zones (external_zone_id, owner_account_local_id, name,
                        status, type, paused, is_selected, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(external_zone_id) DO UPDATE SET
                        owner_account_local_id = excluded.owner_account_local_id,
                        name = excluded.name, status = excluded.status,
                        type = excluded.type, paused = excluded.paused,
                        is_selected = excluded.is_selected,
                        updated_at = excluded.updated_at""",
                    (
                        zone.external_zone_id,
                        zone.owner_account_local_id,
                        zone.name,
                        zone.status,
                        zone.type,
                        int(zone.paused),
                        int(zone.is_selected),
                        zone.created_at,
                        zone.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "FOREIGN KEY" in str(exc):
                    raise ReferentialIntegrityViolation(
                        f"Zone '{zone.external_zone_id}' references missing account "
                        f"{zone.owner_account_local_id}"
                    ) from exc
                raise

    def set_selected_zone(self, account_local_id: int, external_zone_id: str) -> None:
        """Select one zone for an account and record it as the account's zone id."""
        with self.transaction() as conn:
            if conn.execute(
                "SELECT 1 FROM zones WHERE external_zone_id = ? AND owner_account_local_id = ?",
                (external_zone_id, account_local_id),
            ).fetchone() is None:
                raise ZoneNotFound(external_zone_id, account_local_id)
            now = now_millis()
            conn.execute(
                "UPDATE zones SET is_selected = 0 WHERE owner_account_local_id = ?",
                (account_local_id,),
            )
            conn.execute(
                "UPDATE zones SET is_selected = 1, updated_at = ? WHERE external_zone_id = ?",
                (now, external_zone_id),
            )
            conn.execute(
                "UPDATE accounts SET default_zone_id = ?, updated_at = ? WHERE local_id = ?",
                (external_zone_id, now, account_local_id),
            )

    def get_zone(self, external_zone_id: str) -> Zone | None:
        rows = self._query("SELECT * FROM zones WHERE external_zone_id = ?", (external_zone_id,))
        return _row_to_zone(rows[0]) if rows else None

    def get_selected_zone(self, account_local_id: int) -> Zone | None:
        rows = self._query(
            "SELECT * FROM zones WHERE owner_account_local_id = ? AND is_selected = 1 LIMIT 1",
            (account_local_id,),
        )
        return _row_to_zone(rows[0]) if rows else None

    def list_zones_by_account(self, account_local_id: int) -> list[Zone]:
        rows = self._query(
            "SELECT * FROM zones WHERE owner_account_local_id = ? ORDER BY name ASC",
            (account_local_id,),
        )
        return [_row_to_zone(r) for r in rows]

    def count_zones(self) -> int:
        return self._query("SELECT COUNT(*) FROM zones")[0][0]

    def delete_zones_by_account(self, account_local_id: int) -> int:
        with self.transaction() as conn:
            return conn.execute(
                "DELETE FROM zones WHERE owner_account_local_id = ?", (account_local_id,)
            ).rowcount

    def delete_all_zones(self) -> int:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM zones").rowcount

    # ------------------------------------------------------------------
    # Remote configuration (singleton row)
    # ------------------------------------------------------------------

    def get_remote_config(self) -> RemoteConfig | None:
        rows = self._query("SELECT * FROM remote_config WHERE id = 1")
        if not rows:
            return None
        r = rows[0]
        return RemoteConfig(
            url=r["url"],
            username=r["username"],
            password=r["password"],
            backup_path=r["backup_path"],
            auto_backup=bool(r["auto_backup"]),
            created_at=r["created_at"],
            updated_at=r["updated_at"],
        )

    def save_remote_config(self, config: RemoteConfig) -> None:
        """Create or replace the single remote configuration row."""
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO remote_config (id, url, username, password, backup_path,
                    auto_backup, created_at, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    url = excluded.url, username = excluded.username,
                    password = excluded.password, backup_path = excluded.backup_path,
                    auto_backup = excluded.auto_backup, updated_at = excluded.updated_at""",
                (
                    config.url,
                    config.username,
                    config.password,
                    config.backup_path,
                    int(config.auto_backup),
                    config.created_at,
                    config.updated_at,
                ),
            )

    def delete_remote_config(self) -> bool:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM remote_config").rowcount > 0

    # ------------------------------------------------------------------
    # R2 backup configuration (singleton row)
    # ------------------------------------------------------------------

    def get_r2_backup_config(self) -> R2BackupConfig | None:
        rows = self._query("SELECT * FROM r2_backup_config WHERE id = 1")
        if not rows:
            return None
        r = rows[0]
        return R2BackupConfig(
            account_local_id=r["account_local_id"],
            bucket_name=r["bucket_name"],
            backup_path=r["backup_path"],
            auto_backup=bool(r["auto_backup"]),
            created_at=r["created_at"],
            updated_at=r["updated_at"],
        )

    def save_r2_backup_config(self, config: R2BackupConfig) -> None:
        """Create or replace the single R2 configuration row."""
        with self.transaction() as conn:
            conn.execute(
                """INSERT INTO r2_backup_config (id, account_local_id, bucket_name,
                    backup_path, auto_backup, created_at, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    account_local_id = excluded.account_local_id,
                    bucket_name = excluded.bucket_name,
                    backup_path = excluded.backup_path,
                    auto_backup = excluded.auto_backup,
                    updated_at = excluded.updated_at""",
                (
                    config.account_local_id,
                    config.bucket_name,
                    config.backup_path,
                    int(config.auto_backup),
                    config.created_at,
                    config.updated_at,
                ),
            )

    def set_r2_backup_account(self, account_local_id: int) -> bool:
        """Point the R2 configuration at another account.  False if none is stored."""
        with self.transaction() as conn:
            return conn.execute(
                "UPDATE r2_backup_config SET account_local_id = ?, updated_at = ? WHERE id = 1",
                (account_local_id, now_millis()),
            ).rowcount > 0

    def delete_r2_backup_config(self) -> bool:
        with self.transaction() as conn:
            return conn.execute("DELETE FROM r2_backup_config").rowcount > 0


# ------------------------------------------------------------------
# Row mapping
# ------------------------------------------------------------------

def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        local_id=row["local_id"],
        external_account_id=row["external_account_id"],
        display_name=row["display_name"],
        api_token=row["api_token"],
        default_zone_id=row["default_zone_id"],
        is_default=bool(row["is_default"]),
        r2_access_key_id=row["r2_access_key_id"],
        r2_secret_access_key=row["r2_secret_access_key"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_zone(row: sqlite3.Row) -> Zone:
    return Zone(
        external_zone_id=row["external_zone_id"],
        owner_account_local_id=row["owner_account_local_id"],
        name=row["name"],
        status=row["status"],
        type=row["type"],
        paused=bool(row["paused"]),
        is_selected=bool(row["is_selected"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
