"""Account, Zone and remote configuration records."""

import time
from dataclasses import dataclass, field
from enum import Enum

from acctctl.config import DEFAULT_BACKUP_PATH, DEFAULT_R2_BACKUP_PATH


def now_millis() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def join_backup_path(backup_path: str, file_name: str) -> str:
    """Join *file_name* onto a backup directory; an empty directory means the root."""
    if not backup_path:
        return file_name
    if backup_path.endswith("/"):
        return f"{backup_path}{file_name}"
    return f"{backup_path}/{file_name}"


class StorageType(Enum):
    """Where snapshots are archived."""

    WEBDAV = "webdav"
    R2 = "r2"


@dataclass
class Account:
    """A Cloudflare account stored locally.

    ``local_id`` is the surrogate key assigned by the store; it is ``None``
    until the row has been inserted and is never carried across a restore.
    """

    external_account_id: str
    display_name: str
    api_token: str
    default_zone_id: str | None = None
    is_default: bool = False
    r2_access_key_id: str | None = None
    r2_secret_access_key: str | None = None
    created_at: int = field(default_factory=now_millis)
    updated_at: int = field(default_factory=now_millis)
    local_id: int | None = None

    @property
    def has_r2_credentials(self) -> bool:
        return bool(self.r2_access_key_id and self.r2_secret_access_key)


@dataclass
class Zone:
    """A zone owned by a local account, keyed by its Cloudflare zone id."""

    external_zone_id: str
    owner_account_local_id: int
    name: str
    status: str
    type: str | None = None
    paused: bool = False
    is_selected: bool = False
    created_at: int = field(default_factory=now_millis)
    updated_at: int = field(default_factory=now_millis)


@dataclass
class RemoteConfig:
    """WebDAV archive settings.  Only one is ever persisted."""

    url: str
    username: str
    password: str
    backup_path: str = DEFAULT_BACKUP_PATH
    auto_backup: bool = False
    created_at: int = field(default_factory=now_millis)
    updated_at: int = field(default_factory=now_millis)

    def file_path(self, file_name: str) -> str:
        """Join *file_name* onto the configured backup path."""
        return join_backup_path(self.backup_path, file_name)


@dataclass
class R2BackupConfig:
    """R2 bucket settings.  Only one is ever persisted.

    The bucket is reached with the R2 keys of the account identified by
    ``account_local_id``; object keys never start with a slash.
    """

    account_local_id: int
    bucket_name: str
    backup_path: str = DEFAULT_R2_BACKUP_PATH
    auto_backup: bool = False
    created_at: int = field(default_factory=now_millis)
    updated_at: int = field(default_factory=now_millis)

    def __post_init__(self) -> None:
        self.backup_path = self.backup_path.strip().lstrip("/")

    def file_path(self, file_name: str) -> str:
        return join_backup_path(self.backup_path, file_name)
