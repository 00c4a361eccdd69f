"""Registry of archive clients, one per credential set."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from acctctl.core.errors import AccountNotFound, MissingR2Credentials, NoRemoteConfigured
from acctctl.core.local_store import LocalStore
from acctctl.core.models import (
    Account,
    R2BackupConfig,
    RemoteConfig,
    StorageType,
    join_backup_path,
)
from acctctl.core.r2_client import R2ArchiveStore, R2Credentials
from acctctl.core.webdav_client import ArchiveCredentials, ArchiveStore, WebDavArchiveStore

logger = logging.getLogger(__name__)


@dataclass
class ArchiveTarget:
    """A resolved archive plus the directory snapshots live in."""

    storage: StorageType
    archive: ArchiveStore
    backup_path: str

    def file_path(self, file_name: str) -> str:
        return join_backup_path(self.backup_path, file_name)


class ArchiveClientRegistry:
    """Caches constructed archive clients keyed by their credentials.

    Entries live until ``evict()`` or ``clear()`` is called; saving new
    remote settings evicts the client built for the old ones.
    """

    def __init__(
        self,
        factory: Callable[[ArchiveCredentials], ArchiveStore] = WebDavArchiveStore,
        r2_factory: Callable[[R2Credentials], ArchiveStore] = R2ArchiveStore,
    ) -> None:
        self._factory = factory
        self._r2_factory = r2_factory
        self._clients: dict[ArchiveCredentials | R2Credentials, ArchiveStore] = {}
        self._lock = threading.Lock()

    def get(self, credentials: ArchiveCredentials | R2Credentials) -> ArchiveStore:
        with self._lock:
            client = self._clients.get(credentials)
            if client is None:
                if isinstance(credentials, R2Credentials):
                    client = self._r2_factory(credentials)
                    logger.debug("Created R2 client for bucket %s", credentials.bucket_name)
                else:
                    client = self._factory(credentials)
                    logger.debug("Created archive client for %s", credentials.base_url)
                self._clients[credentials] = client
            return client

    def for_config(self, config: RemoteConfig) -> ArchiveStore:
        return self.get(credentials_for(config))

    def for_r2_config(self, config: R2BackupConfig, account: Account) -> ArchiveStore:
        return self.get(r2_credentials_for(config, account))

    def target(self, store: LocalStore, storage: StorageType) -> ArchiveTarget:
        """Resolve the archive for *storage* from the settings in *store*.

        Raises ``NoRemoteConfigured`` when the target has no stored settings,
        and for R2 ``AccountNotFound`` / ``MissingR2Credentials`` when the
        chosen account cannot sign requests.
        """
        if storage is StorageType.R2:
            config = store.get_r2_backup_config()
            if config is None:
                raise NoRemoteConfigured("r2")
            account = store.get_account(config.account_local_id)
            if account is None:
                raise AccountNotFound(config.account_local_id)
            return ArchiveTarget(storage, self.for_r2_config(config, account), config.backup_path)

        remote = store.get_remote_config()
        if remote is None:
            raise NoRemoteConfigured()
        return ArchiveTarget(storage, self.for_config(remote), remote.backup_path)

    def evict(self, credentials: ArchiveCredentials | R2Credentials) -> bool:
        with self._lock:
            return self._clients.pop(credentials, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()

    def __len__(self) -> int:
        return len(self._clients)


def credentials_for(config: RemoteConfig) -> ArchiveCredentials:
    return ArchiveCredentials(
        base_url=config.url, username=config.username, password=config.password
    )


def r2_credentials_for(config: R2BackupConfig, account: Account) -> R2Credentials:
    if not account.has_r2_credentials:
        raise MissingR2Credentials(account.local_id)
    return R2Credentials(
        account_id=account.external_account_id,
        access_key_id=account.r2_access_key_id,
        secret_access_key=account.r2_secret_access_key,
        bucket_name=config.bucket_name,
    )
