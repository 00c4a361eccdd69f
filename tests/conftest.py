"""Shared fixtures: an in-memory store and an in-memory archive."""

from datetime import datetime

import pytest

from acctctl.core.client_registry import ArchiveClientRegistry
from acctctl.core.errors import ArchiveFileNotFound, AuthenticationFailure, NetworkFailure
from acctctl.core.local_store import LocalStore
from acctctl.core.models import Account, RemoteConfig, Zone
from acctctl.core.webdav_client import ArchiveStore


class FakeArchive(ArchiveStore):
    """Dict-backed archive that records every upload."""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.fail_uploads = False
        self.reject_credentials = False

    def check_connection(self) -> None:
        if self.reject_credentials:
            raise AuthenticationFailure(401, "simulated rejection")

    def upload(self, path: str, data: bytes) -> None:
        if self.fail_uploads:
            raise NetworkFailure("simulated outage")
        self.uploads.append(path)
        self.files[path] = data

    def download(self, path: str) -> bytes:
        if path not in self.files:
            raise ArchiveFileNotFound(path)
        return self.files[path]

    def list(self, path_prefix: str) -> list[str]:
        prefix = path_prefix if path_prefix.endswith("/") else path_prefix + "/"
        return [p[len(prefix):] for p in self.files if p.startswith(prefix)]

    def delete(self, path: str) -> bool:
        return self.files.pop(path, None) is not None


class SteppingClock:
    """Returns a new second on every call so backup names never collide."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)) -> None:
        self._ts = start.timestamp()

    def __call__(self) -> datetime:
        self._ts += 1
        return datetime.fromtimestamp(self._ts)


@pytest.fixture
def store():
    s = LocalStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def archive():
    return FakeArchive()


@pytest.fixture
def remote_config():
    return RemoteConfig(url="https://dav.example.com/remote.php/dav", username="alice", password="secret")


def make_account(external_id: str, name: str, **kwargs) -> Account:
    return Account(external_account_id=external_id, display_name=name, api_token=f"tok-{external_id}", **kwargs)


def make_zone(zone_id: str, owner: int, name: str, **kwargs) -> Zone:
    return Zone(external_zone_id=zone_id, owner_account_local_id=owner, name=name, status="active", **kwargs)


@pytest.fixture
def r2_archive():
    return FakeArchive()


@pytest.fixture
def registry(archive, r2_archive):
    """Registry handing out the WebDAV fake or the R2 fake by credential type."""
    return ArchiveClientRegistry(factory=lambda creds: archive, r2_factory=lambda creds: r2_archive)


def make_r2_account(external_id: str, name: str, **kwargs) -> Account:
    return make_account(
        external_id, name, r2_access_key_id=f"ak-{external_id}", r2_secret_access_key="sk", **kwargs
    )
