"""Error taxonomy and the result type returned by user-invoked operations."""

from dataclasses import dataclass
from typing import Any


class AcctctlError(Exception):
    """Base class for every failure raised by the acctctl core."""


class NoRemoteConfigured(AcctctlError):
    """Raised when an archive operation runs without stored settings for its target."""

    def __init__(self, command: str = "remote") -> None:
        super().__init__(f"No remote archive configured. Run 'acctcli {command} configure' first.")


class EmptyDataset(AcctctlError):
    """Raised when a backup is requested but there are no accounts."""

    def __init__(self) -> None:
        super().__init__("No accounts to back up.")


class MalformedSnapshot(AcctctlError):
    """Raised when a snapshot document cannot be decoded."""


class ReferentialIntegrityViolation(AcctctlError):
    """Raised when a zone references an account that does not exist."""


class LocalStoreError(AcctctlError):
    """Raised when the local database rejects a bulk write (restore, import)."""


class MissingR2Credentials(AcctctlError):
    """Raised when the account chosen for R2 backups has no R2 keys."""

    def __init__(self, local_id: int):
        self.local_id = local_id
        super().__init__(
            f"Account {local_id} has no R2 access key. Run 'acctcli account update {local_id} --r2-keys'."
        )


class OrphanZoneOnRestore(AcctctlError):
    """Raised in strict mode when a snapshot zone has no matching account."""

    def __init__(self, zone_id: str, owner_external_id: str):
        self.zone_id = zone_id
        self.owner_external_id = owner_external_id
        super().__init__(
            f"Zone '{zone_id}' references unknown account '{owner_external_id}'"
        )


class AccountNotFound(AcctctlError):
    """Raised when a local account id does not exist."""

    def __init__(self, local_id: int):
        self.local_id = local_id
        super().__init__(f"Account {local_id} not found")


class ZoneNotFound(AcctctlError):
    """Raised when a zone is not owned by the given account."""

    def __init__(self, zone_id: str, account_local_id: int):
        self.zone_id = zone_id
        self.account_local_id = account_local_id
        super().__init__(f"Zone '{zone_id}' not found for account {account_local_id}")


class RemoteArchiveError(AcctctlError):
    """Raised when a WebDAV call fails."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Remote archive error ({status_code}): {message}")


class NetworkFailure(RemoteArchiveError):
    """Transport-level failure: connection refused, DNS, timeout."""

    def __init__(self, message: str):
        super().__init__(0, message)


class AuthenticationFailure(RemoteArchiveError):
    """The remote archive rejected the credentials."""


class ArchiveFileNotFound(RemoteArchiveError):
    """The requested archive file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(404, f"File not found: {path}")


@dataclass
class OperationResult:
    """Outcome of an explicit operation: either a value or a typed error."""

    value: Any = None
    error: AcctctlError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, value: Any = None) -> "OperationResult":
        return cls(value=value)

    @classmethod
    def failed(cls, error: AcctctlError) -> "OperationResult":
        return cls(error=error)
