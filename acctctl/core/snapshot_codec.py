"""Snapshot codec — versioned JSON documents of the Account → Zone graph.

Zones are grouped under their owner's *external* account id.  Local ids
are surrogate keys and mean nothing once the document leaves this store.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from acctctl.config import (
    BACKUP_FILE_PREFIX,
    BACKUP_FILE_SUFFIX,
    BACKUP_TIMESTAMP_FORMAT,
    SNAPSHOT_FORMAT_VERSION,
    SUPPORTED_SNAPSHOT_VERSIONS,
)
from acctctl.core.errors import MalformedSnapshot
from acctctl.core.models import Account, Zone, now_millis

_BACKUP_NAME_RE = re.compile(
    rf"^{re.escape(BACKUP_FILE_PREFIX)}\d{{8}}_\d{{6}}{re.escape(BACKUP_FILE_SUFFIX)}$"
)

# Exclusive upper bound of an SQLite INTEGER
_MAX_MILLIS = 2 ** 63


# ------------------------------------------------------------------
# Data structures
# ------------------------------------------------------------------

@dataclass
class SnapshotZone:
    """A zone as carried in a snapshot, linked to its owner by external id."""

    external_zone_id: str
    owner_external_id: str
    name: str
    status: str
    type: str | None = None
    paused: bool = False
    is_selected: bool = False
    created_at: int = 0
    updated_at: int = 0

    def to_zone(self, owner_local_id: int) -> Zone:
        return Zone(
            external_zone_id=self.external_zone_id,
            owner_account_local_id=owner_local_id,
            name=self.name,
            status=self.status,
            type=self.type,
            paused=self.paused,
            is_selected=self.is_selected,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass
class SnapshotAccount:
    account: Account
    zones: list[SnapshotZone] = field(default_factory=list)


@dataclass
class Snapshot:
    format_version: str
    created_at: int
    accounts: list[SnapshotAccount] = field(default_factory=list)

    @property
    def zone_count(self) -> int:
        return sum(len(a.zones) for a in self.accounts)


# ------------------------------------------------------------------
# Encoding
# ------------------------------------------------------------------

def encode(
    accounts: list[Account],
    zones_by_account: dict[int, list[Zone]],
    created_at: int | None = None,
) -> bytes:
    """Serialize *accounts* and their zones into a snapshot document."""
    doc = {
        "version": SNAPSHOT_FORMAT_VERSION,
        "backupDate": created_at if created_at is not None else now_millis(),
        "accounts": [
            _account_to_dict(a, zones_by_account.get(a.local_id, []))
            for a in accounts
        ],
    }
    return json.dumps(doc, indent=2, ensure_ascii=False).encode("utf-8")


def _account_to_dict(account: Account, zones: list[Zone]) -> dict[str, Any]:
    return {
        "name": account.display_name,
        "accountId": account.external_account_id,
        "token": account.api_token,
        "zoneId": account.default_zone_id,
        "isDefault": account.is_default,
        "r2AccessKeyId": account.r2_access_key_id,
        "r2SecretAccessKey": account.r2_secret_access_key,
        "createdAt": account.created_at,
        "updatedAt": account.updated_at,
        "zones": [
            {
                "id": z.external_zone_id,
                "accountId": z.owner_account_local_id,
                "name": z.name,
                "status": z.status,
                "type": z.type,
                "paused": z.paused,
                "isSelected": z.is_selected,
                "createdAt": z.created_at,
                "updatedAt": z.updated_at,
            }
            for z in zones
        ],
    }


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------

def decode(data: bytes | str) -> Snapshot:
    """Parse a snapshot document.

    Raises ``MalformedSnapshot`` for invalid JSON, an unknown version, or a
    missing / mistyped required field.
    """
    try:
        doc = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedSnapshot(f"Snapshot is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise MalformedSnapshot("Snapshot must be a JSON object.")

    version = doc.get("version")
    if version not in SUPPORTED_SNAPSHOT_VERSIONS:
        raise MalformedSnapshot(f"Unsupported snapshot version: {version!r}")

    created_at = _millis(doc, "backupDate", "snapshot", now_millis())
    raw_accounts = doc.get("accounts")
    if not isinstance(raw_accounts, list):
        raise MalformedSnapshot("'accounts' must be a list.")

    accounts = [
        _decode_account(raw, index, created_at)
        for index, raw in enumerate(raw_accounts)
    ]
    return Snapshot(format_version=version, created_at=created_at, accounts=accounts)


def _decode_account(raw: Any, index: int, fallback_ts: int) -> SnapshotAccount:
    where = f"accounts[{index}]"
    if not isinstance(raw, dict):
        raise MalformedSnapshot(f"{where} must be an object.")

    external_id = _require_str(raw, "accountId", where)
    account = Account(
        external_account_id=external_id,
        display_name=_require_str(raw, "name", where),
        api_token=_require_str(raw, "token", where),
        default_zone_id=_optional_str(raw, "zoneId", where),
        is_default=_bool(raw, "isDefault", where),
        r2_access_key_id=_optional_str(raw, "r2AccessKeyId", where),
        r2_secret_access_key=_optional_str(raw, "r2SecretAccessKey", where),
        created_at=_millis(raw, "createdAt", where, fallback_ts),
        updated_at=_millis(raw, "updatedAt", where, fallback_ts),
    )

    raw_zones = raw.get("zones")
    if raw_zones is None:
        raw_zones = []
    if not isinstance(raw_zones, list):
        raise MalformedSnapshot(f"{where}.zones must be a list.")

    zones = []
    for zi, rz in enumerate(raw_zones):
        zwhere = f"{where}.zones[{zi}]"
        if not isinstance(rz, dict):
            raise MalformedSnapshot(f"{zwhere} must be an object.")
        zones.append(SnapshotZone(
            external_zone_id=_require_str(rz, "id", zwhere),
            owner_external_id=external_id,
            name=_require_str(rz, "name", zwhere),
            status=_require_str(rz, "status", zwhere),
            type=_optional_str(rz, "type", zwhere),
            paused=_bool(rz, "paused", zwhere),
            is_selected=_bool(rz, "isSelected", zwhere),
            created_at=_millis(rz, "createdAt", zwhere, fallback_ts),
            updated_at=_millis(rz, "updatedAt", zwhere, fallback_ts),
        ))
    return SnapshotAccount(account=account, zones=zones)


def _require_str(obj: dict, key: str, where: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedSnapshot(f"{where}.{key} is required and must be a non-empty string.")
    return value


def _optional_str(obj: dict, key: str, where: str) -> str | None:
    value = obj.get(key)
    if value is not None and not isinstance(value, str):
        raise MalformedSnapshot(f"{where}.{key} must be a string or null.")
    return value


def _bool(obj: dict, key: str, where: str) -> bool:
    value = obj.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedSnapshot(f"{where}.{key} must be a boolean.")
    return value


def _millis(obj: dict, key: str, where: str, default: int) -> int:
    value = obj.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < _MAX_MILLIS:
        raise MalformedSnapshot(f"{where}.{key} must be epoch milliseconds.")
    return value


# ------------------------------------------------------------------
# File naming
# ------------------------------------------------------------------

def backup_file_name(when: datetime | None = None) -> str:
    """``cloudflare_backup_<YYYYMMDD_HHMMSS>.json`` for *when* (local time)."""
    stamp = (when or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    return f"{BACKUP_FILE_PREFIX}{stamp}{BACKUP_FILE_SUFFIX}"


def is_backup_file_name(name: str) -> bool:
    return bool(_BACKUP_NAME_RE.match(name))
