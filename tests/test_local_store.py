"""Tests for core.local_store — accounts, zones, invariants, transactions."""

import pytest

from acctctl.core.errors import AccountNotFound, ReferentialIntegrityViolation, ZoneNotFound
from acctctl.core.local_store import LocalStore
from acctctl.core.models import R2BackupConfig, RemoteConfig

from conftest import make_account, make_zone


# ------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------

class TestAccounts:
    def test_insert_assigns_fresh_ids(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        b = store.insert_account(make_account("acc-2", "Beta"))
        assert a != b
        assert store.get_account(a).external_account_id == "acc-1"

    def test_insert_ignores_given_local_id(self, store):
        local_id = store.insert_account(make_account("acc-1", "Alpha", local_id=999))
        assert local_id != 999

    def test_list_orders_default_first_then_name(self, store):
        store.insert_account(make_account("acc-1", "Charlie"))
        store.insert_account(make_account("acc-2", "Alpha"))
        store.insert_account(make_account("acc-3", "Zulu", is_default=True))
        names = [a.display_name for a in store.list_accounts()]
        assert names == ["Zulu", "Alpha", "Charlie"]

    def test_update(self, store):
        local_id = store.insert_account(make_account("acc-1", "Alpha"))
        account = store.get_account(local_id)
        account.display_name = "Renamed"
        store.update_account(account)
        assert store.get_account(local_id).display_name == "Renamed"

    def test_update_missing_raises(self, store):
        ghost = make_account("acc-9", "Ghost", local_id=42)
        with pytest.raises(AccountNotFound):
            store.update_account(ghost)

    def test_delete_cascades_to_zones(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        b = store.insert_account(make_account("acc-2", "Beta"))
        store.insert_zone(make_zone("z1", a, "alpha.com"))
        store.insert_zone(make_zone("z2", a, "alpha.net"))
        store.insert_zone(make_zone("z3", b, "beta.com"))

        assert store.delete_account(a) is True
        assert store.list_zones_by_account(a) == []
        assert store.get_zone("z1") is None
        assert store.count_zones() == 1

    def test_delete_missing_returns_false(self, store):
        assert store.delete_account(12345) is False

    def test_count(self, store):
        assert store.count_accounts() == 0
        store.insert_account(make_account("acc-1", "Alpha"))
        assert store.count_accounts() == 1


class TestDefaultAccount:
    def test_at_most_one_default_after_any_sequence(self, store):
        ids = [store.insert_account(make_account(f"acc-{i}", f"N{i}")) for i in range(4)]
        for target in [ids[0], ids[2], ids[2], ids[1], ids[3], ids[0]]:
            store.set_default_account(target)
            defaults = [a for a in store.list_accounts() if a.is_default]
            assert len(defaults) == 1
            assert defaults[0].local_id == target

    def test_insert_default_clears_previous(self, store):
        first = store.insert_account(make_account("acc-1", "Alpha", is_default=True))
        second = store.insert_account(make_account("acc-2", "Beta", is_default=True))
        assert store.get_default_account().local_id == second
        assert store.get_account(first).is_default is False

    def test_update_to_default_clears_previous(self, store):
        first = store.insert_account(make_account("acc-1", "Alpha", is_default=True))
        second = store.insert_account(make_account("acc-2", "Beta"))
        account = store.get_account(second)
        account.is_default = True
        store.update_account(account)
        assert store.get_default_account().local_id == second
        assert store.get_account(first).is_default is False

    def test_set_default_unknown_keeps_current(self, store):
        current = store.insert_account(make_account("acc-1", "Alpha", is_default=True))
        with pytest.raises(AccountNotFound):
            store.set_default_account(999)
        assert store.get_default_account().local_id == current


# ------------------------------------------------------------------
# Zones
# ------------------------------------------------------------------

class TestZones:
    def test_insert_requires_existing_owner(self, store):
        with pytest.raises(ReferentialIntegrityViolation):
            store.insert_zone(make_zone("z1", 77, "orphan.com"))
        assert store.count_zones() == 0

    def test_list_by_account_sorted_by_name(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.insert_zone(make_zone("z2", a, "b.com"))
        store.insert_zone(make_zone("z1", a, "a.com"))
        assert [z.name for z in store.list_zones_by_account(a)] == ["a.com", "b.com"]

    def test_insert_same_id_replaces(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.insert_zone(make_zone("z1", a, "old.com"))
        store.insert_zone(make_zone("z1", a, "new.com", paused=True))
        zones = store.list_zones_by_account(a)
        assert len(zones) == 1
        assert zones[0].name == "new.com"
        assert zones[0].paused is True

    def test_select_zone_clears_siblings(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        for zid in ("z1", "z2", "z3"):
            store.insert_zone(make_zone(zid, a, f"{zid}.com"))

        for zid in ("z1", "z3", "z2", "z2"):
            store.set_selected_zone(a, zid)
            selected = [z for z in store.list_zones_by_account(a) if z.is_selected]
            assert [z.external_zone_id for z in selected] == [zid]

        assert store.get_selected_zone(a).external_zone_id == "z2"
        assert store.get_account(a).default_zone_id == "z2"

    def test_selection_is_per_account(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        b = store.insert_account(make_account("acc-2", "Beta"))
        store.insert_zone(make_zone("z1", a, "a.com"))
        store.insert_zone(make_zone("z2", b, "b.com"))
        store.set_selected_zone(a, "z1")
        store.set_selected_zone(b, "z2")
        assert store.get_selected_zone(a).external_zone_id == "z1"
        assert store.get_selected_zone(b).external_zone_id == "z2"

    def test_select_zone_of_other_account_raises(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        b = store.insert_account(make_account("acc-2", "Beta"))
        store.insert_zone(make_zone("z1", a, "a.com"))
        with pytest.raises(ZoneNotFound):
            store.set_selected_zone(b, "z1")

    def test_insert_selected_zone_clears_siblings(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.insert_zone(make_zone("z1", a, "a.com", is_selected=True))
        store.insert_zone(make_zone("z2", a, "b.com", is_selected=True))
        selected = [z.external_zone_id for z in store.list_zones_by_account(a) if z.is_selected]
        assert selected == ["z2"]

    def test_delete_zones_by_account(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        b = store.insert_account(make_account("acc-2", "Beta"))
        store.insert_zone(make_zone("z1", a, "a.com"))
        store.insert_zone(make_zone("z2", b, "b.com"))
        assert store.delete_zones_by_account(a) == 1
        assert store.count_zones() == 1

    def test_delete_all(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.insert_zone(make_zone("z1", a, "a.com"))
        store.delete_all_zones()
        store.delete_all_accounts()
        assert store.count_zones() == 0
        assert store.count_accounts() == 0


# ------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------

class TestTransaction:
    def test_rollback_on_error(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.insert_zone(make_zone("z1", a, "a.com"))

        with pytest.raises(RuntimeError):
            with store.transaction():
                store.delete_all_zones()
                store.delete_all_accounts()
                raise RuntimeError("boom")

        assert store.count_accounts() == 1
        assert store.get_zone("z1") is not None

    def test_nested_writes_join_outer(self, store):
        with pytest.raises(ReferentialIntegrityViolation):
            with store.transaction():
                store.insert_account(make_account("acc-1", "Alpha"))
                store.insert_zone(make_zone("z1", 999, "bad.com"))
        assert store.count_accounts() == 0

    def test_commit(self, store):
        with store.transaction():
            store.insert_account(make_account("acc-1", "Alpha"))
            store.insert_account(make_account("acc-2", "Beta"))
        assert store.count_accounts() == 2


# ------------------------------------------------------------------
# Remote configuration
# ------------------------------------------------------------------

class TestRemoteConfig:
    def test_missing_returns_none(self, store):
        assert store.get_remote_config() is None

    def test_save_is_singleton(self, store):
        store.save_remote_config(RemoteConfig(url="https://a", username="u", password="p"))
        store.save_remote_config(RemoteConfig(
            url="https://b", username="v", password="q", backup_path="/bk", auto_backup=True,
        ))
        cfg = store.get_remote_config()
        assert cfg.url == "https://b"
        assert cfg.backup_path == "/bk"
        assert cfg.auto_backup is True
        assert store._query("SELECT COUNT(*) FROM remote_config")[0][0] == 1

    def test_default_backup_path(self, store):
        store.save_remote_config(RemoteConfig(url="https://a", username="u", password="p"))
        assert store.get_remote_config().backup_path == "/CloudFlareAssistant/"

    def test_delete(self, store):
        store.save_remote_config(RemoteConfig(url="https://a", username="u", password="p"))
        assert store.delete_remote_config() is True
        assert store.get_remote_config() is None


class TestR2BackupConfig:
    def test_missing_returns_none(self, store):
        assert store.get_r2_backup_config() is None

    def test_save_is_singleton(self, store):
        store.save_r2_backup_config(R2BackupConfig(account_local_id=1, bucket_name="one"))
        store.save_r2_backup_config(R2BackupConfig(
            account_local_id=2, bucket_name="two", backup_path="/bk/", auto_backup=True,
        ))
        cfg = store.get_r2_backup_config()
        assert cfg.account_local_id == 2
        assert cfg.bucket_name == "two"
        assert cfg.backup_path == "bk/"
        assert cfg.auto_backup is True
        assert store._query("SELECT COUNT(*) FROM r2_backup_config")[0][0] == 1

    def test_default_backup_path_has_no_leading_slash(self, store):
        store.save_r2_backup_config(R2BackupConfig(account_local_id=1, bucket_name="b"))
        cfg = store.get_r2_backup_config()
        assert cfg.backup_path == "CloudFlareAssistant/"
        assert cfg.file_path("x.json") == "CloudFlareAssistant/x.json"

    def test_set_account(self, store):
        assert store.set_r2_backup_account(5) is False
        store.save_r2_backup_config(R2BackupConfig(account_local_id=1, bucket_name="b"))
        assert store.set_r2_backup_account(5) is True
        assert store.get_r2_backup_config().account_local_id == 5

    def test_survives_account_deletion(self, store):
        a = store.insert_account(make_account("acc-1", "Alpha"))
        store.save_r2_backup_config(R2BackupConfig(account_local_id=a, bucket_name="b"))
        store.delete_all_accounts()
        assert store.get_r2_backup_config().account_local_id == a

    def test_delete(self, store):
        store.save_r2_backup_config(R2BackupConfig(account_local_id=1, bucket_name="b"))
        assert store.delete_r2_backup_config() is True
        assert store.delete_r2_backup_config() is False
        assert store.get_r2_backup_config() is None


class TestPersistence:
    def test_data_survives_reopen(self, tmp_path):
        path = tmp_path / "nested" / "accounts.db"
        s = LocalStore(path)
        a = s.insert_account(make_account("acc-1", "Alpha"))
        s.insert_zone(make_zone("z1", a, "a.com"))
        s.close()

        reopened = LocalStore(path)
        assert [acc.display_name for acc in reopened.list_accounts()] == ["Alpha"]
        assert reopened.get_zone("z1").owner_account_local_id == a
        reopened.close()
