"""Tests for secure storage."""

import pytest

from odyssey.errors import StorageError
from odyssey.models import StoredWallet, Wallet
from odyssey.storage import (
    WALLET_STORAGE_KEY,
    FileSecureStore,
    MemorySecureStore,
    load_json,
    load_wallet,
    safe_child_path,
    save_json,
    save_wallet,
)


def stored_wallet():
    return StoredWallet(
        wallet=Wallet(public_key="4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T", created_at=1, name="Main"),
        credential_id="cred-1",
    )


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemorySecureStore()
    return FileSecureStore(tmp_path / "store")


class TestStores:
    def test_get_missing(self, store):
        assert store.get("nothing") is None

    def test_set_get_delete(self, store):
        store.set("k", "v1")
        store.set("k", "v2")
        assert store.get("k") == "v2"
        store.delete("k")
        assert store.get("k") is None
        store.delete("k")

    def test_json_helpers(self, store):
        save_json(store, "state", {"agents": [{"id": "a"}]})
        assert load_json(store, "state") == {"agents": [{"id": "a"}]}


class TestWallet:
    def test_absent_means_not_onboarded(self, store):
        assert load_wallet(store) is None

    def test_roundtrip(self, store):
        save_wallet(store, stored_wallet())
        assert load_wallet(store) == stored_wallet()

    def test_corrupt_json(self, store):
        store.set(WALLET_STORAGE_KEY, "{not json")
        with pytest.raises(StorageError):
            load_wallet(store)

    def test_wrong_shape(self, store):
        store.set(WALLET_STORAGE_KEY, '{"wallet": {}}')
        with pytest.raises(StorageError):
            load_wallet(store)


class TestFileStore:
    def test_permissions(self, tmp_path):
        store = FileSecureStore(tmp_path / "store")
        store.set("odyssey_wallet", "{}")
        assert (tmp_path / "store").stat().st_mode & 0o777 == 0o700
        assert (tmp_path / "store" / "odyssey_wallet.json").stat().st_mode & 0o777 == 0o600

    def test_no_temp_files_left(self, tmp_path):
        store = FileSecureStore(tmp_path / "store")
        store.set("a", "1")
        names = sorted(p.name for p in (tmp_path / "store").iterdir())
        assert names == [".lock", "a.json"]

    def test_persists_across_instances(self, tmp_path):
        FileSecureStore(tmp_path / "store").set("a", "1")
        assert FileSecureStore(tmp_path / "store").get("a") == "1"


def test_safe_child_path_sanitizes(tmp_path):
    path = safe_child_path(tmp_path, "../../etc/passwd", ".json")
    assert path.parent == tmp_path.resolve()
    assert path.name == ".._.._etc_passwd.json"
