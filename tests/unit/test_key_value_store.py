"""Tests for KeyValueStore - one value per key."""

from pathlib import Path

import pytest

from sqlite_containers.config import StoreSettings
from sqlite_containers.storage.key_value import KeyValueStore
from sqlite_containers.storage.statement import SQLiteContainerError


@pytest.fixture
def kv():
    """Create an in-memory str -> int key-value store."""
    store = KeyValueStore(StoreSettings(in_memory=True), key_type=str, value_type=int)
    yield store
    store.close()


class TestKeyValueSchema:
    """Tests for table provisioning."""

    def test_default_table(self, kv: KeyValueStore):
        """Test the default table name."""
        assert kv.table == "kv_store"

    def test_named_table(self):
        """Test that the configured name is used."""
        with KeyValueStore(StoreSettings(in_memory=True, table_name="prefs")) as store:
            assert store.table == "prefs"
            store.insert("theme", "dark")
            assert store.get("theme") == "dark"

    def test_persists(self, tmp_path: Path):
        """Test that data survives reopening."""
        settings = StoreSettings(db_path=tmp_path / "kv.db")
        with KeyValueStore(settings, key_type=str, value_type=int) as store:
            store.update({"a": 1})
        with KeyValueStore(settings, key_type=str, value_type=int) as store:
            assert store.load() == {"a": 1}


class TestKeyValueOperations:
    """Tests for reads and writes."""

    def test_insert_replaces(self, kv: KeyValueStore):
        """Test that writing an existing key overwrites its value."""
        kv.insert("a", 1)
        kv["a"] = 2
        assert kv["a"] == 2
        assert len(kv) == 1

    def test_get_default(self, kv: KeyValueStore):
        """Test missing-key lookups."""
        assert kv.get("missing") is None
        assert kv.get("missing", 5) == 5
        with pytest.raises(KeyError):
            kv["missing"]

    def test_contains(self, kv: KeyValueStore):
        """Test key membership."""
        kv.insert("a", 0)
        assert "a" in kv
        assert "b" not in kv

    def test_update_keeps_other_keys(self, kv: KeyValueStore):
        """Test that update only adds or overwrites."""
        kv.update({"a": 1, "b": 2})
        kv.update([("b", 3), ("c", 4)])
        assert kv.load() == {"a": 1, "b": 3, "c": 4}

    def test_remove(self, kv: KeyValueStore):
        """Test deleting a key."""
        kv.update({"a": 1, "b": 2})
        kv.remove("a")
        kv.remove("missing")
        assert kv.load() == {"b": 2}

    def test_clear(self, kv: KeyValueStore):
        """Test deleting everything."""
        kv.update({"a": 1, "b": 2})
        kv.clear()
        assert len(kv) == 0


class TestKeyValueReconcile:
    """Tests for making the table equal a mapping."""

    def test_reconcile_replaces_content(self, kv: KeyValueStore):
        """Test additions, overwrites and removals in one call."""
        kv.update({"a": 1, "b": 2, "c": 3})
        kv.reconcile({"b": 20, "d": 4})
        assert kv.load() == {"b": 20, "d": 4}

    def test_reconcile_idempotent(self, kv: KeyValueStore):
        """Test that reconciling twice changes nothing."""
        kv.reconcile({"a": 1})
        kv.reconcile({"a": 1})
        assert kv.load() == {"a": 1}

    def test_reconcile_empty(self, kv: KeyValueStore):
        """Test that an empty mapping clears the table."""
        kv.update({"a": 1})
        kv.reconcile({})
        assert len(kv) == 0

    def test_reconcile_pairs_last_wins(self, kv: KeyValueStore):
        """Test that repeated keys in a pair sequence keep the last value."""
        kv.reconcile([("a", 1), ("a", 2)])
        assert kv.load() == {"a": 2}

    def test_reconcile_atomic(self, kv: KeyValueStore):
        """Test that a failing reconcile keeps the previous content."""
        kv.reconcile({"a": 1, "b": 2})
        with pytest.raises(SQLiteContainerError):
            kv.reconcile([("c", 3), ("d", None)])
        assert kv.load() == {"a": 1, "b": 2}

    def test_closed_store(self):
        """Test that a closed store raises."""
        store = KeyValueStore(StoreSettings(in_memory=True))
        store.close()
        with pytest.raises(SQLiteContainerError, match="not connected"):
            store.get("a")
