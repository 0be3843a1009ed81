from boxlog.db import (
    InMemoryKeyValueStore,
    SQLiteKeyValueStore,
    footprint,
    get_store,
)
from boxlog.settings import Settings


def exercise_store(store):
    assert store.get("missing") is None
    store.set("a", "[]")
    store.set("a", "[1]")
    store.set("b", "x")
    assert store.get("a") == "[1]"
    assert sorted(store.keys()) == ["a", "b"]
    store.delete("b")
    store.delete("never-set")
    assert store.keys() == ["a"]


class TestInMemoryKeyValueStore:
    def test_get_set_delete(self):
        exercise_store(InMemoryKeyValueStore())

    def test_initial_values_are_copied(self):
        initial = {"a": "1"}
        store = InMemoryKeyValueStore(initial)
        store.set("b", "2")
        assert "b" not in initial


class TestSQLiteKeyValueStore:
    def test_get_set_delete(self, tmp_path):
        exercise_store(SQLiteKeyValueStore(str(tmp_path / "kv.db")))

    def test_values_persist_across_instances(self, tmp_path):
        path = str(tmp_path / "nested" / "kv.db")
        SQLiteKeyValueStore(path).set("boxlog_version", "1.0.0")
        assert SQLiteKeyValueStore(path).get("boxlog_version") == "1.0.0"


class TestFootprint:
    def test_counts_keys_and_values_in_utf8_bytes(self):
        store = InMemoryKeyValueStore({"ab": "cd", "k": "é"})
        # 2 + 2 + 1 + 2 (é is two bytes)
        assert footprint(store) == 7

    def test_empty_store(self):
        assert footprint(InMemoryKeyValueStore()) == 0


class TestGetStore:
    def test_memory_default(self):
        assert isinstance(get_store(Settings()), InMemoryKeyValueStore)

    def test_sqlite(self, tmp_path):
        settings = Settings(substrate="sqlite", sqlite_path=str(tmp_path / "boxlog.db"))
        assert isinstance(get_store(settings), SQLiteKeyValueStore)
