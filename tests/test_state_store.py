"""Tests for StateStore, the SQLite key-value state and run audit."""

from __future__ import annotations

from pathlib import Path

import pytest

from crm_ingestor.storage.state_store import StateStore


class TestConnect:
    """StateStore.connect() initialises the database schema."""

    @pytest.mark.parametrize("table", ["kv_state", "ingest_runs"])
    def test_creates_tables(self, tmp_db_path: Path, table: str) -> None:
        store = StateStore(tmp_db_path)
        store.connect()
        tables = store.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchall()
        store.close()
        assert len(tables) == 1

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        nested = tmp_path / "a" / "b" / "state.db"
        with StateStore(nested):
            pass
        assert nested.exists()

    def test_conn_before_connect_raises(self, tmp_db_path: Path) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            StateStore(tmp_db_path).conn


class TestKeyValue:
    def test_missing_key_returns_default(self, state: StateStore) -> None:
        assert state.get_json("nope") is None
        assert state.get_json("nope", {}) == {}

    def test_round_trip_and_overwrite(self, state: StateStore) -> None:
        state.set_json("PROC_IDS", {"a": 1})
        state.set_json("PROC_IDS", {"a": 1, "b": 2})
        assert state.get_json("PROC_IDS") == {"a": 1, "b": 2}

    def test_corrupt_value_reads_as_default(self, state: StateStore) -> None:
        state.conn.execute(
            "INSERT INTO kv_state (key, value, updated_at) VALUES ('bad', '{oops', 'x')"
        )
        assert state.get_json("bad", "fallback") == "fallback"

    def test_delete_reports_whether_removed(self, state: StateStore) -> None:
        state.set_json("k", 1)
        assert state.delete("k") is True
        assert state.delete("k") is False

    def test_keys_by_prefix(self, state: StateStore) -> None:
        state.set_json("THREAD_CURSOR::b", {})
        state.set_json("THREAD_CURSOR::a", {})
        state.set_json("PROC_IDS", {})
        assert state.keys("THREAD_CURSOR::") == ["THREAD_CURSOR::a", "THREAD_CURSOR::b"]
        assert len(state.keys()) == 3

    def test_prefix_is_literal(self, state: StateStore) -> None:
        state.set_json("a%b", 1)
        state.set_json("axb", 2)
        assert state.keys("a%") == ["a%b"]

    def test_persists_across_connections(self, tmp_db_path: Path) -> None:
        with StateStore(tmp_db_path) as store:
            store.set_json("k", [1, 2])
        with StateStore(tmp_db_path) as store:
            assert store.get_json("k") == [1, 2]


class TestRuns:
    def test_start_and_complete_run(self, state: StateStore) -> None:
        run_id = state.start_run("fast")
        state.complete_run(run_id, threads_seen=4, messages_written=3, messages_failed=1)
        (run,) = state.recent_runs()
        assert run["run_id"] == run_id
        assert run["mode"] == "fast"
        assert run["completed_at"] is not None
        assert run["threads_seen"] == 4
        assert run["messages_written"] == 3
        assert run["messages_failed"] == 1

    def test_recent_runs_newest_first(self, state: StateStore) -> None:
        ids = [state.start_run("fast") for _ in range(7)]
        runs = state.recent_runs(limit=5)
        assert [r["run_id"] for r in runs] == list(reversed(ids))[:5]
