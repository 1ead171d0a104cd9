"""Tests for key/value storage, flow stores and execution history."""

import json

import pytest
from conftest import definition, node

from flowengine.config import EngineConfig
from flowengine.graph import ExecutionReport, NodeReport
from flowengine.graph.executor import ErrorKind, ExecutionError
from flowengine.schemas.history import HistoryEntry, RunStatus
from flowengine.storage.flow_store import InMemoryFlowStore, load_flows, parse_flows
from flowengine.storage.history_store import HistoryStore
from flowengine.storage.kv import InMemoryStorage, JsonFileStorage


# ---- Key/value ----
class TestJsonFileStorage:
    def test_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.set("history", "[1, 2]")

        assert storage.get("history") == "[1, 2]"
        assert (tmp_path / "history.json").exists()

    def test_missing_key(self, tmp_path):
        assert JsonFileStorage(tmp_path).get("nothing") is None

    def test_delete(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.set("k", "v")
        storage.delete("k")
        storage.delete("k")

        assert storage.get("k") is None

    @pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden", "nul\x00"])
    def test_rejects_unsafe_keys(self, tmp_path, key):
        with pytest.raises(ValueError):
            JsonFileStorage(tmp_path).set(key, "x")

    def test_no_temp_files_left_behind(self, tmp_path):
        JsonFileStorage(tmp_path).set("k", "v")

        assert [p.name for p in tmp_path.iterdir()] == ["k.json"]


# ---- Flow store ----
def test_flow_store_lookup_by_id_and_name():
    store = InMemoryFlowStore([definition("f1", [node("a")], name="Greeting")])

    assert store.get("f1").name == "Greeting"
    assert store.find_by_name("Greeting").id == "f1"
    assert store.find_by_name("Nope") is None
    assert store.remove("f1") is True
    assert len(store) == 0


def test_parse_flows_accepts_editor_json():
    data = {
        "greet": {
            "name": "Greeting",
            "allowDangerousExecution": True,
            "flow": {
                "nodes": [{"id": "a", "type": "stringNode", "data": {"value": "hi"}}],
                "edges": [
                    {"id": "e1", "source": "a", "sourceHandle": None, "target": "b", "targetHandle": "value"}
                ],
            },
        }
    }

    flows = parse_flows(data)

    assert flows[0].id == "greet"
    assert flows[0].allow_dangerous_execution is True
    assert flows[0].flow.edges[0].target_handle == "value"


def test_parse_flows_list_form_and_errors():
    assert parse_flows([{"id": "x", "name": "X"}])[0].name == "X"
    with pytest.raises(ValueError):
        parse_flows("nope")


def test_load_flows_from_file(tmp_path):
    path = tmp_path / "flows.json"
    path.write_text(json.dumps([{"id": "x", "name": "X", "flow": {"nodes": [], "edges": []}}]))

    assert load_flows(path).get("x").name == "X"


# ---- History ----
def make_report(error: ExecutionError | None = None) -> ExecutionReport:
    return ExecutionReport(
        executed_nodes=[NodeReport(node_id="a", type="echo", input={}, output={"x": 1})],
        error=error,
        last_output={"x": 1},
    )


def make_entry(run_id: str, report: ExecutionReport | None = None) -> HistoryEntry:
    return HistoryEntry.from_report(report or make_report(), run_id=run_id, flow_id="f1", flow_name="Flow")


def test_history_entry_status_from_report():
    failed = make_report(ExecutionError("boom", node_id="a", kind=ErrorKind.NODE))
    aborted = make_report(ExecutionError("Execution aborted by user.", kind=ErrorKind.ABORTED))

    assert make_entry("r1").status == RunStatus.COMPLETED
    assert make_entry("r2", failed).status == RunStatus.FAILED
    assert make_entry("r3", aborted).status == RunStatus.ABORTED


def test_history_entry_is_sanitized():
    report = ExecutionReport(last_output={"text": "x" * 2000, "api_key": "sk-123"})

    entry = HistoryEntry.from_report(report, "r1", "f1", "Flow", max_string_length=10)

    assert entry.last_output["text"] == "x" * 10 + "... [truncated]"
    assert entry.last_output["api_key"] == "***REDACTED***"


def test_history_is_newest_first_and_bounded():
    history = HistoryStore(InMemoryStorage(), max_length=3)
    for i in range(5):
        history.add(make_entry(f"r{i}"))

    assert [e.run_id for e in history.entries] == ["r4", "r3", "r2"]


def test_history_persists_and_reloads(tmp_path):
    storage = JsonFileStorage(tmp_path)
    HistoryStore(storage, key="hist").add(make_entry("r1"))

    reloaded = HistoryStore(storage, key="hist")

    assert len(reloaded) == 1
    assert reloaded.entries[0].run_id == "r1"
    assert reloaded.entries[0].status == RunStatus.COMPLETED


def test_history_from_config(tmp_path):
    config = EngineConfig(max_history_length=2, history_storage_key="runs", storage_path=tmp_path)
    history = HistoryStore.from_config(config)
    for i in range(3):
        history.add(make_entry(f"r{i}"))

    assert [e.run_id for e in history.entries] == ["r2", "r1"]
    assert (tmp_path / "runs.json").exists()
    assert len(HistoryStore.from_config(config)) == 2


def test_corrupt_history_loads_empty():
    storage = InMemoryStorage({"hist": "{not json"})

    assert HistoryStore(storage, key="hist").entries == []


def test_history_save_failure_is_logged_not_raised(caplog):
    class BrokenStorage(InMemoryStorage):
        def set(self, key, value):
            raise OSError("disk full")

    history = HistoryStore(BrokenStorage())
    history.add(make_entry("r1"))

    assert len(history) == 1
    assert "Failed to save execution history" in caplog.text


def test_history_clear_and_filter():
    history = HistoryStore(InMemoryStorage())
    history.add(make_entry("r1"))
    history.add(HistoryEntry.from_report(make_report(), run_id="r2", flow_id="f2", flow_name="Other"))

    assert [e.run_id for e in history.for_flow("f2")] == ["r2"]
    history.clear()
    assert history.entries == []
