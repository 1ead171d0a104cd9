"""Tests for TriggerRouter: host events and manual triggers start top-level runs."""

import asyncio

import pytest
from conftest import GatedNode, definition, edge, node

from flowengine.runtime.orchestrator import RunOrchestrator
from flowengine.runtime.triggers import TriggerRouter
from flowengine.storage.flow_store import InMemoryFlowStore
from flowengine.storage.history_store import HistoryStore
from flowengine.storage.kv import InMemoryStorage


@pytest.fixture
def store():
    return InMemoryFlowStore()


@pytest.fixture
def history():
    return HistoryStore(InMemoryStorage())


@pytest.fixture
def router(store, registry, capabilities, history, engine_config):
    orchestrator = RunOrchestrator(
        flow_store=store,
        registry=registry,
        capabilities=capabilities,
        history=history,
        config=engine_config,
    )
    return TriggerRouter(orchestrator)


def on_event(flow_id, event_type, **data):
    return definition(
        flow_id,
        [node("t", "triggerNode", selectedEventType=event_type, **data), node("out")],
        [edge("t", "out")],
    )


def test_reinitialize_registers_enabled_valid_flows(router, store, capabilities):
    store.put(on_event("f1", "message_received"))
    store.put(on_event("f2", "chat_changed"))
    off = on_event("f3", "message_received")
    off.enabled = False
    store.put(off)
    store.put(definition("broken", [node("x", "no_such_kind")], name="Broken"))

    table = router.reinitialize()

    assert sorted(table) == ["chat_changed", "message_received"]
    assert [t.flow_id for t in router.triggers_for("message_received")] == ["f1"]
    messages = [c.args[1] for c in capabilities.notify.call_args_list]
    assert messages[0] == 'Flow "Broken" is invalid and will not be run. Errors:'
    assert messages[1] == '- Node [x]: Unknown node type "no_such_kind".'


def test_disabled_trigger_node_is_skipped(router, store):
    store.put(on_event("f1", "message_received", disabled=True))

    assert router.reinitialize() == {}


@pytest.mark.asyncio
async def test_dispatch_maps_arguments_to_named_input(router, store, history):
    store.put(on_event("f1", "message_received"))
    router.reinitialize()

    started = await router.dispatch("message_received", 42, "normal")

    assert started == ["f1"]
    assert await router.orchestrator.wait_until_idle(timeout=1)
    assert history.entries[0].last_output == {"messageId": 42, "type": "normal"}


def test_build_input_pads_missing_arguments(router):
    assert router.build_input("message_received", (7,)) == {"messageId": 7, "type": None}
    assert router.build_input("unknown_event", (1, 2)) == {}


@pytest.mark.asyncio
async def test_dispatch_without_listeners(router):
    router.reinitialize()

    assert await router.dispatch("message_deleted", 3) == []


@pytest.mark.asyncio
async def test_prevent_recursive_skips_active_flow(router, store, registry):
    gated = GatedNode()
    registry.register("gated", gated)
    store.put(
        definition(
            "loop",
            [node("t", "triggerNode", selectedEventType="message_sent", preventRecursive=True), node("g", "gated")],
            [edge("t", "g")],
        )
    )
    router.reinitialize()

    first = await router.dispatch("message_sent", 1)
    await asyncio.wait_for(gated.started.wait(), timeout=1)
    second = await router.dispatch("message_sent", 2)
    gated.gate.set()

    assert first == ["loop"]
    assert second == []
    assert await router.orchestrator.wait_until_idle(timeout=1)


@pytest.mark.asyncio
async def test_manual_triggers_queue_one_run_each(router, store, history):
    store.put(
        definition(
            "manual",
            [
                node("m1", "manualTriggerNode", payload='{"n": 1}'),
                node("m2", "manualTriggerNode", payload='{"n": 2}'),
            ],
        )
    )

    queued = await router.run_manual_triggers("manual")

    assert queued == 2
    assert await router.orchestrator.wait_until_idle(timeout=1)
    assert len(history) == 2


@pytest.mark.asyncio
async def test_manual_trigger_with_bad_json_is_skipped(router, store, capabilities):
    store.put(definition("manual", [node("m1", "manualTriggerNode", payload="{oops")]))

    queued = await router.run_manual_triggers("manual")

    assert queued == 0
    capabilities.notify.assert_called_with(
        "error", "Invalid JSON in Manual Trigger node m1. Skipping."
    )


@pytest.mark.asyncio
async def test_manual_triggers_missing_flow_or_nodes(router, store, capabilities):
    store.put(definition("plain", [node("a")], name="Plain"))

    assert await router.run_manual_triggers("ghost") == 0
    assert await router.run_manual_triggers("plain") == 0
    capabilities.notify.assert_called_with("info", 'No Manual Trigger nodes found in flow "Plain".')
