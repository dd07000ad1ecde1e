from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from mozart.core.store import CyclicGraphError, GraphStore, ReadOnlyViewError
from mozart.runner import EpisodeState, FlowRunner, NoEntryNodes
from mozart.visual.executor import ExecutionEngine
from mozart.visual.models import FlowEdge, FlowNode, NodeKind


def _start_transform_response(code: str = 'return {"test": 123}', mode: str = "create") -> GraphStore:
    return GraphStore(
        [
            FlowNode(id="start", type=NodeKind.START),
            FlowNode(id="t", type=NodeKind.TRANSFORM, data={"code": code, "mode": mode}),
            FlowNode(id="r", type=NodeKind.RESPONSE),
        ],
        [
            FlowEdge(id="e1", source="start", target="t"),
            FlowEdge(id="e2", source="t", target="r"),
        ],
    )


def test_start_transform_response_scenario() -> None:
    store = _start_transform_response()

    async def main() -> List[EpisodeState]:
        states = []
        async with FlowRunner(store) as runner:
            states.append(runner.state)
            episode = await runner.execute()
            assert episode.entry_ids == ("start",)
            assert await runner.wait_settled(timeout=10)
            states.append(runner.state)
        return states

    states = asyncio.run(main())

    assert states == [EpisodeState.IDLE, EpisodeState.SETTLED]
    assert store.node("t").data["result"] == {"test": 123}
    assert store.node("t").data["error"] is None
    assert store.node("r").data["display"] == {"test": 123}
    assert store.node("r").data["response"] == {"test": 123}
    # Start delivers a trigger but no data.
    assert "inputData" not in store.node("t").data
    assert store.node("start").data["lastTriggerStamp"] > 0


def test_failed_transform_does_not_propagate() -> None:
    store = _start_transform_response(code="raise ValueError('bad input')")

    async def main() -> None:
        async with FlowRunner(store) as runner:
            await runner.execute()
            assert await runner.wait_settled(timeout=10)

    asyncio.run(main())

    t = store.node("t").data
    assert t["result"] is None
    assert "bad input" in t["error"]
    assert "display" not in store.node("r").data
    assert "triggerExecution" not in store.node("r").data


def test_invalid_transform_result_does_not_propagate() -> None:
    store = _start_transform_response(code="return {1, 2}")

    async def main() -> None:
        async with FlowRunner(store) as runner:
            await runner.execute()
            assert await runner.wait_settled(timeout=10)

    asyncio.run(main())

    t = store.node("t").data
    assert t["result"] is None
    assert "unsupported type set" in t["error"]
    r = store.node("r").data
    assert "inputData" not in r
    assert "response" not in r
    assert "triggerExecution" not in r
    assert "display" not in r


def test_same_token_runs_a_node_once() -> None:
    store = _start_transform_response()

    async def main() -> int:
        engine = ExecutionEngine(store)
        try:
            executor = engine.executor("t")
            await executor.on_trigger(5)
            await executor.on_trigger(5)
            await executor.on_trigger(4)
            assert await engine.wait_settled(timeout=10)
            return executor.runs
        finally:
            await engine.aclose()

    assert asyncio.run(main()) == 1


def test_restamping_the_same_token_does_not_react() -> None:
    store = _start_transform_response()

    async def main() -> int:
        engine = ExecutionEngine(store)
        try:
            store.merge_data({"t": {"triggerExecution": 10}})
            await engine.wait_settled(timeout=10)
            started = engine.started
            store.merge_data({"t": {"triggerExecution": 10, "loading": False}})
            await engine.wait_settled(timeout=10)
            return engine.started - started
        finally:
            await engine.aclose()

    assert asyncio.run(main()) == 0


def _routed_store(mode: str) -> GraphStore:
    return GraphStore(
        [
            FlowNode(id="src", type=NodeKind.START),
            FlowNode(id="t", type=NodeKind.TRANSFORM, data={"code": "return {'seen': data}", "mode": mode}),
        ],
        [FlowEdge(id="e", source="src", target="t")],
    )


def test_transform_mode_reacts_to_input_changes() -> None:
    store = _routed_store("transform")

    async def main() -> int:
        engine = ExecutionEngine(store)
        try:
            store.merge_data({"t": {"inputData": {"n": 1}}})
            assert await engine.wait_settled(timeout=10)
            return engine.executor("t").runs
        finally:
            await engine.aclose()

    assert asyncio.run(main()) == 1
    assert store.node("t").data["result"] == {"seen": {"n": 1}}


def test_create_mode_ignores_input_without_trigger() -> None:
    store = _routed_store("create")

    async def main() -> int:
        engine = ExecutionEngine(store)
        try:
            store.merge_data({"t": {"inputData": {"n": 1}}})
            assert await engine.wait_settled(timeout=10)
            return engine.executor("t").runs
        finally:
            await engine.aclose()

    assert asyncio.run(main()) == 0
    assert "result" not in store.node("t").data


def test_combined_delivery_runs_transform_once() -> None:
    store = _routed_store("transform")

    async def main() -> int:
        engine = ExecutionEngine(store)
        try:
            engine.router.route("src", {"n": 2})
            assert await engine.wait_settled(timeout=10)
            return engine.executor("t").runs
        finally:
            await engine.aclose()

    assert asyncio.run(main()) == 1
    assert store.node("t").data["result"] == {"seen": {"n": 2}}


def test_empty_graph_has_no_entry_nodes() -> None:
    async def main() -> None:
        async with FlowRunner(GraphStore()) as runner:
            await runner.execute()

    with pytest.raises(NoEntryNodes, match="No entry nodes found to start execution"):
        asyncio.run(main())


def test_cyclic_graph_is_rejected_before_stamping() -> None:
    store = GraphStore(
        [FlowNode(id="a", type=NodeKind.TRANSFORM), FlowNode(id="b", type=NodeKind.TRANSFORM)],
        [FlowEdge(id="ab", source="a", target="b"), FlowEdge(id="ba", source="b", target="a")],
    )

    async def main() -> None:
        async with FlowRunner(store) as runner:
            await runner.execute()

    with pytest.raises(CyclicGraphError):
        asyncio.run(main())
    assert all("triggerExecution" not in n.data for n in store.nodes)


def test_execute_is_refused_while_viewing() -> None:
    store = _start_transform_response()
    store.enter_view([FlowNode(id="s", type=NodeKind.START)], [])

    async def main() -> None:
        async with FlowRunner(store) as runner:
            await runner.execute()

    with pytest.raises(ReadOnlyViewError):
        asyncio.run(main())


def test_start_node_without_connections_reports_error() -> None:
    store = GraphStore([FlowNode(id="lonely", type=NodeKind.START)])

    async def main() -> List[str]:
        async with FlowRunner(store) as runner:
            return await runner.start_node("lonely")

    assert asyncio.run(main()) == []
    assert store.node("lonely").data["error"] == "No connected nodes to start"


def test_start_node_by_hand_triggers_its_targets() -> None:
    store = _start_transform_response()

    async def main() -> Optional[dict]:
        async with FlowRunner(store) as runner:
            stamped = await runner.start_node("start")
            assert stamped == ["t"]
            assert await runner.wait_settled(timeout=10)
        return store.node("r").data.get("display")

    assert asyncio.run(main()) == {"test": 123}


def test_start_node_rejects_other_kinds() -> None:
    store = _start_transform_response()

    async def main() -> None:
        async with FlowRunner(store) as runner:
            with pytest.raises(ValueError):
                await runner.start_node("t")
            with pytest.raises(KeyError):
                await runner.start_node("missing")

    asyncio.run(main())
    assert "triggerExecution" not in store.node("t").data


def test_two_episodes_rerun_the_flow() -> None:
    store = _start_transform_response()

    async def main() -> int:
        async with FlowRunner(store) as runner:
            await runner.run(timeout=10)
            await runner.run(timeout=10)
            return runner.engine.executor("t").runs

    assert asyncio.run(main()) == 2
