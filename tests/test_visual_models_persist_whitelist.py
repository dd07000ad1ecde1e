from __future__ import annotations

import logging

from mozart.visual.models import (
    FlowDefinition,
    FlowEdge,
    FlowNode,
    NodeKind,
    canonical_json,
    persist_node,
    persisted_fields,
    transient_fields,
)


def test_request_node_keeps_only_configuration_fields() -> None:
    node = FlowNode(
        id="req",
        type=NodeKind.REQUEST,
        data={
            "label": "Fetch",
            "url": "https://api.test/items",
            "method": "POST",
            "headersTemplate": '{"X-Key": "1"}',
            "bodyTemplate": "",
            "useInputAsHeaders": False,
            "response": {"items": []},
            "status": 200,
            "statusText": "OK",
            "headersInput": {"a": "b"},
            "bodyInput": {"c": 1},
            "triggerExecution": 123,
            "inputData": {"x": 1},
            "error": None,
            "somethingUnknown": True,
        },
    )

    saved = persist_node(node)

    assert saved.data == {
        "label": "Fetch",
        "url": "https://api.test/items",
        "method": "POST",
        "headersTemplate": '{"X-Key": "1"}',
        "bodyTemplate": "",
        "useInputAsHeaders": False,
    }
    # The original node is untouched.
    assert node.data["response"] == {"items": []}


def test_persisted_and_transient_fields_are_disjoint_per_kind() -> None:
    for kind in NodeKind:
        assert not (persisted_fields(kind) & transient_fields(kind))
    assert persisted_fields(NodeKind.TRANSFORM) == {"label", "code", "mode"}
    assert "result" in transient_fields(NodeKind.TRANSFORM)
    assert "display" in transient_fields(NodeKind.RESPONSE)


def test_canonical_json_ignores_runtime_state() -> None:
    base = FlowNode(id="t", type=NodeKind.TRANSFORM, data={"code": "return 1", "mode": "create"})
    ran = base.with_data({"result": 1, "inputData": {"a": 1}, "triggerExecution": 99, "loading": False})
    edges = [FlowEdge(id="e1", source="t", target="t2")]

    assert canonical_json([base], edges) == canonical_json([ran], edges)
    assert canonical_json([base], edges) != canonical_json([base.with_data({"code": "return 2"})], edges)


def test_node_ignores_editor_only_keys() -> None:
    node = FlowNode.model_validate(
        {
            "id": "s",
            "type": "start",
            "position": {"x": 10, "y": 20},
            "data": {},
            "width": 200,
            "selected": True,
            "dragging": False,
        }
    )
    assert node.type == NodeKind.START
    assert "width" not in node.model_dump()


def test_definition_drops_dangling_edges_with_warning(caplog) -> None:
    caplog.set_level(logging.WARNING)
    definition = FlowDefinition.model_validate(
        {
            "flowId": "f1",
            "version": 1,
            "createdAt": "2024-01-01T00:00:00+00:00",
            "updatedAt": "2024-01-01T00:00:00+00:00",
            "nodes": [{"id": "a", "type": "start", "position": {"x": 0, "y": 0}, "data": {}}],
            "edges": [
                {"id": "ok", "source": "a", "target": "a"},
                {"id": "gone", "source": "a", "target": "missing"},
            ],
        }
    )
    assert [e.id for e in definition.edges] == ["ok"]
    assert "gone" in caplog.text
