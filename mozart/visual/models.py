"""Pydantic models for the Mozart flow JSON format.

These models live in the portable `mozart` package so the exact same shapes
travel between the editor session, the local draft store and the version
store (web backend), without importing the backend.

Node `data` is split into *persisted* fields (user configuration) and
*transient* fields (runtime state written by the engine). The split is derived
per node kind from the config models below; `persist_node()` is the only way a
node is shaped for storage, so runtime state never reaches a saved version.
"""

from __future__ import annotations

from enum import Enum
import json
import logging
import uuid
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Kinds of nodes in the flow editor."""

    START = "start"
    REQUEST = "request"
    TRANSFORM = "transform"
    RESPONSE = "response"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class TransformMode(str, Enum):
    TRANSFORM = "transform"  # re-run whenever inputData changes
    CREATE = "create"  # run only on trigger / explicit invocation


# Handle ids
HEADERS_HANDLE = "headers"
BODY_HANDLE = "body"
DEFAULT_INPUT_HANDLE = "in"
OUTPUT_HANDLE = "out"

DEFAULT_REQUEST_URL = "https://api.example.com"
DEFAULT_TRANSFORM_CODE = """# Transform input data or create new data.
# `data` holds the input routed into this node.
#
# Example to transform input data:
# return {**data, "modified": True}

return {"test": 123}
"""


class Position(BaseModel):
    """2D position on canvas (owned by the editor)."""

    x: float = 0
    y: float = 0


class StartConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None


class RequestConfig(BaseModel):
    """Persisted configuration of a Request node."""

    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None
    url: str = DEFAULT_REQUEST_URL
    method: HttpMethod = HttpMethod.GET
    headersTemplate: str = "{}"
    bodyTemplate: str = ""
    # A wired headers/body port is used unless the user opts out.
    useInputAsHeaders: bool = True
    useInputAsBody: bool = True


class TransformConfig(BaseModel):
    """Persisted configuration of a Transform node."""

    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None
    code: str = DEFAULT_TRANSFORM_CODE
    mode: TransformMode = TransformMode.CREATE


class ResponseConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: Optional[str] = None


CONFIG_MODELS: Dict[NodeKind, Type[BaseModel]] = {
    NodeKind.START: StartConfig,
    NodeKind.REQUEST: RequestConfig,
    NodeKind.TRANSFORM: TransformConfig,
    NodeKind.RESPONSE: ResponseConfig,
}

COMMON_TRANSIENT_FIELDS: FrozenSet[str] = frozenset({"inputData", "triggerExecution", "error", "loading"})

KIND_TRANSIENT_FIELDS: Dict[NodeKind, FrozenSet[str]] = {
    NodeKind.START: frozenset({"lastTriggerStamp"}),
    NodeKind.REQUEST: frozenset({"response", "status", "statusText", "headersInput", "bodyInput"}),
    NodeKind.TRANSFORM: frozenset({"result"}),
    NodeKind.RESPONSE: frozenset({"response", "display"}),
}


def persisted_fields(kind: NodeKind) -> FrozenSet[str]:
    """Whitelist of `data` keys that are saved for a node kind."""
    return frozenset(CONFIG_MODELS[NodeKind(kind)].model_fields)


def transient_fields(kind: NodeKind) -> FrozenSet[str]:
    """Runtime-only `data` keys for a node kind."""
    kind = NodeKind(kind)
    return COMMON_TRANSIENT_FIELDS | KIND_TRANSIENT_FIELDS[kind]


class FlowNode(BaseModel):
    """A node in the flow graph.

    Nodes are treated as immutable values: every change produces a new node
    via `with_data()` / `model_copy()`.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    type: NodeKind
    position: Position = Field(default_factory=Position)
    data: Dict[str, Any] = Field(default_factory=dict)

    def config(self) -> BaseModel:
        """Validate the persisted part of `data` against the kind's config model."""
        return CONFIG_MODELS[self.type].model_validate(self.data)

    def with_data(self, patch: Dict[str, Any]) -> "FlowNode":
        return self.model_copy(update={"data": {**self.data, **patch}})


class FlowEdge(BaseModel):
    """A directed edge between two nodes, optionally handle-qualified."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


def drop_dangling_edges(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> List[FlowEdge]:
    """Return the edges whose endpoints both exist; log the rest."""
    node_ids = {n.id for n in nodes}
    kept: List[FlowEdge] = []
    for edge in edges:
        if edge.source in node_ids and edge.target in node_ids:
            kept.append(edge)
        else:
            logger.warning(f"Dropping dangling edge '{edge.id}' ({edge.source} -> {edge.target})")
    return kept


def persist_node(node: FlowNode) -> FlowNode:
    """Return a copy of `node` holding only its kind's persisted data fields."""
    allowed = persisted_fields(node.type)
    return node.model_copy(update={"data": {k: v for k, v in node.data.items() if k in allowed}})


def persist_nodes(nodes: Iterable[FlowNode]) -> List[FlowNode]:
    return [persist_node(n) for n in nodes]


def dump_nodes(nodes: Iterable[FlowNode]) -> List[Dict[str, Any]]:
    """Persist-shape JSON for a node list."""
    return [persist_node(n).model_dump(mode="json") for n in nodes]


def dump_edges(edges: Iterable[FlowEdge]) -> List[Dict[str, Any]]:
    return [e.model_dump(mode="json", exclude_none=True) for e in edges]


def canonical_json(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> str:
    """Stable string form of the persisted graph, used for change detection."""
    payload = {"nodes": dump_nodes(nodes), "edges": dump_edges(edges)}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class _GraphPayload(BaseModel):
    """Shared loader behaviour: tolerate dangling edges instead of failing."""

    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def drop_dangling(self) -> "_GraphPayload":
        self.edges = drop_dangling_edges(self.nodes, self.edges)
        return self


class FlowDefinition(_GraphPayload):
    """An immutable, numbered snapshot of a flow's nodes and edges."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    flowId: str
    version: int = Field(ge=1)
    createdAt: str
    updatedAt: str


class FlowDefinitionUpdate(_GraphPayload):
    """Body of `PUT /flow-definitions/{flowId}`."""


class Draft(_GraphPayload):
    """Unsynced local snapshot kept for crash/reload recovery."""

    flowId: str
    timestamp: int  # epoch milliseconds


class Journey(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    name: str
    description: str = ""
    userId: str
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class JourneyCreateRequest(BaseModel):
    name: str
    description: str = ""


class JourneyUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class Flow(BaseModel):
    """Container/grouping entity owning one FlowDefinition lineage."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4())[:8])
    journeyId: str
    name: str
    description: str = ""
    position: int = 0  # order within the journey
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class FlowCreateRequest(BaseModel):
    journeyId: str
    name: str
    description: str = ""
    position: int = 0


class FlowUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    position: Optional[int] = None
