"""Graph store for one open flow.

The store is the single source of truth the engine reads and writes. It never
mutates a snapshot in place: every change builds a new `GraphSnapshot` (new
tuples, new node objects for changed nodes, same objects for untouched ones)
and swaps it in as a whole, then notifies listeners with the old and new
snapshot.

Changes carry a reason so listeners can tell them apart:
- "edit": user edits (add/move/configure/connect/remove)
- "runtime": engine writes (trigger tokens, inputs, results, errors)
- "load": whole-graph replacement (open flow, discard draft)
- "view": entering/leaving the read-only history projection
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..visual.models import FlowEdge, FlowNode, Position, drop_dangling_edges

logger = logging.getLogger(__name__)


class ReadOnlyViewError(RuntimeError):
    """Raised when mutating the graph while a past version is being viewed."""


class CyclicGraphError(ValueError):
    """Raised when a connection (or a loaded graph) contains a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cycle detected: {' -> '.join(self.cycle)}")


@dataclass(frozen=True)
class GraphSnapshot:
    nodes: Tuple[FlowNode, ...] = ()
    edges: Tuple[FlowEdge, ...] = ()

    def node(self, node_id: str) -> Optional[FlowNode]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def incoming(self, node_id: str) -> List[FlowEdge]:
        return [e for e in self.edges if e.target == node_id]


StoreListener = Callable[[GraphSnapshot, GraphSnapshot, str], None]


def build_snapshot(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> GraphSnapshot:
    nodes_t = tuple(nodes)
    return GraphSnapshot(nodes=nodes_t, edges=tuple(drop_dangling_edges(nodes_t, edges)))


def find_cycle(nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> Optional[List[str]]:
    """Return one cycle as a node-id path (first id repeated at the end), or None."""
    adj: Dict[str, List[str]] = {n.id: [] for n in nodes}
    for e in edges:
        if e.source in adj and e.target in adj:
            adj[e.source].append(e.target)

    WHITE, GREY, BLACK = 0, 1, 2
    color = {nid: WHITE for nid in adj}
    for root in adj:
        if color[root] != WHITE:
            continue
        path: List[str] = [root]
        stack = [iter(adj[root])]
        color[root] = GREY
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue
            if color[nxt] == GREY:
                return path[path.index(nxt):] + [nxt]
            if color[nxt] == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                stack.append(iter(adj[nxt]))
    return None


def entry_node_ids(snapshot: GraphSnapshot) -> List[str]:
    """Nodes with no incoming edge, in graph order."""
    targets = {e.target for e in snapshot.edges}
    return [n.id for n in snapshot.nodes if n.id not in targets]


class GraphStore:
    """Holds the current node/edge collection of one open flow."""

    def __init__(self, nodes: Iterable[FlowNode] = (), edges: Iterable[FlowEdge] = ()):
        self._snapshot = build_snapshot(nodes, edges)
        # Live graph kept aside while a past version is projected.
        self._live: Optional[GraphSnapshot] = None
        self._listeners: List[StoreListener] = []

    @property
    def snapshot(self) -> GraphSnapshot:
        return self._snapshot

    @property
    def nodes(self) -> Tuple[FlowNode, ...]:
        return self._snapshot.nodes

    @property
    def edges(self) -> Tuple[FlowEdge, ...]:
        return self._snapshot.edges

    @property
    def viewing(self) -> bool:
        return self._live is not None

    def node(self, node_id: str) -> Optional[FlowNode]:
        return self._snapshot.node(node_id)

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, snapshot: GraphSnapshot, reason: str) -> None:
        old = self._snapshot
        self._snapshot = snapshot
        for listener in list(self._listeners):
            listener(old, snapshot, reason)

    def _require_writable(self) -> None:
        if self.viewing:
            raise ReadOnlyViewError("Graph is read-only while viewing a past version")

    def _require_node(self, node_id: str) -> FlowNode:
        node = self._snapshot.node(node_id)
        if node is None:
            raise KeyError(f"Node '{node_id}' not found")
        return node

    # Whole-store operations

    def replace(self, nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> None:
        self._require_writable()
        self._commit(build_snapshot(nodes, edges), "load")

    # Edit entry points

    def add_node(self, node: FlowNode) -> FlowNode:
        self._require_writable()
        if self._snapshot.node(node.id) is not None:
            raise ValueError(f"Node '{node.id}' already exists")
        self._commit(GraphSnapshot(self.nodes + (node,), self.edges), "edit")
        return node

    def remove_node(self, node_id: str) -> None:
        self._require_writable()
        self._require_node(node_id)
        nodes = tuple(n for n in self.nodes if n.id != node_id)
        edges = tuple(e for e in self.edges if e.source != node_id and e.target != node_id)
        self._commit(GraphSnapshot(nodes, edges), "edit")

    def move_node(self, node_id: str, x: float, y: float) -> None:
        self._require_writable()
        self._require_node(node_id)
        nodes = tuple(
            n.model_copy(update={"position": Position(x=x, y=y)}) if n.id == node_id else n for n in self.nodes
        )
        self._commit(GraphSnapshot(nodes, self.edges), "edit")

    def update_node_data(self, node_id: str, patch: Mapping[str, Any]) -> FlowNode:
        """Merge user configuration into a node's data."""
        self._require_writable()
        self._require_node(node_id)
        nodes = tuple(n.with_data(dict(patch)) if n.id == node_id else n for n in self.nodes)
        self._commit(GraphSnapshot(nodes, self.edges), "edit")
        return self._require_node(node_id)

    def add_edge(self, edge: FlowEdge) -> FlowEdge:
        self._require_writable()
        self._require_node(edge.source)
        self._require_node(edge.target)
        if any(e.id == edge.id for e in self.edges):
            raise ValueError(f"Edge '{edge.id}' already exists")
        edges = self.edges + (edge,)
        cycle = find_cycle(self.nodes, edges)
        if cycle is not None:
            raise CyclicGraphError(cycle)
        self._commit(GraphSnapshot(self.nodes, edges), "edit")
        return edge

    def remove_edge(self, edge_id: str) -> None:
        self._require_writable()
        if not any(e.id == edge_id for e in self.edges):
            raise KeyError(f"Edge '{edge_id}' not found")
        self._commit(GraphSnapshot(self.nodes, tuple(e for e in self.edges if e.id != edge_id)), "edit")

    # Engine writes

    def merge_data(self, patches: Mapping[str, Mapping[str, Any]]) -> None:
        """Apply runtime data patches to several nodes in one swap.

        Unknown node ids are skipped (the node may have been deleted while an
        effect was in flight). While viewing a past version the write is
        dropped: runtime state belongs to the live graph only.
        """
        if self.viewing:
            logger.debug(f"Dropping runtime update for {sorted(patches)} while viewing a past version")
            return
        if not patches:
            return
        nodes = tuple(n.with_data(dict(patches[n.id])) if n.id in patches else n for n in self.nodes)
        self._commit(GraphSnapshot(nodes, self.edges), "runtime")

    # Viewing mode

    def enter_view(self, nodes: Iterable[FlowNode], edges: Iterable[FlowEdge]) -> None:
        """Project a past version; the live graph is kept aside untouched."""
        if self._live is None:
            self._live = self._snapshot
        self._commit(build_snapshot(nodes, edges), "view")

    def exit_view(self) -> None:
        """Return to the live graph as it was before viewing.

        Runtime writes were dropped while viewing, so a request that finished
        meanwhile would still show `loading`; that flag is cleared.
        """
        if self._live is None:
            return
        live, self._live = self._live, None
        if any(n.data.get("loading") for n in live.nodes):
            nodes = tuple(n.with_data({"loading": False}) if n.data.get("loading") else n for n in live.nodes)
            live = GraphSnapshot(nodes, live.edges)
        self._commit(live, "view")

    def commit_view(self) -> None:
        """Make the projected version the live graph."""
        if self._live is None:
            return
        self._live = None
        self._commit(self._snapshot, "view")
