"""Editor session: one open flow with its store, engine, autosave and history.

This is the seam a host (UI bridge, CLI, tests) talks to. Edits go through
the session so every change reaches the autosave pipeline; execution and
history are delegated to the runner and the history browser.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from .autosave import AutoSaveCallbacks, DraftReconciler, Reconciliation
from .core.clock import TriggerClock
from .core.store import GraphStore
from .drafts import FileDraftStore
from .history import HistoryBrowser
from .runner import Episode, FlowRunner
from .settings import resolve_runtime_dir
from .version_store import MAX_VERSIONS, VersionStoreClient
from .visual.models import (
    CONFIG_MODELS,
    FlowDefinition,
    FlowEdge,
    FlowNode,
    NodeKind,
    Position,
    persisted_fields,
)

logger = logging.getLogger(__name__)


class FlowSession:
    def __init__(
        self,
        flow_id: str,
        *,
        versions: Optional[VersionStoreClient] = None,
        drafts: Optional[FileDraftStore] = None,
        runtime_dir: Optional[Path] = None,
        api_url: Optional[str] = None,
        delay_ms: Optional[int] = None,
        callbacks: Optional[AutoSaveCallbacks] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Optional[TriggerClock] = None,
    ):
        self.flow_id = flow_id
        self.store = GraphStore()
        self._owns_versions = versions is None
        self.versions = versions or VersionStoreClient(api_url)
        self.drafts = drafts or FileDraftStore(runtime_dir or resolve_runtime_dir())
        self.reconciler = DraftReconciler(
            flow_id,
            self.versions,
            self.drafts,
            delay_ms=delay_ms,
            callbacks=callbacks,
            is_viewing=lambda: self.store.viewing,
        )
        self.runner = FlowRunner(self.store, http=http, clock=clock)
        self.history = HistoryBrowser(flow_id, self.store, self.versions, self.reconciler)
        self.opened: Optional[Reconciliation] = None

    @property
    def status(self) -> Optional[str]:
        return self.reconciler.status

    @property
    def has_unsaved_changes(self) -> bool:
        return self.reconciler.has_unsaved_changes

    @property
    def nodes(self) -> List[FlowNode]:
        return list(self.store.nodes)

    @property
    def edges(self) -> List[FlowEdge]:
        return list(self.store.edges)

    def _load(self, nodes: List[FlowNode], edges: List[FlowEdge]) -> None:
        self.reconciler.set_loading(True)
        try:
            self.store.replace(nodes, edges)
        finally:
            self.reconciler.set_loading(False)

    async def open(self) -> Reconciliation:
        """Load the newest of server version and local draft into the store."""
        result = await self.reconciler.reconcile()
        self._load(result.nodes, result.edges)
        self.opened = result
        logger.info(
            f"Opened flow '{self.flow_id}' from {result.source}"
            + (f" (v{result.definition.version})" if result.definition is not None else "")
        )
        return result

    # Edits

    def _edited(self) -> None:
        self.reconciler.schedule_auto_save(self.store.nodes, self.store.edges)

    def add_node(
        self,
        kind: NodeKind,
        *,
        x: float = 0,
        y: float = 0,
        data: Optional[Dict[str, Any]] = None,
        node_id: Optional[str] = None,
    ) -> FlowNode:
        kind = NodeKind(kind)
        defaults = CONFIG_MODELS[kind]().model_dump(mode="json", exclude_none=True)
        node = FlowNode(
            id=node_id or f"{kind.value}-{self.runner.engine.clock.next()}",
            type=kind,
            position=Position(x=x, y=y),
            data={**defaults, **(data or {})},
        )
        self.store.add_node(node)
        self._edited()
        return node

    def remove_node(self, node_id: str) -> None:
        self.store.remove_node(node_id)
        self._edited()

    def move_node(self, node_id: str, x: float, y: float) -> None:
        self.store.move_node(node_id, x, y)
        self._edited()

    def configure_node(self, node_id: str, **config: Any) -> FlowNode:
        """Change persisted configuration (url, method, code, mode...)."""
        node = self.store.node(node_id)
        if node is None:
            raise KeyError(f"Node '{node_id}' not found")
        unknown = sorted(set(config) - persisted_fields(node.type))
        if unknown:
            raise ValueError(f"Not configurable on a {node.type.value} node: {', '.join(unknown)}")
        CONFIG_MODELS[node.type].model_validate({**node.data, **config})
        updated = self.store.update_node_data(node_id, config)
        self._edited()
        return updated

    def connect(
        self,
        source: str,
        target: str,
        *,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> FlowEdge:
        edge = FlowEdge(
            id=edge_id or f"e-{source}-{source_handle or 'out'}-{target}-{target_handle or 'in'}",
            source=source,
            target=target,
            sourceHandle=source_handle,
            targetHandle=target_handle,
        )
        self.store.add_edge(edge)
        self._edited()
        return edge

    def disconnect(self, edge_id: str) -> None:
        self.store.remove_edge(edge_id)
        self._edited()

    # Execution

    async def execute(self) -> Episode:
        return await self.runner.execute()

    async def start_node(self, node_id: str) -> List[str]:
        return await self.runner.start_node(node_id)

    async def trigger_node(self, node_id: str) -> int:
        return await self.runner.trigger_node(node_id)

    async def wait_settled(self, timeout: Optional[float] = None) -> bool:
        return await self.runner.wait_settled(timeout)

    def responses(self) -> Dict[str, Any]:
        """What each Response node currently displays."""
        return {n.id: n.data.get("display") for n in self.store.nodes if n.type == NodeKind.RESPONSE}

    def errors(self) -> Dict[str, str]:
        return {n.id: n.data["error"] for n in self.store.nodes if n.data.get("error")}

    # Persistence

    async def save_now(self) -> Optional[FlowDefinition]:
        return await self.reconciler.flush(self.store.nodes, self.store.edges)

    async def discard_draft(self) -> FlowDefinition:
        """Drop local changes and reload the server's latest version."""
        self.reconciler.cancel()
        definition = await self.versions.get_latest(self.flow_id)
        self.reconciler.clear_local_draft()
        self._load(definition.nodes, definition.edges)
        self.reconciler.mark_data_as_known(definition.nodes, definition.edges)
        self.reconciler.current_version = definition.version
        return definition

    # History

    async def list_versions(self, limit: int = MAX_VERSIONS) -> List[FlowDefinition]:
        return await self.history.list_versions(limit)

    async def view_version(self, version: int) -> FlowDefinition:
        return await self.history.select_version(version)

    def exit_view(self) -> None:
        self.history.exit_view()
        self.reconciler.resume(self.store.nodes, self.store.edges)

    async def restore_version(self) -> FlowDefinition:
        return await self.history.restore()

    async def close(self) -> None:
        self.reconciler.close()
        await self.runner.aclose()
        if self._owns_versions:
            await self.versions.aclose()

    async def __aenter__(self) -> "FlowSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
