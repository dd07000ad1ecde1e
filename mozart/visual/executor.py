"""Reaction engine for visual flows.

The engine subscribes to a `GraphStore` and turns runtime changes into node
executions. It never walks the graph itself: a node runs because a new
trigger token (or, for some kinds, new input) landed on it, and its output is
routed into its neighbours, which in turn react.

Per changed node and per store merge:
- a new `triggerExecution` token fires `on_trigger(token)`;
- otherwise a changed `inputData` fires `on_input_changed(value)`.

A delivery that changes both therefore runs the node once.

The goal is host portability: the same flow runs from the CLI, tests or a
server process without importing the web backend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional, Set, Tuple

import httpx

from ..adapters import create_executor
from ..core.clock import TriggerClock
from ..core.contracts import Executable, ExecutionContext
from ..core.store import GraphSnapshot, GraphStore
from .models import NodeKind
from .router import HandleRouter

logger = logging.getLogger(__name__)


class ExecutionEngine:
    def __init__(
        self,
        store: GraphStore,
        *,
        clock: Optional[TriggerClock] = None,
        http: Optional[httpx.AsyncClient] = None,
        http_timeout_s: float = 30.0,
        transform_timeout_s: float = 2.0,
    ):
        self.store = store
        self.clock = clock or TriggerClock()
        self.router = HandleRouter(store, self.clock)
        self._owns_http = http is None
        self.http = http if http is not None else httpx.AsyncClient(timeout=http_timeout_s)
        self.ctx = ExecutionContext(
            store=store,
            router=self.router,
            clock=self.clock,
            http=self.http,
            transform_timeout_s=transform_timeout_s,
        )
        self._executors: Dict[str, Tuple[NodeKind, Executable]] = {}
        self._tasks: Set[asyncio.Task] = set()
        # Total reactions scheduled since creation.
        self.started = 0
        self._unsubscribe = store.subscribe(self._on_store_change)

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    def executor(self, node_id: str) -> Executable:
        """Return (creating if needed) the executor bound to a node."""
        node = self.store.node(node_id)
        if node is None:
            raise KeyError(f"Node '{node_id}' not found")
        existing = self._executors.get(node_id)
        if existing is not None and existing[0] == node.type:
            return existing[1]
        executor = create_executor(node_id, node.type, self.ctx)
        self._executors[node_id] = (node.type, executor)
        return executor

    def _on_store_change(self, old: GraphSnapshot, new: GraphSnapshot, reason: str) -> None:
        if reason != "runtime":
            if reason in ("load", "view"):
                self._executors.clear()
            else:
                live = {n.id for n in new.nodes}
                for node_id in [k for k in self._executors if k not in live]:
                    del self._executors[node_id]
            return

        previous = {n.id: n for n in old.nodes}
        for node in new.nodes:
            before = previous.get(node.id)
            if before is None or before is node:
                continue
            token = node.data.get("triggerExecution")
            if token is not None and token != before.data.get("triggerExecution"):
                self._spawn(node.id, self.executor(node.id).on_trigger(token))
            elif "inputData" in node.data and node.data["inputData"] != before.data.get("inputData"):
                self._spawn(node.id, self.executor(node.id).on_input_changed(node.data["inputData"]))

    def _spawn(self, node_id: str, coro: Coroutine[Any, Any, None]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"No running event loop; reaction of node '{node_id}' skipped")
            return
        task = loop.create_task(coro, name=f"mozart-node-{node_id}")
        self._tasks.add(task)
        self.started += 1
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Reaction task {task.get_name()} failed: {exc}", exc_info=exc)

    async def wait_settled(self, timeout: Optional[float] = None) -> bool:
        """Wait until no reaction is pending. Returns False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            await asyncio.wait(set(self._tasks), timeout=remaining)
        return True

    async def aclose(self) -> None:
        self._unsubscribe()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._executors.clear()
        if self._owns_http:
            await self.http.aclose()
