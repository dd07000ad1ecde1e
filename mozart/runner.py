"""FlowRunner - starts execution episodes on an open flow."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import List, Optional, Tuple

import httpx

from .adapters import StartExecutor
from .core.clock import TriggerClock
from .core.store import CyclicGraphError, GraphStore, ReadOnlyViewError, entry_node_ids, find_cycle
from .settings import resolve_http_timeout_s, resolve_transform_timeout_s
from .visual.executor import ExecutionEngine
from .visual.models import NodeKind

logger = logging.getLogger(__name__)

NO_ENTRY_NODES = "No entry nodes found to start execution"


class NoEntryNodes(RuntimeError):
    """Raised when every node has an incoming edge (or the graph is empty)."""

    def __init__(self, message: str = NO_ENTRY_NODES):
        super().__init__(message)


class EpisodeState(str, Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    RUNNING = "running"
    SETTLED = "settled"


@dataclass(frozen=True)
class Episode:
    """One press of Execute: the token stamped and the entry nodes it hit."""

    token: int
    entry_ids: Tuple[str, ...]
    # Engine reaction count when the episode was stamped.
    started_mark: int = 0


class FlowRunner:
    """Execution coordinator for one open flow.

    FlowRunner provides a high-level interface for running flows. It handles:
    - Finding entry nodes and stamping one trigger token on all of them
    - Owning the reaction engine (and its HTTP client unless one is given)
    - Waiting for an episode to settle

    Example:
        >>> store = GraphStore(nodes, edges)
        >>> async with FlowRunner(store) as runner:
        ...     await runner.execute()
        ...     await runner.wait_settled(timeout=10)
    """

    def __init__(
        self,
        store: GraphStore,
        *,
        engine: Optional[ExecutionEngine] = None,
        clock: Optional[TriggerClock] = None,
        http: Optional[httpx.AsyncClient] = None,
        http_timeout_s: Optional[float] = None,
        transform_timeout_s: Optional[float] = None,
    ):
        self.store = store
        self.engine = engine or ExecutionEngine(
            store,
            clock=clock,
            http=http,
            http_timeout_s=http_timeout_s if http_timeout_s is not None else resolve_http_timeout_s(),
            transform_timeout_s=(
                transform_timeout_s if transform_timeout_s is not None else resolve_transform_timeout_s()
            ),
        )
        self._episode: Optional[Episode] = None

    @property
    def episode(self) -> Optional[Episode]:
        return self._episode

    @property
    def state(self) -> EpisodeState:
        if self._episode is None:
            return EpisodeState.IDLE
        if self.engine.busy:
            return EpisodeState.RUNNING
        if self.engine.started == self._episode.started_mark:
            return EpisodeState.TRIGGERED
        return EpisodeState.SETTLED

    def _require_live(self) -> None:
        if self.store.viewing:
            raise ReadOnlyViewError("Cannot execute while viewing a past version")

    async def execute(self) -> Episode:
        """Stamp one fresh token on every entry node (nodes with no incoming edge)."""
        self._require_live()
        snapshot = self.store.snapshot
        cycle = find_cycle(snapshot.nodes, snapshot.edges)
        if cycle is not None:
            raise CyclicGraphError(cycle)
        entries = entry_node_ids(snapshot)
        if not entries:
            raise NoEntryNodes()

        mark = self.engine.started
        token = self.engine.clock.next()
        self.store.merge_data({node_id: {"triggerExecution": token} for node_id in entries})
        self._episode = Episode(token=token, entry_ids=tuple(entries), started_mark=mark)
        logger.info(f"Execution started on {len(entries)} entry node(s) with token {token}")
        return self._episode

    async def start_node(self, node_id: str) -> List[str]:
        """Fire a Start node by hand; returns the ids of the nodes it stamped."""
        self._require_live()
        node = self.store.node(node_id)
        if node is None:
            raise KeyError(f"Node '{node_id}' not found")
        if node.type != NodeKind.START:
            raise ValueError(f"Node '{node_id}' is a {node.type.value} node, not a start node")
        executor = self.engine.executor(node_id)
        if not isinstance(executor, StartExecutor):
            raise TypeError(f"Node '{node_id}' has no start executor")
        return executor.start_manually()

    async def trigger_node(self, node_id: str) -> int:
        """Re-run a single node with its current input."""
        self._require_live()
        if self.store.node(node_id) is None:
            raise KeyError(f"Node '{node_id}' not found")
        token = self.engine.clock.next()
        self.store.merge_data({node_id: {"triggerExecution": token}})
        return token

    async def wait_settled(self, timeout: Optional[float] = None) -> bool:
        return await self.engine.wait_settled(timeout)

    async def run(self, timeout: Optional[float] = None) -> Episode:
        """Execute and wait for the episode to settle."""
        episode = await self.execute()
        if not await self.wait_settled(timeout):
            logger.warning(f"Episode {episode.token} did not settle within {timeout}s")
        return episode

    async def aclose(self) -> None:
        await self.engine.aclose()

    async def __aenter__(self) -> "FlowRunner":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
