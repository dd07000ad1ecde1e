"""Executor contracts shared by the node adapters and the reaction engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Protocol, runtime_checkable

from .clock import TriggerClock
from .store import GraphStore
from ..visual.models import FlowNode

if TYPE_CHECKING:
    import httpx

    from ..visual.router import HandleRouter


@dataclass(frozen=True)
class NodeResult:
    """Outcome of one node run: a value to propagate, or an error message."""

    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Any = None) -> "NodeResult":
        return cls(ok=True, value=value)

    @classmethod
    def failed(cls, error: str) -> "NodeResult":
        return cls(ok=False, error=error)


@dataclass
class ExecutionContext:
    """Everything an executor may touch while running."""

    store: GraphStore
    router: "HandleRouter"
    clock: TriggerClock
    http: "httpx.AsyncClient"
    transform_timeout_s: float = 2.0

    def node(self, node_id: str) -> Optional[FlowNode]:
        return self.store.node(node_id)

    def update(self, node_id: str, patch: Dict[str, Any]) -> None:
        self.store.merge_data({node_id: patch})


@runtime_checkable
class Executable(Protocol):
    """Per-kind node behaviour.

    `on_trigger` is called once per new trigger token, `on_input_changed` when
    routed input changes without a new token. `run` computes a result from the
    node's current data; `propagate` hands a successful result downstream.
    """

    node_id: str

    async def on_trigger(self, token: int) -> None: ...

    async def on_input_changed(self, value: Any) -> None: ...

    async def run(self) -> NodeResult: ...

    def propagate(self, result: NodeResult) -> None: ...


class TokenGate:
    """Accept each trigger token at most once, in increasing order."""

    def __init__(self) -> None:
        self.last: Optional[int] = None

    def accept(self, token: Any) -> bool:
        if not isinstance(token, int) or isinstance(token, bool):
            return False
        if self.last is not None and token <= self.last:
            return False
        self.last = token
        return True


class SerialRunner:
    """Run an async job one at a time.

    Requests that arrive while the job is running collapse into a single
    re-run once it finishes, so the job always ends on the latest state.
    """

    def __init__(self, job: Callable[[], Awaitable[None]]):
        self._job = job
        self._busy = False
        self._again = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def request(self) -> None:
        if self._busy:
            self._again = True
            return
        self._busy = True
        try:
            while True:
                self._again = False
                await self._job()
                if not self._again:
                    break
        finally:
            self._busy = False
