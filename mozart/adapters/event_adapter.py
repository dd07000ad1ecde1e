"""Start node: the event that begins a branch.

A Start node carries no data. When it fires it stamps a fresh trigger token
on each directly connected node; those nodes then run with whatever input
they already hold.
"""

from __future__ import annotations

from typing import Any, List

from ..core.contracts import ExecutionContext, NodeResult, TokenGate

NO_CONNECTED_NODES = "No connected nodes to start"


class StartExecutor:
    def __init__(self, node_id: str, ctx: ExecutionContext):
        self.node_id = node_id
        self.ctx = ctx
        self._gate = TokenGate()

    async def on_trigger(self, token: int) -> None:
        if not self._gate.accept(token):
            return
        self.ctx.update(self.node_id, {"lastTriggerStamp": token, "error": None})
        self.propagate(await self.run())

    async def on_input_changed(self, value: Any) -> None:
        # Start nodes have no input port.
        return None

    async def run(self) -> NodeResult:
        return NodeResult.success()

    def propagate(self, result: NodeResult) -> None:
        if result.ok:
            self.ctx.router.stamp(self.node_id)

    def start_manually(self) -> List[str]:
        """Fire this Start node by hand; returns the ids of the stamped nodes."""
        if not self.ctx.store.snapshot.outgoing(self.node_id):
            self.ctx.update(self.node_id, {"error": NO_CONNECTED_NODES})
            return []
        self.ctx.update(self.node_id, {"error": None})
        return self.ctx.router.stamp(self.node_id)
