"""Response node: terminal sink that shows what reached it."""

from __future__ import annotations

from typing import Any

from ..core.contracts import ExecutionContext, NodeResult, TokenGate


class ResponseExecutor:
    def __init__(self, node_id: str, ctx: ExecutionContext):
        self.node_id = node_id
        self.ctx = ctx
        self._gate = TokenGate()

    async def on_trigger(self, token: int) -> None:
        if self._gate.accept(token):
            await self.run()

    async def on_input_changed(self, value: Any) -> None:
        await self.run()

    async def run(self) -> NodeResult:
        node = self.ctx.node(self.node_id)
        if node is None:
            return NodeResult.failed(f"Node '{self.node_id}' no longer exists")
        response = node.data.get("response")
        display = response if response is not None else node.data.get("inputData")
        self.ctx.update(self.node_id, {"display": display})
        return NodeResult.success(display)

    def propagate(self, result: NodeResult) -> None:
        # No output port.
        return None
