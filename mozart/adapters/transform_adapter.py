"""Transform node: user code over routed input."""

from __future__ import annotations

import logging
from typing import Any

from ..core.contracts import ExecutionContext, NodeResult, SerialRunner, TokenGate
from ..visual.code_executor import CodeExecutionError, evaluate_transform
from ..visual.models import TransformConfig, TransformMode

logger = logging.getLogger(__name__)


class TransformExecutor:
    def __init__(self, node_id: str, ctx: ExecutionContext):
        self.node_id = node_id
        self.ctx = ctx
        self._gate = TokenGate()
        self._serial = SerialRunner(self._run_and_propagate)
        self.runs = 0

    def _config(self) -> TransformConfig:
        node = self.ctx.node(self.node_id)
        return TransformConfig.model_validate(node.data if node is not None else {})

    async def on_trigger(self, token: int) -> None:
        if not self._gate.accept(token):
            return
        await self._serial.request()

    async def on_input_changed(self, value: Any) -> None:
        if self._config().mode != TransformMode.TRANSFORM:
            return
        await self._serial.request()

    async def _run_and_propagate(self) -> None:
        self.propagate(await self.run())

    async def run(self) -> NodeResult:
        node = self.ctx.node(self.node_id)
        if node is None:
            return NodeResult.failed(f"Node '{self.node_id}' no longer exists")

        config = TransformConfig.model_validate(node.data)
        self.runs += 1
        self.ctx.update(self.node_id, {"loading": True})
        try:
            value = await evaluate_transform(
                config.code,
                node.data.get("inputData"),
                timeout_s=self.ctx.transform_timeout_s,
            )
        except CodeExecutionError as e:
            logger.info(f"Transform '{self.node_id}' failed: {e}")
            self.ctx.update(self.node_id, {"loading": False, "result": None, "error": str(e)})
            return NodeResult.failed(str(e))

        self.ctx.update(self.node_id, {"loading": False, "result": value, "error": None})
        return NodeResult.success(value)

    def propagate(self, result: NodeResult) -> None:
        if result.ok:
            self.ctx.router.route(self.node_id, result.value)
