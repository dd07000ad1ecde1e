"""Node executors, one class per node kind."""

from __future__ import annotations

from typing import Callable, Dict

from ..core.contracts import Executable, ExecutionContext
from ..visual.models import NodeKind
from .effect_adapter import RequestExecutor
from .event_adapter import StartExecutor
from .response_adapter import ResponseExecutor
from .transform_adapter import TransformExecutor

ExecutorFactory = Callable[[str, ExecutionContext], Executable]

EXECUTOR_FACTORIES: Dict[NodeKind, ExecutorFactory] = {
    NodeKind.START: StartExecutor,
    NodeKind.REQUEST: RequestExecutor,
    NodeKind.TRANSFORM: TransformExecutor,
    NodeKind.RESPONSE: ResponseExecutor,
}


def get_executor_factory(kind: NodeKind) -> ExecutorFactory:
    try:
        return EXECUTOR_FACTORIES[NodeKind(kind)]
    except (KeyError, ValueError) as e:
        raise ValueError(f"No executor registered for node kind '{kind}'") from e


def create_executor(node_id: str, kind: NodeKind, ctx: ExecutionContext) -> Executable:
    return get_executor_factory(kind)(node_id, ctx)


__all__ = [
    "EXECUTOR_FACTORIES",
    "RequestExecutor",
    "ResponseExecutor",
    "StartExecutor",
    "TransformExecutor",
    "create_executor",
    "get_executor_factory",
]
