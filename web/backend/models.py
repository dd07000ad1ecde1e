"""Web backend models.

The web backend re-exports the portable models from `mozart.visual.models`
so the engine, the CLI and the API share one JSON schema without importing
the backend package.
"""

from __future__ import annotations

from mozart.visual.models import (  # noqa: F401
    Flow,
    FlowCreateRequest,
    FlowDefinition,
    FlowDefinitionUpdate,
    FlowEdge,
    FlowNode,
    FlowUpdateRequest,
    Journey,
    JourneyCreateRequest,
    JourneyUpdateRequest,
    NodeKind,
    Position,
)

__all__ = [
    "Flow",
    "FlowCreateRequest",
    "FlowDefinition",
    "FlowDefinitionUpdate",
    "FlowEdge",
    "FlowNode",
    "FlowUpdateRequest",
    "Journey",
    "JourneyCreateRequest",
    "JourneyUpdateRequest",
    "NodeKind",
    "Position",
]
