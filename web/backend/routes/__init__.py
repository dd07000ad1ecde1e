"""Backend API routes."""

from .flow_definitions import router as flow_definitions_router
from .flows import router as flows_router
from .journeys import router as journeys_router

__all__ = ["flow_definitions_router", "flows_router", "journeys_router"]
