"""Flow CRUD routes."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, HTTPException

from ..models import Flow, FlowCreateRequest, FlowUpdateRequest
from ..services.entity_store import JsonEntityStore
from ..services.stores import get_flow_store, get_version_store
from ..services.version_store import FileVersionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/flows", tags=["flows"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require(store: JsonEntityStore[Flow], flow_id: str) -> Flow:
    flow = store.get(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail=f"Flow '{flow_id}' not found")
    return flow


@router.get("", response_model=List[Flow])
async def list_flows(journeyId: Optional[str] = None, store: JsonEntityStore[Flow] = Depends(get_flow_store)):
    """List flows, optionally of one journey, ordered by position."""
    flows = store.list()
    if journeyId:
        flows = [f for f in flows if f.journeyId == journeyId]
    return sorted(flows, key=lambda f: (f.position, f.createdAt or ""))


@router.post("", response_model=Flow, status_code=201)
async def create_flow(
    request: FlowCreateRequest,
    store: JsonEntityStore[Flow] = Depends(get_flow_store),
    versions: FileVersionStore = Depends(get_version_store),
):
    """Create a flow together with its empty version 1 definition."""
    now = _now()
    flow = Flow(
        id=str(uuid.uuid4())[:8],
        journeyId=request.journeyId,
        name=request.name,
        description=request.description,
        position=request.position,
        createdAt=now,
        updatedAt=now,
    )
    store.save(flow)
    versions.put_new_version(flow.id, [], [])
    return flow


@router.get("/{flow_id}", response_model=Flow)
async def get_flow(flow_id: str, store: JsonEntityStore[Flow] = Depends(get_flow_store)):
    """Get a specific flow by ID."""
    return _require(store, flow_id)


@router.put("/{flow_id}", response_model=Flow)
async def update_flow(
    flow_id: str,
    request: FlowUpdateRequest,
    store: JsonEntityStore[Flow] = Depends(get_flow_store),
):
    """Update name, description or position of a flow."""
    flow = _require(store, flow_id)
    updates = request.model_dump(exclude_none=True)
    flow = flow.model_copy(update={**updates, "updatedAt": _now()})
    return store.save(flow)


@router.delete("/{flow_id}")
async def delete_flow(
    flow_id: str,
    store: JsonEntityStore[Flow] = Depends(get_flow_store),
    versions: FileVersionStore = Depends(get_version_store),
):
    """Delete a flow and every version of its definition."""
    _require(store, flow_id)
    store.delete(flow_id)
    versions.delete_all(flow_id)
    return {"status": "deleted", "id": flow_id}
