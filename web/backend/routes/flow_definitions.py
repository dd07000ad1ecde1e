"""Flow definition (version store) routes."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from ..models import FlowDefinition, FlowDefinitionUpdate
from ..services.stores import get_version_store
from ..services.version_store import MAX_VERSIONS, FileVersionStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/flow-definitions", tags=["flow-definitions"])


@router.get("/{flow_id}", response_model=FlowDefinition)
async def get_flow_definition(flow_id: str, store: FileVersionStore = Depends(get_version_store)):
    """Get the latest version of a flow's definition."""
    try:
        definition = store.get_latest(flow_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if definition is None:
        raise HTTPException(status_code=404, detail="Flow definition not found")
    return definition


@router.put("/{flow_id}", response_model=FlowDefinition)
async def save_flow_definition(
    flow_id: str,
    request: FlowDefinitionUpdate,
    store: FileVersionStore = Depends(get_version_store),
):
    """Append a new version (latest + 1) holding the given nodes and edges."""
    try:
        return store.put_new_version(flow_id, request.nodes, request.edges)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{flow_id}/versions", response_model=List[FlowDefinition])
async def list_flow_versions(
    flow_id: str,
    limit: int = Query(MAX_VERSIONS),
    store: FileVersionStore = Depends(get_version_store),
):
    """List versions newest first (at most 50)."""
    try:
        return store.list_versions(flow_id, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
