"""Journey CRUD routes."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List
import uuid

from fastapi import APIRouter, Depends, HTTPException

from mozart.settings import resolve_default_user_id

from ..models import Journey, JourneyCreateRequest, JourneyUpdateRequest
from ..services.entity_store import JsonEntityStore
from ..services.stores import get_journey_store

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/journeys", tags=["journeys"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require(store: JsonEntityStore[Journey], journey_id: str) -> Journey:
    journey = store.get(journey_id)
    if journey is None:
        raise HTTPException(status_code=404, detail=f"Journey '{journey_id}' not found")
    return journey


@router.get("", response_model=List[Journey])
async def list_journeys(store: JsonEntityStore[Journey] = Depends(get_journey_store)):
    """List journeys, newest first."""
    return sorted(store.list(), key=lambda j: j.createdAt or "", reverse=True)


@router.post("", response_model=Journey, status_code=201)
async def create_journey(request: JourneyCreateRequest, store: JsonEntityStore[Journey] = Depends(get_journey_store)):
    now = _now()
    journey = Journey(
        id=str(uuid.uuid4())[:8],
        name=request.name,
        description=request.description,
        userId=resolve_default_user_id(),
        createdAt=now,
        updatedAt=now,
    )
    return store.save(journey)


@router.get("/{journey_id}", response_model=Journey)
async def get_journey(journey_id: str, store: JsonEntityStore[Journey] = Depends(get_journey_store)):
    return _require(store, journey_id)


@router.put("/{journey_id}", response_model=Journey)
async def update_journey(
    journey_id: str,
    request: JourneyUpdateRequest,
    store: JsonEntityStore[Journey] = Depends(get_journey_store),
):
    journey = _require(store, journey_id)
    journey = journey.model_copy(update={**request.model_dump(exclude_none=True), "updatedAt": _now()})
    return store.save(journey)


@router.delete("/{journey_id}")
async def delete_journey(journey_id: str, store: JsonEntityStore[Journey] = Depends(get_journey_store)):
    _require(store, journey_id)
    store.delete(journey_id)
    return {"status": "deleted", "id": journey_id}
