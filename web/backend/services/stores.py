"""Store accessors used as FastAPI dependencies.

Stores are cached per runtime directory; the directory is resolved from the
environment on every call so tests can point `MOZART_RUNTIME_DIR` elsewhere.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from mozart.settings import resolve_runtime_dir
from mozart.visual.models import Flow, Journey

from .entity_store import JsonEntityStore
from .version_store import FileVersionStore


@lru_cache(maxsize=None)
def _version_store_for(root: Path) -> FileVersionStore:
    return FileVersionStore(root)


@lru_cache(maxsize=None)
def _journey_store_for(root: Path) -> JsonEntityStore[Journey]:
    return JsonEntityStore(root / "journeys", Journey)


@lru_cache(maxsize=None)
def _flow_store_for(root: Path) -> JsonEntityStore[Flow]:
    return JsonEntityStore(root / "flows", Flow)


def get_version_store() -> FileVersionStore:
    return _version_store_for(resolve_runtime_dir())


def get_journey_store() -> JsonEntityStore[Journey]:
    return _journey_store_for(resolve_runtime_dir())


def get_flow_store() -> JsonEntityStore[Flow]:
    return _flow_store_for(resolve_runtime_dir())
