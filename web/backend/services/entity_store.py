"""One-JSON-file-per-entity storage for journeys and flows."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import re
import threading
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class JsonEntityStore(Generic[T]):
    def __init__(self, directory: Path, model: Type[T]):
        self.dir = Path(directory)
        self.model = model
        self._lock = threading.Lock()

    def _path(self, entity_id: str) -> Path:
        if not _SAFE_ID.match(entity_id or "") or entity_id in (".", ".."):
            raise ValueError(f"Invalid id: {entity_id!r}")
        return self.dir / f"{entity_id}.json"

    def list(self) -> List[T]:
        items: List[T] = []
        if not self.dir.is_dir():
            return items
        for path in sorted(self.dir.glob("*.json")):
            try:
                items.append(self.model.model_validate(json.loads(path.read_text(encoding="utf-8"))))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Failed to load {self.model.__name__} from {path}: {e}")
        return items

    def get(self, entity_id: str) -> Optional[T]:
        try:
            path = self._path(entity_id)
        except ValueError:
            return None
        if not path.is_file():
            return None
        try:
            return self.model.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Failed to load {self.model.__name__} from {path}: {e}")
            return None

    def save(self, entity: T) -> T:
        path = self._path(getattr(entity, "id"))
        with self._lock:
            self.dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(entity.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, path)
        logger.info(f"Saved {self.model.__name__} '{getattr(entity, 'id')}' to {path}")
        return entity

    def delete(self, entity_id: str) -> bool:
        try:
            path = self._path(entity_id)
        except ValueError:
            return False
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
        logger.info(f"Deleted {self.model.__name__} file {path}")
        return True
