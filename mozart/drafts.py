"""Local draft storage.

A draft is the last unsynced edit of a flow, written synchronously on every
change so a crash or reload loses nothing. One JSON file per flow:

    <runtime dir>/drafts/<flowId>.json  ->  {flowId, nodes, edges, timestamp}

Drafts hold the persisted shape of nodes only.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import re
import time
from typing import Iterable, Optional

from pydantic import ValidationError

from .visual.models import Draft, FlowEdge, FlowNode, dump_edges, dump_nodes

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class DraftStorageError(OSError):
    """Raised when a draft cannot be written or removed."""


def now_ms() -> int:
    return int(time.time() * 1000)


class FileDraftStore:
    def __init__(self, base_dir: Path):
        self.dir = Path(base_dir) / "drafts"

    def path_for(self, flow_id: str) -> Path:
        if not _SAFE_ID.match(flow_id or "") or flow_id in (".", ".."):
            raise ValueError(f"Invalid flow id for a draft file: {flow_id!r}")
        return self.dir / f"{flow_id}.json"

    def save(
        self,
        flow_id: str,
        nodes: Iterable[FlowNode],
        edges: Iterable[FlowEdge],
        *,
        timestamp: Optional[int] = None,
    ) -> Draft:
        draft = Draft(
            flowId=flow_id,
            nodes=[FlowNode.model_validate(n) for n in dump_nodes(nodes)],
            edges=[FlowEdge.model_validate(e) for e in dump_edges(edges)],
            timestamp=timestamp if timestamp is not None else now_ms(),
        )
        path = self.path_for(flow_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(draft.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise DraftStorageError(f"Failed to write draft for flow '{flow_id}': {e}") from e
        logger.debug(f"Saved local draft for flow '{flow_id}' to {path}")
        return draft

    def load(self, flow_id: str) -> Optional[Draft]:
        path = self.path_for(flow_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise DraftStorageError(f"Failed to read draft for flow '{flow_id}': {e}") from e

        try:
            draft = Draft.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Discarding corrupt draft {path}: {e}")
            self.clear(flow_id)
            return None
        if draft.flowId != flow_id:
            logger.warning(f"Discarding draft {path}: it belongs to flow '{draft.flowId}'")
            self.clear(flow_id)
            return None
        return draft

    def clear(self, flow_id: str) -> None:
        path = self.path_for(flow_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise DraftStorageError(f"Failed to remove draft for flow '{flow_id}': {e}") from e
        logger.info(f"Cleared local draft for flow '{flow_id}'")
