"""Append-only, file-based version store for flow definitions.

Layout:

    <runtime dir>/flow_definitions/<flowId>/v00000001.json
    <runtime dir>/flow_definitions/<flowId>/v00000002.json
    ...

Each version file is created with exclusive-create, so a version number is
never written twice even if two processes race: the loser re-reads the
latest number and tries the next one.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import re
import shutil
import threading
from typing import Iterable, List, Optional

from pydantic import ValidationError

from mozart.visual.models import FlowDefinition, FlowEdge, FlowNode, persist_nodes

logger = logging.getLogger(__name__)

MAX_VERSIONS = 50

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")
_VERSION_FILE = re.compile(r"^v(\d{8})\.json$")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class FileVersionStore:
    def __init__(self, base_dir: Path):
        self.root = Path(base_dir) / "flow_definitions"
        self._lock = threading.Lock()

    def _flow_dir(self, flow_id: str) -> Path:
        if not _SAFE_ID.match(flow_id or "") or flow_id in (".", ".."):
            raise ValueError(f"Invalid flow id: {flow_id!r}")
        return self.root / flow_id

    def _version_numbers(self, flow_id: str) -> List[int]:
        flow_dir = self._flow_dir(flow_id)
        if not flow_dir.is_dir():
            return []
        numbers = []
        for path in flow_dir.iterdir():
            m = _VERSION_FILE.match(path.name)
            if m:
                numbers.append(int(m.group(1)))
        return sorted(numbers)

    def _read(self, flow_id: str, version: int) -> Optional[FlowDefinition]:
        path = self._flow_dir(flow_id) / f"v{version:08d}.json"
        try:
            return FlowDefinition.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Skipping unreadable version file {path}: {e}")
            return None

    def get_latest(self, flow_id: str) -> Optional[FlowDefinition]:
        for version in reversed(self._version_numbers(flow_id)):
            definition = self._read(flow_id, version)
            if definition is not None:
                return definition
        return None

    def list_versions(self, flow_id: str, limit: int = MAX_VERSIONS) -> List[FlowDefinition]:
        """Versions newest first, at most `limit` (clamped to 1..50)."""
        limit = max(1, min(int(limit), MAX_VERSIONS))
        out: List[FlowDefinition] = []
        for version in reversed(self._version_numbers(flow_id)):
            definition = self._read(flow_id, version)
            if definition is not None:
                out.append(definition)
            if len(out) >= limit:
                break
        return out

    def put_new_version(
        self,
        flow_id: str,
        nodes: Iterable[FlowNode],
        edges: Iterable[FlowEdge],
    ) -> FlowDefinition:
        """Append `latest + 1` (or 1). Transient node fields are stripped here too."""
        flow_dir = self._flow_dir(flow_id)
        nodes = persist_nodes(nodes)
        edges = list(edges)
        with self._lock:
            flow_dir.mkdir(parents=True, exist_ok=True)
            while True:
                numbers = self._version_numbers(flow_id)
                version = (numbers[-1] if numbers else 0) + 1
                now = _utc_now_iso()
                definition = FlowDefinition(
                    flowId=flow_id,
                    version=version,
                    nodes=nodes,
                    edges=edges,
                    createdAt=now,
                    updatedAt=now,
                )
                path = flow_dir / f"v{version:08d}.json"
                try:
                    with path.open("x", encoding="utf-8") as f:
                        f.write(definition.model_dump_json(indent=2))
                except FileExistsError:
                    continue
                logger.info(f"Saved flow definition '{flow_id}' v{version} to {path}")
                return definition

    def delete_all(self, flow_id: str) -> int:
        """Remove every version of a flow; returns how many were removed."""
        flow_dir = self._flow_dir(flow_id)
        count = len(self._version_numbers(flow_id))
        if flow_dir.is_dir():
            shutil.rmtree(flow_dir)
            logger.info(f"Deleted {count} version(s) of flow '{flow_id}'")
        return count
