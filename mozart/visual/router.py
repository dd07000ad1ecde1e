"""Handle router: delivers a node's output into its downstream input slots.

Each outgoing edge selects a slot on its target from the edge's
`targetHandle`:

- `headers` -> `headersInput` (coerced to a string-valued dict)
- `body`    -> `bodyInput` (verbatim)
- anything else -> `inputData` (and `response` for Response nodes)

When several edges from the same source land on one target, the first
matching rule above wins. Every touched target receives a fresh trigger
token, and all targets are written in a single store merge.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from ..core.clock import TriggerClock
from ..core.store import GraphStore
from .models import BODY_HANDLE, HEADERS_HANDLE, NodeKind

logger = logging.getLogger(__name__)


def coerce_headers(value: Any, *, target_id: str = "") -> Dict[str, str]:
    """Turn a routed value into HTTP headers, or `{}` when it cannot be one."""
    if not isinstance(value, dict):
        logger.warning(
            f"Routing {type(value).__name__} into headers of '{target_id}': expected an object, using {{}}"
        )
        return {}
    headers: Dict[str, str] = {}
    for key, val in value.items():
        headers[str(key)] = val if isinstance(val, str) else json.dumps(val)
    return headers


class HandleRouter:
    def __init__(self, store: GraphStore, clock: TriggerClock):
        self.store = store
        self.clock = clock

    def _targets(self, source_id: str) -> Dict[str, List[Optional[str]]]:
        targets: Dict[str, List[Optional[str]]] = {}
        for edge in self.store.snapshot.outgoing(source_id):
            targets.setdefault(edge.target, []).append(edge.targetHandle)
        return targets

    def route(self, source_id: str, value: Any) -> Dict[str, Dict[str, Any]]:
        """Deliver `value` to every direct target of `source_id`.

        Returns the patches written (by target id); empty when the node has no
        outgoing edges.
        """
        targets = self._targets(source_id)
        if not targets:
            return {}

        token = self.clock.next()
        patches: Dict[str, Dict[str, Any]] = {}
        for target_id, handles in targets.items():
            target = self.store.node(target_id)
            if target is None:
                continue
            if HEADERS_HANDLE in handles:
                patch: Dict[str, Any] = {"headersInput": coerce_headers(value, target_id=target_id)}
            elif BODY_HANDLE in handles:
                patch = {"bodyInput": value}
            else:
                patch = {"inputData": value}
                if target.type == NodeKind.RESPONSE:
                    patch["response"] = value
            patch["triggerExecution"] = token
            patches[target_id] = patch

        self.store.merge_data(patches)
        logger.debug(f"Routed output of '{source_id}' to {sorted(patches)} (token {token})")
        return patches

    def stamp(self, source_id: str) -> List[str]:
        """Stamp a fresh trigger token on every direct target, without data."""
        targets = [t for t in self._targets(source_id) if self.store.node(t) is not None]
        if not targets:
            return []
        token = self.clock.next()
        self.store.merge_data({t: {"triggerExecution": token} for t in targets})
        return targets
