"""HTTP client for the flow-definition (version store) API."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from .settings import resolve_api_url
from .visual.models import FlowDefinition, FlowEdge, FlowNode, dump_edges, dump_nodes

logger = logging.getLogger(__name__)

MAX_VERSIONS = 50


class VersionStoreError(RuntimeError):
    """Raised when the version store cannot be reached or answers badly."""


class VersionNotFound(VersionStoreError):
    """Raised when a flow has no definition yet."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def iso_to_ms(value: str) -> int:
    """Epoch milliseconds for an ISO-8601 timestamp (naive means UTC)."""
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


class VersionStoreClient:
    """Async client for `/flow-definitions/{flowId}`.

    The client owns its `httpx.AsyncClient` unless one is passed in (tests pass
    one built on `httpx.ASGITransport` or `httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = 10.0,
    ):
        self.base_url = (base_url or resolve_api_url()).rstrip("/")
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout_s)

    def _url(self, flow_id: str, suffix: str = "") -> str:
        return f"{self.base_url}/flow-definitions/{flow_id}{suffix}"

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            res = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise VersionStoreError(f"{method} {url} failed: {e}") from e
        if res.status_code == 404:
            raise VersionNotFound(f"No definition found at {url}")
        if res.status_code >= 400:
            raise VersionStoreError(f"{method} {url} returned {res.status_code}: {res.text[:200]}")
        return res

    @staticmethod
    def _parse_definition(payload: Any) -> FlowDefinition:
        try:
            return FlowDefinition.model_validate(payload)
        except ValidationError as e:
            raise VersionStoreError(f"Malformed flow definition: {e}") from e

    async def get_latest(self, flow_id: str) -> FlowDefinition:
        res = await self._send("GET", self._url(flow_id))
        return self._parse_definition(res.json())

    async def put_new_version(
        self,
        flow_id: str,
        nodes: Iterable[FlowNode],
        edges: Iterable[FlowEdge],
    ) -> FlowDefinition:
        payload = {"nodes": dump_nodes(nodes), "edges": dump_edges(edges)}
        res = await self._send("PUT", self._url(flow_id), json=payload)
        definition = self._parse_definition(res.json())
        logger.info(f"Saved flow '{flow_id}' as version {definition.version}")
        return definition

    async def list_versions(self, flow_id: str, limit: int = MAX_VERSIONS) -> List[FlowDefinition]:
        limit = max(1, min(int(limit), MAX_VERSIONS))
        res = await self._send("GET", self._url(flow_id, "/versions"), params={"limit": limit})
        payload = res.json()
        if not isinstance(payload, list):
            raise VersionStoreError("Malformed version list")
        return [self._parse_definition(item) for item in payload]

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
