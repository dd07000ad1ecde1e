"""Version history: list, view and restore past versions of a flow.

Viewing a version projects its content into the graph store as a read-only
graph. The live graph is kept aside untouched and comes back exactly as it
was on `exit_view()`. `restore()` appends the viewed content as a new
version and makes it live.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import List, Optional

from .autosave import DraftReconciler
from .core.store import GraphStore
from .version_store import MAX_VERSIONS, VersionStoreClient
from .visual.models import FlowDefinition

logger = logging.getLogger(__name__)


def _parse_iso(value: str) -> datetime:
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def format_relative(created_at: str, now: Optional[datetime] = None) -> str:
    """Short label for a version list entry."""
    created = _parse_iso(created_at)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hours = int((now - created).total_seconds() // 3600)
    if hours < 1:
        return "Just now"
    if hours < 24:
        return f"{hours}h ago"
    if hours < 48:
        return "Yesterday"
    label = f"{created.strftime('%b')} {created.day}"
    if created.year != now.year:
        label += f", {created.year}"
    return label


def format_full(created_at: str) -> str:
    """Full timestamp, e.g. 'Mar 4, 2025, 03:07 PM'."""
    created = _parse_iso(created_at)
    return f"{created.strftime('%b')} {created.day}, {created.year}, {created.strftime('%I:%M %p')}"


def summarize(definition: FlowDefinition) -> str:
    return f"{len(definition.nodes)} nodes, {len(definition.edges)} connections"


class HistoryBrowser:
    def __init__(
        self,
        flow_id: str,
        store: GraphStore,
        versions: VersionStoreClient,
        reconciler: DraftReconciler,
    ):
        self.flow_id = flow_id
        self.store = store
        self.versions = versions
        self.reconciler = reconciler
        self.viewing_version: Optional[FlowDefinition] = None

    @property
    def viewing(self) -> bool:
        return self.store.viewing

    async def list_versions(self, limit: int = MAX_VERSIONS) -> List[FlowDefinition]:
        return await self.versions.list_versions(self.flow_id, limit=limit)

    def select(self, definition: FlowDefinition) -> None:
        """Show a past version read-only."""
        if definition.flowId != self.flow_id:
            raise ValueError(f"Version belongs to flow '{definition.flowId}', not '{self.flow_id}'")
        self.store.enter_view(definition.nodes, definition.edges)
        self.viewing_version = definition
        logger.info(f"Viewing version {definition.version} of flow '{self.flow_id}'")

    async def select_version(self, version: int) -> FlowDefinition:
        for definition in await self.list_versions():
            if definition.version == version:
                self.select(definition)
                return definition
        raise KeyError(f"Version {version} of flow '{self.flow_id}' not found")

    def exit_view(self) -> None:
        self.store.exit_view()
        self.viewing_version = None

    async def restore(self) -> FlowDefinition:
        """Append the viewed version as the newest one and make it live.

        On failure the browser stays in viewing mode and the error propagates.
        """
        viewed = self.viewing_version
        if viewed is None or not self.store.viewing:
            raise RuntimeError("No version is being viewed")

        definition = await self.versions.put_new_version(self.flow_id, viewed.nodes, viewed.edges)
        self.store.commit_view()
        self.viewing_version = None

        self.reconciler.cancel()
        self.reconciler.mark_data_as_known(self.store.nodes, self.store.edges)
        self.reconciler.current_version = definition.version
        self.reconciler.clear_local_draft()
        logger.info(f"Restored version {viewed.version} of flow '{self.flow_id}' as version {definition.version}")
        return definition
