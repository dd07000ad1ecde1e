"""Autosave: local drafts on every edit, server versions after a quiet period.

Every changed edit is written to the local draft store right away. A single
debounce timer (restarted on each change) pushes the latest graph to the
version store once the user has paused for `delay_ms`. Only one server save
is in flight at a time; a save requested meanwhile runs once afterwards with
the newest data.

Change detection compares the canonical JSON of the persisted shape, so
runtime state written by the engine never counts as an edit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .drafts import DraftStorageError, FileDraftStore, now_ms
from .settings import resolve_autosave_delay_ms
from .version_store import VersionNotFound, VersionStoreClient, VersionStoreError, iso_to_ms
from .visual.models import Draft, FlowDefinition, FlowEdge, FlowNode, canonical_json

logger = logging.getLogger(__name__)

# Save status indicator values.
STATUS_LOCAL = "local"
STATUS_SAVING = "saving"
STATUS_SAVED = "saved"
STATUS_ERROR = "error"


@dataclass
class AutoSaveCallbacks:
    on_save_start: Optional[Callable[[], None]] = None
    on_save_success: Optional[Callable[[int], None]] = None
    on_save_error: Optional[Callable[[str], None]] = None
    on_local_save: Optional[Callable[[], None]] = None


@dataclass
class Reconciliation:
    """What `reconcile()` decided to open."""

    source: str  # "server", "draft" or "created"
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    definition: Optional[FlowDefinition] = None
    draft: Optional[Draft] = None
    has_unsaved_changes: bool = False
    error: Optional[str] = None


class DraftReconciler:
    def __init__(
        self,
        flow_id: str,
        versions: VersionStoreClient,
        drafts: FileDraftStore,
        *,
        delay_ms: Optional[int] = None,
        callbacks: Optional[AutoSaveCallbacks] = None,
        is_viewing: Callable[[], bool] = lambda: False,
        now_ms: Callable[[], int] = now_ms,
    ):
        self.flow_id = flow_id
        self.versions = versions
        self.drafts = drafts
        self.delay_ms = delay_ms if delay_ms is not None else resolve_autosave_delay_ms()
        self.callbacks = callbacks or AutoSaveCallbacks()
        self._is_viewing = is_viewing
        self._now_ms = now_ms

        self.status: Optional[str] = None
        self.last_error: Optional[str] = None
        self.has_unsaved_changes = False
        self.current_version: Optional[int] = None

        self._loading = False
        self._closed = False
        # Canonical JSON of the last graph seen by schedule_auto_save / loaded.
        self._last_known: Optional[str] = None
        # Canonical JSON of the last graph the server accepted.
        self._last_sent: Optional[str] = None
        self._edits = 0
        self._timer: Optional[asyncio.Task] = None
        self._saving = False
        self._pending: Optional[Tuple[List[FlowNode], List[FlowEdge]]] = None

    @property
    def loading(self) -> bool:
        return self._loading

    def set_loading(self, loading: bool) -> None:
        self._loading = bool(loading)

    def _blocked(self) -> bool:
        return not self.flow_id or self._closed or self._loading or self._is_viewing()

    def _report_error(self, message: str) -> None:
        self.last_error = message
        self.status = STATUS_ERROR
        if self.callbacks.on_save_error:
            self.callbacks.on_save_error(message)

    # Edits

    def schedule_auto_save(self, nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]) -> bool:
        """Record an edit. Returns True when the graph changed and a save was scheduled.

        Must be called from the event loop thread (the debounce timer is a task).
        """
        if self._blocked():
            return False
        nodes, edges = list(nodes), list(edges)
        current = canonical_json(nodes, edges)
        if current == self._last_known:
            return False

        try:
            self.drafts.save(self.flow_id, nodes, edges, timestamp=self._now_ms())
        except DraftStorageError as e:
            # Not recorded as known, so the same graph is retried on the next call.
            self._report_error(str(e))
            raise
        self._last_known = current
        self._edits += 1

        self.has_unsaved_changes = True
        self.status = STATUS_LOCAL
        if self.callbacks.on_local_save:
            self.callbacks.on_local_save()
        self._restart_timer(nodes, edges)
        return True

    def resume(self, nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]) -> None:
        """Re-arm the timer for unsaved changes (after leaving viewing mode)."""
        if self.has_unsaved_changes and not self._blocked():
            self._restart_timer(list(nodes), list(edges))

    def _restart_timer(self, nodes: List[FlowNode], edges: List[FlowEdge]) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.create_task(self._fire_after_delay(nodes, edges), name=f"mozart-autosave-{self.flow_id}")
        self._timer.add_done_callback(self._timer_done)

    async def _fire_after_delay(self, nodes: List[FlowNode], edges: List[FlowEdge]) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        # Detach first: a later edit must not cancel the save below.
        self._timer = None
        if canonical_json(nodes, edges) != self._last_sent:
            await self.save_to_server(nodes, edges)

    def _timer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Autosave for flow '{self.flow_id}' failed: {exc}", exc_info=exc)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    # Server writes

    async def save_to_server(
        self, nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]
    ) -> Optional[FlowDefinition]:
        if self._blocked():
            return None
        if self._saving:
            self._pending = (list(nodes), list(edges))
            return None

        self._saving = True
        try:
            result = await self._save_once(list(nodes), list(edges))
            while self._pending is not None and not self._blocked():
                nodes, edges = self._pending
                self._pending = None
                result = await self._save_once(nodes, edges)
            return result
        finally:
            self._pending = None
            self._saving = False

    async def _save_once(self, nodes: List[FlowNode], edges: List[FlowEdge]) -> Optional[FlowDefinition]:
        sent = canonical_json(nodes, edges)
        edits_before = self._edits
        self.status = STATUS_SAVING
        if self.callbacks.on_save_start:
            self.callbacks.on_save_start()

        try:
            definition = await self.versions.put_new_version(self.flow_id, nodes, edges)
        except VersionStoreError as e:
            logger.error(f"Error saving flow '{self.flow_id}' to server: {e}")
            self._report_error(str(e))
            return None

        self._last_sent = sent
        self.current_version = definition.version
        self.last_error = None
        if self._edits == edits_before and self._last_known == sent:
            self.drafts.clear(self.flow_id)
            self.has_unsaved_changes = False
            self.status = STATUS_SAVED
        else:
            # Newer edits landed meanwhile; their draft stays until they are saved.
            self.status = STATUS_LOCAL
        if self.callbacks.on_save_success:
            self.callbacks.on_save_success(definition.version)
        return definition

    async def flush(self, nodes: Sequence[FlowNode], edges: Sequence[FlowEdge]) -> Optional[FlowDefinition]:
        """Cancel the timer and save now if the graph differs from the last save."""
        self.cancel()
        if canonical_json(nodes, edges) == self._last_sent:
            return None
        return await self.save_to_server(nodes, edges)

    # Baseline / drafts

    def mark_data_as_known(
        self,
        nodes: Sequence[FlowNode],
        edges: Sequence[FlowEdge],
        *,
        has_unsaved_changes: bool = False,
    ) -> None:
        current = canonical_json(nodes, edges)
        self._last_known = current
        if not has_unsaved_changes:
            self._last_sent = current
        self.has_unsaved_changes = has_unsaved_changes

    def load_local_draft(self) -> Optional[Draft]:
        if not self.flow_id:
            return None
        draft = self.drafts.load(self.flow_id)
        if draft is not None:
            logger.info(f"Loaded local draft for flow '{self.flow_id}'")
        return draft

    def clear_local_draft(self) -> None:
        if not self.flow_id:
            return
        self.drafts.clear(self.flow_id)
        self.has_unsaved_changes = False

    async def reconcile(self) -> Reconciliation:
        """Decide what to open: the server's latest version or a newer local draft."""
        self.set_loading(True)
        try:
            result = await self._reconcile()
        finally:
            self.set_loading(False)

        if result.definition is not None:
            self.current_version = result.definition.version
            self._last_sent = canonical_json(result.definition.nodes, result.definition.edges)
        self.mark_data_as_known(result.nodes, result.edges, has_unsaved_changes=result.has_unsaved_changes)
        if result.has_unsaved_changes:
            self.status = STATUS_LOCAL
        if result.error:
            self.last_error = result.error
            self.status = STATUS_ERROR
        return result

    async def _reconcile(self) -> Reconciliation:
        draft = self.load_local_draft()
        try:
            definition = await self.versions.get_latest(self.flow_id)
        except VersionNotFound:
            if draft is not None:
                return Reconciliation("draft", draft.nodes, draft.edges, draft=draft, has_unsaved_changes=True)
            definition = await self.versions.put_new_version(self.flow_id, [], [])
            logger.info(f"Created empty definition v{definition.version} for flow '{self.flow_id}'")
            return Reconciliation("created", definition.nodes, definition.edges, definition=definition)
        except VersionStoreError as e:
            if draft is None:
                raise
            logger.warning(f"Version store unreachable, opening local draft of flow '{self.flow_id}': {e}")
            return Reconciliation(
                "draft", draft.nodes, draft.edges, draft=draft, has_unsaved_changes=True, error=str(e)
            )

        if draft is not None:
            try:
                server_ms = iso_to_ms(definition.updatedAt)
            except ValueError:
                logger.warning(f"Unparseable updatedAt {definition.updatedAt!r} on flow '{self.flow_id}'")
                server_ms = 0
            if draft.timestamp > server_ms:
                logger.info(f"Local draft of flow '{self.flow_id}' is newer than v{definition.version}")
                return Reconciliation(
                    "draft",
                    draft.nodes,
                    draft.edges,
                    definition=definition,
                    draft=draft,
                    has_unsaved_changes=True,
                )
            self.drafts.clear(self.flow_id)
        return Reconciliation("server", definition.nodes, definition.edges, definition=definition)

    def close(self) -> None:
        self.cancel()
        self._closed = True
