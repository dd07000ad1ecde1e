from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from mozart.autosave import AutoSaveCallbacks, DraftReconciler
from mozart.drafts import DraftStorageError, FileDraftStore
from mozart.version_store import VersionNotFound, VersionStoreError, iso_to_ms
from mozart.visual.models import FlowDefinition, FlowEdge, FlowNode, NodeKind, persist_nodes


def _node(label: str) -> FlowNode:
    return FlowNode(id="t1", type=NodeKind.TRANSFORM, data={"label": label, "code": "return 1"})


def _label(nodes: List[FlowNode]) -> str:
    return nodes[0].data["label"]


class FakeVersions:
    """In-memory stand-in for VersionStoreClient."""

    def __init__(self, *, fail: bool = False, unreachable: bool = False):
        self.fail = fail
        self.unreachable = unreachable
        self.puts: List[Tuple[List[FlowNode], List[FlowEdge]]] = []
        self.latest: Optional[FlowDefinition] = None
        self.release: Optional[asyncio.Event] = None

    def set_latest(self, nodes: List[FlowNode], updated_at: str) -> None:
        self.latest = FlowDefinition(
            flowId="f1", version=7, nodes=nodes, edges=[], createdAt=updated_at, updatedAt=updated_at
        )

    async def put_new_version(self, flow_id, nodes, edges) -> FlowDefinition:
        if self.release is not None:
            await self.release.wait()
        if self.fail:
            raise VersionStoreError("server down")
        nodes, edges = list(nodes), list(edges)
        self.puts.append((nodes, edges))
        now = datetime.now(timezone.utc).isoformat()
        self.latest = FlowDefinition(
            flowId=flow_id,
            version=len(self.puts),
            nodes=persist_nodes(nodes),
            edges=edges,
            createdAt=now,
            updatedAt=now,
        )
        return self.latest

    async def get_latest(self, flow_id) -> FlowDefinition:
        if self.unreachable:
            raise VersionStoreError("connection refused")
        if self.latest is None:
            raise VersionNotFound("missing")
        return self.latest


def _reconciler(versions: FakeVersions, base: Path, **kwargs) -> DraftReconciler:
    return DraftReconciler("f1", versions, FileDraftStore(base), **kwargs)


def test_debounce_saves_only_the_last_edit(tmp_path: Path) -> None:
    versions = FakeVersions()
    events: List[str] = []
    callbacks = AutoSaveCallbacks(
        on_save_start=lambda: events.append("start"),
        on_save_success=lambda v: events.append(f"saved:{v}"),
        on_local_save=lambda: events.append("local"),
    )

    async def main() -> DraftReconciler:
        rec = _reconciler(versions, tmp_path, delay_ms=100, callbacks=callbacks)
        rec.mark_data_as_known([], [])
        for label in ("a", "b", "c"):
            assert rec.schedule_auto_save([_node(label)], [])
            await asyncio.sleep(0.005)
        assert versions.puts == []
        assert rec.status == "local"
        await asyncio.sleep(0.4)
        return rec

    rec = asyncio.run(main())

    assert [_label(nodes) for nodes, _ in versions.puts] == ["c"]
    assert rec.status == "saved"
    assert rec.current_version == 1
    assert not rec.has_unsaved_changes
    assert FileDraftStore(tmp_path).load("f1") is None
    assert events == ["local", "local", "local", "start", "saved:1"]


def test_unchanged_graph_is_a_no_op(tmp_path: Path) -> None:
    versions = FakeVersions()

    async def main() -> bool:
        rec = _reconciler(versions, tmp_path, delay_ms=10)
        rec.mark_data_as_known([_node("a")], [])
        ran = _node("a").with_data({"result": 1, "triggerExecution": 3})
        return rec.schedule_auto_save([ran], [])

    assert asyncio.run(main()) is False
    assert FileDraftStore(tmp_path).load("f1") is None


def test_draft_is_written_before_the_server_save(tmp_path: Path) -> None:
    versions = FakeVersions()

    async def main() -> None:
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        rec.mark_data_as_known([], [])
        rec.schedule_auto_save([_node("a")], [])
        draft = FileDraftStore(tmp_path).load("f1")
        assert draft is not None and draft.nodes[0].data["label"] == "a"
        assert rec.timer_pending
        rec.cancel()

    asyncio.run(main())
    assert versions.puts == []


def test_failed_save_keeps_the_draft(tmp_path: Path) -> None:
    versions = FakeVersions(fail=True)
    errors: List[str] = []

    async def main() -> DraftReconciler:
        rec = _reconciler(versions, tmp_path, delay_ms=20, callbacks=AutoSaveCallbacks(on_save_error=errors.append))
        rec.mark_data_as_known([], [])
        rec.schedule_auto_save([_node("a")], [])
        await asyncio.sleep(0.2)
        return rec

    rec = asyncio.run(main())

    assert rec.status == "error"
    assert rec.last_error == "server down"
    assert errors == ["server down"]
    assert rec.has_unsaved_changes
    assert FileDraftStore(tmp_path).load("f1") is not None


def test_draft_storage_failure_is_raised(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("x")

    async def main() -> DraftReconciler:
        rec = DraftReconciler("f1", FakeVersions(), FileDraftStore(blocker), delay_ms=10)
        rec.mark_data_as_known([], [])
        with pytest.raises(DraftStorageError):
            rec.schedule_auto_save([_node("a")], [])
        return rec

    rec = asyncio.run(main())
    assert rec.status == "error"
    assert not rec.timer_pending


def test_edit_is_retried_after_draft_storage_recovers(tmp_path: Path) -> None:
    versions = FakeVersions()
    blocker = tmp_path / "drafts"
    blocker.write_text("a file where the draft directory should be")

    async def main() -> DraftReconciler:
        rec = _reconciler(versions, tmp_path, delay_ms=20)
        rec.mark_data_as_known([], [])
        with pytest.raises(DraftStorageError):
            rec.schedule_auto_save([_node("a")], [])
        assert not rec.has_unsaved_changes

        blocker.unlink()
        assert rec.schedule_auto_save([_node("a")], [])
        assert rec.has_unsaved_changes
        assert FileDraftStore(tmp_path).load("f1") is not None
        await asyncio.sleep(0.2)
        return rec

    rec = asyncio.run(main())
    assert [_label(nodes) for nodes, _ in versions.puts] == ["a"]
    assert rec.status == "saved"
    assert FileDraftStore(tmp_path).load("f1") is None


def test_viewing_and_loading_block_autosave(tmp_path: Path) -> None:
    viewing = {"on": True}

    async def main() -> List[bool]:
        rec = _reconciler(FakeVersions(), tmp_path, delay_ms=10, is_viewing=lambda: viewing["on"])
        results = [rec.schedule_auto_save([_node("a")], [])]
        results.append(await rec.save_to_server([_node("a")], []) is None)
        viewing["on"] = False
        rec.set_loading(True)
        results.append(rec.schedule_auto_save([_node("b")], []))
        return results

    assert asyncio.run(main()) == [False, True, False]
    assert FileDraftStore(tmp_path).load("f1") is None


def test_only_one_save_in_flight(tmp_path: Path) -> None:
    versions = FakeVersions()

    async def main() -> Optional[FlowDefinition]:
        versions.release = asyncio.Event()
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        first = asyncio.create_task(rec.save_to_server([_node("a")], []))
        await asyncio.sleep(0)
        assert await rec.save_to_server([_node("b")], []) is None
        assert await rec.save_to_server([_node("c")], []) is None
        versions.release.set()
        return await first

    last = asyncio.run(main())
    assert [_label(nodes) for nodes, _ in versions.puts] == ["a", "c"]
    assert last is not None and last.version == 2


def test_newer_draft_wins_over_server(tmp_path: Path) -> None:
    versions = FakeVersions()
    versions.set_latest([_node("server")], "2024-01-01T00:00:00+00:00")
    FileDraftStore(tmp_path).save("f1", [_node("draft")], [])

    async def main():
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        return rec, await rec.reconcile()

    rec, result = asyncio.run(main())
    assert result.source == "draft"
    assert _label(result.nodes) == "draft"
    assert result.has_unsaved_changes and rec.has_unsaved_changes
    assert rec.status == "local"
    assert rec.current_version == 7
    assert not rec.loading


def test_stale_draft_is_discarded(tmp_path: Path) -> None:
    versions = FakeVersions()
    versions.set_latest([_node("server")], datetime.now(timezone.utc).isoformat())
    FileDraftStore(tmp_path).save("f1", [_node("draft")], [], timestamp=1000)

    async def main():
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        return rec, await rec.reconcile()

    rec, result = asyncio.run(main())
    assert result.source == "server"
    assert _label(result.nodes) == "server"
    assert not rec.has_unsaved_changes
    assert FileDraftStore(tmp_path).load("f1") is None


def test_draft_with_the_same_timestamp_loses_to_server(tmp_path: Path) -> None:
    updated_at = "2024-06-01T12:00:00.250000+00:00"
    versions = FakeVersions()
    versions.set_latest([_node("server")], updated_at)
    FileDraftStore(tmp_path).save("f1", [_node("draft")], [], timestamp=iso_to_ms(updated_at))

    async def main():
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        return rec, await rec.reconcile()

    rec, result = asyncio.run(main())
    assert result.source == "server"
    assert _label(result.nodes) == "server"
    assert not rec.has_unsaved_changes
    assert FileDraftStore(tmp_path).load("f1") is None


def test_missing_definition_creates_empty_version(tmp_path: Path) -> None:
    versions = FakeVersions()

    async def main():
        return await _reconciler(versions, tmp_path, delay_ms=10_000).reconcile()

    result = asyncio.run(main())
    assert result.source == "created"
    assert result.definition.version == 1
    assert versions.puts == [([], [])]


def test_unreachable_server_falls_back_to_draft(tmp_path: Path) -> None:
    versions = FakeVersions(unreachable=True)
    FileDraftStore(tmp_path).save("f1", [_node("draft")], [])

    async def main():
        rec = _reconciler(versions, tmp_path, delay_ms=10_000)
        return rec, await rec.reconcile()

    rec, result = asyncio.run(main())
    assert result.source == "draft"
    assert result.error == "connection refused"
    assert rec.status == "error"


def test_unreachable_server_without_draft_raises(tmp_path: Path) -> None:
    versions = FakeVersions(unreachable=True)

    async def main():
        await _reconciler(versions, tmp_path, delay_ms=10_000).reconcile()

    with pytest.raises(VersionStoreError):
        asyncio.run(main())
