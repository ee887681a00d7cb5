import asyncio

import pytest

from notebookfiles.backend import Listing
from notebookfiles.error_handling import TransportError
from notebookfiles.locator import find
from notebookfiles.workspace import TREE_REPLACED
from notebookfiles.workspace_manager import WorkspaceManager, materialize
from fakes import FakeBackend, running


@pytest.fixture
async def manager(backend):
    """Create a WorkspaceManager over the in-memory backend"""
    manager = WorkspaceManager(backend, root_prefix="")
    yield manager
    await manager.close()


class TestMaterialize:
    def test_records_are_sorted_and_counted(self, records):
        tree, counts = materialize(Listing(records=records))
        assert [c.name for c in tree.children] == ["analysis", "archive", "Readme.jl", "scratch.jl"]
        assert counts == {"folders": 3, "notebooks": 5, "other_files": 0}
        assert find(tree, "analysis/load.jl").is_running

    def test_prebuilt_tree_with_counts_and_status(self):
        listing = Listing(
            tree={"type": "directory", "children": [
                {"name": "b.jl", "type": "file"},
                {"name": "a.jl", "type": "file"},
            ]},
            counts={"notebooks": 10, "unknown": 3},
            status={"a.jl": {"process_status": "ready", "process_id": "pa"}},
        )
        tree, counts = materialize(listing)
        assert [c.name for c in tree.children] == ["a.jl", "b.jl"]
        assert find(tree, "a.jl").process_id == "pa"
        assert not find(tree, "b.jl").is_running
        assert counts == {"folders": 0, "notebooks": 10, "other_files": 0}

    def test_corrupt_tree_becomes_transport_error(self):
        with pytest.raises(TransportError) as excinfo:
            materialize(Listing(tree={"children": [{"name": "x", "type": "socket"}]}))
        assert excinfo.value.reason == "unexpected_shape"


@pytest.mark.asyncio
class TestWorkspaceManager:
    async def test_reload_replaces_tree_and_emits(self, manager):
        events = []
        manager.subscribe(TREE_REPLACED, events.append)
        tree = await manager.reload()
        assert manager.tree is tree
        assert events == [tree]
        assert manager.state.committed_generation == 1

    async def test_ensure_loaded_only_loads_once(self, manager, backend):
        await manager.ensure_loaded()
        await manager.ensure_loaded()
        assert backend.calls.count(("list",)) == 1

    async def test_failed_reload_keeps_previous_tree(self, manager, backend):
        tree = await manager.reload()
        backend.records.append({"path": "bad.jl"})

        async def broken():
            raise TransportError("backend_unreachable")

        backend.list_delay = broken
        with pytest.raises(TransportError):
            await manager.reload()
        assert manager.tree is tree

    async def test_stale_reload_is_discarded(self):
        backend = FakeBackend([running("old.jl", "o")])
        manager = WorkspaceManager(backend, root_prefix="")
        release_first = asyncio.Event()
        calls = 0

        async def delay():
            nonlocal calls
            calls += 1
            if calls == 1:
                await release_first.wait()

        backend.list_delay = delay
        first = asyncio.ensure_future(manager.reload())
        await asyncio.sleep(0)
        backend.records = [running("new.jl", "n")]
        second = await manager.reload()
        release_first.set()
        assert await first is None
        assert manager.tree is second
        assert find(manager.tree, "new.jl") is not None
        assert find(manager.tree, "old.jl") is None

    async def test_superseded_first_load_is_reported(self, backend):
        manager = WorkspaceManager(backend, root_prefix="")
        gates = [asyncio.Event(), asyncio.Event()]
        calls = 0

        async def delay():
            nonlocal calls
            gate = gates[calls]
            calls += 1
            await gate.wait()

        backend.list_delay = delay
        first = asyncio.ensure_future(manager.ensure_loaded())
        await asyncio.sleep(0)
        newer = asyncio.ensure_future(manager.reload())
        await asyncio.sleep(0)

        gates[0].set()
        with pytest.raises(TransportError) as excinfo:
            await first
        assert excinfo.value.reason == "tree_not_loaded"

        gates[1].set()
        assert await newer is manager.tree
        assert await manager.ensure_loaded() is manager.tree

    async def test_refresh_status_swaps_in_copy(self, manager):
        tree = await manager.reload()
        updated = await manager.refresh_status({
            "Readme.jl": {"process_status": "crashed", "process_id": "nb-readme"},
        })
        assert updated is not tree
        assert manager.tree is updated
        assert not find(updated, "Readme.jl").is_running
        assert find(tree, "Readme.jl").is_running
        assert [c.name for c in updated.children] == [c.name for c in tree.children]

    async def test_refresh_status_without_tree(self, manager):
        assert await manager.refresh_status({}) is None

    async def test_search(self, manager):
        assert manager.search("hist") == {}
        await manager.reload()
        visibility = manager.search("hist")
        assert visibility["analysis/plots"] is True
        assert visibility["Readme.jl"] is False

    async def test_root_prefix_is_stripped(self):
        backend = FakeBackend([running("/srv/nb/a/b.jl", "ab")])
        manager = WorkspaceManager(backend, root_prefix="/srv/nb")
        tree = await manager.reload()
        assert find(tree, "a/b.jl").process_id == "ab"

    async def test_close_closes_backend(self, backend):
        manager = WorkspaceManager(backend, root_prefix="")
        await manager.close()
        assert backend.closed


@pytest.mark.asyncio
async def test_watch_directory_reloads_on_change(tmp_path, backend):
    manager = WorkspaceManager(backend, root_prefix="")
    reloaded = asyncio.Event()
    manager.subscribe(TREE_REPLACED, lambda tree: reloaded.set())

    manager.watch_directory(str(tmp_path))
    try:
        (tmp_path / "fresh.jl").write_text("# notebook")
        await asyncio.wait_for(reloaded.wait(), timeout=5)
    finally:
        manager.stop_watching()
    assert manager.observer is None
    assert manager.tree is not None
