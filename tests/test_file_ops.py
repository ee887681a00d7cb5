import asyncio

import pytest

from notebookfiles.error_handling import (
    VALIDATION, CONFLICT, NOT_FOUND, PRECONDITION, TRANSPORT, PARTIAL_FAILURE, TransportError,
)
from notebookfiles.file_manager import FileManager, MutationResult
from notebookfiles.locator import find
from notebookfiles.models import DIRECTORY
from notebookfiles.tree_builder import flatten_paths
from notebookfiles.workspace import MUTATION_COMPLETED
from notebookfiles.workspace_manager import WorkspaceManager
from fakes import FakeBackend, running


@pytest.fixture
async def file_manager(backend):
    """Create a FileManager over a loaded workspace"""
    workspace = WorkspaceManager(backend, root_prefix="")
    await workspace.reload()
    return FileManager(workspace)


@pytest.mark.asyncio
class TestFileOperations:
    @pytest.fixture(autouse=True)
    def setup(self, file_manager, backend):
        self.file_manager = file_manager
        self.backend = backend
        self.completed = []
        file_manager.workspace_manager.subscribe(MUTATION_COMPLETED, self.completed.append)

    @property
    def tree(self):
        return self.file_manager.workspace_manager.tree

    async def test_create_file(self):
        result = await self.file_manager.create("fresh.jl", "analysis")
        assert result.ok
        assert result.new_path == "analysis/fresh.jl"
        assert self.backend.mutation_calls() == [("create", "analysis/fresh.jl", "file")]
        assert find(self.tree, "analysis/fresh.jl") is not None
        assert self.completed == [result]

    async def test_create_folder(self):
        result = await self.file_manager.create("figures", node_type=DIRECTORY)
        assert result.ok
        node = find(self.tree, "figures")
        assert node.is_directory and node.is_empty

    async def test_sanitized_name_needs_confirmation(self):
        result = await self.file_manager.create("what?.jl")
        assert (result.kind, result.reason) == (VALIDATION, "name_sanitized")
        assert result.details == {"requested": "what?.jl", "name": "what_.jl", "path": "what_.jl"}
        assert self.backend.mutation_calls() == []
        assert find(self.tree, "what_.jl") is None

    async def test_confirmed_sanitized_name_is_created(self):
        result = await self.file_manager.create("what?.jl", accept_sanitized=True)
        assert result.to_dict() == {
            "ok": True, "operation": "create", "newPath": "what_.jl", "sanitized": True,
        }
        assert self.backend.mutation_calls() == [("create", "what_.jl", "file")]

    async def test_sanitized_rename_needs_confirmation(self):
        result = await self.file_manager.rename("Readme.jl", "Read:me")
        assert (result.kind, result.reason) == (VALIDATION, "name_sanitized")
        assert result.details["path"] == "Read_me.jl"
        assert self.backend.mutation_calls() == []

        result = await self.file_manager.rename("Readme.jl", "Read:me", accept_sanitized=True)
        assert result.ok
        assert result.new_path == "Read_me.jl"

    async def test_create_conflict_does_not_call_backend(self):
        result = await self.file_manager.create("Readme.jl")
        assert (result.kind, result.reason) == (CONFLICT, "name_taken")
        assert self.backend.mutation_calls() == []
        assert self.completed == [result]

    async def test_rename_file(self):
        result = await self.file_manager.rename("analysis/load.jl", "ingest")
        assert result.ok
        assert result.new_path == "analysis/ingest.jl"
        assert self.backend.mutation_calls() == [("move", "nb-load", "analysis/ingest.jl")]
        assert find(self.tree, "analysis/ingest.jl").process_id == "nb-load"
        assert find(self.tree, "analysis/load.jl") is None

    async def test_rename_unchanged(self):
        result = await self.file_manager.rename("analysis/load.jl", "load")
        assert not result.ok
        assert result.to_dict()["kind"] == VALIDATION
        assert result.to_dict()["message"] == "name_unchanged"

    async def test_rename_idle_file(self):
        result = await self.file_manager.rename("scratch.jl", "notes")
        assert (result.kind, result.reason) == (PRECONDITION, "not_running")

    async def test_rename_folder(self):
        result = await self.file_manager.rename("analysis/plots", "figures")
        assert result.ok
        assert sorted(flatten_paths(find(self.tree, "analysis/figures"))) == [
            "analysis/figures/hist.jl", "analysis/figures/scatter.jl",
        ]
        assert find(self.tree, "analysis/plots") is None

    async def test_move_file(self):
        result = await self.file_manager.move("Readme.jl", "archive/Readme.jl")
        assert result.ok
        assert find(self.tree, "archive/Readme.jl") is not None

    async def test_move_into(self):
        result = await self.file_manager.move_into("analysis/load.jl", "archive")
        assert result.new_path == "archive/load.jl"

    async def test_move_to_missing_folder(self):
        result = await self.file_manager.move("Readme.jl", "ghost/Readme.jl")
        assert (result.kind, result.reason) == (NOT_FOUND, "target_parent_not_found")

    async def test_delete_file(self):
        result = await self.file_manager.delete_file("Readme.jl")
        assert result.ok
        assert self.backend.mutation_calls() == [("delete_file", "nb-readme")]
        assert find(self.tree, "Readme.jl") is None

    async def test_delete_idle_file(self):
        result = await self.file_manager.delete_file("scratch.jl")
        assert (result.kind, result.reason) == (PRECONDITION, "not_running")
        assert self.backend.mutation_calls() == []

    async def test_delete_folder_requires_cascade(self):
        result = await self.file_manager.delete_folder("analysis")
        assert (result.kind, result.reason) == (PRECONDITION, "folder_not_empty")
        assert find(self.tree, "analysis") is not None

        result = await self.file_manager.delete_folder("analysis", cascade=True)
        assert result.ok
        assert self.backend.mutation_calls() == [("delete_folder", "analysis", True)]
        assert find(self.tree, "analysis") is None

    async def test_backend_failure_becomes_result(self):
        self.backend.fail_next = TransportError("backend_unreachable", {"url": "/move"})
        result = await self.file_manager.rename("Readme.jl", "Intro")
        assert not result.ok
        assert result.to_dict() == {
            "ok": False, "operation": "rename", "kind": TRANSPORT,
            "message": "backend_unreachable", "details": {"url": "/move"},
        }
        assert not self.file_manager.is_mutation_pending("Readme.jl")

    async def test_folder_move_rolls_back(self):
        self.backend.fail_moves.add(("nb-scatter", "archive/plots/scatter.jl"))
        before = sorted(flatten_paths(self.tree))

        result = await self.file_manager.move("analysis/plots", "archive/plots")

        assert (result.kind, result.reason) == (TRANSPORT, "backend_rejected")
        assert result.details["failed"] == "analysis/plots/scatter.jl"
        assert result.details["rolled_back"] == ["analysis/plots/hist.jl"]
        assert self.backend.mutation_calls() == [
            ("move", "nb-hist", "archive/plots/hist.jl"),
            ("move", "nb-scatter", "archive/plots/scatter.jl"),
            ("move", "nb-hist", "analysis/plots/hist.jl"),
        ]
        assert sorted(flatten_paths(self.tree)) == before

    async def test_folder_move_partial_failure(self):
        self.backend.fail_moves.update({
            ("nb-scatter", "archive/plots/scatter.jl"),
            ("nb-hist", "analysis/plots/hist.jl"),
        })
        result = await self.file_manager.move("analysis/plots", "archive/plots")

        assert (result.kind, result.reason) == (PARTIAL_FAILURE, "rollback_failed")
        assert result.details["stranded"] == ["archive/plots/hist.jl"]
        assert result.details["rolled_back"] == []
        # The tree is reloaded so it shows where the files really are
        assert find(self.tree, "archive/plots/hist.jl") is not None
        assert find(self.tree, "analysis/plots/scatter.jl") is not None

    async def test_overlapping_mutation_is_refused(self):
        gate = asyncio.Event()
        original_move = self.backend.move

        async def slow_move(process_id, new_path):
            await gate.wait()
            await original_move(process_id, new_path)

        self.backend.move = slow_move
        first = asyncio.ensure_future(self.file_manager.rename("analysis/plots", "figures"))
        await asyncio.sleep(0)
        assert self.file_manager.is_mutation_pending("analysis/plots/hist.jl")

        second = await self.file_manager.rename("analysis/plots/hist.jl", "histogram")
        assert (second.kind, second.reason) == (PRECONDITION, "mutation_pending")

        gate.set()
        assert (await first).ok
        assert not self.file_manager.is_mutation_pending("analysis/plots")

    async def test_unrelated_creates_run_side_by_side(self):
        gate = asyncio.Event()
        original_create = self.backend.create

        async def slow_create(path, node_type):
            await gate.wait()
            return await original_create(path, node_type)

        self.backend.create = slow_create
        first = asyncio.ensure_future(self.file_manager.create("one.jl"))
        second = asyncio.ensure_future(self.file_manager.create("two.jl"))
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(first, second)
        assert all(r.ok for r in results)


@pytest.mark.asyncio
async def test_mutation_reports_load_failure():
    backend = FakeBackend([running("a.jl", "a")])

    async def broken():
        raise TransportError("backend_unreachable")

    backend.list_delay = broken
    file_manager = FileManager(WorkspaceManager(backend, root_prefix=""))
    result = await file_manager.create("b.jl")
    assert (result.kind, result.reason) == (TRANSPORT, "backend_unreachable")


@pytest.mark.asyncio
async def test_backend_paths_carry_root_prefix():
    backend = FakeBackend([running("/srv/nb/a.jl", "a")])
    workspace = WorkspaceManager(backend, root_prefix="/srv/nb")
    file_manager = FileManager(workspace)

    result = await file_manager.rename("a.jl", "b")
    assert result.ok
    assert backend.mutation_calls() == [("move", "a", "/srv/nb/b.jl")]

    created = await file_manager.create("c.jl")
    assert created.new_path == "c.jl"
    assert find(workspace.tree, "c.jl") is not None


def test_result_repr():
    failure = MutationResult.failure("delete_file", PRECONDITION, "not_running")
    assert "not_running" in repr(failure)
    assert failure.to_dict()["details"] == {}


@pytest.mark.asyncio
async def test_mutation_during_superseded_first_load():
    backend = FakeBackend([running("a/b.jl", "ab")])
    workspace = WorkspaceManager(backend, root_prefix="")
    file_manager = FileManager(workspace)
    gates = [asyncio.Event(), asyncio.Event()]
    calls = 0

    async def delay():
        nonlocal calls
        gate = gates[calls]
        calls += 1
        await gate.wait()

    backend.list_delay = delay
    rename = asyncio.ensure_future(file_manager.rename("a/b.jl", "c"))
    await asyncio.sleep(0)
    newer = asyncio.ensure_future(workspace.reload())
    await asyncio.sleep(0)

    gates[0].set()
    result = await rename
    assert (result.kind, result.reason) == (TRANSPORT, "tree_not_loaded")
    assert backend.mutation_calls() == []

    gates[1].set()
    await newer
    backend.list_delay = None
    assert (await file_manager.rename("a/b.jl", "c")).new_path == "a/c.jl"
