from typing import Any, Awaitable, Callable, Dict, Optional
import logging

from .atomic_ops import AtomicMoves
from .error_handling import WorkspaceError, PRECONDITION, VALIDATION, log_operation
from .models import DIRECTORY, FILE, Node
from .planner import (
    Plan, Rejection, PlanResult, CREATE, RENAME, MOVE, DELETE_FILE, DELETE_FOLDER,
    plan_create, plan_rename, plan_move, plan_move_into,
    plan_delete_file, plan_delete_folder, predicted_paths,
)
from .tree_builder import flatten_paths
from .workspace import MUTATION_COMPLETED
from .workspace_manager import WorkspaceManager
from . import paths

logger = logging.getLogger(__name__)


class MutationResult:
    """Outcome of one mutation request, as handed to the presentation layer"""
    __slots__ = ['ok', 'operation', 'new_path', 'kind', 'reason', 'details', 'sanitized']

    def __init__(self, ok, operation, new_path=None, kind=None, reason=None,
                 details=None, sanitized=False):
        self.ok = ok
        self.operation = operation
        self.new_path = new_path
        self.kind = kind
        self.reason = reason
        self.details: Dict[str, Any] = details or {}
        self.sanitized = sanitized

    @classmethod
    def success(cls, plan: Plan, new_path: Optional[str] = None) -> 'MutationResult':
        return cls(True, plan.operation, new_path=new_path if new_path is not None else plan.new_path,
                   sanitized=plan.sanitized)

    @classmethod
    def failure(cls, operation: str, kind: str, reason: str,
                details: Optional[Dict[str, Any]] = None) -> 'MutationResult':
        return cls(False, operation, kind=kind, reason=reason, details=details)

    @classmethod
    def from_rejection(cls, rejection: Rejection) -> 'MutationResult':
        return cls.failure(rejection.operation, rejection.kind, rejection.reason, rejection.details)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "operation": self.operation, "newPath": self.new_path,
                    "sanitized": self.sanitized}
        return {"ok": False, "operation": self.operation, "kind": self.kind,
                "message": self.reason, "details": self.details}

    def __repr__(self):
        if self.ok:
            return f"MutationResult(ok, {self.operation}, {self.new_path!r})"
        return f"MutationResult(failed, {self.operation}, {self.kind}/{self.reason})"


class FileManager:
    def __init__(self, workspace_manager: WorkspaceManager):
        self.workspace_manager = workspace_manager
        self.atomic_ops = AtomicMoves()

    @property
    def state(self):
        return self.workspace_manager.state

    @property
    def backend(self):
        return self.workspace_manager.backend

    def is_mutation_pending(self, path: str) -> bool:
        return self.state.is_mutation_pending(path)

    async def create(self, name: str, parent_path: Optional[str] = None,
                     node_type: str = FILE, accept_sanitized: bool = False) -> MutationResult:
        """
        Create a new notebook file or folder.

        A name that needed sanitizing is not created until the caller repeats
        the request with accept_sanitized=True.
        """
        async def action(plan: Plan):
            created = await self.backend.create(self._backend_path(plan.new_path), plan.node_type)
            return paths.strip_prefix(created, self.workspace_manager.root_prefix)

        return await self._run(
            CREATE, lambda tree: plan_create(tree, name, parent_path, node_type), action,
            accept_sanitized=accept_sanitized, name=name, parent_path=parent_path, node_type=node_type,
        )

    async def rename(self, path: str, new_name: str, accept_sanitized: bool = False) -> MutationResult:
        return await self._run(RENAME, lambda tree: plan_rename(tree, path, new_name), self._relocate,
                               accept_sanitized=accept_sanitized, path=path, new_name=new_name)

    async def move(self, path: str, new_path: str, accept_sanitized: bool = False) -> MutationResult:
        """Move a node to a full new path (a rename that may change directory)"""
        return await self._run(MOVE, lambda tree: plan_move(tree, path, new_path), self._relocate,
                               accept_sanitized=accept_sanitized, path=path, new_path=new_path)

    async def move_into(self, path: str, target_dir: str) -> MutationResult:
        return await self._run(MOVE, lambda tree: plan_move_into(tree, path, target_dir),
                               self._relocate, path=path, target_dir=target_dir)

    async def delete_file(self, path: str) -> MutationResult:
        def make_plan(tree):
            plan = plan_delete_file(tree, path)
            if plan.ok and not plan.process_id:
                # Files are deleted by process id; nothing to send without one
                return Rejection(plan.operation, PRECONDITION, "not_running", {"paths": [plan.path]})
            return plan

        async def action(plan: Plan):
            await self.backend.delete_file(plan.process_id)

        return await self._run(DELETE_FILE, make_plan, action, path=path)

    async def delete_folder(self, path: str, cascade: bool = False) -> MutationResult:
        async def action(plan: Plan):
            await self.backend.delete_folder(self._backend_path(plan.path), plan.cascade)

        return await self._run(DELETE_FOLDER, lambda tree: plan_delete_folder(tree, path, cascade),
                               action, path=path, cascade=cascade)

    def _backend_path(self, path: str) -> str:
        """Workspace-relative path as the notebook server expects it"""
        prefix = self.workspace_manager.root_prefix
        return f"{prefix.rstrip('/')}/{path}" if prefix else path

    async def _backend_move(self, process_id: str, new_path: str):
        await self.backend.move(process_id, self._backend_path(new_path))

    async def _relocate(self, plan: Plan):
        if plan.node_type == DIRECTORY:
            await self.atomic_ops.atomic_move(plan.moves, self._backend_move)
        else:
            move = plan.moves[0]
            await self._backend_move(move.process_id, move.new_path)

    async def _run(self, operation: str, make_plan: Callable[[Node], PlanResult],
                   action: Callable[[Plan], Awaitable[Any]], accept_sanitized: bool = False,
                   **params) -> MutationResult:
        log_operation(logger, operation, **params)
        try:
            tree = await self.workspace_manager.ensure_loaded()
        except WorkspaceError as e:
            logger.error(f"{operation} aborted, workspace could not be loaded: {e.kind}/{e.reason}")
            return await self._finish(MutationResult.failure(operation, e.kind, e.reason, e.details))

        plan = make_plan(tree)
        if not plan.ok:
            logger.info(f"{operation} rejected: {plan.kind}/{plan.reason} {plan.details}")
            return await self._finish(MutationResult.from_rejection(plan))

        if plan.sanitized and not accept_sanitized:
            return await self._finish(MutationResult.failure(operation, VALIDATION, "name_sanitized", {
                "requested": plan.requested_name,
                "name": paths.basename(plan.new_path),
                "path": plan.new_path,
            }))

        affected = plan.affected_paths
        if not self.state.begin_mutation(affected):
            return await self._finish(
                MutationResult.failure(operation, PRECONDITION, "mutation_pending", {"paths": affected})
            )

        expected = predicted_paths(tree, plan)
        try:
            try:
                created = await action(plan)
            except WorkspaceError as e:
                logger.error(f"{operation} failed: {e.kind}/{e.reason} {e.details}")
                result = MutationResult.failure(operation, e.kind, e.reason, e.details)
                if len(plan.moves) > 1:
                    # A folder move may have left files behind; show what is really there
                    await self._reload_quietly()
            else:
                result = MutationResult.success(plan, created if isinstance(created, str) and created else None)
                logger.info(f"{operation} succeeded: {plan.path!r} -> {result.new_path!r}")
                reloaded = await self._reload_quietly()
                if reloaded is not None:
                    self._check_drift(reloaded, expected, operation)
        finally:
            self.state.end_mutation(affected)

        return await self._finish(result)

    async def _finish(self, result: MutationResult) -> MutationResult:
        await self.state.emit(MUTATION_COMPLETED, result)
        return result

    async def _reload_quietly(self) -> Optional[Node]:
        try:
            return await self.workspace_manager.reload()
        except WorkspaceError as e:
            logger.error(f"Reload after mutation failed: {e.kind}/{e.reason}")
            return None

    def _check_drift(self, tree: Node, expected, operation: str):
        actual = set(flatten_paths(tree))
        if actual != expected:
            logger.warning(
                f"Workspace after {operation} differs from plan: "
                f"missing={sorted(expected - actual)} unexpected={sorted(actual - expected)}"
            )
