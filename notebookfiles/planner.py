"""
Pure planning of workspace mutations.

Every planner returns either a Plan (ok=True) describing the paths the
mutation will produce, or a Rejection (ok=False) carrying an error kind and
a machine-readable reason. Nothing here talks to the backend or raises for
bad user input.
"""
from typing import Any, Dict, List, NamedTuple, Optional, Set, Union

from .error_handling import VALIDATION, CONFLICT, NOT_FOUND, PRECONDITION, TreeCorruptionError
from .locator import find, find_child, find_parent_of, iter_nodes
from .models import Node, DIRECTORY, FILE, NODE_TYPES
from . import paths

CREATE = "create"
RENAME = "rename"
MOVE = "move"
DELETE_FILE = "delete_file"
DELETE_FOLDER = "delete_folder"


class Move(NamedTuple):
    process_id: str
    old_path: str
    new_path: str


class Plan:
    ok = True
    __slots__ = ['operation', 'path', 'new_path', 'node_type', 'process_id', 'cascade',
                 'requested_name', 'sanitized', 'moves']

    def __init__(self, operation, path, new_path=None, node_type=FILE, process_id=None,
                 cascade=False, requested_name=None, sanitized=False, moves=None):
        self.operation = operation
        self.path = path
        self.new_path = new_path
        self.node_type = node_type
        self.process_id = process_id
        self.cascade = cascade
        self.requested_name = requested_name
        self.sanitized = sanitized
        self.moves: List[Move] = list(moves or [])

    @property
    def affected_paths(self) -> List[str]:
        """Paths that must not be mutated concurrently while this plan runs"""
        if self.operation == CREATE:
            return [self.new_path]
        return [p for p in (self.path, self.new_path) if p is not None]

    def __repr__(self):
        return f"Plan({self.operation}, {self.path!r} -> {self.new_path!r})"


class Rejection:
    ok = False
    __slots__ = ['operation', 'kind', 'reason', 'details']

    def __init__(self, operation, kind, reason, details=None):
        self.operation = operation
        self.kind = kind
        self.reason = reason
        self.details: Dict[str, Any] = details or {}

    def __repr__(self):
        return f"Rejection({self.operation}, {self.kind}, {self.reason})"


PlanResult = Union[Plan, Rejection]


def _clean_name(name: Optional[str]):
    requested = (name or "").strip()
    cleaned, sanitized = paths.sanitize_with_flag(requested)
    return requested, cleaned, sanitized


def plan_create(tree: Node, name: str, parent_path: Optional[str] = None, node_type: str = FILE) -> PlanResult:
    """Plan a new file or folder named `name` inside parent_path (root by default)"""
    if node_type not in NODE_TYPES:
        return Rejection(CREATE, VALIDATION, "invalid_type", {"type": node_type})

    parent = find(tree, paths.normalize(parent_path))
    if parent is None or not parent.is_directory:
        return Rejection(CREATE, NOT_FOUND, "parent_not_found", {"parent": parent_path or ""})

    requested, cleaned, sanitized = _clean_name(name)
    if not cleaned or cleaned in (".", ".."):
        return Rejection(CREATE, VALIDATION, "empty_name", {"name": requested})

    if find_child(parent, cleaned) is not None:
        return Rejection(CREATE, CONFLICT, "name_taken",
                         {"path": paths.child_path(parent.path, cleaned)})

    return Plan(
        CREATE,
        parent.path,
        paths.child_path(parent.path, cleaned),
        node_type=node_type,
        requested_name=requested,
        sanitized=sanitized,
    )


def _relocate(operation: str, node: Node, parent: Node, name: str,
              requested: str, sanitized: bool) -> PlanResult:
    """Shared rename/move rules once the destination parent and name are known"""
    new_path = paths.child_path(parent.path, name)

    clash = find_child(parent, name)
    if clash is not None and clash is not node:
        return Rejection(operation, CONFLICT, "name_taken", {"path": new_path})

    if not node.is_directory:
        if not node.process_id:
            return Rejection(operation, PRECONDITION, "not_running", {"paths": [node.path]})
        moves = [Move(node.process_id, node.path, new_path)]
    else:
        # The backend only moves files, so a folder moves file by file
        files = [n for n in iter_nodes(node) if not n.is_directory]
        if not files:
            return Rejection(operation, PRECONDITION, "nothing_to_move", {"path": node.path})
        idle = [f.path for f in files if not f.process_id]
        if idle:
            return Rejection(operation, PRECONDITION, "not_running", {"paths": idle})
        moves = [Move(f.process_id, f.path, new_path + f.path[len(node.path):]) for f in files]

    return Plan(
        operation,
        node.path,
        new_path,
        node_type=node.type,
        process_id=node.process_id,
        requested_name=requested,
        sanitized=sanitized,
        moves=moves,
    )


def plan_rename(tree: Node, path: str, new_name: str) -> PlanResult:
    """
    Plan renaming the node at path to new_name within the same directory.

    A file keeps its extension when new_name has none, so renaming
    "x/old.jl" to "new" plans "x/new.jl".
    """
    node = find(tree, path)
    if node is None:
        return Rejection(RENAME, NOT_FOUND, "node_not_found", {"path": path})
    if node is tree:
        return Rejection(RENAME, VALIDATION, "cannot_rename_root")

    requested, cleaned, sanitized = _clean_name(new_name)
    if not cleaned or cleaned in (".", ".."):
        return Rejection(RENAME, VALIDATION, "empty_name", {"name": requested})

    if not node.is_directory:
        if not paths.has_extension(cleaned):
            cleaned += paths.split_extension(node.name)[1]

    if cleaned == node.name:
        return Rejection(RENAME, VALIDATION, "name_unchanged", {"path": node.path})

    parent = find_parent_of(tree, node.path)
    if parent is None:
        raise TreeCorruptionError(f"Node {node.path!r} has no parent directory in the tree")
    return _relocate(RENAME, node, parent, cleaned, requested, sanitized)


def plan_move(tree: Node, path: str, new_path: str) -> PlanResult:
    """Plan moving the node at path to a full new path; the target parent must exist"""
    node = find(tree, path)
    if node is None:
        return Rejection(MOVE, NOT_FOUND, "node_not_found", {"path": path})
    if node is tree:
        return Rejection(MOVE, VALIDATION, "cannot_move_root")

    segments = paths.split(new_path)
    if not segments:
        return Rejection(MOVE, VALIDATION, "empty_path", {"path": new_path})
    requested = segments[-1]
    name, sanitized = paths.sanitize_with_flag(requested)
    if name in (".", ".."):
        return Rejection(MOVE, VALIDATION, "empty_name", {"name": requested})
    target = paths.join(segments[:-1] + [name])

    if target == node.path:
        return Rejection(MOVE, VALIDATION, "path_unchanged", {"path": node.path})
    if node.is_directory and paths.is_within(target, node.path):
        return Rejection(MOVE, VALIDATION, "into_descendant", {"path": node.path, "target": target})

    parent = find_parent_of(tree, target)
    if parent is None:
        # Intermediate directories are never created on the fly
        return Rejection(MOVE, NOT_FOUND, "target_parent_not_found",
                         {"target": paths.parent_path(target)})
    return _relocate(MOVE, node, parent, name, requested, sanitized)


def plan_move_into(tree: Node, path: str, target_dir: str) -> PlanResult:
    """Plan moving the node at path into target_dir, keeping its name"""
    node = find(tree, path)
    if node is None:
        return Rejection(MOVE, NOT_FOUND, "node_not_found", {"path": path})
    return plan_move(tree, path, paths.child_path(paths.normalize(target_dir), node.name))


def plan_delete_file(tree: Node, path: str) -> PlanResult:
    node = find(tree, path)
    if node is None:
        return Rejection(DELETE_FILE, NOT_FOUND, "node_not_found", {"path": path})
    if node.is_directory:
        return Rejection(DELETE_FILE, VALIDATION, "not_a_file", {"path": node.path})
    return Plan(DELETE_FILE, node.path, node_type=FILE, process_id=node.process_id)


def plan_delete_folder(tree: Node, path: str, cascade: bool = False) -> PlanResult:
    """Plan deleting a folder; non-empty folders need the cascade flag"""
    node = find(tree, path)
    if node is None:
        return Rejection(DELETE_FOLDER, NOT_FOUND, "node_not_found", {"path": path})
    if not node.is_directory:
        return Rejection(DELETE_FOLDER, VALIDATION, "not_a_folder", {"path": node.path})
    if node is tree:
        return Rejection(DELETE_FOLDER, VALIDATION, "cannot_delete_root")
    if node.children and not cascade:
        return Rejection(DELETE_FOLDER, PRECONDITION, "folder_not_empty",
                         {"path": node.path, "children": len(node.children)})
    return Plan(DELETE_FOLDER, node.path, node_type=DIRECTORY, cascade=bool(cascade))


def predicted_paths(tree: Node, plan: Plan) -> Set[str]:
    """File paths expected in the workspace once the plan has been carried out"""
    files = {n.path for n in iter_nodes(tree) if not n.is_directory}
    if plan.operation == CREATE and plan.node_type == FILE:
        files.add(plan.new_path)
    elif plan.operation in (RENAME, MOVE):
        for move in plan.moves:
            files.discard(move.old_path)
        files.update(move.new_path for move in plan.moves)
    elif plan.operation == DELETE_FILE:
        files.discard(plan.path)
    elif plan.operation == DELETE_FOLDER:
        files = {p for p in files if not paths.is_within(p, plan.path)}
    return files