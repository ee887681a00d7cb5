import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from .error_handling import TreeCorruptionError
from .locator import iter_nodes
from .models import Node, DIRECTORY, FILE, NODE_TYPES, make_root
from .status import record_is_running
from . import paths

logger = logging.getLogger(__name__)


def _placeholder_name(record: Mapping[str, Any], index: int) -> str:
    notebook_id = record.get("notebook_id") if isinstance(record, Mapping) else None
    if notebook_id:
        return f"notebook-{notebook_id}"
    return f"untitled-{index}"


def _record_segments(record: Any, index: int, root_prefix: str) -> List[str]:
    """Segments of a record's path; malformed records get a placeholder name"""
    raw = None
    if isinstance(record, Mapping):
        raw = record.get("path") or record.get("shortpath")
    segments = paths.split(paths.strip_prefix(raw, root_prefix)) if isinstance(raw, str) else []
    if not segments:
        name = _placeholder_name(record, index)
        logger.warning(f"Record without usable path, using placeholder {name!r}: {record!r}")
        segments = [name]
    return segments


def _apply_leaf_attributes(node: Node, record: Mapping[str, Any]):
    running = record_is_running(record)
    process_id = record.get("process_id") or record.get("notebook_id")
    node.is_running = running and bool(process_id)
    node.process_id = process_id if node.is_running else None
    node.process_status = record.get("process_status")
    node.in_temp_dir = bool(record.get("in_temp_dir", False))
    try:
        node.size = max(int(record.get("size") or 0), 0)
    except (TypeError, ValueError):
        node.size = 0
    node.modified_at = record.get("modified") or record.get("modified_at") or ""


class DirectoryListing:
    """A directory node plus the (name, type) -> index map of its children"""
    __slots__ = ['node', 'index']

    def __init__(self, node: Node):
        self.node = node
        self.index: Dict[Tuple[str, str], int] = {}

    def attach(self, child: Node) -> Node:
        key = (child.name, child.type)
        position = self.index.get(key)
        if position is None:
            self.index[key] = len(self.node.children)
            self.node.children.append(child)
        else:
            # Same name and type: the later record overwrites in place
            self.node.children[position] = child
        return child


def build_tree(records: Iterable[Mapping[str, Any]], root_prefix: str = "") -> Node:
    """
    Convert flat, path-keyed records into a nested directory tree.

    Args:
        records: backend records such as
            {"path": "a/b.jl", "notebook_id": "...", "process_status": "ready"}
        root_prefix: absolute workspace root to strip from record paths

    Returns:
        Node: the root directory. Children are in first-seen order; run
        sort_tree for the canonical ordering.
    """
    root = make_root()
    directories: Dict[str, DirectoryListing] = {"": DirectoryListing(root)}

    def ensure_directory(segments: List[str]) -> DirectoryListing:
        current = directories[""]
        for depth in range(len(segments)):
            dir_path = paths.join(segments[:depth + 1])
            existing = directories.get(dir_path)
            if existing is None:
                node = Node(segments[depth], DIRECTORY, dir_path)
                existing = DirectoryListing(node)
                directories[dir_path] = existing
                current.attach(node)
            current = existing
        return current

    # Group leaves by directory prefix, keeping input order
    grouped: "OrderedDict[str, List[Tuple[List[str], Mapping[str, Any]]]]" = OrderedDict()
    for index, record in enumerate(records):
        segments = _record_segments(record, index, root_prefix)
        if not isinstance(record, Mapping):
            record = {}
        if record.get("type") == DIRECTORY:
            ensure_directory(segments)
            continue
        grouped.setdefault(paths.join(segments[:-1]), []).append((segments, record))

    for prefix, leaves in grouped.items():
        directory = ensure_directory(paths.split(prefix))
        for segments, record in leaves:
            leaf = Node(segments[-1], FILE, paths.join(segments))
            _apply_leaf_attributes(leaf, record)
            directory.attach(leaf)

    logger.debug(f"Built tree with {len(directories) - 1} directories")
    return root


def tree_from_dict(data: Mapping[str, Any], parent_path: str = "", is_root: bool = True) -> Node:
    """
    Rebuild a Node tree from the pre-built shape a backend may return.

    Children may be listed under "children" or "contents". Paths are
    recomputed from names so the parent/child path invariant always holds.
    """
    if not isinstance(data, Mapping):
        raise TreeCorruptionError(f"Expected a node mapping under {parent_path!r}, got {type(data).__name__}")
    node_type = data.get("type", DIRECTORY if is_root else FILE)
    if node_type not in NODE_TYPES:
        raise TreeCorruptionError(f"Unknown node type {node_type!r} under {parent_path!r}")

    if is_root:
        node = make_root()
    else:
        name = paths.sanitize_name(data.get("name") or paths.basename(data.get("path") or ""))
        if not name:
            raise TreeCorruptionError(f"Unnamed node under {parent_path!r}")
        node = Node(name, node_type, paths.child_path(parent_path, name))

    if node.is_directory:
        listing = DirectoryListing(node)
        for child in data.get("children", data.get("contents")) or []:
            listing.attach(tree_from_dict(child, node.path, is_root=False))
    else:
        _apply_leaf_attributes(node, {
            "process_id": data.get("processId") or data.get("process_id"),
            "notebook_id": data.get("notebook_id"),
            "is_running": data.get("isRunning", data.get("is_running")),
            "process_status": data.get("processStatus", data.get("process_status")),
            "in_temp_dir": data.get("inTempDir", data.get("in_temp_dir", False)),
            "size": data.get("size"),
            "modified": data.get("modifiedAt") or data.get("modified"),
        })
    return node


def flatten_paths(tree: Node) -> List[str]:
    """File paths in tree order"""
    return [node.path for node in iter_nodes(tree) if not node.is_directory]


def compute_counts(tree: Node) -> Dict[str, int]:
    counts = {"folders": 0, "notebooks": 0, "other_files": 0}
    for node in iter_nodes(tree):
        if node is tree:
            continue
        if node.is_directory:
            counts["folders"] += 1
        elif node.file_kind == "notebook":
            counts["notebooks"] += 1
        else:
            counts["other_files"] += 1
    return counts


def validate_tree(tree: Node) -> None:
    """Raise TreeCorruptionError if parent/child paths or sibling keys disagree"""
    if tree.type != DIRECTORY or tree.path != "":
        raise TreeCorruptionError("Root must be a directory with an empty path")
    for node in iter_nodes(tree):
        if not node.is_directory:
            continue
        seen = set()
        for child in node.children:
            if child.path != paths.child_path(node.path, child.name):
                raise TreeCorruptionError(f"Child path {child.path!r} does not match parent {node.path!r}")
            key = (child.name, child.type)
            if key in seen:
                raise TreeCorruptionError(f"Duplicate sibling {child.path!r}")
            seen.add(key)
