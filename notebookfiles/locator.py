from typing import Iterator, Optional

from .models import Node
from . import paths


def iter_nodes(tree: Node) -> Iterator[Node]:
    """Pre-order walk over every node, root included"""
    stack = [tree]
    while stack:
        node = stack.pop()
        yield node
        if node.is_directory:
            stack.extend(reversed(node.children))


def find_child(directory: Node, name: str, node_type: Optional[str] = None) -> Optional[Node]:
    """First child with exactly this name (and type, if given), in child order"""
    for child in directory.children or ():
        if child.name == name and (node_type is None or child.type == node_type):
            return child
    return None


def _walk_directories(tree: Node, segments) -> Optional[Node]:
    current = tree
    for segment in segments:
        current = next(
            (c for c in current.children if c.is_directory and c.name == segment),
            None
        )
        if current is None:
            return None
    return current


def find(tree: Node, path: str) -> Optional[Node]:
    """Resolve a path to a node, or None if it does not exist"""
    segments = paths.split(path)
    if not segments:
        return tree
    parent = _walk_directories(tree, segments[:-1])
    if parent is None:
        return None
    return find_child(parent, segments[-1])


def find_parent_of(tree: Node, path: str) -> Optional[Node]:
    """
    Resolve the directory that contains (or would contain) path.

    Every segment but the last must name an existing directory. The last
    segment may be absent, which is how create and rename destinations are
    validated. The root has no parent.
    """
    segments = paths.split(path)
    if not segments:
        return None
    return _walk_directories(tree, segments[:-1])
