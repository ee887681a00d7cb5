from typing import Dict, Set

from .models import Node


def compute_visibility(tree: Node, query: str) -> Dict[str, bool]:
    """
    Map every node path to whether it should be shown for a search query.

    A node is visible if its own name contains the query (case-insensitive)
    or if any descendant is visible, so the ancestors of a match stay on
    screen. Only the empty query shows everything; whitespace is matched
    literally. The root never matches by name and is visible iff anything
    below it is.
    """
    needle = (query or "").casefold()
    visibility: Dict[str, bool] = {}

    def visit(node: Node, is_root: bool) -> bool:
        visible = not needle or (not is_root and needle in node.name.casefold())
        if node.is_directory:
            for child in node.children:
                # visit every child so each gets an entry
                visible = visit(child, False) or visible
        # A directory and a file may share a path; either one keeps it visible
        visibility[node.path] = visibility.get(node.path, False) or visible
        return visible

    visit(tree, True)
    return visibility


def visible_paths(tree: Node, query: str) -> Set[str]:
    return {path for path, visible in compute_visibility(tree, query).items() if visible}
