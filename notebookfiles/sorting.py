import locale
import logging
import unicodedata

from .locator import iter_nodes
from .models import Node
from . import config

logger = logging.getLogger(__name__)


def setup_collation(name: str = None):
    """Switch LC_COLLATE to the configured locale ("" means the user's environment)"""
    name = config.COLLATE_LOCALE if name is None else name
    try:
        locale.setlocale(locale.LC_COLLATE, name)
    except locale.Error as e:
        logger.warning(f"Collation locale {name!r} unavailable, keeping {locale.setlocale(locale.LC_COLLATE)!r}: {e}")


def base_letters(name: str) -> str:
    """Case-folded name with accents removed (é -> e), the primary collation level"""
    decomposed = unicodedata.normalize("NFKD", name.casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def sort_key(node: Node):
    """Directories first, then base letters, then accents and case, then exact name"""
    return (
        0 if node.is_directory else 1,
        locale.strxfrm(base_letters(node.name)),
        locale.strxfrm(node.name.casefold()),
        node.name,
    )


def sort_tree(tree: Node) -> Node:
    """Sort children of every directory in place and return the tree"""
    for node in iter_nodes(tree):
        if node.is_directory:
            node.children.sort(key=sort_key)
    return tree


def is_sorted(tree: Node) -> bool:
    for node in iter_nodes(tree):
        if not node.is_directory:
            continue
        keys = [sort_key(child) for child in node.children]
        if keys != sorted(keys):
            return False
    return True
