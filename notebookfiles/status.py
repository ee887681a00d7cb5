import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from .locator import iter_nodes
from .models import Node
from . import paths

logger = logging.getLogger(__name__)

# Process states reported by the notebook server that mean "no live process"
NOT_RUNNING_STATUSES = {"no_process", "crashed", "shutdown", "waiting_for_permission"}


def is_running_status(process_status: Optional[str]) -> bool:
    return bool(process_status) and process_status not in NOT_RUNNING_STATUSES


def record_is_running(record: Mapping[str, Any]) -> bool:
    """Explicit is_running flag wins, otherwise derive it from process_status"""
    if record.get("is_running") is not None:
        return bool(record["is_running"])
    return is_running_status(record.get("process_status"))


def status_from_records(records: Iterable[Mapping[str, Any]], root_prefix: str = "") -> Dict[str, Dict[str, Any]]:
    """Build a path -> status mapping from flat backend records"""
    status_by_path = {}
    for record in records:
        if not isinstance(record, Mapping):
            continue
        path = paths.strip_prefix(record.get("path") or record.get("shortpath"), root_prefix)
        if not path:
            continue
        status_by_path[path] = {
            "is_running": record_is_running(record),
            "process_id": record.get("process_id") or record.get("notebook_id"),
            "process_status": record.get("process_status"),
        }
    return status_by_path


def collect_status(tree: Node) -> Dict[str, Dict[str, Any]]:
    """Read the status already carried by file nodes (pre-built tree listings)"""
    return {
        node.path: {
            "is_running": node.is_running,
            "process_id": node.process_id,
            "process_status": node.process_status,
        }
        for node in iter_nodes(tree)
        if not node.is_directory
    }


def apply_status(tree: Node, status_by_path: Mapping[str, Mapping[str, Any]]) -> Node:
    """
    Overlay live process status onto file nodes.

    Files missing from the mapping are marked not running. Tree shape and
    ordering are left untouched.
    """
    running = 0
    for node in iter_nodes(tree):
        if node.is_directory:
            continue
        status = status_by_path.get(node.path)
        if status is None:
            node.is_running = False
            node.process_id = None
            continue
        process_status = status.get("process_status")
        if status.get("is_running") is not None:
            is_running = bool(status["is_running"])
        else:
            is_running = is_running_status(process_status)
        process_id = status.get("process_id") or status.get("notebook_id")
        # process_id is present iff a backing process is running
        node.is_running = is_running and bool(process_id)
        node.process_id = process_id if node.is_running else None
        node.process_status = process_status
        running += node.is_running
    logger.debug(f"Applied status overlay: {running} running notebooks")
    return tree
