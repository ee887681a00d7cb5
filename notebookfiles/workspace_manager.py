from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent
import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .backend import Backend, Listing
from .error_handling import TransportError, TreeCorruptionError
from .models import Node
from .search import compute_visibility
from .sorting import sort_tree
from .status import apply_status, collect_status, status_from_records
from .tree_builder import build_tree, compute_counts, tree_from_dict, validate_tree
from .workspace import WorkspaceState, TREE_REPLACED
from . import config

logger = logging.getLogger(__name__)


def materialize(listing: Listing, root_prefix: str = ""):
    """Turn a backend listing into a sorted, status-overlaid tree plus counts"""
    try:
        if listing.records is not None:
            tree = build_tree(listing.records, root_prefix=root_prefix)
            status = status_from_records(listing.records, root_prefix=root_prefix)
        else:
            tree = tree_from_dict(listing.tree)
            status = listing.status if listing.status is not None else collect_status(tree)
        validate_tree(tree)
    except TreeCorruptionError as e:
        raise TransportError("unexpected_shape", {"error": str(e)}) from e

    sort_tree(tree)
    apply_status(tree, status)
    counts = compute_counts(tree)
    if listing.counts:
        counts.update({k: v for k, v in listing.counts.items() if k in counts})
    return tree, counts


class WorkspaceManager:
    def __init__(self, backend: Backend, state: Optional[WorkspaceState] = None,
                 root_prefix: Optional[str] = None):
        self.backend = backend
        self.state = state or WorkspaceState()
        self.root_prefix = config.ROOT_PREFIX if root_prefix is None else root_prefix
        self.observer = None

    @property
    def tree(self) -> Optional[Node]:
        return self.state.tree

    async def reload(self) -> Optional[Node]:
        """
        Fetch the workspace and replace the tree.

        Returns the new tree, or None when a newer reload started while this
        one was waiting on the backend (its result is discarded).
        """
        generation = self.state.next_generation()
        logger.debug(f"Reload generation {generation} started")
        listing = await self.backend.list_files()
        tree, counts = materialize(listing, self.root_prefix)
        if not self.state.commit(tree, generation, counts):
            return None
        logger.info(f"Workspace tree replaced (generation {generation}, {counts})")
        await self.state.emit(TREE_REPLACED, tree)
        return tree

    async def ensure_loaded(self) -> Node:
        """
        Return the current tree, loading it first if there is none.

        Raises TransportError("tree_not_loaded") when this load was superseded
        by a newer one that has not committed yet.
        """
        if self.state.tree is None:
            await self.reload()
        if self.state.tree is None:
            raise TransportError("tree_not_loaded", {"generation": self.state.generation})
        return self.state.tree

    async def refresh_status(self, status_by_path: Mapping[str, Mapping[str, Any]]) -> Optional[Node]:
        """Overlay live process status on a copy of the current tree and swap it in"""
        if self.state.tree is None:
            return None
        tree = apply_status(self.state.tree.copy(), status_by_path)
        self.state.replace(tree)
        await self.state.emit(TREE_REPLACED, tree)
        return tree

    def search(self, query: str) -> Dict[str, bool]:
        if self.state.tree is None:
            return {}
        return compute_visibility(self.state.tree, query)

    def subscribe(self, event: str, callback: Callable) -> Callable[[], None]:
        return self.state.subscribe(event, callback)

    def watch_directory(self, directory: str, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Reload the tree whenever files change in the notebook directory"""
        loop = loop or asyncio.get_running_loop()
        manager = self

        class Handler(FileSystemEventHandler):
            def on_any_event(self, event: FileSystemEvent):
                if event.is_directory and event.event_type == "modified":
                    return
                logger.debug(f"Filesystem change: {event.event_type} {event.src_path}")
                # Observer thread: hand the reload over to the event loop
                future = asyncio.run_coroutine_threadsafe(manager.reload(), loop)
                future.add_done_callback(_log_reload_failure)

        self.stop_watching()
        self.observer = Observer()
        self.observer.schedule(Handler(), directory, recursive=True)
        self.observer.start()
        logger.info(f"Watching {directory} for changes")

    def stop_watching(self):
        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    async def close(self):
        self.stop_watching()
        await self.backend.close()


def _log_reload_failure(future):
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.error(f"Reload after filesystem change failed: {error}")
