import inspect
import logging
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .models import Node
from . import paths

logger = logging.getLogger(__name__)

TREE_REPLACED = "tree_replaced"
MUTATION_COMPLETED = "mutation_completed"
EVENTS = (TREE_REPLACED, MUTATION_COMPLETED)


class WorkspaceState:
    """
    The current workspace snapshot and everything that coordinates it.

    The tree is only ever replaced wholesale: a load gets a generation
    number when it starts, and its result is committed only if no newer
    load has started since (last-started-wins).
    """

    def __init__(self):
        self.tree: Optional[Node] = None
        self.counts: Dict[str, int] = {}
        self.generation = 0
        self.committed_generation = 0
        self.pending: Set[str] = set()
        self._listeners: Dict[str, List[Callable]] = defaultdict(list)

    def next_generation(self) -> int:
        self.generation += 1
        return self.generation

    def is_current(self, generation: int) -> bool:
        return generation == self.generation

    def commit(self, tree: Node, generation: int, counts: Optional[Dict[str, int]] = None) -> bool:
        """Install a freshly built tree unless a newer load has started"""
        if not self.is_current(generation):
            logger.warning(f"Discarding stale tree from generation {generation} "
                           f"(latest is {self.generation})")
            return False
        self.tree = tree
        self.counts = dict(counts or {})
        self.committed_generation = generation
        return True

    def replace(self, tree: Node):
        """Swap in a derived snapshot (e.g. a status refresh) of the committed tree"""
        self.tree = tree

    def is_mutation_pending(self, path: str) -> bool:
        """True if path, or a folder containing it, has a mutation in flight"""
        path = paths.normalize(path)
        return any(
            path == pending or (pending and paths.is_within(path, pending))
            for pending in self.pending
        )

    def begin_mutation(self, affected: Iterable[str]) -> bool:
        """Mark paths busy; refuses if any of them overlaps a mutation in flight"""
        affected = [paths.normalize(p) for p in affected]
        if any(self._overlaps(p) for p in affected):
            return False
        self.pending.update(affected)
        return True

    def _overlaps(self, path: str) -> bool:
        return self.is_mutation_pending(path) or any(
            pending and paths.is_within(pending, path) for pending in self.pending
        )

    def end_mutation(self, affected: Iterable[str]):
        for path in affected:
            self.pending.discard(paths.normalize(path))

    def subscribe(self, event: str, callback: Callable) -> Callable[[], None]:
        """Register a listener; returns a function that removes it again"""
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(callback)

        def unsubscribe():
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)
        return unsubscribe

    async def emit(self, event: str, payload: Any):
        for callback in list(self._listeners[event]):
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)
