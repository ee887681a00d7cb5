import logging
from typing import Awaitable, Callable, List

from .error_handling import PartialFailureError, WorkspaceError, TransportError
from .planner import Move

logger = logging.getLogger(__name__)

MoveFunc = Callable[[str, str], Awaitable[None]]


class AtomicMoves:
    """Run a folder's file-by-file moves as one unit, compensating on failure"""

    async def atomic_move(self, moves: List[Move], move_func: MoveFunc) -> List[str]:
        """
        Perform every move in order.

        If one fails, the moves already done are reversed (newest first).
        When the reversal succeeds the original error is re-raised with the
        rolled back paths in its details. When it does not, a
        PartialFailureError lists the files left stranded at their new
        location.

        Returns:
            List[str]: new paths of all moved files
        """
        completed: List[Move] = []
        for move in moves:
            try:
                await move_func(move.process_id, move.new_path)
            except Exception as e:
                logger.error(f"Error in atomic move of {move.old_path} -> {move.new_path}: {e}")
                stranded = await self._rollback_moves(completed, move_func)
                details = {
                    "failed": move.old_path,
                    "rolled_back": [m.old_path for m in completed if m.new_path not in stranded],
                }
                if stranded:
                    details["stranded"] = stranded
                    raise PartialFailureError("rollback_failed", details) from e
                if isinstance(e, WorkspaceError):
                    e.details.update(details)
                    raise
                raise TransportError("move_failed", details) from e
            completed.append(move)
        return [move.new_path for move in completed]

    async def _rollback_moves(self, completed: List[Move], move_func: MoveFunc) -> List[str]:
        """Attempt to move files back to their original locations"""
        stranded = []
        for move in reversed(completed):
            try:
                await move_func(move.process_id, move.old_path)
            except Exception as e:
                logger.error(f"Error during move rollback of {move.new_path}: {e}")
                stranded.append(move.new_path)
        return stranded
