import logging
from typing import Optional, Any, Dict
import traceback

from . import config

VALIDATION = "ValidationError"
CONFLICT = "ConflictError"
NOT_FOUND = "NotFoundError"
PRECONDITION = "PreconditionError"
TRANSPORT = "TransportError"
PARTIAL_FAILURE = "PartialFailureError"


class WorkspaceError(Exception):
    """Base exception class for notebookfiles errors"""
    kind = "WorkspaceError"

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(reason)
        self.reason = reason
        self.details = details or {}


class ValidationError(WorkspaceError):
    kind = VALIDATION


class ConflictError(WorkspaceError):
    kind = CONFLICT


class NotFoundError(WorkspaceError):
    kind = NOT_FOUND


class PreconditionError(WorkspaceError):
    kind = PRECONDITION


class TransportError(WorkspaceError):
    """Raised when a backend call fails or returns an unexpected shape"""
    kind = TRANSPORT


class PartialFailureError(WorkspaceError):
    """Raised when a multi-step move failed and could not be fully rolled back"""
    kind = PARTIAL_FAILURE


class TreeCorruptionError(Exception):
    """The in-memory tree violates its structural invariants"""
    pass


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """Configure logging for the application"""
    handlers = [logging.StreamHandler()]
    log_file = log_file if log_file is not None else config.LOG_FILE
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def log_operation(logger: logging.Logger, operation: str, **kwargs):
    """Log an operation with its parameters"""
    logger.info(f"Operation: {operation}", extra={"parameters": kwargs})


def handle_error(logger: logging.Logger, error: Exception, operation: str) -> Dict[str, Any]:
    """Handle and log an error, return error response"""
    error_details = {
        "type": type(error).__name__,
        "message": str(error),
        "operation": operation,
        "traceback": traceback.format_exc()
    }

    if isinstance(error, WorkspaceError):
        error_details["kind"] = error.kind
        error_details.update(error.details)

    logger.error(
        f"Error during {operation}: {str(error)}",
        extra={"error_details": error_details},
        exc_info=True
    )

    return {
        "type": "error",
        "message": str(error),
        "details": error_details
    }
