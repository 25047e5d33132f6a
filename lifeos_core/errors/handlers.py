# =============================================================================
# lifeos_core/errors/handlers.py
# Error Handling Utilities for the Life OS sync engine
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional, Callable

from lifeos_core.logging import get_logger
from .exceptions import LifeOSError

logger = get_logger(__name__)

# Receives a user-facing message. Only whole-file operations (backup
# import/export) pass one; queued-write deferrals are never shown.
Notifier = Callable[[str], None]


def handle_error(
    error: Exception,
    notify: Optional[Notifier] = None,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        notify: Optional callback used to show the message to the user
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, LifeOSError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    if notify is not None:
        if recoverable:
            notify(f"Error: {message}")
        else:
            notify(f"Critical Error: {message}. Please sign in again.")


class ErrorContext:
    """
    Context manager for one user-visible operation.

    A failure is logged, passed to the notifier and kept in `error`; it is
    suppressed unless the context was created with recoverable=False.

    Usage:
        with ErrorContext("Importing backup", notify=show_toast) as context:
            remote.bulk_insert("todos", rows)
        if context.error is not None:
            ...
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        notify: Optional[Notifier] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.notify = notify
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if not isinstance(exc_val, Exception):
                return False

            self.error = exc_val
            if isinstance(exc_val, LifeOSError):
                handle_error(exc_val, notify=self.notify)
            else:
                handle_error(
                    exc_val,
                    notify=self.notify,
                    user_message=f"Error during: {self.operation}",
                )
            return self.recoverable

        logger.info(f"Completed: {self.operation}")
        return False
