# =============================================================================
# lifeos_core/services/base_service.py
# Base Service Class for operations built on the sync layer
# =============================================================================

from __future__ import annotations
from typing import Optional, Any, Callable
from dataclasses import dataclass

from lifeos_core.logging import get_logger
from lifeos_core.errors import ErrorContext, LifeOSError
from lifeos_core.errors.handlers import Notifier

# (collections done, collections total, collection being processed);
# the final call has done == total and an empty collection name
ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ServiceResult:
    """
    Outcome of a whole-collection operation such as a backup export.

    `sign_in_required` is set when the failure was an expired or missing
    session, so the caller can send the user to the login screen instead of
    offering a retry.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    sign_in_required: bool = False

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def failed(cls, error: BaseException) -> ServiceResult:
        if isinstance(error, LifeOSError):
            return cls(
                success=False,
                error=error.message,
                error_code=error.code,
                sign_in_required=not error.recoverable,
            )
        return cls(success=False, error=str(error), error_code="UNKNOWN")


class BaseService:
    """
    Base class for services on top of the sync layer.

    Provides a per-service logger, an optional user notifier (shown only
    for operations the user started explicitly) and per-collection progress.

    Usage:
        class ExportService(BaseService):
            def export(self) -> ServiceResult:
                return self.run("Exporting todos", self._export)
    """

    def __init__(self, notify: Optional[Notifier] = None):
        self.logger = get_logger(self.__class__.__name__)
        self._notify = notify
        self._progress_callback: Optional[ProgressCallback] = None

    def set_progress_callback(self, callback: ProgressCallback) -> None:
        self._progress_callback = callback

    def _report_progress(self, done: int, total: int, collection: str = "") -> None:
        if self._progress_callback:
            self._progress_callback(done, total, collection)

    def run(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """
        Run an operation, turning any failure into a failed ServiceResult.

        The failure is logged and sent to the notifier; it is never raised.
        """
        with ErrorContext(operation, notify=self._notify) as context:
            return ServiceResult(success=True, data=func(*args, **kwargs))
        return ServiceResult.failed(context.error)
