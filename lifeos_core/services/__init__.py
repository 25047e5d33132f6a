# =============================================================================
# lifeos_core/services/__init__.py
# Service Layer
# =============================================================================

from .base_service import BaseService, ProgressCallback, ServiceResult
from .backup_service import BackupService, DEFAULT_COLLECTIONS

__all__ = [
    "BaseService",
    "ServiceResult",
    "ProgressCallback",
    "BackupService",
    "DEFAULT_COLLECTIONS",
]
