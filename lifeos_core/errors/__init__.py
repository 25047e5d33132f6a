# =============================================================================
# lifeos_core/errors/__init__.py
# Centralized Error Handling for the Life OS sync engine
# =============================================================================

from .exceptions import (
    LifeOSError,
    ConfigurationError,
    StorageError,
    CacheCorruptionError,
    RemoteStoreError,
    NetworkError,
    RemoteRejectedError,
    DuplicateKeyError,
    AuthRequiredError,
    AuthExpiredError,
    MigrationError,
)

from .handlers import (
    handle_error,
    ErrorContext,
    Notifier,
)

__all__ = [
    # Exceptions
    "LifeOSError",
    "ConfigurationError",
    "StorageError",
    "CacheCorruptionError",
    "RemoteStoreError",
    "NetworkError",
    "RemoteRejectedError",
    "DuplicateKeyError",
    "AuthRequiredError",
    "AuthExpiredError",
    "MigrationError",
    # Handlers
    "handle_error",
    "ErrorContext",
    "Notifier",
]
