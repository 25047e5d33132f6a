# =============================================================================
# lifeos_core/errors/exceptions.py
# Custom Exception Hierarchy for the Life OS sync engine
# =============================================================================

from typing import Optional, Dict, Any


class LifeOSError(Exception):
    """
    Base exception for all Life OS errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "REMOTE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "LIFEOS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(LifeOSError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# LOCAL STORAGE EXCEPTIONS
# =============================================================================

class StorageError(LifeOSError):
    """Raised when the local durable storage cannot be read or written"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if key:
            details["key"] = key
        kwargs.setdefault("code", "STORE_001")
        super().__init__(message=message, details=details, **kwargs)


class CacheCorruptionError(StorageError):
    """Raised when a cached or queued JSON payload cannot be decoded"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, key=key, code="STORE_002", **kwargs)


# =============================================================================
# REMOTE STORE EXCEPTIONS
# =============================================================================

class RemoteStoreError(LifeOSError):
    """
    Base class for failures talking to the hosted REST backend.

    `retryable` tells the sync coordinator whether a failed write should go
    back on the queue or straight to the dead-letter list.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if collection:
            details["collection"] = collection
        if operation:
            details["operation"] = operation
        kwargs.setdefault("code", "REMOTE_000")
        super().__init__(message=message, details=details, **kwargs)


class NetworkError(RemoteStoreError):
    """No response, connection failure or request timeout"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="REMOTE_001", **kwargs)


class RemoteRejectedError(RemoteStoreError):
    """The backend answered with an error other than authorization expiry"""

    def __init__(
        self,
        message: str,
        remote_code: Optional[str] = None,
        retryable: bool = True,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if remote_code:
            details["remote_code"] = remote_code
        kwargs.setdefault("code", "REMOTE_002")
        super().__init__(message, details=details, **kwargs)
        self.remote_code = remote_code
        self.retryable = retryable


class DuplicateKeyError(RemoteRejectedError):
    """Insert violated a unique constraint (SQLSTATE 23505)"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("remote_code", "23505")
        super().__init__(message, retryable=False, code="REMOTE_003", **kwargs)


# =============================================================================
# AUTHENTICATION EXCEPTIONS
# =============================================================================

class AuthRequiredError(LifeOSError):
    """Raised when a remote operation is attempted without a signed-in user"""

    def __init__(self, operation: str, **kwargs):
        super().__init__(
            message=f"Authentication required for {operation}",
            code="AUTH_001",
            details={"operation": operation},
            **kwargs,
        )


class AuthExpiredError(RemoteStoreError):
    """The session token was rejected; terminal for the current session"""

    retryable = False

    def __init__(self, message: str = "Authorization expired", **kwargs):
        super().__init__(message, code="AUTH_002", recoverable=False, **kwargs)


# =============================================================================
# MIGRATION EXCEPTIONS
# =============================================================================

class MigrationError(LifeOSError):
    """Raised when routine completion data cannot be upgraded"""

    def __init__(
        self,
        message: str,
        date: Optional[str] = None,
        schema_version: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if date:
            details["date"] = date
        if schema_version is not None:
            details["schema_version"] = schema_version

        super().__init__(
            message=message,
            code="MIGRATE_001",
            details=details,
            **kwargs,
        )
