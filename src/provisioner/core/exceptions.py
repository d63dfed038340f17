"""
provisioner.core.exceptions - Custom Exception Hierarchy
========================================================

Structured exceptions for Provisioner. Each carries a human-readable
message, a machine-readable error code and a free-form `details` dict so
that a failure can be logged with enough context to diagnose it without
access to the source.

Exception Hierarchy:
    ProvisionerError (base)
        ├── ConfigurationError   - No usable manifest source, invalid config
        ├── ManifestError        - Manifest could not be fetched or decoded
        ├── TransientFetchError  - Network failure or timeout (retryable)
        ├── IntegrityError       - Downloaded content failed digest check (retryable)
        ├── ExecutionError       - Item could not run or exited non-zero
        └── StatusStoreError     - Status persistence failed

Propagation:
    TransientFetchError / IntegrityError
        → retried by DownloadCache up to the item's retry count
        → surface as a single item failure
    ExecutionError
        → recorded per item; siblings in setup/userland still run
        → aborts the run when it happens in preflight
    ManifestError / ConfigurationError
        → fatal, the run exits 1 before any phase starts
    StatusStoreError
        → logged, never fatal to the run
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
class ProvisionerError(Exception):
    """Base exception for all Provisioner errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable code, UPPER_SNAKE_CASE
            (e.g., "FETCH_TIMEOUT", "HASH_MISMATCH").
        details: Additional debugging context (paths, urls, exit codes).

    Example:
        >>> try:
        ...     await loader.load(url)
        ... except ProvisionerError as e:
        ...     logger.error(e.message, error_code=e.error_code, **e.details)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception for structured logging.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
# Raised before orchestration starts. The run must fail fast.
# =============================================================================
class ConfigurationError(ProvisionerError):
    """Raised when configuration is invalid or no manifest source is resolvable.

    Example:
        >>> raise ConfigurationError(
        ...     message="No manifest URL configured",
        ...     error_code="NO_MANIFEST_SOURCE",
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Manifest Error
# =============================================================================
class ManifestError(ProvisionerError):
    """Raised when the manifest cannot be fetched or decoded.

    Network problems and decode problems use distinct error codes:
        - MANIFEST_FETCH_FAILED:  transport failure, timeout, unreadable file
        - MANIFEST_DECODE_FAILED: invalid JSON or schema validation failure

    Attributes:
        url: The manifest source that failed.
    """

    def __init__(
        self,
        message: str,
        url: str,
        error_code: str = "MANIFEST_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["url"] = url

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.url = url


# =============================================================================
# Fetch Errors
# =============================================================================
class TransientFetchError(ProvisionerError):
    """Raised when a transfer fails (connection, HTTP status, timeout, write).

    Attributes:
        url: The URL being fetched.
    """

    def __init__(
        self,
        message: str,
        url: str,
        error_code: str = "FETCH_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["url"] = url

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.url = url


class IntegrityError(ProvisionerError):
    """Raised when a file's digest does not match the expected digest.

    Attributes:
        path: The file that was checked.
        expected: Expected hex digest.
        actual: Computed hex digest (None if the file is missing).
    """

    def __init__(
        self,
        message: str,
        path: str,
        expected: str,
        actual: Optional[str],
        error_code: str = "HASH_MISMATCH",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["path"] = path
        enriched_details["expected"] = expected
        enriched_details["actual"] = actual

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.path = path
        self.expected = expected
        self.actual = actual


# =============================================================================
# Execution Error
# =============================================================================
class ExecutionError(ProvisionerError):
    """Raised when an item cannot be executed or is of an unsupported type.

    Attributes:
        item_name: Display name of the failing item.
        exit_code: Exit code, when one is known.
    """

    def __init__(
        self,
        message: str,
        item_name: str,
        exit_code: Optional[int] = None,
        error_code: str = "EXECUTION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["item"] = item_name
        if exit_code is not None:
            enriched_details["exit_code"] = exit_code

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.item_name = item_name
        self.exit_code = exit_code


# =============================================================================
# Status Store Error
# =============================================================================
class StatusStoreError(ProvisionerError):
    """Raised when a status representation cannot be written or read."""

    def __init__(
        self,
        message: str,
        error_code: str = "STATUS_WRITE_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)
