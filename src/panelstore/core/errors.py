"""
Structured error types for the panelstore data layer.

Every error raised by the storage core carries a category, an explicit
retry flag, a structured context and an optional chained cause, so the
HTTP and CLI collaborators can decide between "halt the process" and
"fail this one request" without parsing messages.

Manifesto:
    - **Boot errors are fatal:** anything touching schema integrity at boot
      (``MigrationFailure``) must stop the process.
    - **Request errors are contained:** ``StorageError`` and its subclasses
      describe a single failed operation; the process keeps serving.
    - **Engine trouble degrades, never crashes:** ``EngineUnreachable`` makes
      the selector fall back to the embedded engine.

Architecture:
    ::

        PanelStoreError
        ├── MigrationFailure          (fatal, halts boot)
        ├── SchemaDrift               (recoverable, repair probe)
        ├── ConcurrentModification    (retryable, version ledger CAS)
        ├── DatabaseConnectionError   (driver could not connect)
        ├── EngineUnreachable        (reload falls back to embedded)
        ├── StorageError              (per-request)
        │   ├── StorageTimeoutError   (deadline / pool wait expired)
        │   ├── StorageNotReady       (dispatch before initialize_storage)
        │   └── PoolRetired           (lease on a pool that is draining)
        ├── ValidationError
        │   ├── UnknownTableError     (name not in the closed registry)
        │   └── SchemaError           (ensure_column fatal outcome)
        ├── BackupError               (embedded backup or restore failed)
        │   └── BackupNotFound
        ├── ConfigError
        │   └── InvalidConfigError
        └── CriticalTableViolation    (routing invariant broken)

Usage:
    from panelstore.core.errors import StorageError

    try:
        rows = router.dispatch("sales", "read", {"routerId": "r1"})
    except StorageError as e:
        log.warning("request.failed", **e.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    DATABASE = "DATABASE"
    STORAGE = "STORAGE"
    MIGRATION = "MIGRATION"
    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    SECURITY = "SECURITY"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only fields that are set are serialized by :meth:`to_dict`, so the
    context can be spread straight into a structlog call.
    """

    table: str | None = None
    operation: str | None = None
    engine: str | None = None
    step: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["table", "operation", "engine", "step"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class PanelStoreError(Exception):
    """Base exception for all panelstore errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    call sites only pass what differs from the norm.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> PanelStoreError:
        """Add context to this error (fluent API).

        Usage:
            raise SchemaDrift("bad shape").with_context(table="panel_settings")
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# BOOT / SCHEMA ERRORS
# =============================================================================


class MigrationFailure(PanelStoreError):
    """A migration step failed; the process must not serve traffic."""

    default_category = ErrorCategory.MIGRATION

    def __init__(self, message: str, *, ordinal: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.ordinal = ordinal
        if ordinal is not None:
            self.context.step = ordinal


class SchemaDrift(PanelStoreError):
    """A table's actual shape differs from its mandated shape."""

    default_category = ErrorCategory.MIGRATION

    def __init__(
        self,
        table: str,
        *,
        expected: list[str],
        actual: list[str],
        reason: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(
            f"Table {table!r}: {reason}"
            if reason
            else f"Table {table!r} has columns {actual}, expected {expected}",
            **kwargs,
        )
        self.table = table
        self.expected = expected
        self.actual = actual
        self.context.table = table


class ConcurrentModification(PanelStoreError):
    """The version ledger changed between read and compare-and-set."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True

    def __init__(self, expected: int, actual: int | None, **kwargs: Any):
        super().__init__(
            f"Version ledger expected {expected}, found {actual}",
            **kwargs,
        )
        self.expected = expected
        self.actual = actual


class DatabaseConnectionError(PanelStoreError):
    """Database connection or pool error."""

    default_category = ErrorCategory.DATABASE
    default_retryable = True


class EngineUnreachable(PanelStoreError):
    """The external engine could not be reached or initialised."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


# =============================================================================
# REQUEST-SCOPED STORAGE ERRORS
# =============================================================================


class StorageError(PanelStoreError):
    """A single dispatch operation failed.

    ``table`` and ``operation`` identify the request; ``cause`` holds the
    driver exception. The HTTP layer reports a generic failure and never
    echoes the cause to end users.
    """

    default_category = ErrorCategory.STORAGE

    def __init__(
        self,
        message: str,
        *,
        table: str | None = None,
        operation: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.table = table
        self.operation = operation
        if table is not None:
            self.context.table = table
        if operation is not None:
            self.context.operation = operation


class StorageTimeoutError(StorageError):
    """The caller's deadline or the pool wait expired."""

    default_retryable = True


class StorageNotReady(StorageError):
    """``dispatch`` was called before ``initialize_storage`` succeeded."""


class PoolRetired(StorageError):
    """A lease was requested from a pool that is draining after a reload."""

    default_retryable = True


# =============================================================================
# VALIDATION / CONFIG ERRORS
# =============================================================================


class ValidationError(PanelStoreError):
    """Request or schema validation error. Never retryable."""

    default_category = ErrorCategory.VALIDATION


class UnknownTableError(ValidationError):
    """Table name is not in the closed table registry."""

    def __init__(self, name: str):
        self.table = name
        super().__init__(f"Unknown table: {name!r}")
        self.context.table = name


class SchemaError(ValidationError):
    """A column could not be ensured on a table."""


class ConfigError(PanelStoreError):
    """Configuration error. Never retryable."""

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


class BackupError(PanelStoreError):
    """An embedded backup could not be written, read or restored."""

    default_category = ErrorCategory.STORAGE


class BackupNotFound(BackupError):
    """No backup file with the requested name."""


class CriticalTableViolation(PanelStoreError):
    """A critical table was about to be routed to the external engine."""

    default_category = ErrorCategory.SECURITY


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, PanelStoreError):
        return error.retryable
    return isinstance(error, (ConnectionError, BrokenPipeError))


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "PanelStoreError",
    "MigrationFailure",
    "SchemaDrift",
    "ConcurrentModification",
    "DatabaseConnectionError",
    "EngineUnreachable",
    "StorageError",
    "StorageTimeoutError",
    "StorageNotReady",
    "PoolRetired",
    "ValidationError",
    "UnknownTableError",
    "SchemaError",
    "ConfigError",
    "InvalidConfigError",
    "BackupError",
    "BackupNotFound",
    "CriticalTableViolation",
    "is_retryable",
]
