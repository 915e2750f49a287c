#!/usr/bin/env python3
"""Exception Hierarchy for the Perfex CRM tool server.

All errors raised by the data-access layer and the tool dispatcher inherit
from PerfexError, so a transport can catch one base class and still read a
machine-readable code from every failure.

Exception Hierarchy:
    PerfexError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── DatabaseError
    │   ├── ConnectivityError
    │   ├── QueryExecutionError (retry budget exhausted)
    │   ├── TransactionError
    │   └── IntegrityError
    ├── ToolError
    │   ├── ToolNotFoundError
    │   └── DuplicateToolError
    ├── ValidationError
    └── NotFoundError

Only ConnectionManager recovers locally (bounded retry). Everything else
propagates to the Dispatcher, which turns it into an error envelope.
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class PerfexError(Exception):
    """Base exception for all Perfex tool server errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "QUERY_EXECUTION_ERROR")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might succeed on retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "INTERNAL_ERROR"
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(PerfexError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Database Errors
# ============================================

class DatabaseError(PerfexError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("code", "DATABASE_ERROR")
        super().__init__(message, **kwargs)


class ConnectivityError(DatabaseError):
    """Raised when the pool cannot be created or reached."""

    def __init__(self, message: str = "Database is unreachable", **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, code="CONNECTIVITY_ERROR", **kwargs)


class QueryExecutionError(DatabaseError):
    """Raised once a statement has failed on every allowed attempt.

    Attributes:
        attempts: How many attempts were made before giving up
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        sql: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        if sql:
            details["sql"] = sql[:100]
        super().__init__(
            message,
            code="QUERY_EXECUTION_ERROR",
            details=details,
            **kwargs,
        )
        self.attempts = attempts


class TransactionError(DatabaseError):
    """Raised when a transactional callback fails (after rollback)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when a database constraint is violated."""

    def __init__(
        self,
        message: str,
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Tool Errors
# ============================================

class ToolError(PerfexError):
    """Base class for registry and dispatch errors."""


class ToolNotFoundError(ToolError):
    """Raised when an invocation names a tool that is not registered."""

    def __init__(
        self,
        tool_name: str,
        available: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["tool"] = tool_name
        if available is not None:
            details["available_tools"] = available
        super().__init__(
            f"Tool '{tool_name}' not found",
            code="TOOL_NOT_FOUND",
            details=details,
            **kwargs,
        )
        self.tool_name = tool_name


class DuplicateToolError(ToolError):
    """Raised at startup when two tools share a name."""

    def __init__(self, tool_name: str, **kwargs):
        super().__init__(
            f"Tool '{tool_name}' is registered more than once",
            code="DUPLICATE_TOOL",
            details={"tool": tool_name},
            **kwargs,
        )
        self.tool_name = tool_name


# ============================================
# Request Errors
# ============================================

class ValidationError(PerfexError):
    """Raised when tool arguments are missing or inconsistent.

    Attributes:
        field: The offending argument, when there is exactly one
        errors: Per-field error list (from input model validation)
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        errors: Optional[list[dict[str, Any]]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if errors:
            details["errors"] = errors
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field
        self.errors = errors or []


class NotFoundError(PerfexError):
    """Raised when a queried business entity does not exist."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} '{resource_id}' not found"

        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id is not None:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )


__all__ = [
    "PerfexError",
    "ConfigurationError",
    "DatabaseError",
    "ConnectivityError",
    "QueryExecutionError",
    "TransactionError",
    "IntegrityError",
    "ToolError",
    "ToolNotFoundError",
    "DuplicateToolError",
    "ValidationError",
    "NotFoundError",
]
