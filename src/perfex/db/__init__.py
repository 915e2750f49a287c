"""Database access layer.

Classes:
    ConnectionManager: Pooled asyncpg client with retry, sanitization and transactions
    Page: One page of a paginated read
    RetryPolicy: Bounded linear-backoff retry with an error classifier
    ResultSanitizer: Masks sensitive columns in returned rows
    WhereBuilder: Predicate accumulator with aligned $n placeholders
"""
from .client import MAX_QUERY_ROWS, ConnectionManager, Page
from .query_builder import (
    ALLOWED_TABLES,
    WhereBuilder,
    like,
    order_by,
    validate_identifier,
    validate_table,
)
from .resilience import RetryPolicy, is_transient, retry_everything
from .sanitizer import (
    MASK,
    ErrorSanitizer,
    ResultSanitizer,
    get_result_sanitizer,
    sanitize_error_message,
)

__all__ = [
    "ALLOWED_TABLES",
    "ConnectionManager",
    "ErrorSanitizer",
    "MASK",
    "MAX_QUERY_ROWS",
    "Page",
    "ResultSanitizer",
    "RetryPolicy",
    "WhereBuilder",
    "get_result_sanitizer",
    "is_transient",
    "like",
    "order_by",
    "retry_everything",
    "sanitize_error_message",
    "validate_identifier",
    "validate_table",
]
