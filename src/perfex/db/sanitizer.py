"""
Sanitization for data leaving the database layer.

Two concerns live here:

1. ResultSanitizer - masks sensitive columns in rows returned by the read
   path (``tblstaff.password``, ``tblclients.stripe_id``, API tokens...).
   Rows are walked one level deep and copied, never mutated in place.

2. ErrorSanitizer - redacts connection strings, credentials and file paths
   from exception text before it is placed in a tool response. The raw
   message is still logged server-side.

Usage:
    from src.perfex.db.sanitizer import get_result_sanitizer, sanitize_error_message

    rows = get_result_sanitizer().sanitize_rows(rows)
    # [{"id": 1, "password": "***MASKED***"}]

    sanitize_error_message("connect to postgresql://u:p@db/crm failed")
    # 'connect to [DATABASE_URL] failed'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

MASK = "***MASKED***"

# Column names that must never leave the data-access boundary in clear text
SENSITIVE_FIELD_PATTERN = (
    r"pass(word|wd)"
    r"|token"
    r"|secret"
    r"|(^|_)(api_?)?key$"
    r"|apikey"
    r"|card"
    r"|bank_account"
    r"|social_security"
    r"|stripe_id"
    r"|tax_id"
    r"|plaid_account_name"
)


# ============================================
# Result rows
# ============================================

class ResultSanitizer:
    """Masks sensitive fields in result rows.

    Attributes:
        pattern: Compiled, case-insensitive field-name pattern
        marker: Replacement value for masked fields
    """

    def __init__(
        self,
        pattern: str = SENSITIVE_FIELD_PATTERN,
        marker: str = MASK,
    ):
        self.pattern = re.compile(pattern, re.IGNORECASE)
        self.marker = marker

    def is_sensitive(self, field_name: str) -> bool:
        return bool(self.pattern.search(field_name))

    def sanitize_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``row`` with sensitive non-null values masked."""
        return {
            name: self.marker if value is not None and self.is_sensitive(name) else value
            for name, value in row.items()
        }

    def sanitize_rows(self, rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
        return [self.sanitize_row(row) for row in rows]


_result_sanitizer: Optional[ResultSanitizer] = None


def get_result_sanitizer() -> ResultSanitizer:
    """Get the shared result sanitizer."""
    global _result_sanitizer
    if _result_sanitizer is None:
        _result_sanitizer = ResultSanitizer()
    return _result_sanitizer


# ============================================
# Error messages
# ============================================

@dataclass
class SanitizationResult:
    """Result of error message sanitization."""

    sanitized_message: str
    redaction_count: int

    @property
    def was_sanitized(self) -> bool:
        return self.redaction_count > 0


class ErrorSanitizer:
    """Redacts credentials and infrastructure details from error text.

    Order matters: connection strings must be replaced before the generic
    ``password=`` rule sees them.
    """

    DEFAULT_PATTERNS: list[tuple[str, str]] = [
        # Connection strings
        (r"postgres(ql)?://[^\s]+", "[DATABASE_URL]"),
        (r"mysql://[^\s]+", "[DATABASE_URL]"),

        # Tokens and keys
        (r"bearer\s+[A-Za-z0-9_\-\.]+", "Bearer [REDACTED]"),
        (r"api[-_]?key[=:\s]+[^\s,;]+", "api_key=[REDACTED]"),
        (r"access[-_]?token[=:\s]+[^\s,;]+", "access_token=[REDACTED]"),

        # Credentials
        (r"password[=:\s]+[^\s,;]+", "password=[REDACTED]"),
        (r"passwd[=:\s]+[^\s,;]+", "passwd=[REDACTED]"),
        (r"secret[=:\s]+[^\s,;]+", "secret=[REDACTED]"),
        (r"\bDB_PASSWORD\b", "[ENV_VAR]"),

        # Host file paths
        (r"/(?:home|root|usr|var|etc|opt|srv)/[^\s,;]+", "[FILE_PATH]"),

        # Python stack traces
        (r"Traceback \(most recent call last\):[\s\S]*?(?=\n\n|\n[A-Z]|\Z)", "[STACK_TRACE]"),
    ]

    def __init__(
        self,
        patterns: Optional[list[tuple[str, str]]] = None,
        max_message_length: int = 500,
    ):
        self.patterns = list(patterns or self.DEFAULT_PATTERNS)
        self.max_message_length = max_message_length
        self._compiled_patterns = [
            (re.compile(pattern, re.IGNORECASE), replacement)
            for pattern, replacement in self.patterns
        ]

    def sanitize(self, message: str) -> SanitizationResult:
        """Sanitize an error message for client exposure.

        Args:
            message: Raw error message

        Returns:
            SanitizationResult with the safe message and redaction count
        """
        if not message:
            return SanitizationResult("An error occurred", 0)

        sanitized = message
        redaction_count = 0
        for pattern, replacement in self._compiled_patterns:
            sanitized, count = pattern.subn(replacement, sanitized)
            redaction_count += count

        if len(sanitized) > self.max_message_length:
            sanitized = sanitized[: self.max_message_length] + "... [TRUNCATED]"

        if not sanitized.strip():
            sanitized = "An error occurred"

        return SanitizationResult(sanitized, redaction_count)


_error_sanitizer: Optional[ErrorSanitizer] = None


def get_error_sanitizer() -> ErrorSanitizer:
    global _error_sanitizer
    if _error_sanitizer is None:
        _error_sanitizer = ErrorSanitizer()
    return _error_sanitizer


def sanitize_error_message(message: str) -> str:
    """Convenience function returning only the sanitized text.

    Example:
        >>> sanitize_error_message("password=hunter2 rejected")
        'password=[REDACTED] rejected'
    """
    return get_error_sanitizer().sanitize(message).sanitized_message


__all__ = [
    "MASK",
    "SENSITIVE_FIELD_PATTERN",
    "ResultSanitizer",
    "get_result_sanitizer",
    "ErrorSanitizer",
    "SanitizationResult",
    "get_error_sanitizer",
    "sanitize_error_message",
]
