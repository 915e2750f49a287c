"""
Tool descriptors and the response envelope.

A Tool is a declarative record: a unique name, a description, a pydantic
input model (whose JSON schema is advertised to callers and enforced by the
Dispatcher) and an async handler ``handler(args, db) -> ToolResponse``.

Handlers raise PerfexError subclasses on failure; they never build error
envelopes themselves. The Dispatcher converts failures in one place.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ..db.client import ConnectionManager


def json_default(value: Any) -> Any:
    """Serialize database values json.dumps does not handle."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=json_default, ensure_ascii=False)


# ============================================
# Response envelope
# ============================================

@dataclass(frozen=True)
class TextContent:
    text: str
    type: str = "text"

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "text": self.text}


@dataclass(frozen=True)
class ErrorInfo:
    """Machine-readable error carried by a failed ToolResponse."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


@dataclass(frozen=True)
class ToolResponse:
    """Uniform tool result.

    Attributes:
        content: Ordered text blocks sent to RPC callers
        is_error: True when the invocation failed
        data: Structured payload (REST callers receive this directly)
        error: Error code, message and details when ``is_error`` is set
    """

    content: list[TextContent]
    is_error: bool = False
    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, data: Any) -> "ToolResponse":
        """Wrap a JSON-serializable payload, indented by two spaces."""
        return cls(content=[TextContent(to_json(data))], data=data)

    @classmethod
    def message(cls, text: str) -> "ToolResponse":
        return cls(content=[TextContent(text)], data={"message": text})

    @classmethod
    def failure(
        cls,
        code: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> "ToolResponse":
        return cls(
            content=[TextContent(f"Error: {message}")],
            is_error=True,
            error=ErrorInfo(code=code, message=message, details=details or {}),
        )

    def to_rpc(self) -> dict[str, Any]:
        return {
            "content": [block.to_dict() for block in self.content],
            "isError": self.is_error,
        }


# ============================================
# Tool descriptor
# ============================================

class ToolInput(BaseModel):
    """Base for tool argument models. Unknown arguments are ignored."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class PageInput(ToolInput):
    limit: int = Field(50, ge=1, le=1000, description="Maximum number of results")
    offset: int = Field(0, ge=0, description="Number of results to skip")


class EmptyInput(ToolInput):
    pass


Handler = Callable[[Any, "ConnectionManager"], Awaitable[ToolResponse]]


@dataclass(frozen=True)
class Tool:
    """A named operation against the CRM database.

    Attributes:
        name: Unique key used for dispatch
        description: Human-readable description advertised to callers
        input_model: pydantic model validating the argument bag
        handler: ``async handler(args, db) -> ToolResponse``
        feature: Tenant feature gating this tool ("crm", "projects", ...)
        read_only: False for tools that write
    """

    name: str
    description: str
    input_model: type[BaseModel]
    handler: Handler = field(repr=False)
    feature: str = "crm"
    read_only: bool = True

    @property
    def input_schema(self) -> dict[str, Any]:
        return self.input_model.model_json_schema()

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


__all__ = [
    "EmptyInput",
    "ErrorInfo",
    "PageInput",
    "TextContent",
    "Tool",
    "ToolInput",
    "ToolResponse",
    "json_default",
    "to_json",
]
