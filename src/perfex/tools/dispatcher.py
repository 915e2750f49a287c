"""
Tool Dispatcher.

The single place where an invocation ``(name, arguments)`` becomes a
ToolResponse. Both transports call Dispatcher.invoke() and receive the same
envelope for every outcome:

    unknown name      -> TOOL_NOT_FOUND (no database access)
    bad arguments     -> VALIDATION_ERROR with per-field errors
    handler failure   -> the exception's code, sanitized message
    handler success   -> the handler's ToolResponse, unchanged
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from ..db.sanitizer import sanitize_error_message
from ..exceptions import PerfexError, ToolNotFoundError, ValidationError
from .base import ToolResponse
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

# Never copied into a response body
PRIVATE_DETAIL_KEYS = frozenset({"sql", "client_id", "database"})


def error_response(error: PerfexError) -> ToolResponse:
    """Convert a PerfexError into a failed ToolResponse."""
    details = {k: v for k, v in error.details.items() if k not in PRIVATE_DETAIL_KEYS}
    return ToolResponse.failure(
        code=error.code,
        message=sanitize_error_message(error.message),
        details=details,
    )


def _validation_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "arguments",
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]


class Dispatcher:
    """Routes invocations to tool handlers.

    Args:
        registry: Tools available to callers
        db: ConnectionManager passed to every handler
    """

    def __init__(self, registry: ToolRegistry, db):
        self.registry = registry
        self.db = db

    def list_tools(self) -> list[dict[str, Any]]:
        return self.registry.list_tools()

    async def invoke(
        self,
        name: str,
        arguments: Optional[Mapping[str, Any]] = None,
    ) -> ToolResponse:
        tool = self.registry.get(name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {name}")
            return error_response(ToolNotFoundError(name, available=self.registry.names()))

        try:
            args = tool.input_model.model_validate(arguments if arguments is not None else {})
        except PydanticValidationError as e:
            errors = _validation_errors(e)
            logger.info(f"Invalid arguments for {name}: {errors}")
            return error_response(
                ValidationError(f"Invalid arguments for tool '{name}'", errors=errors)
            )

        logger.debug(f"Executing tool: {name}")
        try:
            return await tool.handler(args, self.db)
        except PerfexError as e:
            logger.error(f"Tool {name} failed: [{e.code}] {e.message}")
            return error_response(e)
        except Exception as e:
            logger.exception(f"Tool {name} failed unexpectedly: {e}")
            return error_response(PerfexError(f"Error executing tool {name}: {e}", cause=e))
