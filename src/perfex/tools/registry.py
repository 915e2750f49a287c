"""
Tool Registry.

Composes the per-domain tool collections into one name-indexed mapping.
Built once at startup and read-only afterwards; a second tool with an
existing name is rejected rather than silently replacing the first.
"""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Optional

from ..config import has_feature
from ..exceptions import DuplicateToolError
from .base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Ordered, name-indexed set of tools.

    Usage:
        registry = ToolRegistry([customers.TOOLS, invoices.TOOLS])
        tool = registry.get("get_customers")
        registry.list_tools()  # [{name, description, inputSchema}, ...]
    """

    def __init__(self, collections: Iterable[Iterable[Tool]] = ()):
        self._tools: dict[str, Tool] = {}
        for collection in collections:
            for tool in collection:
                self.register(tool)

    def register(self, tool: Tool) -> None:
        """Add one tool.

        Raises:
            DuplicateToolError: If a tool with the same name is registered
        """
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[dict]:
        """Descriptors in registration order."""
        return [tool.describe() for tool in self._tools.values()]

    def for_client(self, client_id: str) -> "ToolRegistry":
        """A new registry holding only the tools the tenant's features allow."""
        allowed = [tool for tool in self._tools.values() if has_feature(client_id, tool.feature)]
        skipped = len(self._tools) - len(allowed)
        if skipped:
            logger.info(f"{skipped} tools disabled for client {client_id}")
        return ToolRegistry([allowed])

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
