"""CRM tools.

Classes:
    Tool: Declarative tool descriptor (name, description, input model, handler)
    ToolResponse: Uniform response envelope
    ToolRegistry: Name-indexed, duplicate-rejecting tool set
    Dispatcher: Routes (name, arguments) to a handler and normalizes the result
"""
from typing import Optional

from . import customers, invoices, leads, projects, tasks
from .base import PageInput, TextContent, Tool, ToolInput, ToolResponse
from .dispatcher import Dispatcher, error_response
from .registry import ToolRegistry

# Registration order is the order tools are advertised in
TOOL_COLLECTIONS = (
    customers.TOOLS,
    invoices.TOOLS,
    projects.TOOLS,
    tasks.TOOLS,
    leads.TOOLS,
)


def build_registry(client_id: Optional[str] = None) -> ToolRegistry:
    """Registry of every CRM tool, narrowed to the tenant's features if given."""
    registry = ToolRegistry(TOOL_COLLECTIONS)
    if client_id is not None:
        registry = registry.for_client(client_id)
    return registry


__all__ = [
    "Dispatcher",
    "PageInput",
    "TOOL_COLLECTIONS",
    "TextContent",
    "Tool",
    "ToolInput",
    "ToolRegistry",
    "ToolResponse",
    "build_registry",
    "error_response",
]
