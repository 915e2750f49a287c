"""MCP (stdio) transport.

Exposes the Dispatcher as MCP ``tools/list`` and ``tools/call``. The MCP SDK
turns an exception raised by a call handler into a result with
``isError: true`` whose text is the exception message, so failed
ToolResponses are raised as ToolCallFailed carrying their text block.

stdout is the protocol channel; logging must go to stderr.
"""

import logging
from typing import Any, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from .. import __version__
from ..tools.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

SERVER_NAME = "perfex-crm"


class ToolCallFailed(Exception):
    """A tool invocation that produced an error envelope."""

    def __init__(self, text: str, code: Optional[str] = None):
        super().__init__(text)
        self.code = code


class RpcAdapter:
    """Maps MCP requests onto the Dispatcher."""

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    async def list_tools(self) -> list[types.Tool]:
        return [
            types.Tool(
                name=tool["name"],
                description=tool["description"],
                inputSchema=tool["inputSchema"],
            )
            for tool in self.dispatcher.list_tools()
        ]

    async def call_tool(self, name: str, arguments: Optional[dict[str, Any]]) -> list[types.TextContent]:
        response = await self.dispatcher.invoke(name, arguments or {})
        if response.is_error:
            text = "\n".join(block.text for block in response.content)
            raise ToolCallFailed(text, code=response.error.code if response.error else None)
        return [types.TextContent(type="text", text=block.text) for block in response.content]


def create_rpc_server(dispatcher: Dispatcher, name: str = SERVER_NAME) -> Server:
    """Build an MCP low-level server bound to ``dispatcher``."""
    adapter = RpcAdapter(dispatcher)
    server = Server(name, version=__version__)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return await adapter.list_tools()

    # Arguments are validated by the Dispatcher so both transports report
    # VALIDATION_ERROR the same way.
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
        return await adapter.call_tool(name, arguments)

    return server


async def run_stdio(dispatcher: Dispatcher) -> None:
    """Serve MCP over stdin/stdout until the client disconnects."""
    server = create_rpc_server(dispatcher)
    logger.info(f"MCP server '{server.name}' listening on stdio ({len(dispatcher.list_tools())} tools)")
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())
