#!/usr/bin/env python3
"""Tests for the MCP transport adapter."""
import json
import sys
from importlib.metadata import version

import mcp.types as types
import pytest
from mcp.server.lowlevel import Server

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from conftest import ScriptedHandler
from src.perfex.tools import Dispatcher, build_registry
from src.perfex.transport.rpc import SERVER_NAME, RpcAdapter, ToolCallFailed, create_rpc_server


@pytest.fixture
def make_adapter(make_manager):
    def factory(handler=None):
        db, pool = make_manager(handler)
        return RpcAdapter(Dispatcher(build_registry(), db)), pool

    return factory


class TestRpcAdapter:
    """Test tools/list and tools/call mapping."""

    @pytest.mark.asyncio
    async def test_list_tools(self, make_adapter):
        adapter, _ = make_adapter()

        tools = await adapter.list_tools()

        assert all(isinstance(tool, types.Tool) for tool in tools)
        names = [tool.name for tool in tools]
        assert names == build_registry().names()
        get_customer = tools[names.index("get_customer")]
        assert get_customer.inputSchema["required"] == ["client_id"]

    @pytest.mark.asyncio
    async def test_call_success(self, make_adapter):
        adapter, _ = make_adapter(ScriptedHandler([("FROM tblleads l", [{"id": 3, "name": "Jane"}])]))

        content = await adapter.call_tool("get_lead", {"lead_id": 3})

        assert len(content) == 1
        assert content[0].type == "text"
        assert json.loads(content[0].text) == {"lead": {"id": 3, "name": "Jane"}}

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, make_adapter):
        adapter, pool = make_adapter()

        with pytest.raises(ToolCallFailed) as exc_info:
            await adapter.call_tool("nope", {})

        assert str(exc_info.value) == "Error: Tool 'nope' not found"
        assert exc_info.value.code == "TOOL_NOT_FOUND"
        assert pool.calls == []

    @pytest.mark.asyncio
    async def test_validation_failure_raises(self, make_adapter):
        adapter, _ = make_adapter()

        with pytest.raises(ToolCallFailed) as exc_info:
            await adapter.call_tool("get_customer", None)

        assert exc_info.value.code == "VALIDATION_ERROR"
        assert str(exc_info.value) == "Error: Invalid arguments for tool 'get_customer'"


class TestServerFactory:
    def test_handlers_registered(self, make_manager):
        db, _ = make_manager()

        server = create_rpc_server(Dispatcher(build_registry(), db))

        assert server.name == SERVER_NAME
        assert types.ListToolsRequest in server.request_handlers
        assert types.CallToolRequest in server.request_handlers

    def test_installed_sdk_provides_decorator_api(self):
        assert int(version("mcp").split(".")[0]) == 1
        assert callable(getattr(Server, "list_tools", None))
        assert callable(getattr(Server, "call_tool", None))
