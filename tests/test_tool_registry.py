"""
工具注册表测试
"""

import threading

import pytest

from skyfi_mcp.tools import ToolDescriptor, ToolNotFoundError, ToolRegistry


class TestToolRegistry:

    def test_empty_by_default(self):
        registry = ToolRegistry()
        assert len(registry) == 0
        assert registry.list_capabilities() == []

    def test_register_and_describe(self):
        registry = ToolRegistry()
        descriptor = registry.register("search_archive", "Search imagery", lambda args: [])

        assert registry.has_tool("search_archive")
        assert descriptor.to_dict() == {
            "name": "search_archive",
            "description": "Search imagery",
            "inputSchema": {"type": "object", "properties": {}},
        }

    def test_decorator_uses_docstring_as_description(self):
        registry = ToolRegistry()

        @registry.tool("get_order")
        def get_order(arguments):
            """Fetch an order by id"""
            return arguments

        [descriptor] = registry.list_capabilities()
        assert isinstance(descriptor, ToolDescriptor)
        assert descriptor.description == "Fetch an order by id"
        assert get_order({"x": 1}) == {"x": 1}

    def test_reregistering_replaces_handler(self):
        registry = ToolRegistry()
        registry.register("t", "first", lambda args: 1)
        registry.register("t", "second", lambda args: 2)

        assert len(registry) == 1
        assert registry.list_capabilities()[0].description == "second"

    def test_unregister(self):
        registry = ToolRegistry()
        registry.register("t", "", lambda args: None)
        assert registry.unregister("t") is True
        assert registry.unregister("t") is False
        assert not registry.has_tool("t")

    @pytest.mark.asyncio
    async def test_invoke_async_handler(self):
        registry = ToolRegistry()

        async def handler(arguments):
            return {"received": arguments}

        registry.register("t", "", handler)
        assert await registry.invoke("t", {"a": 1}) == {"received": {"a": 1}}

    @pytest.mark.asyncio
    async def test_invoke_sync_handler_off_the_event_loop(self):
        registry = ToolRegistry()
        caller_thread = threading.get_ident()
        handler_threads = []

        def handler(arguments):
            handler_threads.append(threading.get_ident())
            return arguments["n"] * 2

        registry.register("double", "", handler)
        assert await registry.invoke("double", {"n": 21}) == 42
        assert handler_threads and handler_threads[0] != caller_thread

    @pytest.mark.asyncio
    async def test_invoke_unknown_tool(self):
        with pytest.raises(ToolNotFoundError) as exc_info:
            await ToolRegistry().invoke("missing", {})
        assert exc_info.value.name == "missing"
        assert str(exc_info.value) == "Tool not found: missing"
