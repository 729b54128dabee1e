"""
测试公共夹具
"""

import os
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from skyfi_mcp.core.config_manager import ConfigManager
from skyfi_mcp.protocols.mcp_server import MCPServer
from skyfi_mcp.protocols.message_parser import MCPError, MCPErrorCodes
from skyfi_mcp.tools.registry import ToolRegistry


@pytest.fixture
def isolated_env(tmp_path, monkeypatch):
    """隔离工作目录、HOME 和 SKYFI_MCP_ 环境变量，避免读到本机配置"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for key in list(os.environ):
        if key.upper().startswith("SKYFI_MCP_"):
            monkeypatch.delenv(key)
    return tmp_path


@pytest.fixture
def config_manager(isolated_env):
    return ConfigManager()


@pytest.fixture
def tool_registry():
    registry = ToolRegistry()

    @registry.tool("echo", "Echo the arguments back",
                   {"type": "object", "properties": {"text": {"type": "string"}}})
    async def echo(arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {"echo": arguments}

    @registry.tool("area")
    def area(arguments: Dict[str, Any]) -> Dict[str, Any]:
        """Compute the area of a bounding box"""
        return {"area": arguments["width"] * arguments["height"]}

    @registry.tool("fail", "Always fails")
    def fail(arguments: Dict[str, Any]) -> None:
        raise RuntimeError("boom")

    @registry.tool("reject", "Rejects its arguments")
    async def reject(arguments: Dict[str, Any]) -> None:
        raise MCPError(MCPErrorCodes.INVALID_PARAMS, "width must be positive", {"field": "width"})

    @registry.tool("opaque", "Returns a value that cannot be serialized")
    async def opaque(arguments: Dict[str, Any]) -> Any:
        return {"value": object()}

    @registry.tool("nothing", "Returns null")
    async def nothing(arguments: Dict[str, Any]) -> None:
        return None

    return registry


@pytest.fixture
def mcp_server(config_manager, tool_registry):
    return MCPServer(config_manager, tool_registry)


@pytest.fixture
def client(mcp_server):
    return TestClient(mcp_server.get_app())


def rpc(client: TestClient, method: str, params: Any = None, request_id: Any = 1, **kwargs):
    """发送一条 JSON-RPC 请求"""
    payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        payload["params"] = params
    return client.post("/mcp", json=payload, **kwargs)


INITIALIZE_PARAMS = {
    "protocolVersion": "1.0.0",
    "capabilities": {},
    "clientInfo": {"name": "test-client", "version": "0.0.1"},
}
