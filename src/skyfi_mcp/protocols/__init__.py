"""
协议模块

实现 MCP (Model Context Protocol) JSON-RPC 2.0 协议和 SSE (Server-Sent Events) 支持。
包含：
- MCP 服务器组装
- 协议会话状态机
- HTTP / SSE 传输层
- 消息解析和验证
"""

from .mcp_server import MCPServer, create_server
from .session import ProtocolSession
from .sse_handler import SSEHandler
from .transport import HTTPTransport
from .message_parser import MessageParser, MCPError, MCPErrorCodes
from .protocol_validator import ProtocolValidator

__all__ = [
    "MCPServer",
    "create_server",
    "ProtocolSession",
    "SSEHandler",
    "HTTPTransport",
    "MessageParser",
    "MCPError",
    "MCPErrorCodes",
    "ProtocolValidator"
]
