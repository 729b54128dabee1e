"""
协议会话

MCP 协议状态机：跟踪初始化状态，按方法名分发到工具注册表，
并把内部失败映射为协议错误代码。

状态: Uninitialized -> Initialized（由成功的 initialize 触发，进程存活期间不会回退）
"""

import logging
import threading
import traceback
from dataclasses import dataclass
from typing import Dict, Any, Awaitable, Callable, Optional

from ..core.timeutils import utc_now_iso
from ..tools.registry import ToolRegistry, ToolNotFoundError
from .message_parser import (
    MCPError, MCPErrorCodes, MCPErrorObject, MCPRequest, RequestId
)
from .protocol_validator import (
    INITIALIZE_SCHEMA, TOOLS_CALL_SCHEMA, TOOLS_LIST_SCHEMA,
    MethodSchema, ProtocolValidator, TypedRequest
)

logger = logging.getLogger(__name__)

NOT_INITIALIZED_MESSAGE = "Server not initialized. Call initialize first."


@dataclass(frozen=True)
class MethodEntry:
    """分发表条目"""
    handler: Callable[[Optional[TypedRequest]], Awaitable[Any]]
    requires_initialization: bool
    schema: Optional[MethodSchema]


@dataclass(frozen=True)
class DispatchResult:
    """分发结果：要么是值，要么是错误对象"""
    request_id: RequestId
    result: Any = None
    error: Optional[MCPErrorObject] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProtocolSession:
    """协议会话"""

    def __init__(self, server_name: str, server_version: str,
                 tool_registry: Optional[ToolRegistry] = None,
                 protocol_version: str = "1.0.0",
                 include_traceback: bool = False):
        """
        初始化协议会话

        Args:
            server_name: 服务器名称
            server_version: 服务器版本
            tool_registry: 工具注册表
            protocol_version: initialize 响应中返回的协议版本
            include_traceback: 内部错误时是否在 error.data 中附带堆栈
        """
        self.server_name = server_name
        self.server_version = server_version
        self.protocol_version = protocol_version
        self.include_traceback = include_traceback
        self.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        self.validator = ProtocolValidator()

        self._initialized = False
        self._state_lock = threading.Lock()

        self._methods: Dict[str, MethodEntry] = {
            "initialize": MethodEntry(self._handle_initialize, False, INITIALIZE_SCHEMA),
            "ping": MethodEntry(self._handle_ping, False, None),
            "tools/list": MethodEntry(self._handle_tools_list, True, TOOLS_LIST_SCHEMA),
            "tools/call": MethodEntry(self._handle_tools_call, True, TOOLS_CALL_SCHEMA),
        }

    @property
    def supported_methods(self):
        return tuple(self._methods)

    def is_initialized(self) -> bool:
        """会话是否已完成握手"""
        with self._state_lock:
            return self._initialized

    def _mark_initialized(self) -> None:
        with self._state_lock:
            self._initialized = True

    async def dispatch(self, request: MCPRequest) -> DispatchResult:
        """
        分发请求，不会抛出异常

        Args:
            request: 已解析的请求

        Returns:
            成功结果或错误对象
        """
        logger.debug(f"处理 MCP 请求: method={request.method} id={request.id!r}")

        try:
            result = await self.handle_request(request)
            return DispatchResult(request.id, result=result)
        except Exception as e:
            error = self._to_error_object(e)
            logger.error(f"请求处理失败: method={request.method} "
                         f"code={error.code} message={error.message}")
            return DispatchResult(request.id, error=error)

    async def handle_request(self, request: MCPRequest) -> Any:
        """
        执行请求：查表 -> 前置条件 -> 参数校验 -> 执行

        Raises:
            MCPError: 方法不存在、未初始化或参数无效
        """
        entry = self._methods.get(request.method)
        if entry is None:
            raise MCPError(MCPErrorCodes.METHOD_NOT_FOUND, f"Method not found: {request.method}")

        # 前置条件先于参数校验
        if entry.requires_initialization and not self.is_initialized():
            raise MCPError(MCPErrorCodes.INVALID_REQUEST, NOT_INITIALIZED_MESSAGE)

        typed_request = None
        if entry.schema is not None:
            typed_request = self.validator.validate_request(request, entry.schema)

        return await entry.handler(typed_request)

    def _to_error_object(self, error: Exception) -> MCPErrorObject:
        """把异常映射为错误对象，保留已知的错误代码"""
        code = getattr(error, "code", None)
        if MCPErrorCodes.is_known(code):
            message = getattr(error, "message", None) or str(error)
            return MCPErrorObject(code=code, message=message, data=getattr(error, "data", None))

        logger.exception(f"未预期的内部错误: {error}")
        data = None
        if self.include_traceback:
            data = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return MCPErrorObject(
            code=MCPErrorCodes.INTERNAL_ERROR,
            message=str(error) or "Internal server error",
            data=data,
        )

    async def _handle_initialize(self, request: TypedRequest) -> Dict[str, Any]:
        params = request.params
        client_info = params.client_info.model_dump() if params.client_info else None
        logger.info(f"客户端初始化: protocolVersion={params.protocol_version} "
                    f"clientInfo={client_info}")

        self._mark_initialized()

        return {
            "protocolVersion": self.protocol_version,
            "serverInfo": {
                "name": self.server_name,
                "version": self.server_version
            },
            "capabilities": {
                "tools": {}
            }
        }

    async def _handle_ping(self, request: Optional[TypedRequest]) -> Dict[str, Any]:
        return {"status": "pong", "timestamp": utc_now_iso()}

    async def _handle_tools_list(self, request: TypedRequest) -> Dict[str, Any]:
        tools = self.tool_registry.list_capabilities()
        logger.debug(f"列出可用工具: {len(tools)} 个")
        return {"tools": [tool.to_dict() for tool in tools]}

    async def _handle_tools_call(self, request: TypedRequest) -> Any:
        params = request.params
        logger.info(f"请求调用工具: {params.name}")

        try:
            return await self.tool_registry.invoke(params.name, params.arguments or {})
        except ToolNotFoundError as e:
            raise MCPError(MCPErrorCodes.METHOD_NOT_FOUND, f"Tool not found: {params.name}") from e
