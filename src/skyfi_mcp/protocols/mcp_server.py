"""
MCP 服务器实现

组装协议会话、SSE 处理器和 HTTP 传输层，并负责后台清理任务的生命周期。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..core.config_manager import ConfigManager
from ..tools.registry import ToolRegistry
from .session import ProtocolSession
from .sse_handler import SSEHandler
from .transport import HTTPTransport

logger = logging.getLogger(__name__)


class MCPServer:
    """MCP 服务器"""

    def __init__(self, config_manager: ConfigManager,
                 tool_registry: Optional[ToolRegistry] = None):
        """
        初始化 MCP 服务器

        Args:
            config_manager: 配置管理器
            tool_registry: 工具注册表，默认为空注册表
        """
        self.config_manager = config_manager
        self.config = config_manager.get_config()
        transport_config = self.config.transport

        # 初始化组件
        self.tool_registry = tool_registry if tool_registry is not None else ToolRegistry()
        self.session = ProtocolSession(
            server_name=self.config.server.name,
            server_version=self.config.server.version,
            tool_registry=self.tool_registry,
            protocol_version=self.config.server.protocol_version,
            include_traceback=transport_config.include_traceback,
        )
        self.sse_handler = SSEHandler(keepalive_interval=transport_config.keepalive_interval)
        self.transport = HTTPTransport(
            self.session,
            self.sse_handler,
            cors_allow_origin=transport_config.cors_allow_origin,
            lifespan=self._lifespan,
        )

        self._cleanup_task: Optional[asyncio.Task] = None

        logger.info(f"MCP 服务器初始化完成: {self.config.server.name} "
                    f"v{self.config.server.version}")

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.start()
        try:
            yield
        finally:
            await self.shutdown()

    async def start(self) -> None:
        """启动后台清理任务"""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())
        logger.info("MCP 服务器已启动")

    async def shutdown(self) -> None:
        """停止后台任务并关闭所有 SSE 连接"""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        closed = self.sse_handler.close_all()
        logger.info(f"MCP 服务器已停止，关闭了 {closed} 个 SSE 连接")

    async def _cleanup_loop(self) -> None:
        """周期性清理空闲的 SSE 客户端"""
        transport_config = self.config.transport
        while True:
            await asyncio.sleep(transport_config.cleanup_interval)
            try:
                self.sse_handler.cleanup_inactive_clients(transport_config.max_idle_minutes)
            except Exception as e:
                logger.error(f"清理 SSE 客户端失败: {e}")

    def is_initialized(self) -> bool:
        """协议会话是否已完成握手"""
        return self.session.is_initialized()

    def get_app(self) -> FastAPI:
        """获取 FastAPI 应用实例"""
        return self.transport.get_app()

    def get_transport(self) -> HTTPTransport:
        return self.transport

    def get_session(self) -> ProtocolSession:
        return self.session

    def get_sse_handler(self) -> SSEHandler:
        """获取 SSE 处理器"""
        return self.sse_handler


def create_server(config_manager: ConfigManager,
                  tool_registry: Optional[ToolRegistry] = None) -> MCPServer:
    """创建 MCP 服务器实例"""
    return MCPServer(config_manager, tool_registry)
