"""
工具注册表

会话通过此接口枚举和调用工具。具体的业务工具（数据搜索、下单、监控）
在注册表之外实现并注册到这里。
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Callable

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Any]


class ToolNotFoundError(LookupError):
    """请求的工具不存在"""

    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


@dataclass
class ToolDescriptor:
    """工具描述"""
    name: str
    description: str
    input_schema: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolRegistry:
    """工具注册表"""

    def __init__(self):
        self._tools: Dict[str, ToolDescriptor] = {}
        self._handlers: Dict[str, ToolHandler] = {}
        self._lock = threading.RLock()

    def register(self, name: str, description: str, handler: ToolHandler,
                 input_schema: Optional[Dict[str, Any]] = None) -> ToolDescriptor:
        """
        注册工具

        Args:
            name: 工具名称
            description: 工具描述
            handler: 处理函数，接收参数字典，可以是同步或异步函数
            input_schema: 参数的 JSON Schema

        Returns:
            工具描述
        """
        descriptor = ToolDescriptor(name=name, description=description)
        if input_schema is not None:
            descriptor.input_schema = input_schema

        with self._lock:
            if name in self._tools:
                logger.warning(f"覆盖已注册的工具: {name}")
            self._tools[name] = descriptor
            self._handlers[name] = handler

        logger.info(f"注册工具: {name}")
        return descriptor

    def tool(self, name: str, description: str = "",
             input_schema: Optional[Dict[str, Any]] = None) -> Callable[[ToolHandler], ToolHandler]:
        """以装饰器形式注册工具"""
        def decorator(handler: ToolHandler) -> ToolHandler:
            self.register(name, description or (handler.__doc__ or "").strip(),
                          handler, input_schema)
            return handler
        return decorator

    def unregister(self, name: str) -> bool:
        """移除工具"""
        with self._lock:
            removed = self._tools.pop(name, None) is not None
            self._handlers.pop(name, None)
        if removed:
            logger.info(f"移除工具: {name}")
        return removed

    def list_capabilities(self) -> List[ToolDescriptor]:
        """列出所有工具"""
        with self._lock:
            return list(self._tools.values())

    def has_tool(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    async def invoke(self, name: str, arguments: Dict[str, Any]) -> Any:
        """
        调用工具

        Args:
            name: 工具名称
            arguments: 调用参数

        Returns:
            工具返回值

        Raises:
            ToolNotFoundError: 工具不存在
        """
        with self._lock:
            handler = self._handlers.get(name)
        if handler is None:
            raise ToolNotFoundError(name)

        if inspect.iscoroutinefunction(handler):
            return await handler(arguments)

        # 同步处理函数在线程中执行
        return await asyncio.to_thread(handler, arguments)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)
