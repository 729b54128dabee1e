"""
工具模块

提供会话所依赖的工具注册表接口。
"""

from .registry import ToolRegistry, ToolDescriptor, ToolNotFoundError

__all__ = [
    "ToolRegistry",
    "ToolDescriptor",
    "ToolNotFoundError"
]
