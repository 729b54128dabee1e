"""
SkyFi MCP 服务器

基于 HTTP 的 Model Context Protocol (MCP) 服务器：通过 POST /mcp 处理 JSON-RPC 2.0 请求，
通过 GET /sse 推送 Server-Sent Events 通知。
"""

__version__ = "0.1.0"
__author__ = "SkyFi MCP Team"
__license__ = "MIT"
__description__ = "SkyFi 地理空间数据 MCP 服务器"

# 导出主要组件
from .core.config_manager import ConfigManager
from .protocols.mcp_server import MCPServer, create_server
from .tools.registry import ToolRegistry

# 版本信息
VERSION_INFO = {
    "major": 0,
    "minor": 1,
    "patch": 0,
    "pre_release": None,
    "build": None
}


def get_version():
    """获取版本字符串"""
    version = f"{VERSION_INFO['major']}.{VERSION_INFO['minor']}.{VERSION_INFO['patch']}"
    if VERSION_INFO['pre_release']:
        version += f"-{VERSION_INFO['pre_release']}"
    if VERSION_INFO['build']:
        version += f"+{VERSION_INFO['build']}"
    return version


# 设置模块级别的日志
import logging
logging.getLogger(__name__).addHandler(logging.NullHandler())

# 导出所有公共接口
__all__ = [
    "__version__",
    "__author__",
    "__license__",
    "__description__",
    "VERSION_INFO",
    "ConfigManager",
    "MCPServer",
    "ToolRegistry",
    "create_server",
    "get_version"
]
