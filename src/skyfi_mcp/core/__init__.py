"""
核心模块

包含系统的核心功能组件：
- 配置管理
- 日志配置
"""

from .config_manager import ConfigManager, AppConfig
from .logger import setup_logging

__all__ = [
    "ConfigManager",
    "AppConfig",
    "setup_logging"
]
