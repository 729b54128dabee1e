"""
日志配置

为进程安装根日志处理器（标准错误输出，可选文件），支持文本和 JSON 行两种格式。
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from .config_manager import ConfigManager

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# 由 setup_logging 安装的处理器，重复调用时先移除
_installed_handlers = []


class ServiceContextFilter(logging.Filter):
    """为每条日志记录标注服务名称和版本"""

    def __init__(self, service: str, version: str):
        super().__init__()
        self.service = service
        self.version = version

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service
        record.version = self.version
        return True


class JSONFormatter(logging.Formatter):
    """单行 JSON 日志格式"""

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": getattr(record, "service", None),
            "version": getattr(record, "version", None),
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False, default=str)


def setup_logging(config_manager: ConfigManager, level: Optional[str] = None) -> logging.Logger:
    """
    根据配置安装根日志处理器

    Args:
        config_manager: 配置管理器
        level: 覆盖配置中的日志级别

    Returns:
        根日志记录器
    """
    config = config_manager.get_config()
    log_level = getattr(logging, (level or config_manager.get_log_level()).upper(), logging.INFO)

    formatter: logging.Formatter
    if config.logging.json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    context_filter = ServiceContextFilter(config.server.name, config.server.version)

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.logging.file:
        handlers.append(logging.FileHandler(config.logging.file, encoding="utf-8"))

    root_logger = logging.getLogger()
    for handler in _installed_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)
        root_logger.addHandler(handler)
        _installed_handlers.append(handler)

    root_logger.setLevel(log_level)
    sys.excepthook = _log_uncaught_exception

    return root_logger


def _log_uncaught_exception(exc_type, exc_value, exc_traceback):
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger("skyfi_mcp").critical(
        "未捕获的异常", exc_info=(exc_type, exc_value, exc_traceback)
    )
