"""
日志配置测试
"""

import json
import logging
import sys

import pytest

from skyfi_mcp.core import logger as logger_module
from skyfi_mcp.core.logger import JSONFormatter, setup_logging


@pytest.fixture
def restore_logging(monkeypatch):
    root = logging.getLogger()
    level = root.level
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    yield
    for handler in logger_module._installed_handlers:
        root.removeHandler(handler)
        handler.close()
    logger_module._installed_handlers.clear()
    root.setLevel(level)


def make_record(message="hello"):
    return logging.LogRecord("skyfi_mcp.test", logging.INFO, __file__, 1, message, None, None)


def test_text_format(config_manager, restore_logging):
    setup_logging(config_manager)

    [handler] = logger_module._installed_handlers
    record = make_record()
    handler.filter(record)

    assert record.service == "skyfi-mcp-server"
    assert record.version == "0.1.0"
    assert handler.formatter.format(record).endswith("skyfi_mcp.test - INFO - hello")
    assert logging.getLogger().level == logging.INFO
    assert sys.excepthook is logger_module._log_uncaught_exception


def test_json_lines(config_manager, restore_logging):
    config_manager.set("logging.json_format", True)
    setup_logging(config_manager)

    [handler] = logger_module._installed_handlers
    assert isinstance(handler.formatter, JSONFormatter)

    record = make_record("订单已创建")
    handler.filter(record)
    line = json.loads(handler.formatter.format(record))

    assert line["message"] == "订单已创建"
    assert line["level"] == "INFO"
    assert line["service"] == "skyfi-mcp-server"


def test_file_handler_and_level_override(config_manager, restore_logging, isolated_env):
    log_file = isolated_env / "server.log"
    config_manager.set("logging.file", str(log_file))

    setup_logging(config_manager, level="warning")

    assert len(logger_module._installed_handlers) == 2
    assert logging.getLogger().level == logging.WARNING
    logging.getLogger("skyfi_mcp.test").warning("written")
    for handler in logger_module._installed_handlers:
        handler.flush()
    assert "written" in log_file.read_text(encoding="utf-8")


def test_repeated_setup_replaces_handlers(config_manager, restore_logging):
    setup_logging(config_manager)
    setup_logging(config_manager)
    assert len(logger_module._installed_handlers) == 1


def test_debug_mode_lowers_level(config_manager, restore_logging):
    config_manager.set("server.debug", True)
    setup_logging(config_manager)
    assert logging.getLogger().level == logging.DEBUG
