"""
SkyFi MCP 主入口点

提供命令行接口启动 MCP 服务器。
"""

import logging
import os
import sys
from typing import Optional

import click
import uvicorn
from fastapi import FastAPI

from .core.config_manager import ConfigManager
from .core.logger import setup_logging
from .protocols.mcp_server import MCPServer

logger = logging.getLogger(__name__)

# 自动重载模式下，子进程通过此环境变量获得配置文件路径
CONFIG_PATH_ENV = "SKYFI_MCP_CONFIG_PATH"


class SkyFiMCPServer:
    """SkyFi MCP 服务器进程"""

    def __init__(self, config_path: Optional[str] = None, debug: bool = False):
        """
        初始化服务器

        Args:
            config_path: 配置文件路径
            debug: 是否启用调试模式
        """
        self.config_manager = ConfigManager(config_path)
        if debug:
            self.config_manager.set("server.debug", True)
        setup_logging(self.config_manager)
        self.mcp_server = MCPServer(self.config_manager)

    def run(self, host: Optional[str] = None, port: Optional[int] = None,
            reload: Optional[bool] = None) -> None:
        """运行服务器，SIGINT/SIGTERM 由 uvicorn 处理并优雅关闭"""
        server_config = self.config_manager.get_server_config()
        host = host or server_config.host
        port = port or server_config.port
        reload = server_config.reload if reload is None else reload
        log_level = self.config_manager.get_log_level().lower()

        logger.info(f"正在启动 {server_config.name} v{server_config.version}: "
                    f"http://{host}:{port} (环境: {server_config.environment})")

        if reload:
            # 重载模式需要以导入字符串方式加载应用
            if self.config_manager.config_path:
                os.environ[CONFIG_PATH_ENV] = str(self.config_manager.config_path)
            uvicorn.run(
                "skyfi_mcp.__main__:create_app",
                factory=True,
                host=host,
                port=port,
                reload=True,
                log_level=log_level,
            )
        else:
            uvicorn.run(
                self.mcp_server.get_app(),
                host=host,
                port=port,
                log_level=log_level,
            )

        logger.info("服务器已停止")


def create_app() -> FastAPI:
    """uvicorn 应用工厂"""
    return SkyFiMCPServer(os.environ.get(CONFIG_PATH_ENV)).mcp_server.get_app()


@click.group()
@click.option('--config', '-c', help='配置文件路径')
@click.option('--debug', '-d', is_flag=True, help='启用调试模式')
@click.pass_context
def cli(ctx, config, debug):
    """SkyFi MCP 命令行工具"""
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['debug'] = debug


@cli.command()
@click.option('--host', '-h', default=None, help='服务器主机地址')
@click.option('--port', '-p', default=None, type=int, help='服务器端口')
@click.option('--reload', is_flag=True, help='启用自动重载')
@click.pass_context
def serve(ctx, host, port, reload):
    """启动 MCP 服务器"""
    try:
        server = SkyFiMCPServer(ctx.obj.get('config'), ctx.obj.get('debug', False))
        server.run(host=host, port=port, reload=reload or None)
    except Exception as e:
        logger.error(f"服务器运行失败: {e}")
        sys.exit(1)


@cli.command()
@click.pass_context
def config_check(ctx):
    """检查配置文件"""
    config_path = ctx.obj.get('config')

    try:
        config_manager = ConfigManager(config_path)
        config = config_manager.get_config()

        click.echo("配置检查:")
        click.echo(f"  配置文件: {config_manager.loaded_from or '(默认配置)'}")
        click.echo(f"  服务器: {config.server.name} v{config.server.version}")
        click.echo(f"  监听地址: {config.server.host}:{config.server.port}")
        click.echo(f"  运行环境: {config.server.environment}")
        click.echo(f"  调试模式: {config.server.debug}")
        click.echo(f"  日志级别: {config_manager.get_log_level()}")
        click.echo(f"  SSE 保活间隔: {config.transport.keepalive_interval}秒")
        click.echo(f"  空闲清理: 每 {config.transport.cleanup_interval}秒, "
                   f"阈值 {config.transport.max_idle_minutes}分钟")
        click.echo(f"  SkyFi API: {config.skyfi.api_base_url} "
                   f"(密钥{'已' if config.skyfi.api_key else '未'}配置)")

        click.echo("配置有效 ✓")

    except Exception as e:
        logger.error(f"配置检查失败: {e}")
        sys.exit(1)


@cli.command()
def version():
    """显示版本信息"""
    from . import __version__, __author__, __description__

    click.echo(f"SkyFi MCP v{__version__}")
    click.echo(f"作者: {__author__}")
    click.echo(f"描述: {__description__}")


def main():
    """主入口点"""
    try:
        cli()
    except Exception as e:
        logger.error(f"程序异常: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
