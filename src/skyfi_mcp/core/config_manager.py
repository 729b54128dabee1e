"""
配置管理器

负责加载、验证和管理系统配置。
配置来源优先级（从低到高）：默认值 -> 配置文件 (YAML/JSON) -> 环境变量。
"""

import json
import os
import logging
from typing import Dict, Any, Optional, Union, Literal, Tuple, Type
from pathlib import Path

import yaml
from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)


class ServerConfig(BaseModel):
    """服务器配置"""
    name: str = "skyfi-mcp-server"
    version: str = "0.1.0"
    protocol_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False
    reload: bool = False
    environment: Literal["development", "production", "test"] = "development"


class LoggingConfig(BaseModel):
    """日志配置"""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_format: bool = False
    file: Optional[str] = None


class TransportConfig(BaseModel):
    """传输层配置"""
    keepalive_interval: float = 30.0
    cleanup_interval: float = 300.0
    max_idle_minutes: float = 30.0
    cors_allow_origin: str = "*"
    include_traceback: bool = False


class SkyFiConfig(BaseModel):
    """SkyFi API 配置，供工具处理函数使用"""
    api_key: Optional[str] = None
    api_base_url: str = "https://api.skyfi.com/v1"


class AppConfig(BaseSettings):
    """应用配置"""
    model_config = SettingsConfigDict(
        env_prefix="SKYFI_MCP_",
        env_nested_delimiter="__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    server: ServerConfig = ServerConfig()
    logging: LoggingConfig = LoggingConfig()
    transport: TransportConfig = TransportConfig()
    skyfi: SkyFiConfig = SkyFiConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # 环境变量覆盖配置文件（配置文件内容通过 init 参数传入）
        return env_settings, dotenv_settings, init_settings, file_secret_settings


class ConfigManager:
    """配置管理器"""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self._config: Optional[AppConfig] = None
        self._raw_config: Dict[str, Any] = {}
        self._loaded_from: Optional[Path] = None

        # 默认配置文件搜索路径
        self.default_config_paths = [
            "config/config.yaml",
            "config/config.yml",
            "config/config.json",
            os.path.expanduser("~/.skyfi_mcp/config.yaml"),
            os.path.expanduser("~/.skyfi_mcp/config.json"),
        ]

        self.load_config()

    def load_config(self) -> None:
        """加载配置"""
        try:
            # 1. 加载文件配置
            self._load_file_config()

            # 2. 验证并创建配置对象（环境变量由 pydantic-settings 处理）
            self._validate_config()

            logger.info("配置加载成功")

        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"配置加载失败: {e}")
            # 使用默认配置
            self._raw_config = {}
            self._loaded_from = None
            self._config = AppConfig()
            logger.warning("使用默认配置")

    def _load_file_config(self) -> None:
        """加载文件配置"""
        config_file = self._find_config_file()

        if not config_file:
            logger.debug("未找到配置文件，将使用默认配置")
            return

        with open(config_file, 'r', encoding='utf-8') as f:
            if config_file.suffix.lower() in ['.yaml', '.yml']:
                raw_config = yaml.safe_load(f)
            else:
                raw_config = json.load(f)

        if raw_config is None:
            raw_config = {}
        if not isinstance(raw_config, dict):
            raise ValueError(f"配置文件顶层必须是对象: {config_file}")

        self._raw_config = raw_config
        self._loaded_from = config_file
        logger.info(f"从文件加载配置: {config_file}")

    def _find_config_file(self) -> Optional[Path]:
        """查找配置文件"""
        # 如果指定了配置文件路径
        if self.config_path:
            config_path = Path(self.config_path)
            if config_path.exists():
                return config_path
            raise FileNotFoundError(f"指定的配置文件不存在: {config_path}")

        # 搜索默认路径
        for path_str in self.default_config_paths:
            path = Path(path_str)
            if path.exists():
                return path

        return None

    def _validate_config(self) -> None:
        """验证配置"""
        try:
            self._config = AppConfig(**self._raw_config)
        except ValidationError as e:
            logger.error(f"配置验证失败: {e}")
            raise

    def get_config(self) -> AppConfig:
        """获取配置对象"""
        if self._config is None:
            raise RuntimeError("配置未初始化")
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """
        获取配置值

        Args:
            key: 配置键，支持点号分隔的嵌套键
            default: 默认值

        Returns:
            配置值
        """
        value: Any = self.get_config()
        for k in key.split('.'):
            if not hasattr(value, k):
                return default
            value = getattr(value, k)
        return value

    def set(self, key: str, value: Any) -> None:
        """
        设置配置值（运行时，不持久化）

        Args:
            key: 配置键
            value: 配置值
        """
        keys = key.split('.')
        config_dict = self.get_config().model_dump()

        # 导航到正确的嵌套位置
        current = config_dict
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value

        try:
            self._config = AppConfig.model_validate(config_dict)
            logger.info(f"运行时配置已更新: {key} = {value}")
        except ValidationError as e:
            logger.error(f"配置更新失败: {e}")
            raise

    def reload(self) -> None:
        """重新加载配置"""
        logger.info("重新加载配置...")
        self._raw_config = {}
        self._config = None
        self._loaded_from = None
        self.load_config()

    @property
    def loaded_from(self) -> Optional[Path]:
        """实际加载的配置文件"""
        return self._loaded_from

    def get_server_config(self) -> ServerConfig:
        """获取服务器配置"""
        return self.get_config().server

    def get_logging_config(self) -> LoggingConfig:
        """获取日志配置"""
        return self.get_config().logging

    def get_transport_config(self) -> TransportConfig:
        """获取传输层配置"""
        return self.get_config().transport

    def get_skyfi_config(self) -> SkyFiConfig:
        """获取 SkyFi API 配置"""
        return self.get_config().skyfi

    def is_debug_mode(self) -> bool:
        """是否为调试模式"""
        return self.get_config().server.debug

    def get_log_level(self) -> str:
        """获取日志级别"""
        return "DEBUG" if self.is_debug_mode() else self.get_config().logging.level

    def __str__(self) -> str:
        if self._config:
            return f"ConfigManager(server={self._config.server.host}:{self._config.server.port})"
        return "ConfigManager(未初始化)"

    def __repr__(self) -> str:
        return self.__str__()
