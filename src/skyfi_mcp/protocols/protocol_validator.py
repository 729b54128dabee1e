"""
协议验证器

按方法校验 MCP 请求参数，并将通用请求转换为带类型的请求。
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Type

import jsonschema
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .message_parser import MCPError, MCPErrorCodes, MCPRequest, RequestId

logger = logging.getLogger(__name__)


class ClientInfo(BaseModel):
    """客户端信息"""
    name: str
    version: str


class InitializeParams(BaseModel):
    """initialize 参数"""
    model_config = ConfigDict(populate_by_name=True)

    protocol_version: str = Field(alias="protocolVersion")
    capabilities: Optional[Dict[str, Any]] = None
    client_info: Optional[ClientInfo] = Field(default=None, alias="clientInfo")


class ToolsListParams(BaseModel):
    """tools/list 参数"""
    cursor: Optional[str] = None


class ToolsCallParams(BaseModel):
    """tools/call 参数"""
    name: str
    arguments: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class MethodSchema:
    """方法模式描述"""
    method: str
    params_schema: Dict[str, Any]
    params_model: Type[BaseModel]
    params_required: bool = True
    description: str = ""
    validator: jsonschema.Draft7Validator = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "validator", jsonschema.Draft7Validator(self.params_schema))


@dataclass(frozen=True)
class TypedRequest:
    """通过方法级校验的请求"""
    id: RequestId
    method: str
    params: BaseModel


INITIALIZE_SCHEMA = MethodSchema(
    method="initialize",
    params_schema={
        "type": "object",
        "properties": {
            "protocolVersion": {"type": "string"},
            "capabilities": {"type": "object"},
            "clientInfo": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "version": {"type": "string"}
                },
                "required": ["name", "version"]
            }
        },
        "required": ["protocolVersion"]
    },
    params_model=InitializeParams,
    description="握手，协商协议版本",
)

TOOLS_LIST_SCHEMA = MethodSchema(
    method="tools/list",
    params_schema={
        "type": "object",
        "properties": {
            "cursor": {"type": "string"}
        }
    },
    params_model=ToolsListParams,
    params_required=False,
    description="列出可用工具",
)

TOOLS_CALL_SCHEMA = MethodSchema(
    method="tools/call",
    params_schema={
        "type": "object",
        "properties": {
            "name": {"type": "string"},
            "arguments": {"type": "object"}
        },
        "required": ["name"]
    },
    params_model=ToolsCallParams,
    description="按名称调用工具",
)

METHOD_SCHEMAS: Dict[str, MethodSchema] = {
    schema.method: schema
    for schema in (INITIALIZE_SCHEMA, TOOLS_LIST_SCHEMA, TOOLS_CALL_SCHEMA)
}


class ProtocolValidator:
    """协议验证器"""

    def __init__(self, schemas: Optional[Dict[str, MethodSchema]] = None):
        """
        初始化协议验证器

        Args:
            schemas: 方法模式表，默认使用内置模式
        """
        self.schemas = dict(schemas if schemas is not None else METHOD_SCHEMAS)
        logger.debug("协议验证器初始化完成")

    def validate_request(self, request: MCPRequest, schema: MethodSchema) -> TypedRequest:
        """
        按方法模式校验请求

        Args:
            request: 已通过信封校验的请求
            schema: 方法模式

        Returns:
            带类型的请求

        Raises:
            MCPError: 方法不匹配或参数不符合模式（INVALID_REQUEST），
                data 中列出所有违反的约束
        """
        violations = self._collect_violations(request, schema)
        if violations:
            logger.error(f"请求验证失败 {request.method}: {violations}")
            raise MCPError(MCPErrorCodes.INVALID_REQUEST, "Invalid request format", violations)

        try:
            params = schema.params_model.model_validate(request.params or {})
        except ValidationError as e:
            details = [f"params.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                       for err in e.errors()]
            raise MCPError(MCPErrorCodes.INVALID_REQUEST, "Invalid request format", details) from e

        return TypedRequest(id=request.id, method=request.method, params=params)

    def _collect_violations(self, request: MCPRequest, schema: MethodSchema) -> List[str]:
        violations = []

        if request.method != schema.method:
            violations.append(
                f"method: expected '{schema.method}', got '{request.method}'"
            )

        if request.params is None:
            if schema.params_required:
                violations.append("params: required")
            return violations

        for error in sorted(schema.validator.iter_errors(request.params),
                            key=lambda e: list(e.path)):
            location = ".".join(["params"] + [str(p) for p in error.path])
            violations.append(f"{location}: {error.message}")

        return violations

    def get_schema(self, method: str) -> Optional[MethodSchema]:
        """获取方法模式"""
        return self.schemas.get(method)

    def get_supported_methods(self) -> List[str]:
        """获取有模式定义的方法列表"""
        return list(self.schemas)
