"""
消息解析器

负责解析和验证 MCP (JSON-RPC 2.0) 协议消息的通用信封，
并构建、序列化响应消息。方法级参数校验见 protocol_validator。
"""

import json
import logging
import math
from typing import Dict, Any, List, Optional, Union

import jsonschema
from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# 请求ID无法恢复时使用的占位ID
SENTINEL_ID = 0

RequestId = Union[str, int, float]


class MCPErrorCodes:
    """MCP 错误代码"""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    ALL = (PARSE_ERROR, INVALID_REQUEST, METHOD_NOT_FOUND,
           INVALID_PARAMS, INTERNAL_ERROR)

    @classmethod
    def is_known(cls, code: Any) -> bool:
        """检查是否为已知的错误代码"""
        return isinstance(code, int) and not isinstance(code, bool) and code in cls.ALL


class MCPErrorObject(BaseModel):
    """错误对象"""
    model_config = ConfigDict(frozen=True)

    code: int
    message: str
    data: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        error = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class MCPError(Exception):
    """带有协议错误代码的异常"""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_error_object(self) -> MCPErrorObject:
        return MCPErrorObject(code=self.code, message=self.message, data=self.data)

    def __repr__(self) -> str:
        return f"MCPError(code={self.code}, message={self.message!r})"


class MCPRequest(BaseModel):
    """MCP 请求消息（解析后不可变）"""
    model_config = ConfigDict(frozen=True)

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId
    method: str
    params: Optional[Any] = None


class MCPResponse(BaseModel):
    """MCP 响应消息，result 与 error 有且仅有一个"""
    model_config = ConfigDict(frozen=True)

    jsonrpc: str = JSONRPC_VERSION
    id: RequestId
    result: Optional[Any] = None
    error: Optional[MCPErrorObject] = None

    @model_validator(mode="after")
    def _check_result_xor_error(self) -> "MCPResponse":
        if self.result is not None and self.error is not None:
            raise ValueError("result 和 error 不能同时存在")
        return self

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        """转换为线上格式；成功响应即使 result 为 null 也保留 result 字段"""
        message: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        else:
            message["result"] = self.result
        return message


# 通用信封模式；params 在此阶段不做校验
REQUEST_ENVELOPE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "jsonrpc": {"type": "string", "const": JSONRPC_VERSION},
        "id": {"type": ["string", "number"]},
        "method": {"type": "string", "minLength": 1},
    },
    "required": ["jsonrpc", "id", "method"],
}

RESPONSE_ENVELOPE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "jsonrpc": {"type": "string", "const": JSONRPC_VERSION},
        "id": {"type": ["string", "number"]},
        "result": {},
        "error": {
            "type": "object",
            "properties": {
                "code": {"type": "integer"},
                "message": {"type": "string"},
                "data": {}
            },
            "required": ["code", "message"]
        }
    },
    "required": ["jsonrpc", "id"],
    "oneOf": [
        {"required": ["result"], "not": {"required": ["error"]}},
        {"required": ["error"], "not": {"required": ["result"]}}
    ]
}


def _describe_errors(validator: jsonschema.Draft7Validator,
                     instance: Any) -> List[str]:
    """收集所有违反的约束，按出现位置排序"""
    violations = []
    for error in sorted(validator.iter_errors(instance), key=lambda e: list(e.path)):
        location = ".".join(str(p) for p in error.path)
        violations.append(f"{location}: {error.message}" if location else error.message)

    # JSON Schema 的 number 类型接受 inf/nan，而它们无法写回 JSON
    request_id = instance.get("id") if isinstance(instance, dict) else None
    if isinstance(request_id, float) and not math.isfinite(request_id):
        violations.append("id: must be a finite number")
    return violations


def is_valid_request_id(value: Any) -> bool:
    """请求ID必须是字符串或有限数值（布尔值除外）"""
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (str, int))


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


class MessageParser:
    """消息解析器"""

    def __init__(self):
        """初始化消息解析器"""
        self._request_validator = jsonschema.Draft7Validator(REQUEST_ENVELOPE_SCHEMA)
        self._response_validator = jsonschema.Draft7Validator(RESPONSE_ENVELOPE_SCHEMA)
        logger.debug("消息解析器初始化完成")

    def decode(self, raw_message: Union[str, bytes, bytearray]) -> Any:
        """
        把 JSON 文本解码为对象，拒绝 NaN/Infinity 字面量

        Raises:
            MCPError: 文本不是合法 JSON（PARSE_ERROR）
        """
        try:
            return json.loads(raw_message, parse_constant=_reject_constant)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"JSON 解析失败: {e}")
            raise MCPError(
                MCPErrorCodes.PARSE_ERROR,
                "Failed to parse JSON-RPC message",
                str(e)
            ) from e

    def _decode(self, raw_message: Union[str, bytes, Dict[str, Any]]) -> Any:
        if isinstance(raw_message, (str, bytes, bytearray)):
            return self.decode(raw_message)
        return raw_message

    def parse_message(self, raw_message: Union[str, bytes, Dict[str, Any]]) -> MCPRequest:
        """
        解析请求消息

        Args:
            raw_message: 原始消息（JSON 文本或已解码的对象）

        Returns:
            解析后的请求对象

        Raises:
            MCPError: 文本不是合法 JSON，或信封字段缺失/类型错误（PARSE_ERROR）
        """
        return self.parse_decoded(self._decode(raw_message))

    def parse_decoded(self, message_dict: Any) -> MCPRequest:
        """
        校验已解码的请求体，不再做任何 JSON 解码；字符串等非对象值按信封错误处理

        Raises:
            MCPError: 信封字段缺失/类型错误（PARSE_ERROR）
        """
        violations = _describe_errors(self._request_validator, message_dict)
        if violations:
            logger.error(f"消息信封验证失败: {violations}")
            raise MCPError(
                MCPErrorCodes.PARSE_ERROR,
                "Invalid JSON-RPC envelope",
                violations
            )

        try:
            message = MCPRequest(
                jsonrpc=message_dict["jsonrpc"],
                id=message_dict["id"],
                method=message_dict["method"],
                params=message_dict.get("params"),
            )
        except ValidationError as e:
            raise MCPError(
                MCPErrorCodes.PARSE_ERROR,
                "Invalid JSON-RPC envelope",
                [err["msg"] for err in e.errors()]
            ) from e

        logger.debug(f"解析消息成功: {message.method}")
        return message

    def parse_response(self, raw_message: Union[str, bytes, Dict[str, Any]]) -> MCPResponse:
        """
        解析响应消息（仅校验通用信封）

        Args:
            raw_message: 原始响应

        Returns:
            响应对象
        """
        message_dict = self._decode(raw_message)

        violations = _describe_errors(self._response_validator, message_dict)
        if violations:
            raise MCPError(
                MCPErrorCodes.PARSE_ERROR,
                "Invalid JSON-RPC response envelope",
                violations
            )

        error = message_dict.get("error")
        return MCPResponse(
            id=message_dict["id"],
            result=message_dict.get("result"),
            error=MCPErrorObject(**error) if error is not None else None,
        )

    def create_success_response(self, request_id: RequestId, result: Any) -> MCPResponse:
        """创建成功响应"""
        return MCPResponse(id=request_id, result=result)

    def create_error_response(self, request_id: Optional[RequestId],
                              error_code: int, error_message: str,
                              error_data: Optional[Any] = None) -> MCPResponse:
        """
        创建错误响应

        Args:
            request_id: 请求ID，None 时使用占位ID
            error_code: 错误代码
            error_message: 错误消息
            error_data: 错误数据

        Returns:
            错误响应消息
        """
        return MCPResponse(
            id=SENTINEL_ID if request_id is None else request_id,
            error=MCPErrorObject(code=error_code, message=error_message, data=error_data),
        )

    def serialize_message(self, message: MCPResponse) -> str:
        """
        序列化响应消息

        Args:
            message: 响应对象

        Returns:
            紧凑的 JSON 字符串
        """
        try:
            return json.dumps(message.to_dict(), ensure_ascii=False,
                              separators=(',', ':'), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise MCPError(
                MCPErrorCodes.INTERNAL_ERROR,
                f"Failed to serialize response: {e}"
            ) from e

    @staticmethod
    def extract_request_id(body: Any) -> Optional[RequestId]:
        """
        从原始请求体中尽力恢复请求ID，失败时返回 None，绝不抛出异常

        Args:
            body: 已解码的请求体

        Returns:
            请求ID 或 None
        """
        if not isinstance(body, dict):
            return None
        request_id = body.get("id")
        return request_id if is_valid_request_id(request_id) else None
