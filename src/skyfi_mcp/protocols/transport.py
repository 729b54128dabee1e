"""
HTTP / SSE 传输层

提供 MCP 请求/响应端点 (POST /mcp)、SSE 推送端点 (GET /sse) 和健康检查端点，
并负责 CORS、请求ID、404 与兜底异常处理。
"""

import json
import logging
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.timeutils import utc_now_iso
from .message_parser import MessageParser, MCPError, MCPErrorCodes, MCPResponse
from .session import ProtocolSession
from .sse_handler import SSEHandler

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


class CORSHeadersMiddleware:
    """为所有响应添加宽松的 CORS 头，OPTIONS 预检请求直接返回 200"""

    def __init__(self, app: ASGIApp, allow_origin: str = "*"):
        self.app = app
        self.cors_headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
        }

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            response = Response(status_code=200, headers=self.cors_headers)
            await response(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in self.cors_headers.items():
                    headers[name] = value
            await send(message)

        await self.app(scope, receive, send_with_cors)


class RequestContextMiddleware:
    """为每个请求分配请求ID并记录访问日志"""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_headers = MutableHeaders(scope=scope)
        request_id = request_headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request_headers[REQUEST_ID_HEADER] = request_id

        client = scope.get("client")
        logger.info(f"收到请求: request_id={request_id} method={scope['method']} "
                    f"path={scope['path']} ip={client[0] if client else None}")

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)


class HTTPTransport:
    """HTTP / SSE 传输层"""

    def __init__(self, session: ProtocolSession, sse_handler: Optional[SSEHandler] = None,
                 cors_allow_origin: str = "*", lifespan: Any = None):
        """
        初始化传输层

        Args:
            session: 协议会话
            sse_handler: SSE 处理器
            cors_allow_origin: Access-Control-Allow-Origin 的取值
            lifespan: FastAPI lifespan 上下文
        """
        self.session = session
        self.sse_handler = sse_handler if sse_handler is not None else SSEHandler()
        self.message_parser = MessageParser()

        self.app = FastAPI(
            title=session.server_name,
            description="MCP JSON-RPC over HTTP with SSE notifications",
            version=session.server_version,
            lifespan=lifespan,
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )

        self._register_routes()
        self._register_exception_handlers()

        # 后添加的中间件在外层：请求ID先于 CORS 处理
        self.app.add_middleware(CORSHeadersMiddleware, allow_origin=cors_allow_origin)
        self.app.add_middleware(RequestContextMiddleware)

    def _register_routes(self) -> None:
        """注册路由"""

        @self.app.get("/health")
        async def health_check():
            """健康检查"""
            return {
                "status": "healthy",
                "name": self.session.server_name,
                "version": self.session.server_version,
                "timestamp": utc_now_iso()
            }

        @self.app.post("/mcp")
        async def mcp_message(request: Request):
            """MCP 请求/响应端点"""
            return await self.handle_mcp_request(request)

        @self.app.get("/sse")
        async def sse_connect(request: Request):
            """SSE 连接端点"""
            return EventSourceResponse(
                self.sse_handler.open_stream(),
                headers={"Cache-Control": "no-cache"},
                sep="\n",
            )

    def _register_exception_handlers(self) -> None:
        """注册 404 和兜底异常处理"""

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            if exc.status_code == 404:
                return JSONResponse(
                    status_code=404,
                    content={"error": "Not found", "path": request.url.path}
                )
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": exc.detail},
                headers=getattr(exc, "headers", None)
            )

        @self.app.exception_handler(Exception)
        async def unhandled_exception_handler(request: Request, exc: Exception):
            # 错误信息保留在响应中便于诊断，堆栈只写入日志
            logger.error(f"未处理的异常: path={request.url.path} error={exc}", exc_info=exc)
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "message": str(exc)}
            )

    async def handle_mcp_request(self, request: Request) -> Response:
        """
        处理一次 MCP 请求，总是返回且仅返回一个响应体

        Args:
            request: HTTP 请求

        Returns:
            200 成功信封 / 500 错误信封 / 400 请求体无法解析
        """
        request_id = request.headers.get(REQUEST_ID_HEADER)

        raw_body = await request.body()
        if not raw_body.strip():
            return self._bad_request("Request body is required")
        try:
            body = json.loads(raw_body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"请求体不是合法 JSON: request_id={request_id} error={e}")
            return self._bad_request("Request body must be valid JSON")

        try:
            mcp_request = self.message_parser.parse_decoded(body)
            result = await self.session.dispatch(mcp_request)
        except Exception as e:
            logger.error(f"MCP 请求失败: request_id={request_id} error={e}")
            code = getattr(e, "code", None)
            response = self.message_parser.create_error_response(
                self.message_parser.extract_request_id(body),
                code if MCPErrorCodes.is_known(code) else MCPErrorCodes.INTERNAL_ERROR,
                getattr(e, "message", None) or str(e) or "Internal server error",
                getattr(e, "data", None),
            )
            return self._envelope(response)

        if result.ok:
            logger.debug(f"MCP 请求成功: request_id={request_id} method={mcp_request.method}")
            response = self.message_parser.create_success_response(result.request_id, result.result)
        else:
            response = MCPResponse(id=result.request_id, error=result.error)
        return self._envelope(response)

    def _envelope(self, response: MCPResponse) -> Response:
        try:
            content = self.message_parser.serialize_message(response)
        except MCPError as e:
            logger.error(f"响应序列化失败: id={response.id!r} error={e.message}")
            # 无法序列化的ID退回占位ID
            response = self.message_parser.create_error_response(
                self.message_parser.extract_request_id({"id": response.id}), e.code, e.message
            )
            content = self.message_parser.serialize_message(response)

        return Response(
            content=content,
            status_code=500 if response.is_error else 200,
            media_type="application/json"
        )

    @staticmethod
    def _bad_request(message: str) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Bad request", "message": message}
        )

    def get_app(self) -> FastAPI:
        """获取 FastAPI 应用实例"""
        return self.app
