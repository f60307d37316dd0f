"""LoggingMiddleware

每个请求绑定 request_id / 调用方 / 时区到 structlog contextvars，
并记录一条带耗时的完成日志。上游已带 X-Request-ID 时沿用，便于跨服务串联。
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

# 上游 request_id 的最大长度，超出则重新生成
_MAX_REQUEST_ID_LENGTH = 128


def resolve_request_id(incoming: str | None) -> str:
    """沿用上游 request_id；缺失、为空或过长时生成新的 uuid4 hex"""
    if incoming:
        incoming = incoming.strip()
        if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
            return incoming
    return uuid.uuid4().hex


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            caller_id=request.headers.get("x-user-id"),
            timezone=request.headers.get("x-timezone"),
        )

        log = structlog.get_logger()
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        if response.status_code >= 500:
            await log.awarning(
                "request_completed",
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )
        else:
            await log.ainfo(
                "request_completed",
                status_code=response.status_code,
                duration_ms=elapsed_ms,
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
