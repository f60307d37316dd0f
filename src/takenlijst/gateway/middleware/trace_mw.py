"""TraceMiddleware

为任务 / 系列操作绑定 trace_id，使同一实体的日志可以串联。
trace_id 从路径参数中的实体 ID 生成。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# 路径段 -> trace 前缀
_ENTITY_SEGMENTS = {"tasks": "task", "series": "series"}


def extract_trace_id(path: str) -> str | None:
    """从 /api/tasks/{id}[/...] 或 /api/series/{id}[/...] 提取 trace_id"""
    parts = [p for p in path.split("/") if p]
    for i, part in enumerate(parts):
        prefix = _ENTITY_SEGMENTS.get(part)
        if prefix is not None and i + 1 < len(parts):
            return f"trace-{prefix}-{parts[i + 1]}"
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """实体级追踪中间件 -- 为任务 / 系列操作绑定 trace_id"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        trace_id = extract_trace_id(request.url.path)
        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)

        return await call_next(request)
