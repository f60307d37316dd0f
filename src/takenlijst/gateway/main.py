"""FastAPI 应用主文件

app 创建 + lifespan 管理：数据库初始化 + 路由注册 + 错误映射。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from starlette.responses import JSONResponse
from takenlijst.core.config import get_db_path
from takenlijst.core.exceptions import TakenlijstError
from takenlijst.core.models import ErrorCode
from takenlijst.core.store import create_store_group

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, series, tasks

log = structlog.get_logger()

# 错误码 -> HTTP 状态码
ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT_STALE_WRITE: 409,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.INTERNAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时建表，记录数据库路径供请求级连接使用"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)
    await store_group.close()
    app.state.db_path = db_path
    log.info("database_ready", db_path=db_path)

    yield


async def handle_takenlijst_error(request: Request, exc: TakenlijstError) -> JSONResponse:
    """将核心层异常映射为统一的错误响应"""
    status_code = ERROR_STATUS.get(exc.code, 500)
    if status_code >= 500:
        log.error("request_failed", code=exc.code, message=exc.message)
    else:
        log.info("request_rejected", code=exc.code, message=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": exc.code.value,
                "message": exc.message,
            }
        },
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Takenlijst Gateway",
        version="0.1.0",
        description="Takenlijst 周期任务引擎 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    # 初始化日志
    setup_logging()

    app.add_exception_handler(TakenlijstError, handle_takenlijst_error)

    # 注册路由
    app.include_router(series.router, tags=["series"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
