"""structlog 配置

TAKENLIJST_LOG_FORMAT 选择渲染器（dev / json），TAKENLIJST_LOG_LEVEL 选择级别。
uvicorn 与 aiosqlite 的标准库日志经同一个 ProcessorFormatter 输出。
"""

import logging
import os

import structlog

# 噪音较大的第三方 logger，只保留 WARNING 及以上
_QUIET_LOGGERS = ("aiosqlite", "uvicorn.access")

_RENDERERS = {
    "dev": lambda: structlog.dev.ConsoleRenderer(),
    "json": lambda: structlog.processors.JSONRenderer(ensure_ascii=False),
}


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> str:
    """初始化 structlog + 标准库 logging

    参数缺省时读取环境变量；未知格式按 dev 处理。

    Returns:
        实际使用的渲染格式
    """
    log_format = (log_format or os.environ.get("TAKENLIJST_LOG_FORMAT", "dev")).lower()
    if log_format not in _RENDERERS:
        log_format = "dev"
    level_name = (log_level or os.environ.get("TAKENLIJST_LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_RENDERERS[log_format](),
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return log_format
