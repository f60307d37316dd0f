"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store 实例与调用方身份

每个请求打开独立的数据库连接（StoreGroup），请求结束时关闭；
事务由服务层显式开启，连接之间的隔离交给 SQLite。
"""

from collections.abc import AsyncGenerator

from fastapi import Header, Request
from takenlijst.core.config import get_default_timezone
from takenlijst.core.store import StoreGroup, open_store_group


async def get_store_group(request: Request) -> AsyncGenerator[StoreGroup, None]:
    """为当前请求打开 StoreGroup"""
    async with open_store_group(request.app.state.db_path) as store_group:
        yield store_group


def get_caller_id(
    x_user_id: str = Header(description="上游认证层注入的调用方用户 ID"),
) -> str:
    """从 X-User-ID 请求头获取调用方身份"""
    return x_user_id


def get_timezone(
    x_timezone: str | None = Header(default=None, description="调用方 IANA 时区"),
) -> str:
    """从 X-Timezone 请求头获取时区，缺省时使用配置的默认时区"""
    return x_timezone or get_default_timezone()
