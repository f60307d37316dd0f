"""gateway 测试配置 -- FastAPI app + httpx AsyncClient"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from takenlijst.core.store import StoreGroup


@pytest_asyncio.fixture
async def app(tmp_db_path: Path, directory: StoreGroup):
    """创建测试用 FastAPI app 实例（数据库已预置目录）"""
    os.environ["TAKENLIJST_DB_PATH"] = str(tmp_db_path)
    os.environ["TAKENLIJST_DEFAULT_TIMEZONE"] = "UTC"

    from takenlijst.gateway.main import create_app

    application = create_app()
    # ASGITransport 不触发 lifespan，手动设置
    application.state.db_path = str(tmp_db_path)
    yield application

    for key in ["TAKENLIJST_DB_PATH", "TAKENLIJST_DEFAULT_TIMEZONE"]:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """提供 httpx AsyncClient 用于测试"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
