"""全局 pytest 配置 -- 临时 SQLite 数据库 + 预置协作方目录"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from takenlijst.core.store import StoreGroup, create_store_group


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的 StoreGroup"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.close()


@pytest_asyncio.fixture
async def directory(store_group: StoreGroup) -> StoreGroup:
    """预置目录：alice / bob 是项目 p1 的成员，carol 不是；标签 t-home / t-work"""
    async with store_group.transaction():
        d = store_group.directory_store
        for user_id in ("alice", "bob", "carol"):
            await d.create_user(user_id, user_id.title())
        await d.create_project("p1", "Huishouden")
        await d.create_project("p2", "Werk")
        await d.add_member("p1", "alice")
        await d.add_member("p1", "bob")
        await d.add_member("p2", "carol")
        await d.create_tag("t-home", "thuis")
        await d.create_tag("t-work", "werk")
    return store_group
