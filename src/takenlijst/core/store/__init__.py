"""Takenlijst Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from .directory_store import SqliteDirectoryStore
from .event_store import SqliteEventStore
from .series_store import SqliteSeriesStore
from .sqlite_init import apply_pragmas, init_db, verify_wal_mode
from .task_store import SqliteTaskStore
from .transaction import transaction


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.series_store = SqliteSeriesStore(conn)
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.directory_store = SqliteDirectoryStore(conn)

    def transaction(self):
        """在本组连接上开启写事务"""
        return transaction(self.conn)

    async def close(self) -> None:
        await self.conn.close()


async def create_store_group(db_path: str, initialize: bool = True) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径
        initialize: 是否执行建表（幂等）；为 False 时只设置 PRAGMA

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    # isolation_level=None：事务完全由 transaction() 显式控制
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    if initialize:
        await init_db(conn)
    else:
        await apply_pragmas(conn)

    return StoreGroup(conn=conn)


@asynccontextmanager
async def open_store_group(db_path: str, initialize: bool = False) -> AsyncIterator[StoreGroup]:
    """以上下文管理器形式打开 StoreGroup，退出时关闭连接"""
    store_group = await create_store_group(db_path, initialize=initialize)
    try:
        yield store_group
    finally:
        await store_group.close()


__all__ = [
    "StoreGroup",
    "create_store_group",
    "open_store_group",
    "SqliteSeriesStore",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteDirectoryStore",
    "init_db",
    "verify_wal_mode",
    "transaction",
]
