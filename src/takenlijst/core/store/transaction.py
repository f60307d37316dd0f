"""显式事务封装

连接以 isolation_level=None 打开（sqlite3 不再隐式开启事务），
所有多步写入都包在 transaction() 中：BEGIN IMMEDIATE 立即获取写锁，
成功 COMMIT，任何异常 ROLLBACK 后重新抛出。

store 方法本身从不提交；物化器 / 补齐等内部步骤也不开启事务，
只在调用方的事务中运行。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite
import structlog

from ..exceptions import InternalError

log = structlog.get_logger()


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """在一个写事务内执行代码块

    Raises:
        InternalError: 存储层错误（sqlite 异常被包装）
        TakenlijstError 及其子类: 原样重新抛出（事务已回滚）
    """
    try:
        await conn.execute("BEGIN IMMEDIATE")
    except aiosqlite.Error as e:
        log.error("transaction_begin_failed", error=str(e))
        raise InternalError(f"Failed to begin transaction: {e}") from e

    try:
        yield conn
        await conn.execute("COMMIT")
    except aiosqlite.Error as e:
        await _rollback(conn)
        log.error("transaction_failed", error=str(e))
        raise InternalError(f"Storage failure: {e}") from e
    except BaseException:
        await _rollback(conn)
        raise


async def _rollback(conn: aiosqlite.Connection) -> None:
    if conn.in_transaction:
        await conn.execute("ROLLBACK")
