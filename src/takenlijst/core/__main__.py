"""CLI 入口模块 -- python -m takenlijst.core <command>

支持的命令：
  init-db                    创建数据库表与索引
  top-up-all [--timezone TZ] 为所有系列补齐未来实例
"""

import asyncio
import sys

from .config import get_db_path, get_default_timezone

_USAGE = """用法: python -m takenlijst.core <command>
命令:
  init-db                    创建数据库表与索引
  top-up-all [--timezone TZ] 为所有系列补齐未来实例"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(_USAGE)
        return 1

    command, rest = args[0], args[1:]

    if command == "init-db":
        asyncio.run(init_database())
        return 0
    if command == "top-up-all":
        timezone = get_default_timezone()
        if rest:
            if len(rest) != 2 or rest[0] != "--timezone":
                print(_USAGE)
                return 1
            timezone = rest[1]
        asyncio.run(top_up_everything(timezone))
        return 0

    print(f"未知命令: {command}")
    print("可用命令: init-db, top-up-all")
    return 1


async def init_database() -> None:
    """执行建表"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.close()
    print("初始化完成")


async def top_up_everything(timezone: str) -> None:
    """执行全量补齐"""
    from .store import open_store_group
    from .topup import top_up_all

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print(f"时区: {timezone}")

    async with open_store_group(db_path, initialize=True) as store_group:
        results = await top_up_all(store_group, timezone)

    created = sum(results.values())
    print(f"补齐完成，处理 {len(results)} 个系列，新建 {created} 个实例")


if __name__ == "__main__":
    sys.exit(main())
