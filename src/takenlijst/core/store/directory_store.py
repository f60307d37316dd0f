"""DirectoryStore SQLite 实现 -- 协作方目录

用户、项目成员关系与标签的存在性查询。认证由上游负责，
这里只回答"存在吗"与"是成员吗"。
"""

import aiosqlite

from ..exceptions import PermissionDeniedError


class SqliteDirectoryStore:
    """协作方目录的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def user_exists(self, user_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM users WHERE user_id = ?",
            (user_id,),
        )
        return await cursor.fetchone() is not None

    async def tag_exists(self, tag_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM tags WHERE tag_id = ?",
            (tag_id,),
        )
        return await cursor.fetchone() is not None

    async def tags_exist(self, tag_ids: list[str]) -> bool:
        """全部标签都存在时为 True（空列表视为 True）"""
        unique = set(tag_ids)
        if not unique:
            return True
        placeholders = ",".join("?" for _ in unique)
        cursor = await self._conn.execute(
            f"SELECT COUNT(*) FROM tags WHERE tag_id IN ({placeholders})",
            list(unique),
        )
        row = await cursor.fetchone()
        return row is not None and row[0] == len(unique)

    async def project_member_exists(self, user_id: str, project_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id),
        )
        return await cursor.fetchone() is not None

    async def require_member(self, user_id: str, project_id: str) -> None:
        """校验成员关系

        Raises:
            PermissionDeniedError: 调用方不是项目成员
        """
        if not await self.project_member_exists(user_id, project_id):
            raise PermissionDeniedError("Access denied to project")

    async def create_user(self, user_id: str, display_name: str = "") -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO users (user_id, display_name) VALUES (?, ?)",
            (user_id, display_name),
        )

    async def create_project(self, project_id: str, name: str = "") -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO projects (project_id, name) VALUES (?, ?)",
            (project_id, name),
        )

    async def add_member(self, project_id: str, user_id: str) -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO project_members (project_id, user_id) VALUES (?, ?)",
            (project_id, user_id),
        )

    async def create_tag(self, tag_id: str, name: str = "") -> None:
        await self._conn.execute(
            "INSERT OR IGNORE INTO tags (tag_id, name) VALUES (?, ?)",
            (tag_id, name),
        )
