"""SeriesStore SQLite 实现

模板与其默认标签（series_tags）。方法不提交事务，由调用方管理。
"""

from datetime import date, datetime

import aiosqlite

from ..concurrency import next_revision
from ..exceptions import ConflictStaleWriteError
from ..models.series import SeriesTemplate


class SqliteSeriesStore:
    """SeriesStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_series(self, series: SeriesTemplate) -> None:
        """插入模板及其默认标签"""
        await self._conn.execute(
            """
            INSERT INTO series (series_id, project_id, created_by, title, description,
                                assignee_id, rrule, anchor_date, anchor_time_minutes,
                                deadline_offset_minutes, revision, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                series.series_id,
                series.project_id,
                series.created_by,
                series.title,
                series.description,
                series.assignee_id,
                series.rrule,
                series.anchor_date.isoformat(),
                series.anchor_time_minutes,
                series.deadline_offset_minutes,
                series.revision,
                series.created_at.isoformat(),
                series.updated_at.isoformat(),
            ),
        )
        await self._insert_tags(series.series_id, series.default_tag_ids)

    async def get_series(self, series_id: str) -> SeriesTemplate | None:
        """根据 series_id 查询模板（含默认标签）"""
        cursor = await self._conn.execute(
            "SELECT * FROM series WHERE series_id = ?",
            (series_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_series(row, await self.get_tag_ids(series_id))

    async def list_series_ids(self) -> list[str]:
        """所有系列 ID（维护任务用）"""
        cursor = await self._conn.execute(
            "SELECT series_id FROM series ORDER BY created_at ASC"
        )
        rows = await cursor.fetchall()
        return [row["series_id"] for row in rows]

    async def update_series(self, series: SeriesTemplate, expected_revision: int) -> int:
        """带 revision 守卫的整行更新

        Args:
            series: 应用变更后的模板（revision 字段被忽略）
            expected_revision: 调用方校验过的 revision

        Returns:
            推进后的 revision

        Raises:
            ConflictStaleWriteError: 行已被其他写入者修改
        """
        cursor = await self._conn.execute(
            """
            UPDATE series
            SET title = ?, description = ?, assignee_id = ?, rrule = ?,
                anchor_date = ?, anchor_time_minutes = ?, deadline_offset_minutes = ?,
                updated_at = ?, revision = revision + 1
            WHERE series_id = ? AND revision = ?
            """,
            (
                series.title,
                series.description,
                series.assignee_id,
                series.rrule,
                series.anchor_date.isoformat(),
                series.anchor_time_minutes,
                series.deadline_offset_minutes,
                series.updated_at.isoformat(),
                series.series_id,
                expected_revision,
            ),
        )
        if cursor.rowcount == 0:
            raise ConflictStaleWriteError("series", series.series_id, last_known=expected_revision)
        return next_revision(expected_revision)

    async def get_tag_ids(self, series_id: str) -> list[str]:
        cursor = await self._conn.execute(
            "SELECT tag_id FROM series_tags WHERE series_id = ? ORDER BY tag_id",
            (series_id,),
        )
        rows = await cursor.fetchall()
        return [row["tag_id"] for row in rows]

    async def replace_tags(self, series_id: str, tag_ids: list[str]) -> None:
        """替换模板的默认标签集合"""
        await self._conn.execute(
            "DELETE FROM series_tags WHERE series_id = ?",
            (series_id,),
        )
        await self._insert_tags(series_id, tag_ids)

    async def _insert_tags(self, series_id: str, tag_ids: list[str]) -> None:
        await self._conn.executemany(
            "INSERT OR IGNORE INTO series_tags (series_id, tag_id) VALUES (?, ?)",
            [(series_id, tag_id) for tag_id in tag_ids],
        )

    @staticmethod
    def _row_to_series(row: aiosqlite.Row, tag_ids: list[str]) -> SeriesTemplate:
        """将数据库行转换为 SeriesTemplate 模型"""
        return SeriesTemplate(
            series_id=row["series_id"],
            project_id=row["project_id"],
            created_by=row["created_by"],
            title=row["title"],
            description=row["description"],
            assignee_id=row["assignee_id"],
            default_tag_ids=tag_ids,
            rrule=row["rrule"],
            anchor_date=date.fromisoformat(row["anchor_date"]),
            anchor_time_minutes=row["anchor_time_minutes"],
            deadline_offset_minutes=row["deadline_offset_minutes"],
            revision=row["revision"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
