"""TaskStore SQLite 实现

任务行 + 标签关联（task_tags）。方法不提交事务，由调用方管理。
时间戳统一以 UTC ISO 8601 文本存储，便于按字典序做区间比较。
"""

from datetime import UTC, date, datetime

import aiosqlite

from ..concurrency import next_revision
from ..exceptions import ConflictStaleWriteError
from ..models.enums import TaskStatus
from ..models.task import Task

# 列表排序：无日期任务按标题排在最后，其余按计划 -> deadline -> 创建时间
_LIST_ORDER = """
ORDER BY
    CASE WHEN t.scheduled_date IS NULL AND t.deadline_date IS NULL THEN 1 ELSE 0 END,
    CASE WHEN t.scheduled_date IS NULL THEN 1 ELSE 0 END,
    t.scheduled_date ASC,
    CASE WHEN t.scheduled_time_minutes IS NULL THEN 1 ELSE 0 END,
    t.scheduled_time_minutes ASC,
    CASE WHEN t.deadline_date IS NULL THEN 1 ELSE 0 END,
    t.deadline_date ASC,
    CASE WHEN t.deadline_time_minutes IS NULL THEN 1 ELSE 0 END,
    t.deadline_time_minutes ASC,
    t.title ASC,
    t.created_at ASC
"""

_HISTORY_ORDER = "ORDER BY COALESCE(t.completed_at, t.abandoned_at) DESC, t.created_at DESC"


def to_iso(value: datetime) -> str:
    """规范化为 UTC ISO 8601 文本"""
    return value.astimezone(UTC).isoformat()


def _date_or_none(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_or_none(value: datetime | None) -> str | None:
    return to_iso(value) if value is not None else None


def _placeholders(values: list) -> str:
    return ",".join("?" for _ in values)


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> bool:
        """插入任务及其标签

        系列实例的槽位被占用时（唯一索引冲突）静默跳过。

        Returns:
            True 如果插入了新行
        """
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO tasks (
                task_id, project_id, author_id, assignee_id, series_id, title,
                description, status, scheduled_date, scheduled_time_minutes,
                deadline_date, deadline_time_minutes, completed_at, completed_by,
                abandoned_at, abandoned_by, revision, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.project_id,
                task.author_id,
                task.assignee_id,
                task.series_id,
                task.title,
                task.description,
                task.status.value,
                _date_or_none(task.scheduled_date),
                task.scheduled_time_minutes,
                _date_or_none(task.deadline_date),
                task.deadline_time_minutes,
                _dt_or_none(task.completed_at),
                task.completed_by,
                _dt_or_none(task.abandoned_at),
                task.abandoned_by,
                task.revision,
                to_iso(task.created_at),
                to_iso(task.updated_at),
            ),
        )
        if cursor.rowcount == 0:
            return False
        await self._insert_tags(task.task_id, task.tag_ids)
        return True

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        tags = await self._load_tags([task_id])
        return self._row_to_task(row, tags.get(task_id, []))

    async def list_series_tasks(
        self,
        series_id: str,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        """查询系列的全部实例（可按状态筛选），按槽位排序"""
        sql = "SELECT * FROM tasks t WHERE t.series_id = ?"
        params: list = [series_id]
        if status is not None:
            sql += " AND t.status = ?"
            params.append(status.value)
        sql += " ORDER BY t.scheduled_date ASC, t.scheduled_time_minutes ASC"
        cursor = await self._conn.execute(sql, params)
        return await self._hydrate(await cursor.fetchall())

    async def update_task(self, task: Task, expected_revision: int) -> int:
        """带 revision 守卫的整行更新

        Returns:
            推进后的 revision

        Raises:
            ConflictStaleWriteError: 行已被其他写入者修改
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET assignee_id = ?, title = ?, description = ?, status = ?,
                scheduled_date = ?, scheduled_time_minutes = ?,
                deadline_date = ?, deadline_time_minutes = ?,
                completed_at = ?, completed_by = ?, abandoned_at = ?, abandoned_by = ?,
                updated_at = ?, revision = revision + 1
            WHERE task_id = ? AND revision = ?
            """,
            (
                task.assignee_id,
                task.title,
                task.description,
                task.status.value,
                _date_or_none(task.scheduled_date),
                task.scheduled_time_minutes,
                _date_or_none(task.deadline_date),
                task.deadline_time_minutes,
                _dt_or_none(task.completed_at),
                task.completed_by,
                _dt_or_none(task.abandoned_at),
                task.abandoned_by,
                to_iso(task.updated_at),
                task.task_id,
                expected_revision,
            ),
        )
        if cursor.rowcount == 0:
            raise ConflictStaleWriteError("task", task.task_id, last_known=expected_revision)
        return next_revision(expected_revision)

    async def patch_series_todos(
        self,
        series_id: str,
        title: str,
        description: str | None,
        assignee_id: str | None,
        updated_at: datetime,
    ) -> int:
        """修补系列所有 todo 实例的标题 / 描述 / 指派人，逐行推进 revision

        Returns:
            受影响的行数
        """
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET title = ?, description = ?, assignee_id = ?,
                updated_at = ?, revision = revision + 1
            WHERE series_id = ? AND status = ?
            """,
            (
                title,
                description,
                assignee_id,
                to_iso(updated_at),
                series_id,
                TaskStatus.TODO.value,
            ),
        )
        return cursor.rowcount

    async def delete_future_todos(
        self,
        series_id: str,
        today: date,
        now_minutes: int,
    ) -> int:
        """删除系列中今天及以后的 todo 实例

        判定：日期晚于今天；或日期为今天且无时刻；或日期为今天且时刻 >= 当前分钟。

        Returns:
            删除的行数
        """
        today_text = today.isoformat()
        cursor = await self._conn.execute(
            """
            DELETE FROM tasks
            WHERE series_id = ? AND status = ?
              AND (
                scheduled_date > ?
                OR (scheduled_date = ? AND scheduled_time_minutes IS NULL)
                OR (scheduled_date = ? AND scheduled_time_minutes >= ?)
              )
            """,
            (
                series_id,
                TaskStatus.TODO.value,
                today_text,
                today_text,
                today_text,
                now_minutes,
            ),
        )
        return cursor.rowcount

    async def replace_tags(self, task_id: str, tag_ids: list[str]) -> None:
        """替换任务的标签集合"""
        await self._conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
        await self._insert_tags(task_id, tag_ids)

    async def list_tasks(
        self,
        project_id: str,
        statuses: list[TaskStatus],
        assignee_id: str | None = None,
        unassigned_only: bool = False,
        tag_ids: list[str] | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Task], int]:
        """项目内任务列表

        Returns:
            (当前页任务, 满足条件的总数)
        """
        conditions = ["t.project_id = ?"]
        params: list = [project_id]

        if statuses:
            conditions.append(f"t.status IN ({_placeholders(statuses)})")
            params.extend(s.value for s in statuses)

        if assignee_id is not None:
            conditions.append("t.assignee_id = ?")
            params.append(assignee_id)
        elif unassigned_only:
            conditions.append("t.assignee_id IS NULL")

        if tag_ids:
            conditions.append(
                "EXISTS (SELECT 1 FROM task_tags tt WHERE tt.task_id = t.task_id "
                f"AND tt.tag_id IN ({_placeholders(tag_ids)}))"
            )
            params.extend(tag_ids)

        if search and search.strip():
            pattern = f"%{search.strip()}%"
            conditions.append("(t.title LIKE ? OR t.description LIKE ?)")
            params.extend([pattern, pattern])

        return await self._page(conditions, params, _LIST_ORDER, offset, limit)

    async def list_history(
        self,
        member_id: str,
        statuses: list[TaskStatus],
        since: datetime,
        until: datetime,
        project_id: str | None = None,
        tag_ids: list[str] | None = None,
        completer_id: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Task], int]:
        """已完成 / 已放弃任务的历史

        只包含 member_id 所属项目的任务；完成（或放弃）时刻落在 [since, until) 内。
        """
        conditions = [
            "t.project_id IN (SELECT pm.project_id FROM project_members pm WHERE pm.user_id = ?)"
        ]
        params: list = [member_id]

        if project_id is not None:
            conditions.append("t.project_id = ?")
            params.append(project_id)

        wanted = [s for s in statuses if s in (TaskStatus.DONE, TaskStatus.ABANDONED)]
        if not wanted:
            return [], 0
        conditions.append(f"t.status IN ({_placeholders(wanted)})")
        params.extend(s.value for s in wanted)

        if tag_ids:
            conditions.append(
                "EXISTS (SELECT 1 FROM task_tags tt WHERE tt.task_id = t.task_id "
                f"AND tt.tag_id IN ({_placeholders(tag_ids)}))"
            )
            params.extend(tag_ids)

        if completer_id is not None:
            conditions.append("(t.completed_by = ? OR t.abandoned_by = ?)")
            params.extend([completer_id, completer_id])

        since_text, until_text = to_iso(since), to_iso(until)
        conditions.append(
            "((t.status = 'done' AND t.completed_at >= ? AND t.completed_at < ?) OR "
            "(t.status = 'abandoned' AND t.abandoned_at >= ? AND t.abandoned_at < ?))"
        )
        params.extend([since_text, until_text, since_text, until_text])

        return await self._page(conditions, params, _HISTORY_ORDER, offset, limit)

    async def _page(
        self,
        conditions: list[str],
        params: list,
        order_by: str,
        offset: int,
        limit: int,
    ) -> tuple[list[Task], int]:
        where = " AND ".join(conditions)
        cursor = await self._conn.execute(
            f"SELECT COUNT(*) FROM tasks t WHERE {where}",
            params,
        )
        row = await cursor.fetchone()
        total = row[0] if row else 0

        cursor = await self._conn.execute(
            f"SELECT t.* FROM tasks t WHERE {where} {order_by} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        return await self._hydrate(await cursor.fetchall()), total

    async def _hydrate(self, rows: list[aiosqlite.Row]) -> list[Task]:
        tags = await self._load_tags([row["task_id"] for row in rows])
        return [self._row_to_task(row, tags.get(row["task_id"], [])) for row in rows]

    async def _load_tags(self, task_ids: list[str]) -> dict[str, list[str]]:
        if not task_ids:
            return {}
        cursor = await self._conn.execute(
            f"SELECT task_id, tag_id FROM task_tags WHERE task_id IN ({_placeholders(task_ids)}) "
            "ORDER BY tag_id",
            task_ids,
        )
        result: dict[str, list[str]] = {}
        for row in await cursor.fetchall():
            result.setdefault(row["task_id"], []).append(row["tag_id"])
        return result

    async def _insert_tags(self, task_id: str, tag_ids: list[str]) -> None:
        await self._conn.executemany(
            "INSERT OR IGNORE INTO task_tags (task_id, tag_id) VALUES (?, ?)",
            [(task_id, tag_id) for tag_id in tag_ids],
        )

    @staticmethod
    def _row_to_task(row: aiosqlite.Row, tag_ids: list[str]) -> Task:
        """将数据库行转换为 Task 模型"""

        def _date(value: str | None) -> date | None:
            return date.fromisoformat(value) if value else None

        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return Task(
            task_id=row["task_id"],
            project_id=row["project_id"],
            author_id=row["author_id"],
            assignee_id=row["assignee_id"],
            series_id=row["series_id"],
            title=row["title"],
            description=row["description"],
            status=TaskStatus(row["status"]),
            scheduled_date=_date(row["scheduled_date"]),
            scheduled_time_minutes=row["scheduled_time_minutes"],
            deadline_date=_date(row["deadline_date"]),
            deadline_time_minutes=row["deadline_time_minutes"],
            completed_at=_dt(row["completed_at"]),
            completed_by=row["completed_by"],
            abandoned_at=_dt(row["abandoned_at"]),
            abandoned_by=row["abandoned_by"],
            tag_ids=tag_ids,
            revision=row["revision"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
