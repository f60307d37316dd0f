"""Occurrence Materializer -- 实例 -> 持久化的 todo 任务

只在调用方的事务内运行，自身从不提交。
"""

import uuid
from collections.abc import Iterable
from datetime import date, datetime

import structlog

from .config import SERIES_OCCURRENCE_TARGET
from .models.enums import EntityType, EventType, TaskStatus
from .models.payloads import TaskCreatedPayload
from .models.series import SeriesTemplate
from .models.task import Task
from .recurrence import Occurrence, deadline_for, parse_timezone
from .store.protocols import EventStore, TaskStore

log = structlog.get_logger()


def build_occurrence_task(
    series: SeriesTemplate,
    occurrence: Occurrence,
    author_id: str,
    timezone: str,
    now: datetime,
) -> Task:
    """按模板默认值构造一个实例任务（不落库）"""
    deadline_date, deadline_time = deadline_for(
        occurrence, series.deadline_offset_minutes, parse_timezone(timezone)
    )
    return Task(
        task_id=uuid.uuid4().hex,
        project_id=series.project_id,
        author_id=author_id,
        assignee_id=series.assignee_id,
        series_id=series.series_id,
        title=series.title,
        description=series.description,
        status=TaskStatus.TODO,
        scheduled_date=occurrence.local_date,
        scheduled_time_minutes=occurrence.time_minutes,
        deadline_date=deadline_date,
        deadline_time_minutes=deadline_time,
        tag_ids=list(series.default_tag_ids),
        created_at=now,
        updated_at=now,
    )


async def materialize(
    task_store: TaskStore,
    event_store: EventStore,
    series: SeriesTemplate,
    occurrences: Iterable[Occurrence],
    *,
    timezone: str,
    now: datetime,
    author_id: str | None = None,
    occupied: set[tuple[date, int | None]] | None = None,
    limit: int = SERIES_OCCURRENCE_TARGET,
) -> list[Task]:
    """将实例序列物化为 todo 任务

    Args:
        task_store: 任务存储
        event_store: 活动日志
        series: 所属模板（提供标题、指派人、标签、deadline 偏移等默认值）
        occurrences: 严格递增的实例序列（可能无限）
        timezone: 计算 deadline 所用的 IANA 时区
        now: 早于 now 的实例被丢弃
        author_id: 任务作者，默认为模板创建者
        occupied: 已占用的 (日期, 时刻) 槽位，命中即跳过
        limit: 本次最多创建的任务数

    Returns:
        新创建的任务（按时间顺序）
    """
    if limit <= 0:
        return []

    author = author_id or series.created_by
    taken = set(occupied or ())
    created: list[Task] = []

    for occurrence in occurrences:
        if len(created) >= limit:
            break
        # 1. 准入：过去的实例不物化
        if occurrence.instant < now:
            continue
        # 2. 槽位去重
        if occurrence.key in taken:
            continue
        taken.add(occurrence.key)

        # 3. 插入；并发写入者抢先占用槽位时跳过且不计数
        task = build_occurrence_task(series, occurrence, author, timezone, now)
        if not await task_store.create_task(task):
            log.info(
                "occurrence_slot_taken",
                series_id=series.series_id,
                scheduled_date=occurrence.local_date.isoformat(),
            )
            continue

        await event_store.record(
            EntityType.TASK,
            task.task_id,
            EventType.TASK_CREATED,
            author,
            TaskCreatedPayload(
                title=task.title,
                series_id=series.series_id,
                scheduled_date=occurrence.local_date.isoformat(),
                scheduled_time_minutes=occurrence.time_minutes,
            ),
            now,
        )
        created.append(task)

    if created:
        log.info(
            "occurrences_materialized",
            series_id=series.series_id,
            count=len(created),
            first=created[0].scheduled_date.isoformat() if created[0].scheduled_date else None,
        )
    return created
