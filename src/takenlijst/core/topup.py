"""Top-Up Maintainer -- 保持每个系列有足够的未来 todo 实例

fill_shortfall 不关心事务，由调用方决定在哪个事务内运行；
top_up_series 是独立入口，自己开启一个写事务。
"""

from datetime import UTC, datetime

import structlog

from .config import SERIES_OCCURRENCE_TARGET
from .exceptions import NotFoundError, TakenlijstError
from .materializer import materialize
from .models.enums import TaskStatus
from .models.series import SeriesTemplate
from .models.task import Task
from .recurrence import Anchor, expand, local_instant, parse_timezone
from .store import StoreGroup
from .store.protocols import EventStore, TaskStore

log = structlog.get_logger()


def anchor_of(series: SeriesTemplate, timezone: str) -> Anchor:
    return Anchor(
        start_date=series.anchor_date,
        time_minutes=series.anchor_time_minutes,
        timezone=timezone,
    )


async def fill_shortfall(
    task_store: TaskStore,
    event_store: EventStore,
    series: SeriesTemplate,
    timezone: str,
    now: datetime,
    author_id: str | None = None,
    target: int = SERIES_OCCURRENCE_TARGET,
) -> list[Task]:
    """补齐系列的未来 todo 实例到 target 个

    Returns:
        新创建的任务；已满足时为空列表
    """
    tz = parse_timezone(timezone)
    # 先校验规则，损坏的规则不应被当作"已满"静默跳过
    occurrences = expand(series.rrule, anchor_of(series, timezone))

    # 1. 已存在的全部实例（所有状态）
    existing = await task_store.list_series_tasks(series.series_id)

    # 2. 已占用槽位
    occupied = {task.occurrence_key for task in existing if task.occurrence_key is not None}

    # 3. 未来的 todo 数量（仅日期的实例按当地午夜计）
    upcoming = sum(
        1
        for task in existing
        if task.status == TaskStatus.TODO
        and task.scheduled_date is not None
        and local_instant(task.scheduled_date, task.scheduled_time_minutes, tz) >= now
    )

    # 4. 已满
    if upcoming >= target:
        return []

    # 5. 从原始锚点重新展开并物化缺口
    return await materialize(
        task_store,
        event_store,
        series,
        occurrences,
        timezone=timezone,
        now=now,
        author_id=author_id,
        occupied=occupied,
        limit=target - upcoming,
    )


async def top_up_series(
    store_group: StoreGroup,
    series_id: str,
    timezone: str,
    now: datetime | None = None,
) -> list[Task]:
    """在独立事务内为单个系列补齐实例（幂等）

    Raises:
        NotFoundError: 系列不存在
        ValidationFailedError: 时区无效或存储的规则已损坏
    """
    now = now or datetime.now(UTC)
    parse_timezone(timezone)

    async with store_group.transaction():
        series = await store_group.series_store.get_series(series_id)
        if series is None:
            raise NotFoundError("Series not found")
        created = await fill_shortfall(
            store_group.task_store,
            store_group.event_store,
            series,
            timezone,
            now,
        )

    log.info("series_topped_up", series_id=series_id, created=len(created))
    return created


async def top_up_all(
    store_group: StoreGroup,
    timezone: str,
    now: datetime | None = None,
) -> dict[str, int]:
    """逐个系列补齐（每个系列一个事务），单个系列失败不影响其余系列

    Returns:
        series_id -> 新建实例数；失败的系列不在结果中
    """
    now = now or datetime.now(UTC)
    results: dict[str, int] = {}
    for series_id in await store_group.series_store.list_series_ids():
        try:
            created = await top_up_series(store_group, series_id, timezone, now)
        except TakenlijstError as e:
            log.warning("series_top_up_failed", series_id=series_id, error=e.message)
            continue
        results[series_id] = len(created)
    return results
