"""SeriesService -- 周期任务模板的创建 / 编辑 / 补齐

编辑流程（单个 BEGIN IMMEDIATE 事务）：
1. 加载模板 + 成员校验 + revision 守卫（不一致直接失败，后续步骤不执行）
2. 按创建时的规则校验每个变更字段
3. 持久化模板并推进 revision
4. 按影响分支：
   - 调度字段变化（规则 / 锚点日期 / 锚点时刻 / deadline 偏移）：删除今天及以后的 todo 实例，
     从 now 起按新模板重新物化（最多 5 个）
   - 仅展示字段变化（标题 / 描述 / 指派人 / 默认标签）：就地修补剩余的 todo 实例
任一步失败整体回滚，模板与实例保持原样。
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import structlog
from takenlijst.core.concurrency import check_revision
from takenlijst.core.exceptions import NotFoundError, ValidationFailedError
from takenlijst.core.materializer import materialize
from takenlijst.core.models import (
    EntityType,
    EventType,
    SeriesCreatedPayload,
    SeriesDraft,
    SeriesTemplate,
    SeriesUpdate,
    SeriesUpdatedPayload,
    Task,
    TaskStatus,
    TaskUpdatedPayload,
)
from takenlijst.core.recurrence import (
    expand,
    parse_date,
    parse_timezone,
    validate_rule,
    validate_time_of_day,
)
from takenlijst.core.store import StoreGroup
from takenlijst.core.topup import anchor_of, fill_shortfall, top_up_series
from takenlijst.core.validation import (
    validate_anchor_not_past,
    validate_deadline_offset,
    validate_description,
    validate_title,
)

log = structlog.get_logger()


class SeriesService:
    """周期任务业务服务"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def create_series(
        self,
        draft: SeriesDraft,
        creator_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> tuple[SeriesTemplate, list[Task]]:
        """创建模板并在同一事务内物化首批实例

        Returns:
            (模板, 首批物化的任务)
        """
        now = now or datetime.now(UTC)

        async with self._stores.transaction():
            # 1. 权限
            await self._stores.directory_store.require_member(creator_id, draft.project_id)

            # 2. 字段校验
            title = validate_title(draft.title)
            description = validate_description(draft.description)
            parse_timezone(timezone)
            anchor_time = validate_time_of_day(draft.anchor_time_minutes, "anchorTimeMinutes")
            anchor_date = parse_date(draft.anchor_date, "anchorDate")
            offset = validate_deadline_offset(draft.deadline_offset_minutes)
            rule = validate_rule(draft.rrule, anchor_time is not None)
            validate_anchor_not_past(anchor_date, anchor_time, timezone, now)

            # 3. 引用校验
            await self._require_assignee(draft.assignee_id)
            tag_ids = await self._require_tags(draft.default_tag_ids)

            series = SeriesTemplate(
                series_id=uuid.uuid4().hex,
                project_id=draft.project_id,
                created_by=creator_id,
                title=title,
                description=description,
                assignee_id=draft.assignee_id,
                default_tag_ids=tag_ids,
                rrule=rule,
                anchor_date=anchor_date,
                anchor_time_minutes=anchor_time,
                deadline_offset_minutes=offset,
                created_at=now,
                updated_at=now,
            )

            # 4. 写入模板 + 首批实例 + 活动日志
            await self._stores.series_store.create_series(series)
            tasks = await fill_shortfall(
                self._stores.task_store,
                self._stores.event_store,
                series,
                timezone,
                now,
            )
            await self._stores.event_store.record(
                EntityType.SERIES,
                series.series_id,
                EventType.SERIES_CREATED,
                creator_id,
                SeriesCreatedPayload(
                    title=series.title,
                    rrule=series.rrule,
                    anchor_date=series.anchor_date.isoformat(),
                    anchor_time_minutes=series.anchor_time_minutes,
                    materialized=len(tasks),
                ),
                now,
            )

        log.info(
            "series_created",
            series_id=series.series_id,
            project_id=series.project_id,
            materialized=len(tasks),
        )
        return series, tasks

    async def update_series(
        self,
        series_id: str,
        update: SeriesUpdate,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> SeriesTemplate:
        """部分更新模板，并按影响重新生成或就地修补实例"""
        now = now or datetime.now(UTC)

        async with self._stores.transaction():
            # 1. 加载 + 权限 + 并发守卫
            series = await self._load(series_id)
            await self._stores.directory_store.require_member(actor_id, series.project_id)
            check_revision("series", series_id, series.revision, last_known_revision)

            changed = update.changed_fields()
            if not changed:
                return series

            # 2. 校验并计算新模板
            values = await self._resolve_update(series, update, timezone, now)
            updated = series.model_copy(update={**values, "updated_at": now})

            # 3. 持久化模板
            revision = await self._stores.series_store.update_series(updated, series.revision)
            updated = updated.model_copy(update={"revision": revision})
            if update.default_tag_ids.changed:
                await self._stores.series_store.replace_tags(series_id, updated.default_tag_ids)

            # 4. 分支
            if update.needs_regeneration:
                path = "regenerate"
                deleted, created = await self._regenerate(updated, actor_id, timezone, now)
                patched = 0
            else:
                path = "patch"
                deleted, created = 0, 0
                patched = await self._patch(updated, update, actor_id, now)

            await self._stores.event_store.record(
                EntityType.SERIES,
                series_id,
                EventType.SERIES_UPDATED,
                actor_id,
                SeriesUpdatedPayload(
                    fields=sorted(changed),
                    revision=revision,
                    path=path,
                    deleted=deleted,
                    created=created,
                    patched=patched,
                ),
                now,
            )

        log.info(
            "series_updated",
            series_id=series_id,
            path=path,
            revision=revision,
            deleted=deleted,
            created=created,
            patched=patched,
        )
        return updated

    async def get_series(self, series_id: str, caller_id: str) -> SeriesTemplate:
        series = await self._load(series_id)
        await self._stores.directory_store.require_member(caller_id, series.project_id)
        return series

    async def top_up(
        self,
        series_id: str,
        caller_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> list[Task]:
        """手动触发补齐"""
        await self.get_series(series_id, caller_id)
        return await top_up_series(self._stores, series_id, timezone, now)

    async def _load(self, series_id: str) -> SeriesTemplate:
        series = await self._stores.series_store.get_series(series_id)
        if series is None:
            raise NotFoundError("Series not found")
        return series

    async def _require_assignee(self, assignee_id: str | None) -> None:
        if assignee_id is not None and not await self._stores.directory_store.user_exists(
            assignee_id
        ):
            raise NotFoundError("Assignee not found")

    async def _require_tags(self, tag_ids: list[str]) -> list[str]:
        unique = sorted(set(tag_ids))
        if not await self._stores.directory_store.tags_exist(unique):
            raise NotFoundError("Tag not found")
        return unique

    async def _resolve_update(
        self,
        series: SeriesTemplate,
        update: SeriesUpdate,
        timezone: str,
        now: datetime,
    ) -> dict[str, Any]:
        """校验变更字段，返回需要写回模板的新值

        Raises:
            ValidationFailedError: 字段非法或清空了必填字段
            NotFoundError: 指派人或标签不存在
        """
        parse_timezone(timezone)
        for name in ("title", "rrule", "anchor_date", "deadline_offset_minutes"):
            if getattr(update, name).is_cleared:
                raise ValidationFailedError(f"{name} cannot be cleared")

        values: dict[str, Any] = {}

        if update.title.is_set:
            values["title"] = validate_title(update.title.value)
        if update.description.changed:
            values["description"] = validate_description(update.description.apply(None))
        if update.assignee_id.changed:
            assignee_id = update.assignee_id.apply(None)
            await self._require_assignee(assignee_id)
            values["assignee_id"] = assignee_id
        if update.default_tag_ids.changed:
            values["default_tag_ids"] = await self._require_tags(
                update.default_tag_ids.apply(None) or []
            )
        if update.deadline_offset_minutes.is_set:
            values["deadline_offset_minutes"] = validate_deadline_offset(
                update.deadline_offset_minutes.value
            )

        anchor_time = update.anchor_time_minutes.apply(series.anchor_time_minutes)
        if update.anchor_time_minutes.changed:
            values["anchor_time_minutes"] = validate_time_of_day(anchor_time, "anchorTimeMinutes")
        if update.anchor_date.is_set:
            anchor_date = parse_date(update.anchor_date.value, "anchorDate")
            # 只有显式提交锚点日期时才检查"不早于今天"
            validate_anchor_not_past(anchor_date, anchor_time, timezone, now)
            values["anchor_date"] = anchor_date

        # 规则或时刻变化时重新校验规则
        if update.rrule.is_set or update.anchor_time_minutes.changed:
            rule = update.rrule.value if update.rrule.is_set else series.rrule
            values["rrule"] = validate_rule(rule, anchor_time is not None)

        return values

    async def _regenerate(
        self,
        series: SeriesTemplate,
        actor_id: str,
        timezone: str,
        now: datetime,
    ) -> tuple[int, int]:
        """删除今天及以后的 todo 实例，从 now 起按新模板重新物化

        Returns:
            (删除数, 新建数)
        """
        now_local = now.astimezone(parse_timezone(timezone))
        occurrences = expand(series.rrule, anchor_of(series, timezone))

        deleted = await self._stores.task_store.delete_future_todos(
            series.series_id,
            now_local.date(),
            now_local.hour * 60 + now_local.minute,
        )
        surviving = await self._stores.task_store.list_series_tasks(series.series_id)
        created = await materialize(
            self._stores.task_store,
            self._stores.event_store,
            series,
            occurrences,
            timezone=timezone,
            now=now,
            author_id=actor_id,
            occupied={t.occurrence_key for t in surviving if t.occurrence_key is not None},
        )
        return deleted, len(created)

    async def _patch(
        self,
        series: SeriesTemplate,
        update: SeriesUpdate,
        actor_id: str,
        now: datetime,
    ) -> int:
        """就地修补剩余 todo 实例的标题 / 描述 / 指派人 / 标签

        Returns:
            修补的实例数
        """
        todos = await self._stores.task_store.list_series_tasks(
            series.series_id, TaskStatus.TODO
        )
        if not todos:
            return 0

        patched = await self._stores.task_store.patch_series_todos(
            series.series_id,
            series.title,
            series.description,
            series.assignee_id,
            now,
        )
        if update.default_tag_ids.changed:
            for task in todos:
                await self._stores.task_store.replace_tags(task.task_id, series.default_tag_ids)

        fields = sorted(
            name if name != "default_tag_ids" else "tag_ids"
            for name in update.changed_fields()
        )
        for task in todos:
            await self._stores.event_store.record(
                EntityType.TASK,
                task.task_id,
                EventType.TASK_UPDATED,
                actor_id,
                TaskUpdatedPayload(fields=fields, revision=task.revision + 1, via_series=True),
                now,
            )
        return patched
