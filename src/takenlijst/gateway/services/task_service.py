"""TaskService -- 任务创建 / 编辑 / 状态流转 / 查询业务逻辑

状态机：todo -> done、todo -> abandoned、abandoned -> todo（restore）；done 为终态。
完成或放弃系列实例后触发补齐；补齐失败只记录日志，不影响本次变更的结果。
"""

import uuid
from datetime import UTC, date, datetime, timedelta

import structlog
from takenlijst.core.classifier import view_task
from takenlijst.core.concurrency import check_revision
from takenlijst.core.config import HISTORY_DEFAULT_DAYS
from takenlijst.core.exceptions import NotFoundError, ValidationFailedError
from takenlijst.core.models import (
    EntityType,
    Event,
    EventType,
    HistoryQuery,
    PagedTasks,
    StatusTransitionPayload,
    Task,
    TaskCreatedPayload,
    TaskDraft,
    TaskListQuery,
    TaskStatus,
    TaskUpdate,
    TaskUpdatedPayload,
    TaskView,
    validate_transition,
)
from takenlijst.core.recurrence import local_instant, parse_date, parse_timezone
from takenlijst.core.store import StoreGroup
from takenlijst.core.topup import top_up_series
from takenlijst.core.validation import (
    validate_date_time_pair,
    validate_description,
    validate_title,
)

log = structlog.get_logger()

_TRANSITION_EVENTS = {
    TaskStatus.DONE: EventType.TASK_COMPLETED,
    TaskStatus.ABANDONED: EventType.TASK_ABANDONED,
    TaskStatus.TODO: EventType.TASK_RESTORED,
}


class TaskService:
    """任务业务服务"""

    def __init__(self, store_group: StoreGroup) -> None:
        self._stores = store_group

    async def create_task(
        self,
        draft: TaskDraft,
        author_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        """创建独立任务（不属于任何系列）"""
        now = now or datetime.now(UTC)
        parse_timezone(timezone)

        async with self._stores.transaction():
            await self._stores.directory_store.require_member(author_id, draft.project_id)

            title = validate_title(draft.title)
            description = validate_description(draft.description)
            scheduled_date, scheduled_time = validate_date_time_pair(
                draft.scheduled_date,
                draft.scheduled_time_minutes,
                "scheduledDate",
                "scheduledTimeMinutes",
            )
            deadline_date, deadline_time = validate_date_time_pair(
                draft.deadline_date,
                draft.deadline_time_minutes,
                "deadlineDate",
                "deadlineTimeMinutes",
            )
            await self._require_assignable(draft.assignee_id, draft.project_id)
            tag_ids = await self._require_tags(draft.tag_ids)

            task = Task(
                task_id=uuid.uuid4().hex,
                project_id=draft.project_id,
                author_id=author_id,
                assignee_id=draft.assignee_id,
                title=title,
                description=description,
                scheduled_date=scheduled_date,
                scheduled_time_minutes=scheduled_time,
                deadline_date=deadline_date,
                deadline_time_minutes=deadline_time,
                tag_ids=tag_ids,
                created_at=now,
                updated_at=now,
            )
            await self._stores.task_store.create_task(task)
            await self._stores.event_store.record(
                EntityType.TASK,
                task.task_id,
                EventType.TASK_CREATED,
                author_id,
                TaskCreatedPayload(
                    title=task.title,
                    scheduled_date=scheduled_date.isoformat() if scheduled_date else None,
                    scheduled_time_minutes=scheduled_time,
                ),
                now,
            )

        log.info("task_created", task_id=task.task_id, project_id=task.project_id)
        return view_task(task, timezone, now)

    async def get_task(
        self,
        task_id: str,
        caller_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        task = await self._load(task_id)
        await self._stores.directory_store.require_member(caller_id, task.project_id)
        return view_task(task, timezone, now or datetime.now(UTC))

    async def list_tasks(
        self,
        query: TaskListQuery,
        caller_id: str,
        now: datetime | None = None,
    ) -> PagedTasks:
        """项目内任务列表，每行附加时间分类"""
        now = now or datetime.now(UTC)
        parse_timezone(query.timezone)
        await self._stores.directory_store.require_member(caller_id, query.project_id)

        # 指派人筛选优先级：指定指派人 > 仅未指派 > 指派给我
        assignee_id = query.assignee_id
        if assignee_id is None and not query.include_unassigned and query.assigned_to_me:
            assignee_id = caller_id

        tasks, total = await self._stores.task_store.list_tasks(
            project_id=query.project_id,
            statuses=query.statuses,
            assignee_id=assignee_id,
            unassigned_only=query.assignee_id is None and query.include_unassigned,
            tag_ids=query.tag_ids,
            search=query.search,
            offset=query.offset,
            limit=query.limit,
        )
        return PagedTasks(
            items=[view_task(t, query.timezone, now) for t in tasks],
            total_count=total,
        )

    async def list_history(
        self,
        query: HistoryQuery,
        caller_id: str,
        now: datetime | None = None,
    ) -> PagedTasks:
        """已完成 / 已放弃任务的历史，默认最近 7 天（调用方时区）"""
        now = now or datetime.now(UTC)
        tz = parse_timezone(query.timezone)
        if query.project_id is not None:
            await self._stores.directory_store.require_member(caller_id, query.project_id)

        today = now.astimezone(tz).date()
        from_date = (
            parse_date(query.from_date, "fromDate")
            if query.from_date
            else today - timedelta(days=HISTORY_DEFAULT_DAYS)
        )
        to_date = parse_date(query.to_date, "toDate") if query.to_date else today
        if from_date > to_date:
            raise ValidationFailedError("fromDate must not be after toDate")

        tasks, total = await self._stores.task_store.list_history(
            member_id=caller_id,
            statuses=query.statuses,
            since=local_instant(from_date, None, tz),
            until=local_instant(to_date + timedelta(days=1), None, tz),
            project_id=query.project_id,
            tag_ids=query.tag_ids,
            completer_id=query.completer_id,
            offset=query.offset,
            limit=query.limit,
        )
        return PagedTasks(
            items=[view_task(t, query.timezone, now) for t in tasks],
            total_count=total,
        )

    async def update_task(
        self,
        task_id: str,
        update: TaskUpdate,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        """部分更新任务字段（不改变状态）"""
        now = now or datetime.now(UTC)
        parse_timezone(timezone)

        async with self._stores.transaction():
            # 1. 加载 + 权限 + 并发守卫
            task = await self._load(task_id)
            await self._stores.directory_store.require_member(actor_id, task.project_id)
            check_revision("task", task_id, task.revision, last_known_revision)

            changed = sorted(
                name
                for name in (
                    "title",
                    "description",
                    "assignee_id",
                    "scheduled_date",
                    "scheduled_time_minutes",
                    "deadline_date",
                    "deadline_time_minutes",
                    "tag_ids",
                )
                if getattr(update, name).changed
            )
            if not changed:
                return view_task(task, timezone, now)

            # 2. 校验
            if update.title.is_cleared:
                raise ValidationFailedError("title cannot be cleared")
            values = {"updated_at": now}
            if update.title.is_set:
                values["title"] = validate_title(update.title.value)
            if update.description.changed:
                values["description"] = validate_description(update.description.apply(None))
            if update.assignee_id.changed:
                assignee_id = update.assignee_id.apply(None)
                await self._require_assignable(assignee_id, task.project_id)
                values["assignee_id"] = assignee_id

            scheduled_date, scheduled_time = validate_date_time_pair(
                self._date_text(update.scheduled_date.apply(task.scheduled_date)),
                update.scheduled_time_minutes.apply(task.scheduled_time_minutes),
                "scheduledDate",
                "scheduledTimeMinutes",
            )
            deadline_date, deadline_time = validate_date_time_pair(
                self._date_text(update.deadline_date.apply(task.deadline_date)),
                update.deadline_time_minutes.apply(task.deadline_time_minutes),
                "deadlineDate",
                "deadlineTimeMinutes",
            )
            values.update(
                scheduled_date=scheduled_date,
                scheduled_time_minutes=scheduled_time,
                deadline_date=deadline_date,
                deadline_time_minutes=deadline_time,
            )
            if task.series_id is not None and scheduled_date is not None:
                await self._require_free_slot(task, scheduled_date, scheduled_time)
            if update.tag_ids.changed:
                values["tag_ids"] = await self._require_tags(update.tag_ids.apply(None) or [])

            # 3. 持久化
            updated = task.model_copy(update=values)
            revision = await self._stores.task_store.update_task(updated, task.revision)
            updated = updated.model_copy(update={"revision": revision})
            if update.tag_ids.changed:
                await self._stores.task_store.replace_tags(task_id, updated.tag_ids)
            await self._stores.event_store.record(
                EntityType.TASK,
                task_id,
                EventType.TASK_UPDATED,
                actor_id,
                TaskUpdatedPayload(fields=changed, revision=revision),
                now,
            )

        log.info("task_updated", task_id=task_id, fields=changed, revision=revision)
        return view_task(updated, timezone, now)

    async def complete_task(
        self,
        task_id: str,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        """todo -> done，随后为所属系列补齐实例"""
        return await self._transition(
            task_id, TaskStatus.DONE, last_known_revision, actor_id, timezone, now
        )

    async def abandon_task(
        self,
        task_id: str,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        """todo -> abandoned，随后为所属系列补齐实例"""
        return await self._transition(
            task_id, TaskStatus.ABANDONED, last_known_revision, actor_id, timezone, now
        )

    async def restore_task(
        self,
        task_id: str,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None = None,
    ) -> TaskView:
        """abandoned -> todo，清除放弃信息"""
        return await self._transition(
            task_id, TaskStatus.TODO, last_known_revision, actor_id, timezone, now
        )

    async def get_task_events(self, task_id: str, caller_id: str) -> list[Event]:
        """任务的活动日志，按 entity_seq 正序"""
        task = await self._load(task_id)
        await self._stores.directory_store.require_member(caller_id, task.project_id)
        return await self._stores.event_store.get_events_for_entity(EntityType.TASK, task_id)

    async def _transition(
        self,
        task_id: str,
        to_status: TaskStatus,
        last_known_revision: int,
        actor_id: str,
        timezone: str,
        now: datetime | None,
    ) -> TaskView:
        """状态流转：存在性 -> 权限 -> 并发守卫 -> 状态机校验 -> 写入 + 事件"""
        now = now or datetime.now(UTC)
        parse_timezone(timezone)

        async with self._stores.transaction():
            task = await self._load(task_id)
            await self._stores.directory_store.require_member(actor_id, task.project_id)
            check_revision("task", task_id, task.revision, last_known_revision)
            if not validate_transition(task.status, to_status):
                raise ValidationFailedError(
                    f"Cannot change task status from {task.status} to {to_status}"
                )

            values: dict = {"status": to_status, "updated_at": now}
            if to_status == TaskStatus.DONE:
                values.update(completed_at=now, completed_by=actor_id)
            elif to_status == TaskStatus.ABANDONED:
                values.update(abandoned_at=now, abandoned_by=actor_id)
            else:
                values.update(abandoned_at=None, abandoned_by=None)

            updated = task.model_copy(update=values)
            revision = await self._stores.task_store.update_task(updated, task.revision)
            updated = updated.model_copy(update={"revision": revision})
            await self._stores.event_store.record(
                EntityType.TASK,
                task_id,
                _TRANSITION_EVENTS[to_status],
                actor_id,
                StatusTransitionPayload(
                    from_status=task.status,
                    to_status=to_status,
                    revision=revision,
                ),
                now,
            )

        log.info(
            "task_status_changed",
            task_id=task_id,
            from_status=task.status,
            to_status=to_status,
        )

        if updated.series_id is not None and to_status in (
            TaskStatus.DONE,
            TaskStatus.ABANDONED,
        ):
            await self._top_up_best_effort(updated.series_id, timezone, now)

        return view_task(updated, timezone, now)

    async def _top_up_best_effort(self, series_id: str, timezone: str, now: datetime) -> None:
        """补齐失败只记录日志，不向调用方传播"""
        try:
            await top_up_series(self._stores, series_id, timezone, now)
        except Exception as e:
            log.warning(
                "series_top_up_failed",
                series_id=series_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    async def _load(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def _require_assignable(self, assignee_id: str | None, project_id: str) -> None:
        """指派人必须是项目成员"""
        if assignee_id is None:
            return
        if not await self._stores.directory_store.project_member_exists(assignee_id, project_id):
            raise ValidationFailedError("Assignee is not a member of this project")

    async def _require_free_slot(
        self,
        task: Task,
        scheduled_date: date,
        scheduled_time: int | None,
    ) -> None:
        """系列实例不能移到同一系列已占用的 (日期, 时刻) 槽位"""
        siblings = await self._stores.task_store.list_series_tasks(task.series_id)
        key = (scheduled_date, scheduled_time)
        if any(t.task_id != task.task_id and t.occurrence_key == key for t in siblings):
            raise ValidationFailedError(
                "Another occurrence of this series is already scheduled at that slot"
            )

    async def _require_tags(self, tag_ids: list[str]) -> list[str]:
        unique = sorted(set(tag_ids))
        if not await self._stores.directory_store.tags_exist(unique):
            raise NotFoundError("Tag not found")
        return unique

    @staticmethod
    def _date_text(value: date | str | None) -> str | None:
        """Patch 的值是请求中的字符串，现值是 date；统一成 YYYY-MM-DD 文本再解析"""
        if isinstance(value, date):
            return value.isoformat()
        return value
