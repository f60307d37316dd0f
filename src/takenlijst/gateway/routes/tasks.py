"""任务路由

POST  /api/tasks: 创建独立任务
GET   /api/tasks: 项目内任务列表（含逾期标记与分组）
GET   /api/tasks/{task_id}: 任务详情 + 活动日志
PATCH /api/tasks/{task_id}: 部分更新（需携带 revision）
POST  /api/tasks/{task_id}/complete|abandon|restore: 状态流转（需携带 revision）
GET   /api/history: 已完成 / 已放弃任务历史
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse
from takenlijst.core.config import LIST_DEFAULT_LIMIT, LIST_MAX_LIMIT
from takenlijst.core.exceptions import ValidationFailedError
from takenlijst.core.models import (
    HistoryQuery,
    Patch,
    TaskDraft,
    TaskListQuery,
    TaskStatus,
    TaskUpdate,
    TaskView,
)

from ..deps import get_caller_id, get_store_group, get_timezone
from ..services.task_service import TaskService

router = APIRouter()


class TaskCreateRequest(TaskDraft):
    """创建任务请求体"""


class TransitionRequest(BaseModel):
    """状态流转请求体"""

    revision: int = Field(description="调用方持有的 revision")


def task_view_to_dict(view: TaskView) -> dict[str, Any]:
    """序列化带派生字段的任务"""
    return {
        **view.task.model_dump(mode="json"),
        "is_overdue": view.is_overdue,
        "bucket": view.bucket.value,
    }


def require_revision(payload: dict[str, Any]) -> int:
    revision = payload.get("revision")
    if isinstance(revision, bool) or not isinstance(revision, int):
        raise ValidationFailedError("revision is required and must be an integer")
    return revision


@router.post("/api/tasks", status_code=201)
async def create_task(
    body: TaskCreateRequest,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """创建独立任务"""
    service = TaskService(store_group)
    view = await service.create_task(body, caller_id, timezone)
    return JSONResponse(status_code=201, content=task_view_to_dict(view))


@router.get("/api/tasks")
async def list_tasks(
    project_id: str = Query(description="项目 ID"),
    status: list[TaskStatus] = Query(default=[TaskStatus.TODO], description="按状态筛选"),
    assignee_id: str | None = Query(default=None),
    include_unassigned: bool = Query(default=False),
    assigned_to_me: bool = Query(default=False),
    tag_id: list[str] = Query(default=[]),
    search: str | None = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=LIST_DEFAULT_LIMIT, ge=1, le=LIST_MAX_LIMIT),
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """项目内任务列表，按计划时间 -> deadline -> 创建时间排序"""
    service = TaskService(store_group)
    page = await service.list_tasks(
        TaskListQuery(
            project_id=project_id,
            timezone=timezone,
            statuses=status,
            assignee_id=assignee_id,
            include_unassigned=include_unassigned,
            assigned_to_me=assigned_to_me,
            tag_ids=tag_id,
            search=search,
            offset=offset,
            limit=limit,
        ),
        caller_id,
    )
    return {
        "items": [task_view_to_dict(v) for v in page.items],
        "total_count": page.total_count,
    }


@router.get("/api/history")
async def list_history(
    status: list[TaskStatus] = Query(default=[TaskStatus.DONE, TaskStatus.ABANDONED]),
    project_id: str | None = Query(default=None),
    tag_id: list[str] = Query(default=[]),
    completer_id: str | None = Query(default=None),
    from_date: str | None = Query(default=None, description="YYYY-MM-DD"),
    to_date: str | None = Query(default=None, description="YYYY-MM-DD"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=LIST_DEFAULT_LIMIT, ge=1, le=LIST_MAX_LIMIT),
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """已完成 / 已放弃任务历史，按完成时间倒序"""
    service = TaskService(store_group)
    page = await service.list_history(
        HistoryQuery(
            timezone=timezone,
            statuses=status,
            project_id=project_id,
            tag_ids=tag_id,
            completer_id=completer_id,
            from_date=from_date,
            to_date=to_date,
            offset=offset,
            limit=limit,
        ),
        caller_id,
    )
    return {
        "items": [task_view_to_dict(v) for v in page.items],
        "total_count": page.total_count,
    }


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """查询任务详情，包含活动日志"""
    service = TaskService(store_group)
    view = await service.get_task(task_id, caller_id, timezone)
    events = await service.get_task_events(task_id, caller_id)

    return {
        "task": task_view_to_dict(view),
        "events": [
            {
                "event_id": e.event_id,
                "entity_seq": e.entity_seq,
                "ts": e.ts.isoformat(),
                "type": e.type.value,
                "actor_id": e.actor_id,
                "payload": e.payload,
            }
            for e in events
        ],
    }


@router.patch("/api/tasks/{task_id}")
async def update_task(
    task_id: str,
    payload: dict[str, Any] = Body(description="部分更新：缺失字段保留，null 表示清空"),
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """部分更新任务"""
    update = TaskUpdate(
        title=Patch.from_payload(payload, "title"),
        description=Patch.from_payload(payload, "description"),
        assignee_id=Patch.from_payload(payload, "assignee_id"),
        scheduled_date=Patch.from_payload(payload, "scheduled_date"),
        scheduled_time_minutes=Patch.from_payload(payload, "scheduled_time_minutes"),
        deadline_date=Patch.from_payload(payload, "deadline_date"),
        deadline_time_minutes=Patch.from_payload(payload, "deadline_time_minutes"),
        tag_ids=Patch.from_payload(payload, "tag_ids"),
    )
    service = TaskService(store_group)
    view = await service.update_task(
        task_id, update, require_revision(payload), caller_id, timezone
    )
    return task_view_to_dict(view)


@router.post("/api/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    body: TransitionRequest,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """todo -> done"""
    service = TaskService(store_group)
    view = await service.complete_task(task_id, body.revision, caller_id, timezone)
    return task_view_to_dict(view)


@router.post("/api/tasks/{task_id}/abandon")
async def abandon_task(
    task_id: str,
    body: TransitionRequest,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """todo -> abandoned"""
    service = TaskService(store_group)
    view = await service.abandon_task(task_id, body.revision, caller_id, timezone)
    return task_view_to_dict(view)


@router.post("/api/tasks/{task_id}/restore")
async def restore_task(
    task_id: str,
    body: TransitionRequest,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """abandoned -> todo"""
    service = TaskService(store_group)
    view = await service.restore_task(task_id, body.revision, caller_id, timezone)
    return task_view_to_dict(view)
