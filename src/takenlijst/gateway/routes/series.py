"""系列路由

POST  /api/series: 创建系列并物化首批实例
GET   /api/series/{series_id}: 查询模板
PATCH /api/series/{series_id}: 部分更新（需携带 revision），按影响重新生成或修补实例
POST  /api/series/{series_id}/top-up: 手动补齐未来实例
"""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import Field
from starlette.responses import JSONResponse
from takenlijst.core.classifier import view_task
from takenlijst.core.models import Patch, SeriesDraft, SeriesTemplate, SeriesUpdate

from ..deps import get_caller_id, get_store_group, get_timezone
from ..services.series_service import SeriesService
from .tasks import require_revision, task_view_to_dict

router = APIRouter()

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "assignee_id",
    "default_tag_ids",
    "rrule",
    "anchor_date",
    "anchor_time_minutes",
    "deadline_offset_minutes",
)


class SeriesCreateRequest(SeriesDraft):
    """创建系列请求体"""

    timezone: str | None = Field(default=None, description="IANA 时区，缺省时取 X-Timezone")


def series_to_dict(series: SeriesTemplate) -> dict[str, Any]:
    return series.model_dump(mode="json")


@router.post("/api/series", status_code=201)
async def create_series(
    body: SeriesCreateRequest,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """创建系列，返回模板与首批实例"""
    tz = body.timezone or timezone
    service = SeriesService(store_group)
    series, created = await service.create_series(
        SeriesDraft.model_validate(body.model_dump(exclude={"timezone"})),
        caller_id,
        tz,
    )

    now = datetime.now(UTC)
    views = [view_task(task, tz, now) for task in created]
    return JSONResponse(
        status_code=201,
        content={
            "series": series_to_dict(series),
            "tasks": [task_view_to_dict(v) for v in views],
        },
    )


@router.get("/api/series/{series_id}")
async def get_series(
    series_id: str,
    caller_id: str = Depends(get_caller_id),
    store_group=Depends(get_store_group),
):
    service = SeriesService(store_group)
    return series_to_dict(await service.get_series(series_id, caller_id))


@router.patch("/api/series/{series_id}")
async def update_series(
    series_id: str,
    payload: dict[str, Any] = Body(description="部分更新：缺失字段保留，null 表示清空"),
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """部分更新系列"""
    update = SeriesUpdate(
        **{name: Patch.from_payload(payload, name) for name in _UPDATABLE_FIELDS}
    )
    service = SeriesService(store_group)
    series = await service.update_series(
        series_id,
        update,
        require_revision(payload),
        caller_id,
        payload.get("timezone") or timezone,
    )
    return series_to_dict(series)


@router.post("/api/series/{series_id}/top-up")
async def top_up_series(
    series_id: str,
    caller_id: str = Depends(get_caller_id),
    timezone: str = Depends(get_timezone),
    store_group=Depends(get_store_group),
):
    """补齐未来实例，返回新建的任务"""
    service = SeriesService(store_group)
    now = datetime.now(UTC)
    created = await service.top_up(series_id, caller_id, timezone, now)
    return {
        "created": [task_view_to_dict(view_task(task, timezone, now)) for task in created],
    }
