"""Store Protocol 接口定义

物化器与补齐逻辑只依赖这些结构化接口，不绑定具体的 SQLite 实现。
"""

from datetime import date, datetime
from typing import Any, Protocol

from pydantic import BaseModel

from ..models.enums import EntityType, EventType, TaskStatus
from ..models.event import Event
from ..models.series import SeriesTemplate
from ..models.task import Task


class SeriesStore(Protocol):
    """Series 存储接口"""

    async def get_series(self, series_id: str) -> SeriesTemplate | None:
        ...

    async def list_series_ids(self) -> list[str]:
        ...


class TaskStore(Protocol):
    """Task 存储接口（物化器使用的子集）"""

    async def create_task(self, task: Task) -> bool:
        """插入任务；槽位已被占用时返回 False"""
        ...

    async def list_series_tasks(
        self,
        series_id: str,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        ...

    async def delete_future_todos(self, series_id: str, today: date, now_minutes: int) -> int:
        ...


class EventStore(Protocol):
    """Event 存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        event_type: EventType,
        actor_id: str,
        payload: BaseModel | dict[str, Any],
        ts: datetime,
    ) -> Event:
        ...

    async def get_events_for_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[Event]:
        ...
