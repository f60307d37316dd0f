"""EventStore SQLite 实现 -- 活动日志

事件表 append-only：只允许插入，不允许更新或删除。
entity_seq 同一实体内严格单调递增。
"""

import json
import uuid
from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import BaseModel

from ..models.enums import EntityType, EventType
from ..models.event import Event
from .task_store import to_iso


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: Event) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO events (event_id, entity_type, entity_id, entity_seq, ts,
                                type, actor_id, payload)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.entity_type.value,
                event.entity_id,
                event.entity_seq,
                to_iso(event.ts),
                event.type.value,
                event.actor_id,
                json.dumps(event.payload, ensure_ascii=False),
            ),
        )

    async def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        event_type: EventType,
        actor_id: str,
        payload: BaseModel | dict[str, Any],
        ts: datetime,
    ) -> Event:
        """分配序号并追加一条事件

        在调用方事务内执行，MAX+1 与插入之间不会有其他写入者。
        """
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        event = Event(
            event_id=uuid.uuid4().hex,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_seq=await self.get_next_entity_seq(entity_type, entity_id),
            ts=ts,
            type=event_type,
            actor_id=actor_id,
            payload=payload,
        )
        await self.append_event(event)
        return event

    async def get_events_for_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[Event]:
        """查询指定实体的所有事件，按 entity_seq 正序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM events
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY entity_seq ASC
            """,
            (entity_type.value, entity_id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_next_entity_seq(self, entity_type: EntityType, entity_id: str) -> int:
        """获取指定实体的下一个 entity_seq（MAX+1）

        在事务内调用以确保原子性。
        """
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(entity_seq), 0) FROM events WHERE entity_type = ? AND entity_id = ?",
            (entity_type.value, entity_id),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> Event:
        """将数据库行转换为 Event 模型"""
        payload = json.loads(row["payload"]) if row["payload"] else {}
        return Event(
            event_id=row["event_id"],
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            entity_seq=row["entity_seq"],
            ts=datetime.fromisoformat(row["ts"]),
            type=EventType(row["type"]),
            actor_id=row["actor_id"],
            payload=payload,
        )
