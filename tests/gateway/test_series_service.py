"""SeriesService 测试

测试内容：
1. 创建：校验、首批物化、活动日志
2. 过期 revision 被拒绝且数据保持不变
3. 仅标题变化：就地修补所有 todo 实例，不增删
4. 规则变化：删除未来 todo，重新生成；已完成 / 已放弃保持不变
5. deadline 偏移边界（创建与更新）
6. 权限 / 引用校验
"""

from datetime import UTC, date, datetime, timedelta

import pytest
from takenlijst.core.exceptions import (
    ConflictStaleWriteError,
    NotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from takenlijst.core.models import (
    EntityType,
    EventType,
    Patch,
    SeriesDraft,
    SeriesUpdate,
    TaskStatus,
)
from takenlijst.gateway.services.series_service import SeriesService
from takenlijst.gateway.services.task_service import TaskService

# 2025-06-10 12:00 Amsterdam
NOW = datetime(2025, 6, 10, 10, 0, tzinfo=UTC)
AMS = "Europe/Amsterdam"


def _draft(**overrides) -> SeriesDraft:
    fields = dict(
        project_id="p1",
        title="Vaatwasser uitruimen",
        description="Elke dag",
        assignee_id="bob",
        default_tag_ids=["t-home"],
        rrule="FREQ=DAILY",
        anchor_date="2025-06-10",
        anchor_time_minutes=13 * 60,
        deadline_offset_minutes=120,
    )
    fields.update(overrides)
    return SeriesDraft(**fields)


async def _snapshot(store_group, series_id: str):
    series = await store_group.series_store.get_series(series_id)
    tasks = await store_group.task_store.list_series_tasks(series_id)
    return series.model_dump(), [t.model_dump() for t in tasks]


class TestCreateSeries:
    async def test_create_materializes_five(self, directory):
        service = SeriesService(directory)

        series, tasks = await service.create_series(_draft(), "alice", AMS, NOW)

        assert series.revision == 1
        assert series.created_by == "alice"
        assert [t.scheduled_date for t in tasks] == [date(2025, 6, d) for d in range(10, 15)]
        assert all(t.scheduled_time_minutes == 780 for t in tasks)
        assert all(t.deadline_time_minutes == 900 for t in tasks)
        assert all(t.assignee_id == "bob" and t.tag_ids == ["t-home"] for t in tasks)

        events = await directory.event_store.get_events_for_entity(
            EntityType.SERIES, series.series_id
        )
        assert [e.type for e in events] == [EventType.SERIES_CREATED]
        assert events[0].payload["materialized"] == 5

    async def test_rule_is_normalized_for_date_only_series(self, directory):
        service = SeriesService(directory)
        series, tasks = await service.create_series(
            _draft(rrule="RRULE:FREQ=DAILY;BYHOUR=7", anchor_time_minutes=None), "alice", AMS, NOW
        )
        assert series.rrule == "FREQ=DAILY"
        assert tasks[0].scheduled_date == date(2025, 6, 11)

    async def test_title_is_trimmed(self, directory):
        series, _ = await SeriesService(directory).create_series(
            _draft(title="  Stofzuigen  "), "alice", AMS, NOW
        )
        assert series.title == "Stofzuigen"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": "   "},
            {"title": "x" * 121},
            {"description": "x" * 5001},
            {"rrule": "FREQ=HOURLY;INTERVAL=-1"},
            {"rrule": "nonsense"},
            {"anchor_date": "10-06-2025"},
            {"anchor_date": "2025-06-09"},
            {"anchor_time_minutes": 11 * 60},
            {"anchor_time_minutes": 1440},
        ],
    )
    async def test_invalid_input(self, directory, overrides):
        with pytest.raises(ValidationFailedError):
            await SeriesService(directory).create_series(_draft(**overrides), "alice", AMS, NOW)
        assert await directory.series_store.list_series_ids() == []

    async def test_invalid_timezone(self, directory):
        with pytest.raises(ValidationFailedError):
            await SeriesService(directory).create_series(_draft(), "alice", "Moon/Base", NOW)

    async def test_non_member(self, directory):
        with pytest.raises(PermissionDeniedError):
            await SeriesService(directory).create_series(_draft(), "carol", AMS, NOW)

    async def test_unknown_assignee(self, directory):
        with pytest.raises(NotFoundError):
            await SeriesService(directory).create_series(
                _draft(assignee_id="nobody"), "alice", AMS, NOW
            )

    async def test_unknown_tag(self, directory):
        with pytest.raises(NotFoundError):
            await SeriesService(directory).create_series(
                _draft(default_tag_ids=["t-home", "t-missing"]), "alice", AMS, NOW
            )


class TestDeadlineOffsetBounds:
    @pytest.mark.parametrize("offset", [-1, 525601])
    async def test_create_rejects(self, directory, offset):
        with pytest.raises(ValidationFailedError):
            await SeriesService(directory).create_series(
                _draft(deadline_offset_minutes=offset), "alice", AMS, NOW
            )

    @pytest.mark.parametrize("offset", [0, 525600])
    async def test_create_accepts(self, directory, offset):
        series, _ = await SeriesService(directory).create_series(
            _draft(deadline_offset_minutes=offset), "alice", AMS, NOW
        )
        assert series.deadline_offset_minutes == offset

    @pytest.mark.parametrize("offset", [-1, 525601])
    async def test_update_rejects(self, directory, offset):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        before = await _snapshot(directory, series.series_id)

        with pytest.raises(ValidationFailedError):
            await service.update_series(
                series.series_id,
                SeriesUpdate(deadline_offset_minutes=Patch.of(offset)),
                1,
                "alice",
                AMS,
                NOW,
            )
        assert await _snapshot(directory, series.series_id) == before

    @pytest.mark.parametrize("offset", [0, 525600])
    async def test_update_accepts(self, directory, offset):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)

        updated = await service.update_series(
            series.series_id,
            SeriesUpdate(deadline_offset_minutes=Patch.of(offset)),
            1,
            "alice",
            AMS,
            NOW,
        )
        assert updated.deadline_offset_minutes == offset
        assert updated.revision == 2


class TestUpdateSeries:
    async def test_stale_revision_changes_nothing(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        await service.update_series(
            series.series_id, SeriesUpdate(title=Patch.of("Eerste")), 1, "alice", AMS, NOW
        )
        before = await _snapshot(directory, series.series_id)

        with pytest.raises(ConflictStaleWriteError):
            await service.update_series(
                series.series_id,
                SeriesUpdate(title=Patch.of("Tweede"), rrule=Patch.of("FREQ=WEEKLY")),
                1,
                "bob",
                AMS,
                NOW,
            )

        assert await _snapshot(directory, series.series_id) == before

    async def test_title_only_patches_every_todo(self, directory):
        service = SeriesService(directory)
        series, created = await service.create_series(_draft(), "alice", AMS, NOW)

        updated = await service.update_series(
            series.series_id, SeriesUpdate(title=Patch.of("Afwassen")), 1, "bob", AMS, NOW
        )

        assert updated.title == "Afwassen"
        assert updated.revision == 2
        tasks = await directory.task_store.list_series_tasks(series.series_id)
        assert [t.task_id for t in tasks] == [t.task_id for t in created]
        assert all(t.title == "Afwassen" for t in tasks)
        assert all(t.revision == 2 for t in tasks)

        events = await directory.event_store.get_events_for_entity(EntityType.TASK, tasks[0].task_id)
        assert events[-1].type == EventType.TASK_UPDATED
        assert events[-1].payload["via_series"] is True

    async def test_title_only_edit_does_not_refill_expired_occurrences(self, directory):
        """修补路径不增删实例，即使期间已有实例过期"""
        service = SeriesService(directory)
        series, created = await service.create_series(_draft(), "alice", AMS, NOW)
        two_days_later = NOW + timedelta(days=2)

        await service.update_series(
            series.series_id,
            SeriesUpdate(title=Patch.of("Afwassen")),
            1,
            "alice",
            AMS,
            two_days_later,
        )

        tasks = await directory.task_store.list_series_tasks(series.series_id)
        assert [t.task_id for t in tasks] == [t.task_id for t in created]
        assert all(t.title == "Afwassen" for t in tasks)

    async def test_patch_leaves_done_tasks_alone(self, directory):
        service = SeriesService(directory)
        series, created = await service.create_series(_draft(), "alice", AMS, NOW)
        await TaskService(directory).complete_task(created[0].task_id, 1, "bob", AMS, NOW)

        await service.update_series(
            series.series_id,
            SeriesUpdate(description=Patch.cleared(), assignee_id=Patch.of("alice")),
            1,
            "alice",
            AMS,
            NOW,
        )

        done = await directory.task_store.get_task(created[0].task_id)
        assert (done.description, done.assignee_id) == ("Elke dag", "bob")
        todos = await directory.task_store.list_series_tasks(series.series_id, TaskStatus.TODO)
        assert len(todos) == 5
        assert all(t.description is None and t.assignee_id == "alice" for t in todos)

    async def test_tag_change_replaces_todo_tags(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)

        updated = await service.update_series(
            series.series_id,
            SeriesUpdate(default_tag_ids=Patch.of(["t-work"])),
            1,
            "alice",
            AMS,
            NOW,
        )

        assert updated.default_tag_ids == ["t-work"]
        assert (await directory.series_store.get_series(series.series_id)).default_tag_ids == [
            "t-work"
        ]
        todos = await directory.task_store.list_series_tasks(series.series_id, TaskStatus.TODO)
        assert all(t.tag_ids == ["t-work"] for t in todos)

    async def test_rule_change_regenerates(self, directory):
        service = SeriesService(directory)
        tasks = TaskService(directory)
        series, created = await service.create_series(_draft(), "alice", AMS, NOW)
        await tasks.complete_task(created[0].task_id, 1, "bob", AMS, NOW)
        await tasks.abandon_task(created[1].task_id, 1, "bob", AMS, NOW)

        await service.update_series(
            series.series_id, SeriesUpdate(rrule=Patch.of("FREQ=WEEKLY")), 1, "alice", AMS, NOW
        )

        all_tasks = await directory.task_store.list_series_tasks(series.series_id)
        by_status = {s: [t for t in all_tasks if t.status == s] for s in TaskStatus}
        assert [t.task_id for t in by_status[TaskStatus.DONE]] == [created[0].task_id]
        assert [t.task_id for t in by_status[TaskStatus.ABANDONED]] == [created[1].task_id]
        # 6-10（周二）已被完成的实例占用，新规则从下周开始
        assert [t.scheduled_date for t in by_status[TaskStatus.TODO]] == [
            date(2025, 6, 17),
            date(2025, 6, 24),
            date(2025, 7, 1),
            date(2025, 7, 8),
            date(2025, 7, 15),
        ]
        assert all(t.author_id == "alice" for t in by_status[TaskStatus.TODO])

        events = await directory.event_store.get_events_for_entity(
            EntityType.SERIES, series.series_id
        )
        assert events[-1].payload["path"] == "regenerate"

    async def test_today_past_occurrence_survives_regeneration(self, directory):
        """今天时刻已过的 todo 不被删除"""
        service = SeriesService(directory)
        series, created = await service.create_series(_draft(), "alice", AMS, NOW)
        afternoon = datetime(2025, 6, 10, 12, 0, tzinfo=UTC)  # 14:00 Amsterdam

        await service.update_series(
            series.series_id,
            SeriesUpdate(deadline_offset_minutes=Patch.of(30)),
            1,
            "alice",
            AMS,
            afternoon,
        )

        survivor = await directory.task_store.get_task(created[0].task_id)
        assert survivor is not None
        assert survivor.deadline_time_minutes == 900
        todos = await directory.task_store.list_series_tasks(series.series_id, TaskStatus.TODO)
        assert len(todos) == 6
        assert all(t.deadline_time_minutes == 810 for t in todos[1:])

    async def test_clearing_anchor_time_makes_series_date_only(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(
            _draft(rrule="FREQ=DAILY;BYHOUR=13"), "alice", AMS, NOW
        )

        updated = await service.update_series(
            series.series_id,
            SeriesUpdate(anchor_time_minutes=Patch.cleared()),
            1,
            "alice",
            AMS,
            NOW,
        )

        assert updated.anchor_time_minutes is None
        assert updated.rrule == "FREQ=DAILY"
        todos = await directory.task_store.list_series_tasks(series.series_id, TaskStatus.TODO)
        assert [t.scheduled_date for t in todos] == [date(2025, 6, d) for d in range(11, 16)]
        assert all(t.scheduled_time_minutes is None for t in todos)

    @pytest.mark.parametrize("field", ["title", "rrule", "anchor_date", "deadline_offset_minutes"])
    async def test_required_fields_cannot_be_cleared(self, directory, field):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        with pytest.raises(ValidationFailedError):
            await service.update_series(
                series.series_id, SeriesUpdate(**{field: Patch.cleared()}), 1, "alice", AMS, NOW
            )

    async def test_past_anchor_date_rejected_on_update(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        with pytest.raises(ValidationFailedError):
            await service.update_series(
                series.series_id,
                SeriesUpdate(anchor_date=Patch.of("2025-06-01")),
                1,
                "alice",
                AMS,
                NOW,
            )

    async def test_old_anchor_is_fine_when_not_supplied(self, directory):
        """锚点日期未提交时不检查是否已过"""
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        next_week = datetime(2025, 6, 17, 10, 0, tzinfo=UTC)

        updated = await service.update_series(
            series.series_id,
            SeriesUpdate(rrule=Patch.of("FREQ=DAILY;INTERVAL=2")),
            1,
            "alice",
            AMS,
            next_week,
        )
        assert updated.anchor_date == date(2025, 6, 10)

    async def test_empty_update_is_a_no_op(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)

        unchanged = await service.update_series(series.series_id, SeriesUpdate(), 1, "alice", AMS, NOW)

        assert unchanged.revision == 1

    async def test_unknown_series(self, directory):
        with pytest.raises(NotFoundError):
            await SeriesService(directory).update_series(
                "missing", SeriesUpdate(title=Patch.of("x")), 1, "alice", AMS, NOW
            )

    async def test_non_member_cannot_update(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        with pytest.raises(PermissionDeniedError):
            await service.update_series(
                series.series_id, SeriesUpdate(title=Patch.of("x")), 1, "carol", AMS, NOW
            )


class TestGetAndTopUp:
    async def test_get_series(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)

        loaded = await service.get_series(series.series_id, "bob")

        assert loaded == series

    async def test_get_series_requires_membership(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        with pytest.raises(PermissionDeniedError):
            await service.get_series(series.series_id, "carol")

    async def test_manual_top_up_is_idempotent(self, directory):
        service = SeriesService(directory)
        series, _ = await service.create_series(_draft(), "alice", AMS, NOW)
        assert await service.top_up(series.series_id, "alice", AMS, NOW) == []
