"""HTTP 接口测试

测试内容：
1. 系列创建 / 查询 / 更新，错误码映射
2. 任务状态流转与补齐
3. 任务列表与历史
4. 调用方身份与时区请求头
5. 健康检查与请求 ID
"""

from datetime import UTC, datetime, timedelta

from httpx import AsyncClient

ALICE = {"X-User-ID": "alice", "X-Timezone": "UTC"}
CAROL = {"X-User-ID": "carol", "X-Timezone": "UTC"}


def _tomorrow() -> str:
    return (datetime.now(UTC).date() + timedelta(days=1)).isoformat()


def _series_body(**overrides) -> dict:
    body = {
        "project_id": "p1",
        "title": "Afval buiten zetten",
        "assignee_id": "bob",
        "default_tag_ids": ["t-home"],
        "rrule": "FREQ=DAILY",
        "anchor_date": _tomorrow(),
        "anchor_time_minutes": 9 * 60,
        "deadline_offset_minutes": 30,
    }
    body.update(overrides)
    return body


async def _create_series(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/series", json=_series_body(**overrides), headers=ALICE)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestSeriesApi:
    async def test_create_and_get(self, client: AsyncClient):
        data = await _create_series(client)

        series = data["series"]
        assert series["revision"] == 1
        assert series["rrule"] == "FREQ=DAILY"
        assert len(data["tasks"]) == 5
        first = data["tasks"][0]
        assert first["scheduled_date"] == _tomorrow()
        assert first["scheduled_time_minutes"] == 540
        assert first["deadline_time_minutes"] == 570
        assert first["bucket"] == "TOMORROW"
        assert first["is_overdue"] is False

        resp = await client.get(f"/api/series/{series['series_id']}", headers=ALICE)
        assert resp.status_code == 200
        assert resp.json() == series

    async def test_create_validation_error(self, client: AsyncClient):
        resp = await client.post(
            "/api/series", json=_series_body(deadline_offset_minutes=-1), headers=ALICE
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_FAILED"

    async def test_body_timezone_overrides_header(self, client: AsyncClient):
        resp = await client.post(
            "/api/series",
            json=_series_body(timezone="Not/AZone"),
            headers=ALICE,
        )
        assert resp.status_code == 422

    async def test_patch_title(self, client: AsyncClient):
        data = await _create_series(client)
        series_id = data["series"]["series_id"]

        resp = await client.patch(
            f"/api/series/{series_id}",
            json={"title": "Glas wegbrengen", "revision": 1},
            headers=ALICE,
        )

        assert resp.status_code == 200
        assert resp.json()["title"] == "Glas wegbrengen"
        assert resp.json()["revision"] == 2

        task_id = data["tasks"][0]["task_id"]
        detail = (await client.get(f"/api/tasks/{task_id}", headers=ALICE)).json()
        assert detail["task"]["title"] == "Glas wegbrengen"
        assert [e["type"] for e in detail["events"]] == ["TASK_CREATED", "TASK_UPDATED"]

    async def test_patch_stale_revision(self, client: AsyncClient):
        data = await _create_series(client)
        series_id = data["series"]["series_id"]
        await client.patch(
            f"/api/series/{series_id}", json={"title": "Eerste", "revision": 1}, headers=ALICE
        )

        resp = await client.patch(
            f"/api/series/{series_id}", json={"title": "Tweede", "revision": 1}, headers=ALICE
        )

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "CONFLICT_STALE_WRITE"

    async def test_patch_requires_revision(self, client: AsyncClient):
        data = await _create_series(client)
        resp = await client.patch(
            f"/api/series/{data['series']['series_id']}", json={"title": "x"}, headers=ALICE
        )
        assert resp.status_code == 422

    async def test_patch_null_clears_optional_field(self, client: AsyncClient):
        data = await _create_series(client, description="aan de straat")
        resp = await client.patch(
            f"/api/series/{data['series']['series_id']}",
            json={"description": None, "revision": 1},
            headers=ALICE,
        )
        assert resp.status_code == 200
        assert resp.json()["description"] is None

    async def test_unknown_series(self, client: AsyncClient):
        resp = await client.get("/api/series/missing", headers=ALICE)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_non_member(self, client: AsyncClient):
        data = await _create_series(client)
        resp = await client.get(f"/api/series/{data['series']['series_id']}", headers=CAROL)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_top_up_is_idempotent(self, client: AsyncClient):
        data = await _create_series(client)
        resp = await client.post(
            f"/api/series/{data['series']['series_id']}/top-up", headers=ALICE
        )
        assert resp.status_code == 200
        assert resp.json() == {"created": []}


class TestTaskApi:
    async def test_complete_tops_up_series(self, client: AsyncClient):
        data = await _create_series(client)
        task_id = data["tasks"][0]["task_id"]

        resp = await client.post(
            f"/api/tasks/{task_id}/complete", json={"revision": 1}, headers=ALICE
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "done"
        assert resp.json()["completed_by"] == "alice"

        listing = await client.get("/api/tasks", params={"project_id": "p1"}, headers=ALICE)
        assert listing.json()["total_count"] == 5

    async def test_illegal_transition(self, client: AsyncClient):
        created = await client.post(
            "/api/tasks", json={"project_id": "p1", "title": "Bellen"}, headers=ALICE
        )
        task_id = created.json()["task_id"]

        resp = await client.post(
            f"/api/tasks/{task_id}/restore", json={"revision": 1}, headers=ALICE
        )
        assert resp.status_code == 422

    async def test_create_and_patch_task(self, client: AsyncClient):
        created = await client.post(
            "/api/tasks",
            json={"project_id": "p1", "title": "Bellen", "deadline_date": _tomorrow()},
            headers=ALICE,
        )
        assert created.status_code == 201
        assert created.json()["bucket"] == "TOMORROW"

        resp = await client.patch(
            f"/api/tasks/{created.json()['task_id']}",
            json={"deadline_date": None, "assignee_id": "bob", "revision": 1},
            headers=ALICE,
        )
        assert resp.status_code == 200
        assert resp.json()["deadline_date"] is None
        assert resp.json()["assignee_id"] == "bob"
        assert resp.json()["bucket"] == "NO_DATE"

    async def test_list_filters(self, client: AsyncClient):
        await _create_series(client)
        await client.post(
            "/api/tasks", json={"project_id": "p1", "title": "Losse taak"}, headers=ALICE
        )

        mine = await client.get(
            "/api/tasks",
            params={"project_id": "p1", "assigned_to_me": "true"},
            headers={"X-User-ID": "bob"},
        )
        assert mine.json()["total_count"] == 5

        tagged = await client.get(
            "/api/tasks",
            params={"project_id": "p1", "tag_id": ["t-home"], "limit": 2},
            headers=ALICE,
        )
        assert tagged.json()["total_count"] == 5
        assert len(tagged.json()["items"]) == 2

    async def test_history(self, client: AsyncClient):
        created = await client.post(
            "/api/tasks", json={"project_id": "p1", "title": "Bellen"}, headers=ALICE
        )
        task_id = created.json()["task_id"]
        await client.post(f"/api/tasks/{task_id}/abandon", json={"revision": 1}, headers=ALICE)

        resp = await client.get("/api/history", headers=ALICE)

        assert resp.status_code == 200
        assert [item["task_id"] for item in resp.json()["items"]] == [task_id]
        assert resp.json()["items"][0]["status"] == "abandoned"

    async def test_missing_caller(self, client: AsyncClient):
        resp = await client.get("/api/tasks", params={"project_id": "p1"})
        assert resp.status_code == 422

    async def test_bad_timezone_header(self, client: AsyncClient):
        resp = await client.get(
            "/api/tasks",
            params={"project_id": "p1"},
            headers={"X-User-ID": "alice", "X-Timezone": "Mars/Olympus"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_FAILED"


class TestHealthAndMiddleware:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_ready(self, client: AsyncClient):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ready"
        assert body["checks"]["sqlite"] == "ok"
        assert body["checks"]["wal_mode"] == "ok"

    async def test_request_id_header(self, client: AsyncClient):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 32

    async def test_upstream_request_id_is_echoed(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "edge-7f3a"})
        assert resp.headers["X-Request-ID"] == "edge-7f3a"
