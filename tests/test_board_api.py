"""Tests for the board HTTP API (server/task_api.py, server/api.py)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from taskboard.client.errors import MoveFailed, RefetchFailed
from taskboard.client.transport import HttpBoardClient
from taskboard.ordering.model import ChangeStatus, Reorder, Reparent
from taskboard.server import create_app


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    d = tmp_path / "project"
    d.mkdir()
    return d


@pytest.fixture
def app(project_dir: Path):
    return create_app(project_dir=project_dir, enable_cors=False)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def seeded(client: TestClient) -> dict[str, str]:
    ids: dict[str, str] = {}
    for name, completed in (("todo", False), ("done", True)):
        resp = client.post("/api/projects/p1/statuses", json={"name": name.title(), "is_completed_status": completed})
        assert resp.status_code == 201
        ids[name] = resp.json()["status"]["id"]
    for title in ("A", "B", "C"):
        resp = client.post("/api/projects/p1/tasks", json={"title": title, "status_id": ids["todo"]})
        assert resp.status_code == 201
        ids[title] = resp.json()["task"]["id"]
    return ids


def _todo_ids(client: TestClient, status_id: str) -> list[str]:
    columns = client.get("/api/projects/p1/board").json()["columns"]
    return [t["id"] for t in columns[status_id] if t["parent_id"] is None]


class TestBasics:
    def test_health(self, client: TestClient) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_empty_board(self, client: TestClient) -> None:
        resp = client.get("/api/projects/p1/board")
        assert resp.status_code == 200
        data = resp.json()
        assert data["board"]["tasks"] == []
        assert data["columns"] == {}

    def test_create_list_get_delete(self, client: TestClient, seeded: dict[str, str]) -> None:
        resp = client.get("/api/projects/p1/tasks")
        assert resp.json()["total"] == 3
        assert [t["order"] for t in resp.json()["tasks"]] == [1000.0, 2000.0, 3000.0]

        resp = client.get(f"/api/tasks/{seeded['A']}")
        assert resp.json()["task"]["title"] == "A"

        assert client.delete(f"/api/tasks/{seeded['A']}").status_code == 200
        assert client.get(f"/api/tasks/{seeded['A']}").status_code == 404
        assert client.delete(f"/api/tasks/{seeded['A']}").status_code == 404

    def test_statuses_listed_in_column_order(self, client: TestClient, seeded: dict[str, str]) -> None:
        statuses = client.get("/api/projects/p1/statuses").json()["statuses"]
        assert [s["id"] for s in statuses] == [seeded["todo"], seeded["done"]]

    def test_blank_title_rejected(self, client: TestClient) -> None:
        resp = client.post("/api/projects/p1/tasks", json={"title": ""})
        assert resp.status_code == 422


class TestMoveEndpoint:
    def test_reorder(self, client: TestClient, seeded: dict[str, str]) -> None:
        resp = client.post(
            f"/api/tasks/{seeded['C']}/move",
            json={"is_same_group_reorder": True, "before_task_id": seeded["B"]},
        )
        assert resp.status_code == 200
        assert 1000.0 < resp.json()["task"]["order"] < 2000.0
        assert _todo_ids(client, seeded["todo"]) == [seeded["A"], seeded["C"], seeded["B"]]

    def test_status_move_completes(self, client: TestClient, seeded: dict[str, str]) -> None:
        resp = client.post(f"/api/tasks/{seeded['A']}/move", json={"target_status_id": seeded["done"]})
        task = resp.json()["task"]
        assert task["status_id"] == seeded["done"]
        assert task["completed"] is True

    def test_explicit_null_parent_promotes(self, client: TestClient, seeded: dict[str, str]) -> None:
        client.post(f"/api/tasks/{seeded['B']}/move", json={"target_parent_id": seeded["A"]})
        assert client.get(f"/api/tasks/{seeded['B']}").json()["task"]["parent_id"] == seeded["A"]

        # Omitting the parent keeps it.
        client.post(f"/api/tasks/{seeded['B']}/move", json={"target_status_id": seeded["done"]})
        assert client.get(f"/api/tasks/{seeded['B']}").json()["task"]["parent_id"] == seeded["A"]

        resp = client.post(f"/api/tasks/{seeded['B']}/move", json={"target_parent_id": None})
        assert resp.json()["task"]["parent_id"] is None

    def test_activity_recorded_with_actor(self, client: TestClient, seeded: dict[str, str]) -> None:
        client.post(
            f"/api/tasks/{seeded['A']}/move",
            json={"target_status_id": seeded["done"]},
            headers={"X-Actor": "alice"},
        )
        rows = client.get("/api/projects/p1/activity", params={"task_id": seeded["A"]}).json()["activity"]
        assert rows[0]["actor"] == "alice"
        assert rows[0]["description"] == 'moved "A" to Done'


class TestErrorMapping:
    def _error(self, resp) -> dict[str, Any]:
        body = resp.json()
        assert set(body) == {"error", "detail", "retryable"}
        return body

    def test_unknown_task_is_404(self, client: TestClient) -> None:
        resp = client.post("/api/tasks/task-missing/move", json={"is_same_group_reorder": True})
        assert resp.status_code == 404
        assert self._error(resp)["error"] == "task_not_found"

    def test_cycle_is_400(self, client: TestClient, seeded: dict[str, str]) -> None:
        client.post(f"/api/tasks/{seeded['B']}/move", json={"target_parent_id": seeded["A"]})
        resp = client.post(f"/api/tasks/{seeded['A']}/move", json={"target_parent_id": seeded["B"]})
        assert resp.status_code == 400
        body = self._error(resp)
        assert body["error"] == "cyclic_parent"
        assert body["retryable"] is False

    def test_unknown_status_is_400(self, client: TestClient, seeded: dict[str, str]) -> None:
        resp = client.post(f"/api/tasks/{seeded['A']}/move", json={"target_status_id": "status-missing"})
        assert resp.status_code == 400
        assert self._error(resp)["error"] == "status_not_found"

    @pytest.mark.parametrize(
        "extra",
        [{"target_status_id": "done"}, {"target_parent_id": "A"}, {"target_parent_id": None}],
    )
    def test_reorder_with_destination_is_400(
        self, client: TestClient, seeded: dict[str, str], extra: dict[str, Any]
    ) -> None:
        payload = {k: (seeded[v] if v else v) for k, v in extra.items()}
        resp = client.post(
            f"/api/tasks/{seeded['B']}/move",
            json={"is_same_group_reorder": True, **payload},
        )
        assert resp.status_code == 400
        assert self._error(resp)["error"] == "invalid_target"
        assert _todo_ids(client, seeded["todo"]) == [seeded["A"], seeded["B"], seeded["C"]]

    def test_denied_actor_is_403(self, project_dir: Path) -> None:
        state_dir = project_dir / ".taskboard"
        state_dir.mkdir()
        (state_dir / "config.yaml").write_text("server:\n  denied_actors: [mallory]\n", encoding="utf-8")
        client = TestClient(create_app(project_dir=project_dir, enable_cors=False))
        status_id = client.post("/api/projects/p1/statuses", json={"name": "Todo"}).json()["status"]["id"]
        task_id = client.post("/api/projects/p1/tasks", json={"title": "A", "status_id": status_id}).json()["task"]["id"]

        resp = client.post(
            f"/api/tasks/{task_id}/move",
            json={"is_same_group_reorder": True},
            headers={"X-Actor": "mallory"},
        )
        assert resp.status_code == 403
        assert self._error(resp)["error"] == "forbidden"


class TestRebalanceEndpoint:
    def test_force_and_if_needed(self, client: TestClient, seeded: dict[str, str]) -> None:
        resp = client.post("/api/projects/p1/rebalance", json={"status_id": seeded["todo"], "force": False})
        assert resp.json()["total"] == 0

        client.post(
            f"/api/tasks/{seeded['C']}/move",
            json={"is_same_group_reorder": True, "before_task_id": seeded["B"]},
        )
        resp = client.post("/api/projects/p1/rebalance", json={"status_id": seeded["todo"]})
        assert resp.status_code == 200
        tasks = client.get("/api/projects/p1/tasks").json()["tasks"]
        assert [t["order"] for t in tasks] == [1000.0, 2000.0, 3000.0]
        assert [t["id"] for t in tasks] == [seeded["A"], seeded["C"], seeded["B"]]


@pytest.mark.anyio
class TestHttpBoardClient:
    async def test_fetch_and_move(self, app, seeded: dict[str, str]) -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            client = HttpBoardClient("http://test", client=http)
            board = await client.fetch_board("p1")
            assert [t.title for t in board.tasks] == ["A", "B", "C"]

            task = await client.move(seeded["C"], Reorder(before_task_id=seeded["A"]))
            assert task.order == 500.0

            task = await client.move(seeded["C"], ChangeStatus(status_id=seeded["done"]))
            assert task.completed is True

            task = await client.move(seeded["B"], Reparent(parent_id=seeded["A"]))
            assert task.parent_id == seeded["A"]

    async def test_error_body_mapped(self, app, seeded: dict[str, str]) -> None:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            client = HttpBoardClient("http://test", client=http)
            with pytest.raises(MoveFailed) as info:
                await client.move(seeded["A"], Reparent(parent_id=seeded["A"]))
        assert info.value.status_code == 400
        assert info.value.code == "self_parent"
        assert info.value.retryable is False

    @pytest.mark.parametrize("body", ["<html>maintenance</html>", "{}", '{"board": []}'])
    async def test_unreadable_board_is_refetch_failure(self, body: str) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            client = HttpBoardClient("http://test", client=http)
            with pytest.raises(RefetchFailed):
                await client.fetch_board("p1")

    @pytest.mark.parametrize("body", ["<html>maintenance</html>", '{"task": null}', '{"task": {"title": "x"}}'])
    async def test_unreadable_move_is_bad_response(self, body: str) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text=body))
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            client = HttpBoardClient("http://test", client=http)
            with pytest.raises(MoveFailed) as info:
                await client.move("task-1", Reorder(before_task_id=None))
        assert info.value.code == "bad_response"
        assert info.value.status_code == 200
