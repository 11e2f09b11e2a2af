"""Tests for Flask routes."""

from unittest.mock import MagicMock

import pytest

from zerog.app import create_app
from zerog.models.config import AppConfig
from zerog.services.config_service import reset_config_service
from zerog.services.event_bus import EventBus
from zerog.services.session import PlannerSession

DEADLINE = "2026-03-10T17:00:00"


@pytest.fixture(autouse=True)
def reset_singleton():
    """Reset the config service singleton between tests."""
    reset_config_service()
    yield
    reset_config_service()


@pytest.fixture
def session(clock, store):
    """Started session: in-memory store, remote sync off, reminders mocked."""
    config = AppConfig(
        storage={"data_dir": None, "seed_demo_tasks": False},
        remote={"enabled": False},
    )
    session = PlannerSession(
        config=config,
        clock=clock,
        store=store,
        scheduler=MagicMock(),
        event_bus=EventBus(),
        notifier=MagicMock(),
    )
    session.start()
    yield session
    session.close()


@pytest.fixture
def app(session, temp_dir):
    """Create a Flask test app around the session."""
    app = create_app(config_path=str(temp_dir / "config.yaml"), session=session)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()


def _create(client, title="Launch", **fields):
    response = client.post("/api/tasks", json={"title": title, "deadline": DEADLINE, **fields})
    assert response.status_code == 201
    return response.get_json()["task"]


class TestHealth:
    """Tests for /health."""

    def test_health(self, client):
        data = client.get("/health").get_json()

        assert data["status"] == "ok"
        assert data["session_started"] is True
        assert data["sync_pending"] == 0


class TestTaskRoutes:
    """Tests for task CRUD routes."""

    def test_state_starts_empty(self, client):
        data = client.get("/api/state").get_json()

        assert data["tasks"] == []
        assert data["xp"] == 0
        assert data["level"] == 1
        assert data["newAchievement"] is None

    def test_create_task(self, client):
        task = _create(client, urgency=3, category="work")

        assert task["title"] == "Launch"
        assert task["urgency"] == 3
        assert task["status"] == "active"
        assert task["xp_awarded"] is False
        assert task["created_at"] == "2026-03-10T09:00:00"

    def test_create_with_utc_deadline(self, client, session):
        response = client.post(
            "/api/tasks", json={"title": "Launch", "deadline": "2026-03-11T10:00:00Z"}
        )

        assert response.status_code == 201
        task_id = response.get_json()["task"]["id"]
        assert session.store.get_task(task_id).deadline.tzinfo is None

    def test_create_requires_title_and_deadline(self, client):
        response = client.post("/api/tasks", json={"title": "No deadline"})
        assert response.status_code == 400

    def test_create_rejects_bad_urgency(self, client):
        response = client.post(
            "/api/tasks", json={"title": "Launch", "deadline": DEADLINE, "urgency": 9}
        )
        assert response.status_code == 400
        assert client.get("/api/state").get_json()["tasks"] == []

    def test_create_rejects_unknown_field(self, client):
        response = client.post(
            "/api/tasks", json={"title": "Launch", "deadline": DEADLINE, "xp_awarded": True}
        )
        assert response.status_code == 400

    def test_create_rejects_non_object(self, client):
        response = client.post("/api/tasks", json=["Launch"])
        assert response.status_code == 400

    def test_get_task(self, client):
        task = _create(client)
        response = client.get(f"/api/tasks/{task['id']}")

        assert response.status_code == 200
        assert response.get_json()["task"]["id"] == task["id"]

    def test_get_unknown_task(self, client):
        response = client.get("/api/tasks/missing")

        assert response.status_code == 404
        assert response.get_json()["task_id"] == "missing"

    def test_list_by_date(self, client):
        _create(client, "Today")
        client.post("/api/tasks", json={"title": "Later", "deadline": "2026-03-12T10:00:00"})

        data = client.get("/api/tasks?date=2026-03-10").get_json()
        assert [t["title"] for t in data["tasks"]] == ["Today"]

        assert len(client.get("/api/tasks").get_json()["tasks"]) == 2

    def test_list_bad_date(self, client):
        assert client.get("/api/tasks?date=tomorrow").status_code == 400

    def test_update_task(self, client):
        task = _create(client)
        response = client.patch(f"/api/tasks/{task['id']}", json={"title": "Relaunch"})

        assert response.status_code == 200
        assert response.get_json()["task"]["title"] == "Relaunch"

    def test_update_forbidden_field(self, client):
        task = _create(client)
        response = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"})

        assert response.status_code == 400

    def test_update_unknown_task(self, client):
        assert client.patch("/api/tasks/missing", json={"title": "x"}).status_code == 404

    def test_remove_task(self, client):
        task = _create(client)

        assert client.delete(f"/api/tasks/{task['id']}").status_code == 200
        assert client.delete("/api/tasks/missing").status_code == 200
        assert client.get("/api/state").get_json()["tasks"] == []


class TestCompletionRoutes:
    """Tests for completion and recall."""

    def test_complete_awards_xp(self, client):
        task = _create(client, urgency=4)
        data = client.post(f"/api/tasks/{task['id']}/complete").get_json()

        assert data["xp"] == 80
        assert data["streak"] == 1
        assert data["lastCompletedDate"] == "2026-03-10"
        assert "first_mission" in data["achievements"]
        assert data["newAchievement"] == "first_mission"

    def test_complete_twice_is_noop(self, client):
        task = _create(client, urgency=4)
        client.post(f"/api/tasks/{task['id']}/complete")
        data = client.post(f"/api/tasks/{task['id']}/complete").get_json()

        assert data["xp"] == 80

    def test_recall_then_complete_no_double_award(self, client):
        task = _create(client, urgency=2)
        client.post(f"/api/tasks/{task['id']}/complete")
        recalled = client.post(f"/api/tasks/{task['id']}/recall").get_json()
        assert recalled["tasks"][0]["status"] == "active"

        data = client.post(f"/api/tasks/{task['id']}/complete").get_json()
        assert data["xp"] == 40

    def test_complete_unknown(self, client):
        assert client.post("/api/tasks/missing/complete").status_code == 404
        assert client.post("/api/tasks/missing/recall").status_code == 404


class TestSubtaskRoutes:
    """Tests for subtask routes."""

    def test_add_toggle_remove(self, client):
        task = _create(client)

        response = client.post(f"/api/tasks/{task['id']}/subtasks", json={"text": "Fuel"})
        assert response.status_code == 201
        subtask = response.get_json()["task"]["subtasks"][0]
        assert subtask["done"] is False

        toggled = client.post(f"/api/tasks/{task['id']}/subtasks/{subtask['id']}/toggle")
        assert toggled.get_json()["task"]["subtasks"][0]["done"] is True

        removed = client.delete(f"/api/tasks/{task['id']}/subtasks/{subtask['id']}")
        assert removed.get_json()["task"]["subtasks"] == []

    def test_empty_text_rejected(self, client):
        task = _create(client)
        response = client.post(f"/api/tasks/{task['id']}/subtasks", json={"text": "  "})
        assert response.status_code == 400

    def test_unknown_task(self, client):
        response = client.post("/api/tasks/missing/subtasks", json={"text": "Fuel"})
        assert response.status_code == 404


class TestDayRoutes:
    """Tests for per-day bulk routes."""

    def test_complete_day(self, client):
        _create(client, "A", urgency=1)
        _create(client, "B", urgency=2)

        data = client.post("/api/days/2026-03-10/status", json={"status": "completed"}).get_json()

        assert data["xp"] == 60
        assert data["streak"] == 1
        assert all(t["status"] == "completed" for t in data["tasks"])

    def test_recall_day(self, client):
        _create(client, "A")
        client.post("/api/days/2026-03-10/status", json={"status": "completed"})

        data = client.post("/api/days/2026-03-10/status", json={"status": "active"}).get_json()

        assert all(t["status"] == "active" for t in data["tasks"])
        assert data["xp"] == 20

    def test_bad_status(self, client):
        response = client.post("/api/days/2026-03-10/status", json={"status": "paused"})
        assert response.status_code == 400

    def test_delete_day(self, client):
        _create(client, "Today")
        client.post("/api/tasks", json={"title": "Later", "deadline": "2026-03-12T10:00:00"})

        data = client.delete("/api/days/2026-03-10").get_json()

        assert [t["title"] for t in data["tasks"]] == ["Later"]

    def test_bad_day(self, client):
        assert client.delete("/api/days/not-a-day").status_code == 400


class TestAchievementRoutes:
    """Tests for achievement routes."""

    def test_catalogue(self, client):
        data = client.get("/api/achievements").get_json()

        keys = [a["key"] for a in data["achievements"]]
        assert keys[0] == "first_mission"
        assert all(a["unlocked"] is False for a in data["achievements"])

    def test_dismiss_advances_queue(self, client):
        task = _create(client)
        client.post(f"/api/tasks/{task['id']}/complete")

        data = client.post("/api/achievements/dismiss").get_json()

        assert data["newAchievement"] == "speed_demon"
        unlocked = {
            a["key"] for a in client.get("/api/achievements").get_json()["achievements"] if a["unlocked"]
        }
        assert unlocked == {"first_mission", "speed_demon"}


class TestIdentityRoutes:
    """Tests for sign in / sign out."""

    def test_sign_in(self, client, session):
        response = client.post("/api/identity", json={"email": "ada@example.com", "name": "Ada"})

        assert response.status_code == 200
        assert response.get_json() == {"email": "ada@example.com", "hydrated": False}
        assert session.identity.email == "ada@example.com"

    def test_sign_in_requires_email(self, client):
        assert client.post("/api/identity", json={"name": "Ada"}).status_code == 400

    def test_sign_out(self, client, session):
        client.post("/api/identity", json={"email": "ada@example.com"})
        client.delete("/api/identity")

        assert session.identity is None


class TestEventRoutes:
    """Tests for event routes."""

    def test_recent_events(self, client):
        _create(client)
        data = client.get("/api/events/recent?type=task_added").get_json()

        assert len(data["events"]) == 1
        assert data["events"][0]["data"]["tasks"][0]["title"] == "Launch"

    def test_sse_opens_with_state(self, client):
        _create(client)
        response = client.get("/api/events", buffered=False)

        assert response.mimetype == "text/event-stream"
        first = next(iter(response.response))
        if isinstance(first, bytes):
            first = first.decode()
        assert first.startswith("event: state")
        assert '"title": "Launch"' in first
        response.close()

    def test_sse_replays_after_last_event_id(self, client, session):
        first = session.event_bus.emit("reminder", {"task_id": "t1"})
        session.event_bus.emit("reminder", {"task_id": "t2"})

        response = client.get(
            "/api/events", headers={"Last-Event-ID": first.id}, buffered=False
        )
        chunks = iter(response.response)
        messages = []
        for _ in range(2):
            chunk = next(chunks)
            messages.append(chunk.decode() if isinstance(chunk, bytes) else chunk)

        assert messages[0].startswith("event: state")
        assert '"task_id": "t2"' in messages[1]
        response.close()
