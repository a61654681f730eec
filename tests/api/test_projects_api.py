from fastapi.testclient import TestClient

from flowcore.store import MemoryChatStore
from flowdesk.api.app import create_app


def test_project_task_and_chat_routes(config_dir):  # noqa: D401
    with TestClient(create_app(MemoryChatStore())) as client:
        r = client.post("/api/projects", json={"name": "Demo"})
        assert r.status_code == 201
        project_id = r.json()["id"]

        r = client.post(f"/api/projects/{project_id}/tasks", json={"title": "T1"})
        assert r.status_code == 201
        task = r.json()
        assert task["status"] == "todo"
        got = client.get(f"/api/projects/{project_id}/tasks/{task['id']}")
        assert got.json()["title"] == "T1"

        assert client.get(f"/api/projects/{project_id}/chats").json() == {"chats": []}
        session = client.post(f"/api/projects/{project_id}/chats").json()
        assert session["title"] == "Session 1"
        chat = client.get(f"/api/chats/{session['id']}").json()
        assert chat["projectId"] == project_id
        assert chat["activeStreamId"] is None


def test_project_routes_404(config_dir):  # noqa: D401
    with TestClient(create_app(MemoryChatStore())) as client:
        assert client.get("/api/projects/nope/chats").status_code == 404
        assert client.post("/api/projects/nope/tasks", json={"title": "x"}).status_code == 404
        assert client.get("/api/chats/nope").status_code == 404
        assert client.get("/api/chats/nope/messages").status_code == 404
