import json
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from promptloom.chat import ChatService
from promptloom.main import create_app

from .conftest import FakeProvider


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider(["Hi", " there"])


@pytest.fixture
def client(tmp_path: Path, provider: FakeProvider) -> Generator[TestClient, None, None]:
    app = create_app(tmp_path / "data", provider_factory=lambda cfg: provider)
    with TestClient(app) as c:
        yield c


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def _add_provider(client: TestClient, **overrides) -> dict:
    payload = {"name": "Default", "provider": "openrouter", "api_key": "sk-or-1234567890", "model": "m"}
    payload.update(overrides)
    resp = client.post("/api/settings/providers", json=payload)
    assert resp.status_code == 200
    return resp.json()["provider"]


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["schema_version"] == 2


def test_send_streams_tokens_and_saves(client):
    _add_provider(client)

    resp = client.post("/api/chat/send", json={"content": "hello"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp.text)
    assert [e["content"] for e in events if e["type"] == "token"] == ["Hi", " there"]
    done = events[-1]
    assert done["type"] == "done"
    assert done["reason"] == "complete"

    session = client.get("/api/chat/session").json()["session"]
    assert session["dialog_id"] == done["dialog_id"]
    assert [m["content"] for m in session["messages"]] == ["hello", "Hi there"]

    dialogs = client.get("/api/dialogs").json()["dialogs"]
    assert len(dialogs) == 1
    assert dialogs[0]["preview"] == "hello"


def test_send_without_provider_is_400(client):
    resp = client.post("/api/chat/send", json={"content": "hello"})
    assert resp.status_code == 400
    assert client.get("/api/chat/session").json()["session"]["messages"] == []


def test_send_empty_message_is_422(client):
    _add_provider(client)
    assert client.post("/api/chat/send", json={"content": "  "}).status_code == 422


def test_send_while_a_reply_is_streaming_is_409(client, provider, monkeypatch):
    _add_provider(client)
    monkeypatch.setattr(ChatService, "is_busy", property(lambda self: True))

    resp = client.post("/api/chat/send", json={"content": "hello"})

    assert resp.status_code == 409
    assert "still streaming" in resp.json()["detail"]
    assert provider.calls == []


def test_stream_failure_is_reported_as_event(client, provider):
    _add_provider(client)
    provider.fail_after = 1

    events = _events(client.post("/api/chat/send", json={"content": "hello"}).text)

    assert events[-1]["type"] == "error"
    dialog_id = events[-1]["dialog_id"]
    dialog = client.get(f"/api/dialogs/{dialog_id}").json()["dialog"]
    assert [m["content"] for m in dialog["messages"]] == ["hello", "Hi"]


def test_stop_without_generation(client):
    assert client.post("/api/chat/stop").json() == {"status": "no_active_generation"}


def test_new_dialog_and_system_prompt(client):
    _add_provider(client)
    client.post("/api/chat/send", json={"content": "hello"})

    session = client.post("/api/chat/new").json()["session"]
    assert session["state"] == "empty"
    assert session["messages"] == []

    resp = client.put("/api/chat/system-prompt", json={"system_prompt": "Be terse."})
    assert resp.json()["system_prompt"] == "Be terse."
    saved = client.post("/api/chat/save").json()
    assert saved["saved"] is True
    dialog = client.get(f"/api/dialogs/{saved['dialog_id']}").json()["dialog"]
    assert dialog["system_prompt"] == "Be terse."


def test_dialog_load_rename_delete(client):
    _add_provider(client)
    client.post("/api/chat/send", json={"content": "hello"})
    dialog_id = client.get("/api/chat/session").json()["session"]["dialog_id"]
    client.post("/api/chat/new")

    session = client.post(f"/api/dialogs/{dialog_id}/load").json()["session"]
    assert session["state"] == "loaded"
    assert session["dialog_id"] == dialog_id

    renamed = client.put(f"/api/dialogs/{dialog_id}", json={"name": "Greeting"}).json()
    assert renamed["dialog"]["name"] == "Greeting"

    assert client.delete(f"/api/dialogs/{dialog_id}").status_code == 200
    assert client.get(f"/api/dialogs/{dialog_id}").status_code == 404
    assert client.get("/api/chat/session").json()["session"]["state"] == "empty"


def test_missing_dialog_is_404(client):
    assert client.post("/api/dialogs/99/load").status_code == 404
    assert client.delete("/api/dialogs/99").status_code == 404


def test_roles_tags_and_compose(client):
    role = client.post("/api/roles", json={"name": "Coder", "description": "You write Python."}).json()["role"]
    general = client.post("/api/tags", json={"name": "Short", "content": "Be brief."}).json()["tag"]
    scoped = client.post(
        "/api/tags",
        json={"name": "Typed", "content": "Use type hints.", "is_general": False, "role_id": role["id"]},
    ).json()["tag"]

    resp = client.post(
        "/api/compose",
        json={"role_id": role["id"], "tag_ids": [scoped["id"], general["id"]]},
    )

    assert resp.status_code == 200
    assert resp.json()["system_prompt"] == "You write Python.\n\nUse type hints.\n\nBe brief."
    session = client.get("/api/chat/session").json()["session"]
    assert session["system_prompt"] == resp.json()["system_prompt"]

    role_tags = client.get(f"/api/roles/{role['id']}/tags").json()["tags"]
    assert [t["id"] for t in role_tags] == [scoped["id"]]
    general_tags = client.get("/api/tags", params={"general": True}).json()["tags"]
    assert [t["id"] for t in general_tags] == [general["id"]]


def test_scoped_tag_without_role_is_422(client):
    resp = client.post("/api/tags", json={"name": "Orphan", "is_general": False})
    assert resp.status_code == 422


def test_deleted_role_resolves_as_unknown(client):
    role = client.post("/api/roles", json={"name": "Temp"}).json()["role"]
    client.delete(f"/api/roles/{role['id']}")

    resp = client.post("/api/compose", json={"role_id": role["id"], "apply": False})

    assert resp.status_code == 200
    assert resp.json()["role"]["name"] == "Unknown role"
    assert resp.json()["system_prompt"] == "You are a helpful assistant."


def test_presets_crud_and_apply(client):
    created = client.post(
        "/api/presets", json={"name": "Reviewer", "system_prompt": "Review carefully."}
    ).json()["preset"]
    client.post("/api/presets", json={"name": "Other", "system_prompt": "Other."})

    applied = client.post(f"/api/presets/{created['id']}/apply")
    assert applied.status_code == 200
    names = [p["name"] for p in client.get("/api/presets").json()["presets"]]
    assert names[0] == "Reviewer"
    assert client.get("/api/chat/session").json()["session"]["system_prompt"] == "Review carefully."

    updated = client.put(
        f"/api/presets/{created['id']}",
        json={"name": "Reviewer", "system_prompt": "Review kindly."},
    ).json()["preset"]
    assert updated["system_prompt"] == "Review kindly."

    assert client.delete(f"/api/presets/{created['id']}").status_code == 200
    assert client.delete(f"/api/presets/{created['id']}").status_code == 404


def test_provider_settings(client):
    first = _add_provider(client, name="First")
    assert first["api_key"] == "sk-o...7890"
    assert first["active"] is True
    second = _add_provider(client, name="Second")
    assert second["active"] is False

    resp = client.put("/api/settings/providers/active", json={"id": second["id"]})
    assert resp.json()["provider"]["name"] == "Second"
    assert client.get("/api/settings/providers/active").json()["provider"]["id"] == second["id"]

    # Omitted api_key keeps the stored one
    client.put(
        f"/api/settings/providers/{second['id']}",
        json={"name": "Second", "provider": "openrouter", "model": "other-model"},
    )
    listed = client.get("/api/settings/providers").json()
    by_id = {p["id"]: p for p in listed["providers"]}
    assert by_id[second["id"]]["model"] == "other-model"
    assert by_id[second["id"]]["api_key"] == "sk-o...7890"

    deleted = client.delete(f"/api/settings/providers/{second['id']}").json()
    assert deleted["active_id"] == first["id"]
    assert client.put("/api/settings/providers/active", json={"id": 999}).status_code == 404
