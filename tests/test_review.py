"""Tests for the review web app, driven through FastAPI's TestClient."""

import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from uhd_skills.t2i.review import create_app
from uhd_skills.t2i.session import SessionImage, SessionJob, SessionMeta, SessionStore


SESSION = "20250101-120000-red-fox"


@pytest.fixture
def store(tmp_path: Path) -> SessionStore:
    """A store holding one session with two generated images."""
    store = SessionStore(tmp_path / "sessions")
    meta = SessionMeta(
        id=SESSION,
        created_at="2025-01-01T12:00:00Z",
        command="generate",
        total_cost=0.08,
        jobs=[
            SessionJob(
                prompt="A red fox",
                model="seedream",
                num_images=2,
                cost=0.08,
                round=1,
                images=[
                    SessionImage(filename=name, width=4, height=4, request_id="r1", url="u")
                    for name in ("red-fox-1.png", "red-fox-2.png")
                ],
            ),
        ],
    )
    store.images_dir(SESSION).mkdir(parents=True)
    for name in ("red-fox-1.png", "red-fox-2.png"):
        (store.images_dir(SESSION) / name).write_bytes(b"\x89PNG fake")
    store.write_meta(meta)
    return store


@pytest.fixture
def client(store: SessionStore) -> TestClient:
    return TestClient(create_app(store, [SESSION]))


def test_index_page(client: TestClient) -> None:
    """The page renders with the session id and image count."""
    response = client.get("/")

    assert response.status_code == 200
    assert SESSION in response.text


def test_list_sessions(client: TestClient) -> None:
    """Sessions are listed with flattened images."""
    data = client.get("/api/sessions").json()

    assert data["mode"] == "single"
    session = data["sessions"][0]
    assert session["id"] == SESSION
    assert [img["filename"] for img in session["images"]] == ["red-fox-1.png", "red-fox-2.png"]
    assert session["images"][0]["prompt"] == "A red fox"
    assert session["selections"] == {}


def test_image_route(client: TestClient) -> None:
    """Images of a reviewed session are served; anything else is 404."""
    assert client.get(f"/sessions/{SESSION}/images/red-fox-1.png").status_code == 200
    assert client.get(f"/sessions/{SESSION}/images/missing.png").status_code == 404
    assert client.get("/sessions/other/images/red-fox-1.png").status_code == 404
    assert client.get(f"/sessions/{SESSION}/images/..%2Fmeta.json").status_code == 404


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ({"sessionId": SESSION}, "'selections' is required"),
        ({"sessionId": "", "selections": []}, "sessionId"),
        (
            {"sessionId": SESSION, "selections": [{"filename": "a.png", "status": "maybe"}]},
            "status",
        ),
        (
            {"sessionId": SESSION, "selections": [{"filename": "../a.png", "status": "keep"}]},
            "path",
        ),
        (
            {
                "sessionId": SESSION,
                "selections": [{"filename": "a.png", "status": "regenerate", "numImages": 9}],
            },
            "between 1 and 6",
        ),
        ({"sessionId": "other", "selections": []}, "Session not in review set"),
    ],
)
def test_selections_validation(client: TestClient, body: dict[str, object], message: str) -> None:
    """Invalid payloads are rejected with 400 and an error message."""
    response = client.post("/api/selections", json=body)

    assert response.status_code == 400
    data = response.json()
    assert data["ok"] is False
    assert message in data["error"]


def test_selections_saved(client: TestClient, store: SessionStore) -> None:
    """Valid selections are written and the session is marked reviewed."""
    response = client.post(
        "/api/selections",
        json={
            "sessionId": SESSION,
            "selections": [
                {"filename": "red-fox-1.png", "status": "keep", "newPrompt": "ignored"},
                {
                    "filename": "red-fox-2.png",
                    "status": "regenerate",
                    "newPrompt": "a fox at night",
                },
            ],
        },
    )

    assert response.json() == {"ok": True}
    saved_path = store.session_dir(SESSION) / "selections.json"
    saved = json.loads(saved_path.read_text(encoding="utf-8"))
    first, second = saved["selections"]
    assert first == {"filename": "red-fox-1.png", "status": "keep"}
    assert second["newPrompt"] == "a fox at night"
    assert second["numImages"] == 1
    assert store.read_meta(SESSION).status == "reviewed"

    listed = client.get("/api/sessions").json()["sessions"][0]
    assert listed["selections"]["red-fox-2.png"]["status"] == "regenerate"


def test_finalize_route(client: TestClient, store: SessionStore, tmp_path: Path) -> None:
    """Finalize copies kept images to the requested folder."""
    client.post(
        "/api/selections",
        json={
            "sessionId": SESSION,
            "selections": [{"filename": "red-fox-2.png", "status": "keep"}],
        },
    )
    dest = tmp_path / "final"

    response = client.post("/api/finalize", json={"sessionId": SESSION, "dest": str(dest)})

    data = response.json()
    assert data["ok"] is True
    assert data["copied"] == 1
    assert (dest / "red-fox-2.png").is_file()
    assert store.read_meta(SESSION).status == "finalized"


def test_finalize_requires_session(client: TestClient) -> None:
    """A missing session id is a 400."""
    response = client.post("/api/finalize", json={})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "'sessionId' is required"}


@pytest.mark.parametrize("route", ["/api/selections", "/api/finalize"])
def test_malformed_body_is_rejected(client: TestClient, route: str) -> None:
    """Bodies that are not JSON objects get the same 400 error shape."""
    not_json = client.post(
        route, content=b"{not json", headers={"Content-Type": "application/json"},
    )
    not_object = client.post(route, json=["a.png"])

    for response in (not_json, not_object):
        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert response.json()["error"]
    assert not_json.json()["error"] == "Invalid payload"


def test_done_without_server(client: TestClient) -> None:
    """Done answers even when no uvicorn server is attached."""
    assert client.post("/api/done").json()["ok"] is True
