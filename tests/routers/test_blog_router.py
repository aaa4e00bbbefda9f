import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from portfolio import dependencies as deps
from portfolio.exceptions import WriteError
from portfolio.routers import blog
from portfolio.security import API_KEY_NAME, get_api_key, get_settings
from portfolio.services.sessions import ControllerRegistry
from portfolio.settings import Settings
from tests.conftest import FakeRepo, make_post

AUTHOR_HEADERS = {API_KEY_NAME: "secret", "X-Forwarded-Email": "Author@Example.com"}
READER_HEADERS = {API_KEY_NAME: "secret", "X-Forwarded-Email": "reader@example.com"}


@pytest.fixture
def fake_repo():
    return FakeRepo(
        [
            make_post("p2", content="<p>two</p><img src=x onerror=alert(1)>"),
            make_post("p1"),
        ]
    )


@pytest.fixture
def registry(fake_repo):
    return ControllerRegistry(fake_repo)


@pytest.fixture
def client(registry):
    test_settings = Settings(
        PORTFOLIO_API_KEY="secret",
        AUTHOR_EMAIL="author@example.com",
        SESSION_COOKIE="sid",
        MAX_IMAGE_BYTES=1024,
    )
    app = FastAPI()
    app.dependency_overrides[deps.get_registry] = lambda: registry
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.include_router(blog.router)
    app.include_router(blog.author_router, dependencies=[Depends(get_api_key)])
    app.include_router(blog.session_router)
    return TestClient(app)


def test_list_view_sets_session_cookie(client):
    res = client.get("/blog")

    assert res.status_code == 200
    assert "sid" in res.cookies
    body = res.json()
    assert body["isAuthor"] is False
    assert [p["id"] for p in body["posts"]] == ["p2", "p1"]
    assert body["posts"][1]["readingTime"] == "1 min read"
    assert body["posts"][1]["date"] == "January 5, 2025"
    assert "content" not in body["posts"][0]


def test_list_view_flags_author(client):
    assert client.get("/blog", headers=AUTHOR_HEADERS).json()["isAuthor"] is True


def test_session_is_reused_across_requests(client, registry):
    client.get("/blog")
    client.get("/blog")

    assert len(registry) == 1


def test_detail_view_is_sanitized(client):
    res = client.get("/blog/posts/p2")

    assert res.status_code == 200
    content = res.json()["content"]
    assert "<p>two</p>" in content
    assert "onerror" not in content


def test_selection_round_trip(client):
    client.get("/blog/posts/p1")

    assert client.get("/blog/selection").json()["id"] == "p1"
    assert client.delete("/blog/selection").status_code == 204
    assert client.get("/blog/selection").status_code == 404


def test_unknown_post_is_404(client):
    res = client.get("/blog/posts/ghost")

    assert res.status_code == 404
    assert res.json()["detail"] == "Post ghost not found"


def test_write_routes_require_api_key(client, fake_repo):
    res = client.post("/blog/editor", headers={"X-Forwarded-Email": "author@example.com"})

    assert res.status_code == 403
    assert res.json()["detail"] == "Could not validate API key"
    assert client.delete("/blog/posts/p1").status_code == 403
    assert fake_repo.writes() == []


def test_reader_is_refused_by_author_check(client, fake_repo):
    res = client.post("/blog/editor", headers=READER_HEADERS)

    assert res.status_code == 403
    assert res.json()["detail"] == "Only the blog author can create posts"


def test_create_flow(client, fake_repo):
    res = client.post("/blog/editor", headers=AUTHOR_HEADERS)
    assert res.status_code == 200
    assert res.json()["mode"] == "drafting"

    res = client.patch(
        "/blog/editor",
        json={"title": "Hello", "excerpt": "Hi", "content": "<p>world</p><script>x</script>"},
        headers=AUTHOR_HEADERS,
    )
    assert res.json()["title"] == "Hello"

    res = client.patch("/blog/editor", json={"preview": True}, headers=AUTHOR_HEADERS)
    assert res.json()["previewHtml"] == "<p>world</p>"

    res = client.post("/blog/editor/submit", headers=AUTHOR_HEADERS)
    assert res.status_code == 200
    assert res.json() == {"id": "new-id", "created": True}
    assert [call[0] for call in fake_repo.writes()] == ["create"]
    assert client.get("/blog/editor", headers=AUTHOR_HEADERS).json()["mode"] == "idle"


def test_submit_validation_error_is_422(client, fake_repo):
    client.post("/blog/editor", headers=AUTHOR_HEADERS)
    client.patch("/blog/editor", json={"title": "Only title"}, headers=AUTHOR_HEADERS)

    res = client.post("/blog/editor/submit", headers=AUTHOR_HEADERS)

    assert res.status_code == 422
    assert "excerpt" in res.json()["detail"]
    assert fake_repo.writes() == []


def test_second_draft_is_conflict(client):
    client.post("/blog/editor", headers=AUTHOR_HEADERS)

    res = client.post("/blog/editor", headers=AUTHOR_HEADERS)

    assert res.status_code == 409


def test_edit_flow(client, fake_repo):
    res = client.post("/blog/posts/p1/editor", headers=AUTHOR_HEADERS)
    assert res.json()["editingId"] == "p1"
    assert res.json()["title"] == "Title p1"

    client.patch("/blog/editor", json={"image": ""}, headers=AUTHOR_HEADERS)
    res = client.post("/blog/editor/submit", headers=AUTHOR_HEADERS)

    assert res.json() == {"id": "p1", "created": False}
    call = fake_repo.writes()[0]
    assert call[0:2] == ("update", "p1")
    assert call[2].image == ""


def test_cancel_editor(client, fake_repo):
    client.post("/blog/editor", headers=AUTHOR_HEADERS)

    assert client.delete("/blog/editor", headers=AUTHOR_HEADERS).status_code == 204
    assert client.get("/blog/editor", headers=AUTHOR_HEADERS).json()["mode"] == "idle"


def test_image_upload_is_inlined(client):
    client.post("/blog/editor", headers=AUTHOR_HEADERS)

    res = client.post(
        "/blog/editor/image",
        files={"image": ("cover.png", b"\x89PNG\r\n", "image/png")},
        headers=AUTHOR_HEADERS,
    )

    assert res.status_code == 200
    assert res.json()["image"].startswith("data:image/png;base64,")


def test_oversized_image_is_rejected(client):
    client.post("/blog/editor", headers=AUTHOR_HEADERS)

    res = client.post(
        "/blog/editor/image",
        files={"image": ("cover.png", b"x" * 2048, "image/png")},
        headers=AUTHOR_HEADERS,
    )

    assert res.status_code == 422


def test_delete_post(client, fake_repo):
    client.get("/blog/posts/p1", headers=AUTHOR_HEADERS)

    res = client.delete("/blog/posts/p1", headers=AUTHOR_HEADERS)

    assert res.status_code == 204
    assert fake_repo.writes() == [("delete", "p1")]
    assert client.get("/blog/selection").status_code == 404


def test_delete_failure_reports_reason(client, fake_repo):
    fake_repo.fail_with = WriteError("Failed to delete blog post: ghost does not exist")

    res = client.delete("/blog/posts/ghost", headers=AUTHOR_HEADERS)

    assert res.status_code == 400
    assert res.json()["detail"] == "Failed to delete blog post: ghost does not exist"


def test_unexpected_error_is_500(client, fake_repo):
    fake_repo.fail_with = RuntimeError("boom")
    client.post("/blog/editor", headers=AUTHOR_HEADERS)
    client.patch(
        "/blog/editor",
        json={"title": "a", "excerpt": "b", "content": "c"},
        headers=AUTHOR_HEADERS,
    )

    res = client.post("/blog/editor/submit", headers=AUTHOR_HEADERS)

    assert res.status_code == 500
    assert res.json()["detail"] == "Failed to save post"
    assert client.get("/blog/editor", headers=AUTHOR_HEADERS).json()["mode"] == "drafting"


def test_end_session_tears_down_controller(client, registry, fake_repo):
    client.get("/blog")
    assert len(registry) == 1

    assert client.delete("/session").status_code == 204

    assert len(registry) == 0
    assert fake_repo.unsubscribe_calls == 1
