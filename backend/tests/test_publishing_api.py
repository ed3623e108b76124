import pytest
from fastapi.testclient import TestClient

from app.application.services.publishing_errors import StorageNotConfiguredError
from app.core.security import ALL_SITES, create_publisher_token
from app.infrastructure.db.session import get_db
from app.interfaces.api.deps import get_coordinator, get_optional_storage, get_storage
from main import app


@pytest.fixture
def client(db_session, coordinator, storage):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_optional_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def live_site(content):
    site = content.site(3)
    live = content.section(site, "live")
    content.post(live, title="First", slug="first", order=0, blocks=[("image", "img/a.png", {})])
    content.post(live, title="Second", slug="second", order=1, blocks=[("image", "img/b.png", {})])
    return site


def _headers(site_ids=ALL_SITES) -> dict:
    return {"Authorization": f"Bearer {create_publisher_token('ci', site_ids)}"}


def test_publish_requires_token(client: TestClient, live_site) -> None:
    response = client.post("/sites/3/publish")

    assert response.status_code == 401
    assert response.json()["error_code"] == "401"


def test_publish_rejects_token_for_other_site(client: TestClient, live_site) -> None:
    response = client.post("/sites/3/publish", headers=_headers([4]))

    assert response.status_code == 403


def test_publish_and_read_state(client: TestClient, live_site, storage) -> None:
    publish = client.post("/sites/3/publish", headers=_headers([3]))

    assert publish.status_code == 200
    body = publish.json()
    assert body["success"] is True
    assert body["site_id"] == 3
    assert set(body["files"]) == {"posts_bootstrap.json", "posts_bootstrap.min.json"}
    assert "3/manifest.json" in storage.objects
    assert publish.headers["X-Request-ID"]

    state = client.get("/sites/3/publish-state", headers=_headers([3]))

    assert state.status_code == 200
    payload = state.json()
    assert payload["version"] == body["version"]
    assert payload["latestVersion"] == body["version"]
    assert payload["files"] == body["files"]
    assert payload["manifestUrl"] == "https://storage.test/public/prerender/3/manifest.json"
    versioned = body["files"]["posts_bootstrap.json"]
    assert payload["fileUrls"]["posts_bootstrap.json"] == f"https://storage.test/public/prerender/3/{versioned}"


def test_publish_state_before_first_publish(client: TestClient, live_site) -> None:
    response = client.get("/sites/3/publish-state", headers=_headers())

    assert response.status_code == 404
    assert response.json()["error_code"] == "not_published"


def test_publish_conflicts_while_locked(client: TestClient, live_site, fake_redis) -> None:
    fake_redis.set("publish:lock:3", "other-worker")

    response = client.post("/sites/3/publish", headers=_headers())

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "publish_in_progress"
    assert "trace_id" in body


def test_publish_unknown_site(client: TestClient, live_site) -> None:
    response = client.post("/sites/999/publish", headers=_headers())

    assert response.status_code == 404
    assert response.json()["error_code"] == "site_not_found"


def test_publish_upload_failure_maps_to_bad_gateway(client: TestClient, live_site, storage, coordinator) -> None:
    storage.fail_when = lambda path: path.endswith(".json")

    response = client.post("/sites/3/publish", headers=_headers())

    assert response.status_code == 502
    assert response.json()["error_code"] == "storage_upload_failed"
    assert coordinator.get_state(3) is None


def test_publish_without_storage_credentials(client: TestClient, live_site) -> None:
    def missing_storage():
        raise StorageNotConfiguredError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")

    app.dependency_overrides[get_storage] = missing_storage

    response = client.post("/sites/3/publish", headers=_headers())

    assert response.status_code == 503
    assert response.json()["error_code"] == "storage_not_configured"


def test_preview_lists_and_returns_artifacts(client: TestClient, live_site, storage) -> None:
    listing = client.get("/sites/3/artifacts/preview", headers=_headers())

    assert listing.status_code == 200
    names = {item["name"] for item in listing.json()["artifacts"]}
    assert names == {"posts_bootstrap.json", "posts_bootstrap.min.json"}

    artifact = client.get("/sites/3/artifacts/preview", params={"name": "posts_bootstrap.json"}, headers=_headers())

    assert artifact.status_code == 200
    assert artifact.headers["content-type"].startswith("application/json")
    assert [project["slug"] for project in artifact.json()["liveProjects"]] == ["first", "second"]

    missing = client.get("/sites/3/artifacts/preview", params={"name": "posts.html"}, headers=_headers())
    assert missing.status_code == 404
    assert missing.json()["error_code"] == "artifact_not_found"
    assert storage.uploads == []
