import pytest
from fastapi.testclient import TestClient

from simd_tracker import api
from tests.fakes import FakeGitHub, FakeStore

SECRET = "cron-secret"


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def client(fake_store, monkeypatch):
    monkeypatch.setattr("simd_tracker.config.CRON_SECRET", SECRET)
    api.app.dependency_overrides[api.get_store_factory] = lambda: (lambda: fake_store)
    api.app.dependency_overrides[api.get_github_client] = lambda: FakeGitHub()
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def auth(secret=SECRET):
    return {"Authorization": f"Bearer {secret}"}


def test_missing_or_wrong_secret_is_rejected(client):
    assert client.get("/api/cron/sync-proposals").status_code == 401
    assert client.get("/api/cron/sync-proposals", headers=auth("wrong")).status_code == 401


def test_unset_secret_rejects_everything(client, monkeypatch):
    monkeypatch.setattr("simd_tracker.config.CRON_SECRET", None)
    assert client.get("/api/cron/sync-all", headers=auth("None")).status_code == 401


def test_sync_proposals_records_job(client, fake_store):
    response = client.get("/api/cron/sync-proposals", headers=auth())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    job = fake_store.jobs[body["results"]["job_id"]]
    assert job["job_type"] == "proposals"
    assert job["status"] == "completed"
    assert fake_store.closed


def test_sync_prs_accepts_include_all_open(client, fake_store):
    response = client.get("/api/cron/sync-prs?includeAllOpen=true", headers=auth())
    assert response.status_code == 200
    assert response.json()["results"]["since"]


def test_sync_all_reports_each_engine(client):
    response = client.get("/api/cron/sync-all", headers=auth())

    body = response.json()
    assert body["success"] is True
    assert body["message"] == "All syncs completed"
    assert set(body["results"]) == {"proposals", "prs", "discussions"}
    assert all(result["success"] for result in body["results"].values())


def test_generate_summaries_route(client, fake_store):
    response = client.get("/api/cron/generate-summaries", headers=auth())
    assert response.status_code == 200
    assert response.json()["results"]["candidates"] == 0


def test_engine_failure_returns_500(client, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("db gone")

    monkeypatch.setattr("simd_tracker.sync_discussions.sync_discussions", broken)

    response = client.get("/api/cron/sync-discussions", headers=auth())

    assert response.status_code == 500
    assert response.json()["detail"]["details"] == "db gone"


def test_health_ok(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_health_reports_unavailable_store(client, fake_store):
    fake_store.reachable = False

    response = client.get("/api/health")

    assert response.status_code == 503
    assert response.json()["message"] == "data temporarily unavailable"


def test_health_reports_failed_connection(client):
    def refuse():
        raise ConnectionError("refused")

    api.app.dependency_overrides[api.get_store_factory] = lambda: refuse

    response = client.get("/api/health")

    assert response.status_code == 503
