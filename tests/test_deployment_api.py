import logging
import uuid
from datetime import datetime, timezone
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
import core.db as dbmod
from api.rest import create_app
from core.config import Settings


def deployment(domain="example.com", app_name="web", **overrides):
    body = {
        "domain": domain,
        "app_name": app_name,
        "docker_image": f"registry.local/{app_name}:1.0",
        "port": 8080,
        "env": ["MODE=prod"],
    }
    body.update(overrides)
    return body


@pytest.fixture
def fresh_app(session_factory):
    app = create_app(Settings())
    # DI 오버라이드
    app.dependency_overrides[dbmod.get_session_factory] = lambda: session_factory
    return app


@pytest_asyncio.fixture
async def client(fresh_app):
    transport = ASGITransport(app=fresh_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_push_all_succeeded(client):
    resp = await client.post("/api/v1/push", json=[deployment(), deployment(app_name="api")])
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["processed_count"] == 2
    assert body["data"]["failed_count"] == 0
    assert "failed_deployments" not in body["data"]
    created = body["data"]["created_deployments"]
    assert [d["version"] for d in created] == [1, 1]
    assert {d["request_id"] for d in created} == {body["data"]["request_id"]}
    assert created[0]["status"] == "pending"
    assert created[0]["env"] == ["MODE=prod"]


@pytest.mark.asyncio
async def test_push_partial_success(client):
    resp = await client.post("/api/v1/push", json=[deployment(), deployment(port=0), deployment()])
    assert resp.status_code == 206
    data = resp.json()["data"]
    assert data["processed_count"] == 2
    assert data["failed_count"] == 1
    assert [d["version"] for d in data["created_deployments"]] == [1, 2]
    failed = data["failed_deployments"][0]
    assert failed["index"] == 1
    assert failed["domain"] == "example.com"
    assert "port" in failed["error"]


@pytest.mark.asyncio
async def test_push_all_failed(client):
    resp = await client.post("/api/v1/push", json=[{"domain": "example.com"}, deployment(port="80")])
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["data"]["processed_count"] == 0
    assert body["data"]["failed_count"] == 2


@pytest.mark.asyncio
async def test_push_rejects_empty_and_non_array_bodies(client):
    resp = await client.post("/api/v1/push", json=[])
    assert resp.status_code == 400
    assert resp.json()["code"] == "EMPTY_BATCH"

    resp = await client.post("/api/v1/push", json={"domain": "example.com"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"

    resp = await client.post("/api/v1/push", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid request body")


@pytest.mark.asyncio
async def test_list_and_get_deployments(client):
    await client.post("/api/v1/push", json=[deployment(), deployment(), deployment(app_name="api")])
    resp = await client.get("/api/v1/deployments")
    assert resp.status_code == 200
    listed = resp.json()["data"]
    assert len(listed) == 2
    versions = {d["app_name"]: d["version"] for d in listed}
    assert versions == {"web": 2, "api": 1}

    target = listed[0]
    resp = await client.get(f"/api/v1/deployments/{target['id']}")
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == target["id"]


@pytest.mark.asyncio
async def test_get_deployment_bad_and_unknown_id(client):
    resp = await client.get("/api/v1/deployments/not-a-uuid")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid deployment ID"

    resp = await client.get(f"/api/v1/deployments/{uuid.uuid4()}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_update_status_flow(client):
    resp = await client.post("/api/v1/push", json=[deployment()])
    deployment_id = resp.json()["data"]["created_deployments"][0]["id"]

    resp = await client.patch(f"/api/v1/deployments/{deployment_id}/status", json={"status": "bogus"})
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid status. Must be one of:")

    resp = await client.patch(f"/api/v1/deployments/{deployment_id}/status", json={"status": "deployed"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "deployed"
    assert data["deployed_at"] is not None

    resp = await client.patch(f"/api/v1/deployments/{uuid.uuid4()}/status", json={"status": "failed"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stats_counts_latest_versions(client):
    resp = await client.post("/api/v1/push", json=[deployment(), deployment(), deployment(app_name="api")])
    created = resp.json()["data"]["created_deployments"]
    await client.patch(f"/api/v1/deployments/{created[1]['id']}/status", json={"status": "deployed"})
    resp = await client.get("/api/v1/stats")
    assert resp.status_code == 200
    assert resp.json()["data"] == {
        "total_deployments": 2,
        "pending_count": 1,
        "deployed_count": 1,
        "failed_count": 0,
    }


@pytest.mark.asyncio
async def test_registry_credential_flow(client):
    resp = await client.post("/api/v1/registry", json={"registry": "docker.io", "username": "ci", "password": "one"})
    assert resp.status_code == 201
    resp = await client.post("/api/v1/registry", json={"registry": "docker.io", "username": "ci", "password": "two"})
    assert resp.status_code == 201

    resp = await client.get("/api/v1/registry", params={"registry": "docker.io"})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"registry": "docker.io", "username": "ci", "password": "two"}


@pytest.mark.asyncio
async def test_registry_errors(client):
    resp = await client.get("/api/v1/registry")
    assert resp.status_code == 400
    resp = await client.get("/api/v1/registry", params={"registry": "nowhere.example.com"})
    assert resp.status_code == 404
    resp = await client.post("/api/v1/registry", json={"registry": "docker.io"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_healthz(client):
    resp = await client.get("/healthz")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["version"] == "1.0.0"


@pytest.mark.asyncio
async def test_healthz_reports_unavailable_database(fresh_app, tmp_path):
    # 존재하지 않는 디렉터리의 sqlite 파일 -> 연결 실패
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'db.sqlite3'}")
    broken = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    fresh_app.dependency_overrides[dbmod.get_session_factory] = lambda: broken
    transport = ASGITransport(app=fresh_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/healthz")
    await engine.dispose()
    assert resp.status_code == 503
    assert resp.json() == {"success": False, "error": "Database connection failed"}


@pytest.mark.asyncio
async def test_offset_timestamp_round_trips_as_utc(client):
    resp = await client.post("/api/v1/push", json=[deployment(updated_at="2024-01-01T10:00:00+05:00")])
    assert resp.status_code == 201
    pushed = resp.json()["data"]["created_deployments"][0]

    resp = await client.get(f"/api/v1/deployments/{pushed['id']}")
    fetched = resp.json()["data"]
    assert fetched["updated_at"] == pushed["updated_at"]
    assert fetched["created_at"] == pushed["created_at"]
    # UTC로 정규화되어 5시간 앞선 값
    assert datetime.fromisoformat(fetched["updated_at"].replace("Z", "+00:00")) == datetime(2024, 1, 1, 5, 0, tzinfo=timezone.utc)
    assert datetime.fromisoformat(fetched["created_at"].replace("Z", "+00:00")).tzinfo is not None


@pytest.mark.asyncio
async def test_requests_are_logged(client, caplog):
    caplog.set_level(logging.INFO, logger="api.rest")
    await client.get("/api/v1/deployments/not-a-uuid", headers={"User-Agent": "pipeline-agent/1.0"})
    messages = [r.getMessage() for r in caplog.records if r.name == "api.rest" and r.getMessage().startswith("[http]")]
    assert len(messages) == 1
    assert "GET /api/v1/deployments/not-a-uuid 400" in messages[0]
    assert "ms ip=" in messages[0]
    assert "ua=pipeline-agent/1.0" in messages[0]
