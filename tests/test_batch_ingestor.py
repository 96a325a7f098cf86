import asyncio
import pytest
from batch_ingestor import BatchIngestor
from schemas.deployment import BatchOutcome, DeploymentRequest
from utils.exceptions import EmptyBatchError, StoreUnavailableError


def item(domain="example.com", app_name="web", port=8080, **extra):
    data = {"domain": domain, "app_name": app_name, "docker_image": f"registry.local/{app_name}:1", "port": port}
    data.update(extra)
    return data


@pytest.mark.asyncio
async def test_partial_batch_success(store):
    ingestor = BatchIngestor(store)
    result = await ingestor.ingest([
        item(app_name="api"),
        item(app_name="worker", port=99999),
        item(app_name="web"),
    ])
    assert result.processed_count == 2
    assert result.failed_count == 1
    assert result.outcome is BatchOutcome.PARTIAL
    assert [d.app_name for d in result.created] == ["api", "web"]
    assert [d.version for d in result.created] == [1, 1]
    failure = result.failed[0]
    assert failure.index == 1
    assert failure.domain == "example.com"
    assert failure.app_name == "worker"
    assert "port" in failure.error


@pytest.mark.asyncio
async def test_created_records_share_request_id(store):
    result = await BatchIngestor(store).ingest([item(app_name="a"), item(app_name="b")])
    assert result.outcome is BatchOutcome.ALL_SUCCEEDED
    assert {d.request_id for d in result.created} == {result.request_id}


@pytest.mark.asyncio
async def test_same_key_twice_in_one_batch_gets_two_versions(store):
    result = await BatchIngestor(store).ingest([item(env=["X=1"]), item(env=["X=2"])])
    assert [d.version for d in result.created] == [1, 2]
    assert [d.env for d in result.created] == [["X=1"], ["X=2"]]


@pytest.mark.asyncio
async def test_empty_batch_is_rejected(store):
    with pytest.raises(EmptyBatchError):
        await BatchIngestor(store).ingest([])
    assert await store.list_latest() == []


@pytest.mark.asyncio
async def test_all_failed(store):
    result = await BatchIngestor(store).ingest([
        {"domain": "d"},
        item(port=0),
        "not-an-object",
    ])
    assert result.outcome is BatchOutcome.ALL_FAILED
    assert [f.index for f in result.failed] == [0, 1, 2]
    assert result.failed[0].app_name is None
    assert result.failed[2].domain is None
    assert await store.list_latest() == []


@pytest.mark.asyncio
async def test_missing_required_fields_are_reported(store):
    result = await BatchIngestor(store).ingest([{"domain": "d", "app_name": "a", "port": 80}])
    assert "docker_image" in result.failed[0].error


@pytest.mark.asyncio
async def test_accepts_parsed_requests(store):
    req = DeploymentRequest(domain="d", app_name="a", docker_image="img", port=80)
    result = await BatchIngestor(store).ingest([req])
    assert result.created[0].domain == "d"
    assert result.created[0].env == []


@pytest.mark.asyncio
async def test_store_error_on_one_item_does_not_stop_siblings(store, monkeypatch):
    original = store.create

    async def flaky_create(domain, app_name, *args, **kwargs):
        if app_name == "broken":
            raise StoreUnavailableError("store unreachable")
        return await original(domain, app_name, *args, **kwargs)

    monkeypatch.setattr(store, "create", flaky_create)
    result = await BatchIngestor(store).ingest([item(app_name="broken"), item(app_name="ok")])
    assert result.outcome is BatchOutcome.PARTIAL
    assert result.failed[0].index == 0
    assert result.failed[0].error == "store unreachable"
    assert result.created[0].app_name == "ok"


@pytest.mark.asyncio
async def test_batch_deadline_fails_remaining_items(store, monkeypatch):
    original = store.create

    async def slow_create(*args, **kwargs):
        await asyncio.sleep(0.3)
        return await original(*args, **kwargs)

    monkeypatch.setattr(store, "create", slow_create)
    ingestor = BatchIngestor(store, item_timeout=5.0, batch_timeout=0.2)
    result = await ingestor.ingest([item(app_name="a"), item(app_name="b")])
    # 첫 항목은 시작 시점에 deadline 안이라 시도됨, 두 번째는 시도 전에 실패 처리
    assert [d.app_name for d in result.created] == ["a"]
    assert [f.index for f in result.failed] == [1]
    assert "deadline" in result.failed[0].error
