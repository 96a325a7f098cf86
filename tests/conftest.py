import os
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from core.db import create_all
# 관계 모델 명시적 import (SQLAlchemy registry 등록)
import models  # noqa: F401
from deployment_store import DeploymentStore
from credential_registry import CredentialRegistry


@pytest.fixture
def temp_db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite3'}"


@pytest_asyncio.fixture
async def session_factory(temp_db_url):
    # 테스트용 엔진/세션 (파일 DB, 커넥션마다 독립 트랜잭션)
    engine = create_async_engine(temp_db_url, future=True, connect_args={"check_same_thread": False, "timeout": 30})
    await create_all(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return DeploymentStore(session_factory, timeout=10.0, max_create_attempts=5, retry_delay=0.001)


@pytest.fixture
def credentials(session_factory):
    return CredentialRegistry(session_factory, timeout=10.0)


async def create_version(store, domain="example.com", app_name="web", **kwargs):
    params = {"docker_image": f"registry.local/{app_name}:latest", "port": 8080}
    params.update(kwargs)
    return await store.create(domain, app_name, **params)
