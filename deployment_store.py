import logging
from datetime import datetime
from typing import List, Optional
from sqlalchemy import and_, case, func, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select
from core import db as core_db
from core.config import Settings
from models.deployment import Deployment, DeploymentStatus, new_id, utcnow
from models.types import to_utc
from retry_policy import RetryPolicy
from schemas.deployment import DeploymentStats, parse_status
from utils.deadline import run_with_deadline
from utils.exceptions import KeyConflictError, NotFoundError
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)


def latest_versions():
    # (domain, app_name) 별 최신 버전
    return (
        select(
            Deployment.domain.label("domain"),
            Deployment.app_name.label("app_name"),
            func.max(Deployment.version).label("max_version"),
        )
        .group_by(Deployment.domain, Deployment.app_name)
        .subquery("latest_versions")
    )


def latest_deployments():
    latest = latest_versions()
    return select(Deployment).join(
        latest,
        and_(
            Deployment.domain == latest.c.domain,
            Deployment.app_name == latest.c.app_name,
            Deployment.version == latest.c.max_version,
        ),
    )


def _is_lock_contention(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "database is locked" in message or "could not serialize" in message


class DeploymentStore:
    """Append-only store of versioned deployment records.

    Every create for a (domain, app_name) key gets ``max(version) + 1``. Creates
    for the same key serialize on a per-key lock inside this process; across
    processes the (domain, app_name, version) unique constraint rejects the
    loser, whose transaction is rolled back and retried with a fresh version.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        timeout: float = 10.0,
        max_create_attempts: int = 5,
        retry_delay: float = 0.01,
        backoff_factor: float = 2.0,
        key_lock: Optional[KeyedLock] = None,
    ):
        self.session_factory = session_factory
        self.timeout = timeout
        self.key_lock = key_lock or KeyedLock()
        self.retry_policy = RetryPolicy.from_attempts(
            max_create_attempts, retry_delay, backoff_factor, retry_on=(KeyConflictError,)
        )

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker, settings: Settings,
                      key_lock: Optional[KeyedLock] = None) -> "DeploymentStore":
        return cls(
            session_factory,
            timeout=settings.timeouts.request,
            max_create_attempts=settings.store.max_create_attempts,
            retry_delay=settings.store.retry_delay,
            backoff_factor=settings.store.backoff_factor,
            key_lock=key_lock,
        )

    async def create(
        self,
        domain: str,
        app_name: str,
        docker_image: str,
        port: int,
        env: Optional[List[str]] = None,
        updated_at: Optional[datetime] = None,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Deployment:
        key = (domain, app_name)
        request_id = request_id or new_id()

        def log_retry(attempt: int, exc: BaseException):
            logger.warning(f"[create][{domain}/{app_name}] version conflict on attempt {attempt}, retrying: {exc}")

        async def locked_create():
            async with self.key_lock.acquire(key):
                return await self.retry_policy.execute_with_retry(
                    self._insert_next_version,
                    domain, app_name, docker_image, port, list(env or []), updated_at, request_id,
                    on_retry=log_retry,
                )

        return await run_with_deadline("create", locked_create, timeout or self.timeout)

    async def _next_version(self, session: AsyncSession, domain: str, app_name: str) -> int:
        result = await session.execute(
            select(func.coalesce(func.max(Deployment.version), 0) + 1)
            .where(Deployment.domain == domain, Deployment.app_name == app_name)
        )
        return result.scalar_one()

    async def _insert_next_version(self, domain, app_name, docker_image, port, env, updated_at, request_id) -> Deployment:
        async with self.session_factory() as session:
            try:
                # 버전 계산과 insert는 하나의 트랜잭션, 실패 시 rollback 되어 버전이 소모되지 않음
                async with session.begin():
                    version = await self._next_version(session, domain, app_name)
                    now = utcnow()
                    deployment = Deployment(
                        id=new_id(),
                        request_id=request_id,
                        domain=domain,
                        app_name=app_name,
                        docker_image=docker_image,
                        port=port,
                        env=env,
                        version=version,
                        updated_at=to_utc(updated_at) or now,
                        status=DeploymentStatus.PENDING.value,
                        created_at=now,
                    )
                    session.add(deployment)
                    await session.flush()
            except IntegrityError as e:
                raise KeyConflictError(f"version already taken for {domain}/{app_name}: {e.orig}") from e
            except OperationalError as e:
                if _is_lock_contention(e):
                    raise KeyConflictError(f"write contention on {domain}/{app_name}: {e.orig}") from e
                raise
        return deployment

    async def get_by_id(self, deployment_id: str, timeout: Optional[float] = None) -> Deployment:
        async def fetch():
            async with self.session_factory() as session:
                result = await session.execute(select(Deployment).where(Deployment.id == str(deployment_id)))
                return result.scalars().first()

        deployment = await run_with_deadline("get_by_id", fetch, timeout or self.timeout)
        if deployment is None:
            raise NotFoundError(f"deployment {deployment_id} not found")
        return deployment

    async def list_latest(self, timeout: Optional[float] = None) -> List[Deployment]:
        async def fetch():
            async with self.session_factory() as session:
                result = await session.execute(
                    latest_deployments().order_by(
                        Deployment.created_at.desc(), Deployment.domain, Deployment.app_name
                    )
                )
                return list(result.scalars().all())

        return await run_with_deadline("list_latest", fetch, timeout or self.timeout)

    async def update_status(self, deployment_id: str, new_status, timeout: Optional[float] = None) -> Deployment:
        status = parse_status(new_status)
        values = {"status": status.value}
        if status is DeploymentStatus.DEPLOYED:
            values["deployed_at"] = utcnow()

        async def apply():
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Deployment)
                        .where(Deployment.id == str(deployment_id))
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        return None
                    refreshed = await session.execute(select(Deployment).where(Deployment.id == str(deployment_id)))
                    return refreshed.scalars().first()

        deployment = await run_with_deadline("update_status", apply, timeout or self.timeout)
        if deployment is None:
            raise NotFoundError(f"deployment {deployment_id} not found")
        logger.info(f"[update_status][{deployment_id}] status -> {status.value}")
        return deployment

    async def stats(self, timeout: Optional[float] = None) -> DeploymentStats:
        async def fetch():
            latest = latest_deployments().subquery("latest_deployments")
            async with self.session_factory() as session:
                result = await session.execute(
                    select(
                        func.count(),
                        func.count(case((latest.c.status == DeploymentStatus.PENDING.value, 1))),
                        func.count(case((latest.c.status == DeploymentStatus.DEPLOYED.value, 1))),
                        func.count(case((latest.c.status == DeploymentStatus.FAILED.value, 1))),
                    ).select_from(latest)
                )
                return result.one()

        total, pending, deployed, failed = await run_with_deadline("stats", fetch, timeout or self.timeout)
        return DeploymentStats(
            total_deployments=total,
            pending_count=pending,
            deployed_count=deployed,
            failed_count=failed,
        )

    async def ping(self, timeout: Optional[float] = None) -> None:
        await run_with_deadline("ping", lambda: core_db.ping(self.session_factory), timeout or self.timeout)
