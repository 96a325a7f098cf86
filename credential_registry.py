import logging
from typing import Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.future import select
from models.deployment import utcnow
from models.registry_credential import RegistryCredential
from retry_policy import RetryPolicy
from utils.deadline import run_with_deadline
from utils.exceptions import KeyConflictError, NotFoundError

logger = logging.getLogger(__name__)


class CredentialRegistry:
    def __init__(self, session_factory: async_sessionmaker, timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout
        # insert 경합 시 한 번만 다시 시도하면 update 경로로 처리됨
        self.retry_policy = RetryPolicy(max_retries=1, delay=0, retry_on=(KeyConflictError,))

    async def get(self, registry: str, timeout: Optional[float] = None) -> RegistryCredential:
        async def fetch():
            async with self.session_factory() as session:
                result = await session.execute(select(RegistryCredential).where(RegistryCredential.registry_name == registry))
                return result.scalars().first()

        credential = await run_with_deadline("get_credential", fetch, timeout or self.timeout)
        if credential is None:
            raise NotFoundError(f"registry credential {registry} not found")
        return credential

    async def store(self, registry: str, username: str, password: str,
                    timeout: Optional[float] = None) -> RegistryCredential:
        async def upsert_with_retry():
            return await self.retry_policy.execute_with_retry(self._upsert, registry, username, password)

        credential = await run_with_deadline("store_credential", upsert_with_retry, timeout or self.timeout)
        logger.info(f"[registry][{registry}] credential stored")
        return credential

    async def _upsert(self, registry: str, username: str, password: str) -> RegistryCredential:
        # upsert: registry가 있으면 update, 없으면 insert
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(select(RegistryCredential).where(RegistryCredential.registry_name == registry))
                    existing = result.scalars().first()
                    now = utcnow()
                    if existing:
                        existing.username = username
                        existing.password = password
                        existing.updated_at = now
                        credential = existing
                    else:
                        credential = RegistryCredential(
                            registry_name=registry,
                            username=username,
                            password=password,
                            updated_at=now,
                            created_at=now,
                        )
                        session.add(credential)
                    await session.flush()
            except IntegrityError as e:
                raise KeyConflictError(f"concurrent insert for registry {registry}") from e
        return credential
