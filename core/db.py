from typing import Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
from sqlalchemy.orm import declarative_base
from core.config import DatabaseConfig, get_settings

# Base 정의 (모델에서 import)
Base = declarative_base()

# 싱글턴 엔진/세션
engine: Optional[AsyncEngine] = None
SessionLocal: Optional[async_sessionmaker] = None


def create_engine_for(db_config: DatabaseConfig) -> AsyncEngine:
    db_url = db_config.get_database_url()
    if db_url.startswith("sqlite"):
        # aiosqlite는 커넥션마다 스레드를 쓰므로 same_thread 체크 해제
        return create_async_engine(
            db_url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": db_config.pool_timeout},
        )
    return create_async_engine(
        db_url,
        future=True,
        pool_pre_ping=True,
        pool_size=min(5, db_config.max_conns),
        max_overflow=max(0, db_config.max_conns - 5),
        pool_timeout=db_config.pool_timeout,
        pool_recycle=3600,
    )


def init_engine(db_config: Optional[DatabaseConfig] = None):
    global engine, SessionLocal
    if engine is None:
        engine = create_engine_for(db_config or get_settings().database)
        SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine


async def dispose_engine():
    global engine, SessionLocal
    if engine is not None:
        await engine.dispose()
    engine = None
    SessionLocal = None


def get_engine() -> Optional[AsyncEngine]:
    return engine


def get_sessionmaker() -> async_sessionmaker:
    if SessionLocal is None:
        init_engine()
    return SessionLocal


# FastAPI 의존성 주입용 세션 팩토리
def get_session_factory() -> async_sessionmaker:
    return get_sessionmaker()


async def create_all(target_engine: AsyncEngine):
    async with target_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session_factory: async_sessionmaker):
    async with session_factory() as session:
        await session.execute(text("SELECT 1"))
