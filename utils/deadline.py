import asyncio
import logging
from typing import Awaitable, Callable, TypeVar
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from utils.exceptions import StoreError, StoreTimeoutError, StoreUnavailableError

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def run_with_deadline(op_name: str, func: Callable[[], Awaitable[T]], timeout: float) -> T:
    """Run ``func()`` under a deadline and map driver failures onto store errors.

    On timeout the task running ``func`` is cancelled, so any open
    ``session.begin()`` block is rolled back before StoreTimeoutError is raised.
    """
    try:
        return await asyncio.wait_for(func(), timeout)
    except asyncio.TimeoutError:
        logger.error(f"[{op_name}] deadline of {timeout}s exceeded, transaction rolled back")
        raise StoreTimeoutError(f"{op_name} exceeded its {timeout}s deadline")
    except PoolTimeoutError as e:
        # 커넥션 풀 고갈
        logger.error(f"[{op_name}] connection pool exhausted: {e}")
        raise StoreUnavailableError(f"{op_name}: connection pool exhausted") from e
    except (OperationalError, InterfaceError, OSError) as e:
        logger.error(f"[{op_name}] store unreachable: {e}")
        raise StoreUnavailableError(f"{op_name}: store unreachable: {e}") from e
    except SQLAlchemyError as e:
        logger.exception(f"[{op_name}] unexpected database error")
        raise StoreError(f"{op_name} failed: {e}") from e
