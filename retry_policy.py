import asyncio
import logging
from typing import Callable, Optional, Tuple, Type, TypeVar, Generic, Awaitable

T = TypeVar('T')

logger = logging.getLogger(__name__)


class RetryPolicy(Generic[T]):
    def __init__(
        self,
        max_retries: int = 3,
        delay: float = 1.0,
        backoff_factor: float = 2.0,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        self.max_retries = max_retries
        self.delay = delay
        self.backoff_factor = backoff_factor
        self.retry_on = retry_on

    @classmethod
    def from_attempts(cls, max_attempts: int, delay: float, backoff_factor: float,
                      retry_on: Tuple[Type[BaseException], ...] = (Exception,)) -> "RetryPolicy":
        return cls(max_retries=max(0, max_attempts - 1), delay=delay, backoff_factor=backoff_factor, retry_on=retry_on)

    async def execute_with_retry(self, func: Callable[..., Awaitable[T]], *args,
                                 on_retry: Optional[Callable[[int, BaseException], None]] = None, **kwargs) -> T:
        current_delay = self.delay
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except self.retry_on as e:
                # retry_on에 해당하지 않는 예외는 그대로 전파
                if attempt >= self.max_retries:
                    raise
                if on_retry is not None:
                    on_retry(attempt + 1, e)
                else:
                    logger.warning(f"[retry] attempt {attempt + 1}/{self.max_retries + 1} failed: {e}")
                await asyncio.sleep(current_delay)
                current_delay *= self.backoff_factor
