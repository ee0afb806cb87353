import asyncio
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay_s: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `operation` with exponential backoff.

    Delay before attempt n+1 is `base_delay_s * 2 ** (n - 1)`. The last
    exception is re-raised once `max_attempts` is exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max(1, max_attempts):
                raise
            delay = base_delay_s * (2 ** (attempt - 1))
            if on_retry is not None:
                try:
                    on_retry(attempt, delay, e)
                except Exception:
                    pass
            await sleep(delay)
