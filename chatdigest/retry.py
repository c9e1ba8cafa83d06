# chatdigest/retry.py
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from .errors import AuthError, NotFound

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry a whole crawler call a fixed number of times with a fixed pause.

    Errors listed in ``fatal`` propagate on the first occurrence.
    """

    max_attempts: int = 3
    delay_seconds: float = 1.0
    fatal: Tuple[Type[BaseException], ...] = (AuthError, NotFound)

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except self.fatal:
                raise
            except Exception as e:
                if attempt >= self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e}")
                    raise
                logger.warning(f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}")
                if self.delay_seconds > 0:
                    await asyncio.sleep(self.delay_seconds)
