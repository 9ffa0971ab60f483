import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar
import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None

async def retry_async(fn: Callable[[], Awaitable[T]],
                      tag: str = "retry",
                      max_retries: int = 3,
                      base_delay: float = 0.5) -> T:
    """
    Runs `fn` until it succeeds or `max_retries` retries are used up.
    - 404 responses are not retried.
    - 429 responses wait for Retry-After when the server sends one.
    - Otherwise exponential backoff with up to 1s of jitter.
    """
    attempt = 0
    delay = base_delay
    while True:
        try:
            return await fn()
        except Exception as e:
            logger.warning(f"[{tag}] {e}")

            status = e.response.status_code if isinstance(e, httpx.HTTPStatusError) else None
            if status == 404:
                raise

            attempt += 1
            if attempt > max_retries:
                raise

            wait = delay
            if status == 429:
                retry_after = _retry_after_seconds(e.response)
                if retry_after is not None:
                    wait = retry_after

            jittered = wait + random.uniform(0, 1)
            delay *= 2
            logger.info(f"[{tag}] Retrying in {jittered:.2f}s (attempt {attempt}/{max_retries})")
            await asyncio.sleep(jittered)
