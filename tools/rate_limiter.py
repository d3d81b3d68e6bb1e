"""
RateLimiter — Token bucket limiter for Gemini calls.

Turn resolution, campaign openings and journal summaries all hit the same
quota. Each call takes a token first; an empty bucket makes the caller
wait instead of failing with a quota error halfway through a turn.
"""

import time
import asyncio
import logging

logger = logging.getLogger("RateLimiter")


class RateLimiter:
    """Token bucket.

    Args:
        max_tokens: Burst size (15 matches the Gemini Flash free tier per minute).
        refill_rate: Tokens regained per second.
        name: Label for logging.
    """

    def __init__(self, max_tokens: int = 15, refill_rate: float = 0.25, name: str = "default"):
        if max_tokens < 1 or refill_rate <= 0:
            raise ValueError("max_tokens must be >= 1 and refill_rate > 0")
        self.max_tokens = max_tokens
        self.refill_rate = refill_rate
        self.name = name
        self._tokens = float(max_tokens)
        self._stamp = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.max_tokens, self._tokens + (now - self._stamp) * self.refill_rate)
        self._stamp = now

    def try_acquire(self) -> bool:
        """Take a token if one is available right now. Never waits."""
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    async def acquire(self) -> None:
        """Take a token, sleeping until the bucket has one."""
        async with self._lock:
            while not self.try_acquire():
                wait = (1.0 - self._tokens) / self.refill_rate
                logger.warning(f"[{self.name}] Rate limit reached, waiting {wait:.1f}s")
                await asyncio.sleep(wait)

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens


gemini_limiter = RateLimiter(max_tokens=15, refill_rate=0.25, name="gemini")
