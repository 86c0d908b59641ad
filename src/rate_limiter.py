import time
from collections import deque
from typing import Callable, Dict

from fastapi import HTTPException, status


class RateLimiter:
    """Sliding-window limiter keyed by participant id."""

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.clock = clock
        self.attempts: Dict[str, deque] = {}

    def is_allowed(self, key: str) -> bool:
        now = self.clock()
        attempts = self.attempts.setdefault(key, deque())
        while attempts and now - attempts[0] >= self.window_seconds:
            attempts.popleft()
        if len(attempts) >= self.max_attempts:
            return False
        attempts.append(now)
        return True

    def check(self, key: str) -> None:
        """Raise 429 if key exceeded its budget"""
        if not self.is_allowed(key):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded, try again later.",
            )

    def reset(self, key: str) -> None:
        self.attempts.pop(key, None)
