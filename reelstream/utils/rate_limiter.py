import os
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Deque, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
LOGIN_WINDOW_SECONDS = int(os.getenv("LOGIN_WINDOW_SECONDS", "900"))


class LoginThrottle:
    """Sliding window of failed sign-in attempts, keyed by email."""

    def __init__(self, max_attempts: Optional[int] = None, window_seconds: Optional[int] = None) -> None:
        self.max_attempts = max_attempts if max_attempts is not None else LOGIN_MAX_ATTEMPTS
        self.window_seconds = window_seconds if window_seconds is not None else LOGIN_WINDOW_SECONDS
        self._failures: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def _purge(self, key: str, now: float) -> Deque[float]:
        window = self._failures[key]
        while window and window[0] <= now - self.window_seconds:
            window.popleft()
        return window

    def is_blocked(self, key: str) -> bool:
        with self._lock:
            return len(self._purge(key, time.monotonic())) >= self.max_attempts

    def record_failure(self, key: str) -> None:
        with self._lock:
            now = time.monotonic()
            self._purge(key, now).append(now)

    def clear(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()


login_throttle = LoginThrottle()
