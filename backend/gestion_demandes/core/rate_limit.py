from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol


logger = logging.getLogger("chantier_api.rate_limit")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AttemptLimiter(Protocol):
    def check(self, key: str) -> bool: ...

    def record(self, key: str) -> None: ...

    def reset(self, key: str) -> None: ...


class LoginAttemptLimiter:
    """Counts failed logins per key and locks the key out for a while.

    Held by the application and handed to the login endpoint, so tests and
    multi-worker deployments can swap in another ``AttemptLimiter``.
    """

    def __init__(
        self,
        *,
        max_attempts: int,
        lockout: timedelta,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_attempts = max_attempts
        self.lockout = lockout
        self._clock = clock
        self._failures: dict[str, list[datetime]] = {}
        self._locked_until: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> bool:
        """True while ``key`` may still attempt a login."""
        with self._lock:
            until = self._locked_until.get(key)
            if until is None:
                return True
            if self._clock() >= until:
                del self._locked_until[key]
                self._failures.pop(key, None)
                return True
            return False

    def record(self, key: str) -> None:
        now = self._clock()
        with self._lock:
            window_start = now - self.lockout
            failures = [t for t in self._failures.get(key, []) if t >= window_start]
            failures.append(now)
            self._failures[key] = failures
            if len(failures) >= self.max_attempts:
                self._locked_until[key] = now + self.lockout
                logger.warning("login locked key=%s attempts=%s", key, len(failures))

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
            self._locked_until.pop(key, None)
