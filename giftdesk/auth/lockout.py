"""
giftdesk/auth/lockout.py
------------------------
Failed-login tracking per username.

After MAX_LOGIN_ATTEMPTS consecutive failures the username is locked for
LOCKOUT_DURATION milliseconds. A successful login clears the counter.
State is per process, like the rate limiter.
"""
import math
import time
import threading
from dataclasses import dataclass


@dataclass
class _Attempt:
    count: int = 0
    last_attempt: float = 0.0
    locked_until: float = 0.0


class LoginGuard:

    def __init__(self, max_attempts: int, lockout_seconds: float, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self._clock = clock
        self._attempts = {}
        self._lock = threading.Lock()

    def locked_for(self, username: str) -> int:
        """Seconds the username stays locked; 0 when it may try."""
        with self._lock:
            attempt = self._attempts.get(username)
            if attempt is None or not attempt.locked_until:
                return 0
            now = self._clock()
            if now >= attempt.locked_until:
                del self._attempts[username]
                return 0
            return math.ceil(attempt.locked_until - now)

    def record_failure(self, username: str) -> bool:
        """Count a failure. Returns True when this failure locked the account."""
        now = self._clock()
        with self._lock:
            attempt = self._attempts.setdefault(username, _Attempt())
            attempt.count += 1
            attempt.last_attempt = now
            if attempt.count >= self.max_attempts:
                attempt.locked_until = now + self.lockout_seconds
                return True
            return False

    def reset(self, username: str) -> None:
        with self._lock:
            self._attempts.pop(username, None)


def init_login_guard(app, clock=time.monotonic) -> LoginGuard:
    guard = LoginGuard(
        max_attempts=app.config.get('MAX_LOGIN_ATTEMPTS', 5),
        lockout_seconds=app.config.get('LOCKOUT_DURATION', 900000) / 1000,
        clock=clock,
    )
    app.extensions['login_guard'] = guard
    return guard
