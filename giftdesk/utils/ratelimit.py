"""
giftdesk/utils/ratelimit.py
---------------------------
Fixed-window rate limiting for mutating actions.

Each key (action:identifier) counts attempts inside a window that starts
at the first attempt. The attempt that goes past max_attempts blocks the
key for the action's block duration; once the block has elapsed the key
starts over with a fresh window.

There is a single operator account, so callers use the default
identifier unless they have something better to key on.

One limiter lives per app under app.extensions['rate_limiter'].
"""
import math
import time
import threading
from dataclasses import dataclass

from flask import current_app

from giftdesk.errors import RateLimitExceeded


DEFAULT_IDENTIFIER = 'default'


@dataclass
class LimitRule:
    max_attempts: int
    window: float   # seconds
    block: float    # seconds


@dataclass
class _Entry:
    count: int
    first_attempt: float
    last_attempt: float
    blocked_until: float = 0.0


@dataclass
class LimitResult:
    allowed: bool
    message: str = ''
    retry_after: int = 0


class RateLimiter:

    def __init__(self, rules: dict, clock=time.monotonic):
        self.rules = {
            action: rule if isinstance(rule, LimitRule) else LimitRule(**rule)
            for action, rule in rules.items()
        }
        self._clock = clock
        self._attempts = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(action, identifier):
        return f'{action}:{identifier}'

    def check(self, action: str, identifier: str = DEFAULT_IDENTIFIER) -> LimitResult:
        """Count one attempt at `action` and say whether it may proceed."""
        rule = self.rules.get(action)
        if rule is None:
            return LimitResult(allowed=True)

        key = self._key(action, identifier)
        now = self._clock()

        with self._lock:
            entry = self._attempts.get(key)

            if entry is not None and entry.blocked_until:
                if now < entry.blocked_until:
                    retry_after = math.ceil(entry.blocked_until - now)
                    return LimitResult(
                        allowed=False,
                        message=(f'Action temporarily blocked. Try again in '
                                 f'{math.ceil(retry_after / 60)} minute(s).'),
                        retry_after=retry_after,
                    )
                entry = None  # block served, start over

            if entry is None or now - entry.first_attempt > rule.window:
                self._attempts[key] = _Entry(count=1, first_attempt=now, last_attempt=now)
                return LimitResult(allowed=True)

            entry.count += 1
            entry.last_attempt = now

            if entry.count > rule.max_attempts:
                entry.blocked_until = now + rule.block
                retry_after = math.ceil(rule.block)
                return LimitResult(
                    allowed=False,
                    message=(f'Too many attempts. Action blocked for '
                             f'{math.ceil(retry_after / 60)} minute(s).'),
                    retry_after=retry_after,
                )

            return LimitResult(allowed=True)

    def limit_info(self, action: str, identifier: str = DEFAULT_IDENTIFIER) -> dict:
        """Remaining attempts in the current window and seconds until it resets."""
        rule = self.rules.get(action)
        if rule is None:
            return {'remaining': None, 'resetIn': 0, 'blocked': False}

        now = self._clock()
        with self._lock:
            entry = self._attempts.get(self._key(action, identifier))

        if entry is None:
            return {'remaining': rule.max_attempts, 'resetIn': 0, 'blocked': False}
        if entry.blocked_until and now < entry.blocked_until:
            return {'remaining': 0, 'resetIn': math.ceil(entry.blocked_until - now), 'blocked': True}
        if entry.blocked_until or now - entry.first_attempt > rule.window:
            return {'remaining': rule.max_attempts, 'resetIn': 0, 'blocked': False}

        return {
            'remaining': max(0, rule.max_attempts - entry.count),
            'resetIn': math.ceil(entry.first_attempt + rule.window - now),
            'blocked': False,
        }

    def reset(self, action: str, identifier: str = DEFAULT_IDENTIFIER) -> None:
        with self._lock:
            self._attempts.pop(self._key(action, identifier), None)

    def cleanup(self) -> int:
        """Drop entries older than any window + block. Returns how many went."""
        if not self.rules:
            return 0
        max_age = max(r.window + r.block for r in self.rules.values())
        now = self._clock()
        with self._lock:
            stale = [k for k, e in self._attempts.items() if now - e.last_attempt > max_age]
            for key in stale:
                del self._attempts[key]
        return len(stale)

    def stats(self) -> dict:
        """Total and over-limit attempts per action."""
        out = {}
        with self._lock:
            for key, entry in self._attempts.items():
                action = key.split(':', 1)[0]
                rule = self.rules.get(action)
                row = out.setdefault(action, {'totalAttempts': 0, 'blockedAttempts': 0})
                row['totalAttempts'] += entry.count
                if rule and entry.count > rule.max_attempts:
                    row['blockedAttempts'] += entry.count - rule.max_attempts
        return out


def init_rate_limiter(app, clock=time.monotonic) -> RateLimiter:
    limiter = RateLimiter(app.config.get('RATE_LIMITS', {}), clock=clock)
    app.extensions['rate_limiter'] = limiter
    return limiter


def get_limiter() -> RateLimiter:
    return current_app.extensions['rate_limiter']


def enforce(action: str, identifier: str = DEFAULT_IDENTIFIER) -> None:
    """Raise RateLimitExceeded when `action` is over its limit."""
    result = get_limiter().check(action, identifier)
    if not result.allowed:
        current_app.logger.warning(f"Rate limit hit: {action} ({identifier})")
        raise RateLimitExceeded(result.message, result.retry_after)
