"""Request throttling in Valkey.

Counts attempts per (scope, subject) with a sliding TTL: every attempt
resets the expiry, so a client hammering the endpoint extends its own
lockout. Complements the per-email cooldown on magic links, which cannot
stop one client cycling through many addresses.
"""

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError


class RateLimiter:
    """Attempt counter for a named scope (e.g. 'quicksign' keyed by client IP)."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig, scope: str = "quicksign"):
        self._valkey = valkey
        self._max_attempts = config.rate_limit_attempts
        self._window_seconds = config.rate_limit_window_minutes * 60
        self._scope = scope

    def _key(self, subject: str) -> str:
        return f"{self.KEY_PREFIX}{self._scope}:{subject.lower()}"

    def check(self, subject: str) -> None:
        """Count an attempt.

        Raises:
            RateLimitedError: Over the limit for this window.
        """
        key = self._key(subject)
        count = self._valkey.incr(key)
        self._valkey.expire(key, self._window_seconds)

        if count > self._max_attempts:
            retry_after = max(self._valkey.ttl(key), 1)
            raise RateLimitedError(retry_after_seconds=retry_after)

    def reset(self, subject: str) -> None:
        self._valkey.delete(self._key(subject))
