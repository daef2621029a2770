"""Access token expiry as seen by a client.

The server guarantees every access token carries `exp`. A client reads it
(without verifying the signature, it has no key) to drive a countdown and to
refresh shortly before expiry.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from auth.tokens import read_unverified_expiry

DEFAULT_WARNING_SECONDS = 60


class ExpiryState(str, Enum):
    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    EXPIRED = "EXPIRED"  # Treat as unauthenticated


@dataclass(frozen=True)
class ExpiryCountdown:
    expires_at: datetime
    warning_seconds: int = DEFAULT_WARNING_SECONDS

    @classmethod
    def from_access_token(cls, token: str, warning_seconds: int = DEFAULT_WARNING_SECONDS) -> "ExpiryCountdown":
        """Raises UnauthorizedError if the token has no readable `exp`."""
        return cls(expires_at=read_unverified_expiry(token), warning_seconds=warning_seconds)

    def remaining_seconds(self, now: datetime) -> int:
        return max(int((self.expires_at - now).total_seconds()), 0)

    def state(self, now: datetime) -> ExpiryState:
        remaining = (self.expires_at - now).total_seconds()
        if remaining <= 0:
            return ExpiryState.EXPIRED
        if remaining <= self.warning_seconds:
            return ExpiryState.WARNING
        return ExpiryState.ACTIVE

    def should_refresh(self, now: datetime) -> bool:
        """True once inside the warning window (or already expired)."""
        return self.state(now) != ExpiryState.ACTIVE
