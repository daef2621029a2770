"""Magic link ("quicksign") token issuance and verification.

Tokens are 32 random bytes, URL-safe encoded. Only their SHA-256 hash is
stored; the raw value exists in the returned link and the email.
"""

import logging
from datetime import timedelta

from auth.config import AuthConfig
from auth.exceptions import (
    InvalidInputError,
    TokenExpiredError,
    TokenUsedError,
    UnauthorizedError,
)
from auth.store import AuthStore
from auth.tokens import generate_token, hash_token
from auth.types import IssuedMagicLink, MagicLinkPurpose, MagicLinkStatus, MagicLinkToken
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 128


class MagicLinkIssuer:
    """Issue, check and consume one-time sign-in tokens."""

    def __init__(self, store: AuthStore, config: AuthConfig):
        self._store = store
        self._config = config

    def _link(self, token: str) -> str:
        return f"{self._config.app_base_url.rstrip('/')}/auth/quicksign/verify/{token}"

    def _hash_presented(self, token: str) -> str:
        if not token or len(token) > MAX_TOKEN_LENGTH:
            raise InvalidInputError("Invalid token")
        return hash_token(token)

    def issue(
        self,
        email: str,
        purpose: MagicLinkPurpose,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> IssuedMagicLink:
        """
        Create a token for `email` and return it with its sign-in link.

        Earlier unused tokens for the same email and purpose stop working.

        Raises:
            RateLimitedError: A token for this email was issued less than the
                cooldown ago and is still usable.
        """
        token = generate_token(32)
        now = now_utc()
        record = MagicLinkToken(
            token_hash=hash_token(token),
            email=email.lower(),
            purpose=purpose,
            issued_at=now,
            expires_at=now + timedelta(minutes=self._config.magic_link_expiry_minutes),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        self._store.create_magic_token(record, self._config.magic_link_cooldown_seconds)
        logger.info(f"Magic link issued for {record.email} ({purpose.value})")

        return IssuedMagicLink(
            token=token,
            link=self._link(token),
            email=record.email,
            purpose=purpose,
            expires_at=record.expires_at,
        )

    def discard(self, token: str) -> None:
        """Drop a freshly issued token that was never delivered."""
        if self._store.delete_magic_token(hash_token(token)):
            logger.info("Undelivered magic link discarded")

    def check(self, token: str) -> MagicLinkStatus:
        """Read-only status check. Unknown tokens report invalid, not an error."""
        record = self._store.get_magic_token(self._hash_presented(token))
        if record is None:
            return MagicLinkStatus(valid=False, used=False, expired=False)

        used = record.used_at is not None
        expired = record.expires_at <= now_utc()
        return MagicLinkStatus(valid=not used and not expired, used=used, expired=expired)

    def verify(self, token: str) -> MagicLinkToken:
        """
        Consume a token. At most one caller ever succeeds for a given token.

        Raises:
            TokenUsedError: Already consumed or superseded by a newer link.
            TokenExpiredError: Past expires_at, used or not.
            UnauthorizedError: Unknown token.
        """
        token_hash = self._hash_presented(token)
        now = now_utc()

        consumed = self._store.consume_magic_token(token_hash, now)
        if consumed is not None:
            logger.info(f"Magic link verified for {consumed.email}")
            return consumed

        # Swap failed: work out why for the caller
        record = self._store.get_magic_token(token_hash)
        if record is None:
            raise UnauthorizedError("Invalid sign-in link")
        if record.used_at is not None:
            raise TokenUsedError("This sign-in link has already been used")
        raise TokenExpiredError("This sign-in link has expired")
