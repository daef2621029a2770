"""One-time codes carrying freshly minted tokens to the client.

Verify endpoints are reached from an email link, so they redirect instead
of returning tokens in a URL. The redirect carries a short opaque code that
the client redeems once over POST /auth/exchange.
"""

import logging
import secrets

from pydantic import ValidationError

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import UnauthorizedError
from auth.types import TokenPair

logger = logging.getLogger(__name__)


class ExchangeCodeStore:
    """Valkey-backed one-time codes with a short TTL."""

    KEY_PREFIX = "auth:exchange:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._ttl = config.exchange_code_ttl_seconds

    def _key(self, code: str) -> str:
        return f"{self.KEY_PREFIX}{code}"

    def create(self, tokens: TokenPair, is_new_user: bool = False) -> str:
        """Stash `tokens` and return a 64-hex-character code."""
        code = secrets.token_hex(32)
        self._valkey.set_json(
            self._key(code),
            {"tokens": tokens.model_dump(mode="json"), "is_new_user": is_new_user},
            expire_seconds=self._ttl,
        )
        return code

    def redeem(self, code: str) -> tuple[TokenPair, bool]:
        """
        Atomically consume a code. Returns (tokens, is_new_user).

        Raises:
            UnauthorizedError: Unknown, expired or already redeemed code.
        """
        payload = self._valkey.getdel_json(self._key(code))
        if not isinstance(payload, dict):
            raise UnauthorizedError("Invalid or expired code")
        try:
            tokens = TokenPair.model_validate(payload["tokens"])
        except (KeyError, ValidationError):
            logger.error("Malformed exchange code payload")
            raise UnauthorizedError("Invalid or expired code")
        return tokens, bool(payload.get("is_new_user", False))
