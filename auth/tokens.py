"""Token generation, hashing and the access-token codec.

Opaque tokens (magic link, refresh, CSRF, exchange codes) are random
strings that are only ever persisted as SHA-256 hex digests. Access tokens
are short-lived HS256 JWTs signed with a secret from Vault.
"""

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4

import jwt

from auth.config import AuthConfig
from auth.exceptions import TokenExpiredError, UnauthorizedError
from auth.types import User, UserRole
from utils.timezone import now_utc, to_epoch, from_epoch

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"


def generate_token(nbytes: int = 32) -> str:
    """URL-safe random token with `nbytes` bytes of entropy."""
    return secrets.token_urlsafe(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 hex digest. The only form in which tokens are stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def tokens_match(presented: str, expected_hash: str | None) -> bool:
    """Constant-time check of a raw token against a stored hash."""
    if not presented or not expected_hash:
        return False
    return hmac.compare_digest(hash_token(presented), expected_hash)


@dataclass(frozen=True)
class AccessClaims:
    """Decoded, verified access token claims."""

    user_id: UUID
    session_id: UUID
    email: str
    role: UserRole
    issued_at: datetime
    expires_at: datetime
    jti: str


class AccessTokenCodec:
    """Encode and verify access JWTs.

    Claims: sub (user id), sid (session id), email, role, type="access",
    iat, exp, jti, iss.
    """

    def __init__(self, secret: str, config: AuthConfig):
        if not secret:
            raise ValueError("JWT secret is required")
        self._secret = secret
        self._config = config

    def encode(self, user: User, session_id: UUID, issued_at: datetime | None = None) -> tuple[str, datetime]:
        """Sign an access token. Returns (token, expires_at)."""
        issued_at = issued_at or now_utc()
        expires_at = issued_at + timedelta(minutes=self._config.access_token_expiry_minutes)
        payload = {
            "sub": str(user.id),
            "sid": str(session_id),
            "email": user.email,
            "role": user.role.value,
            "type": ACCESS_TOKEN_TYPE,
            "iat": to_epoch(issued_at),
            "exp": to_epoch(expires_at),
            "jti": uuid4().hex,
            "iss": self._config.jwt_issuer,
        }
        token = jwt.encode(payload, self._secret, algorithm=self._config.jwt_algorithm)
        # Round to the same whole-second precision the claim carries
        return token, from_epoch(payload["exp"])

    def decode(self, token: str) -> AccessClaims:
        """
        Verify signature, issuer, expiry and token type.

        Raises:
            TokenExpiredError: Signature valid but `exp` has passed.
            UnauthorizedError: Anything else wrong with the token.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._config.jwt_algorithm],
                issuer=self._config.jwt_issuer,
                options={"require": ["sub", "sid", "exp", "iat", "type"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Access token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected access token: {e}")
            raise UnauthorizedError("Invalid access token")

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise UnauthorizedError("Invalid token type")

        try:
            return AccessClaims(
                user_id=UUID(payload["sub"]),
                session_id=UUID(payload["sid"]),
                email=payload.get("email", ""),
                role=UserRole(payload.get("role", UserRole.USER.value)),
                issued_at=from_epoch(payload["iat"]),
                expires_at=from_epoch(payload["exp"]),
                jti=payload.get("jti", ""),
            )
        except (ValueError, TypeError):
            raise UnauthorizedError("Invalid access token")


def read_unverified_expiry(token: str) -> datetime:
    """
    Read `exp` from a JWT without verifying the signature.

    For clients that only need to schedule a refresh. Never use the result
    for an authorization decision.

    Raises:
        UnauthorizedError: Token is not a JWT or carries no numeric `exp`.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Malformed access token")
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        raise UnauthorizedError("Access token has no expiry")
    return from_epoch(exp)
