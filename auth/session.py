"""Session lifecycle: mint, rotate, revoke.

A session is one device/browser binding, persisted in the auth store.
ACTIVE -> ACTIVE on every refresh, -> REVOKED (terminal) on logout, reuse
detection, rotation ceiling or expiry.

The refresh token is opaque and stored hashed. Rotation is a compare-and-set
on the current hash, so two concurrent refreshes with the same token yield
one success; the loser presents what is now the previous hash and trips
reuse detection.
"""

import logging
from datetime import timedelta
from uuid import UUID, uuid4

from auth.config import AuthConfig
from auth.csrf import new_csrf_token
from auth.device import parse_device
from auth.exceptions import UnauthorizedError
from auth.security_logger import SecurityLogger
from auth.store import AuthStore
from auth.tokens import AccessTokenCodec, generate_token, hash_token
from auth.types import (
    DeviceInfo,
    Identity,
    SecurityAction,
    SecurityStatus,
    Session,
    TokenPair,
    User,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 64


class RevokeReason:
    """Stable revoked_reason values."""

    LOGOUT = "LOGOUT"
    USER_REVOKED = "USER_REVOKED"
    TOKEN_REUSE_DETECTED = "TOKEN_REUSE_DETECTED"
    MAX_ROTATIONS_EXCEEDED = "MAX_ROTATIONS_EXCEEDED"
    EXPIRED = "EXPIRED"


class SessionManager:
    """Token pair minting and refresh rotation."""

    def __init__(
        self,
        store: AuthStore,
        codec: AccessTokenCodec,
        config: AuthConfig,
        security_logger: SecurityLogger,
    ):
        self._store = store
        self._codec = codec
        self._config = config
        self._security_logger = security_logger

    def mint(self, identity: Identity, device: DeviceInfo) -> TokenPair:
        """Create a session and its first token triple."""
        now = now_utc()
        session_id = uuid4()
        refresh_token = generate_token(REFRESH_TOKEN_BYTES)
        csrf_token, csrf_hash = new_csrf_token()
        access_token, access_expires_at = self._codec.encode(identity.user, session_id, now)
        refresh_expires_at = now + timedelta(days=self._config.refresh_token_expiry_days)

        session = self._store.create_session(Session(
            id=session_id,
            user_id=identity.user.id,
            device_type=device.device_type,
            browser=device.browser,
            os=device.os,
            ip_address=device.ip_address,
            location=device.location,
            user_agent=device.user_agent,
            device_hash=device.device_hash,
            refresh_token_hash=hash_token(refresh_token),
            csrf_token_hash=csrf_hash,
            expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
            rotation_count=0,
            last_activity=now,
            created_at=now,
        ))

        logger.info(f"Session {session.id} minted for user {identity.user.id} via {identity.method}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            csrf_token=csrf_token,
            session_id=session.id,
            user_id=identity.user.id,
            access_expires_at=access_expires_at,
            refresh_expires_at=session.refresh_expires_at,
        )

    def refresh(
        self,
        refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> TokenPair:
        """
        Rotate a refresh token into a new token triple.

        Raises:
            UnauthorizedError: Unknown, revoked or expired token; a token that
                was already rotated (the session is revoked as compromised);
                or the rotation ceiling was reached.
        """
        if not refresh_token:
            raise UnauthorizedError("Refresh token required")

        old_hash = hash_token(refresh_token)
        now = now_utc()

        current = self._store.get_session_by_refresh_hash(old_hash)
        if current is None:
            self._check_reuse(old_hash, ip_address, user_agent)
            raise UnauthorizedError("Invalid refresh token")

        if current.is_revoked:
            raise UnauthorizedError("Session has been revoked")
        if current.refresh_expires_at <= now:
            raise UnauthorizedError("Session has expired")

        if current.rotation_count >= self._config.max_rotation_count:
            self.revoke(current.id, RevokeReason.MAX_ROTATIONS_EXCEEDED)
            raise UnauthorizedError("Session is too old, please sign in again")

        user = self._store.get_user_by_id(current.user_id)
        if user is None:
            self.revoke(current.id, RevokeReason.USER_REVOKED)
            raise UnauthorizedError("Account no longer exists")

        new_refresh = generate_token(REFRESH_TOKEN_BYTES)
        csrf_token, csrf_hash = new_csrf_token()
        access_token, access_expires_at = self._codec.encode(user, current.id, now)

        rotated = self._store.rotate_refresh_token(
            old_hash=old_hash,
            new_hash=hash_token(new_refresh),
            csrf_hash=csrf_hash,
            expires_at=access_expires_at,
            refresh_expires_at=now + timedelta(days=self._config.refresh_token_expiry_days),
            now=now,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if rotated is None:
            # Lost a race: someone rotated or revoked between our read and swap
            self._check_reuse(old_hash, ip_address, user_agent)
            raise UnauthorizedError("Invalid refresh token")

        self._security_logger.log(
            SecurityAction.TOKEN_REFRESHED,
            user_id=rotated.user_id,
            ip_address=ip_address,
            metadata={"session_id": str(rotated.id), "rotation_count": rotated.rotation_count},
        )
        logger.info(f"Session {rotated.id} rotated (count={rotated.rotation_count})")

        return TokenPair(
            access_token=access_token,
            refresh_token=new_refresh,
            csrf_token=csrf_token,
            session_id=rotated.id,
            user_id=rotated.user_id,
            access_expires_at=access_expires_at,
            refresh_expires_at=rotated.refresh_expires_at,
        )

    def _check_reuse(self, presented_hash: str, ip_address: str | None, user_agent: str | None) -> None:
        """Revoke the session if `presented_hash` is its previous refresh token."""
        session = self._store.get_session_by_previous_hash(presented_hash)
        if session is None or session.is_revoked:
            return

        # Audit first: the entry must exist before the error reaches the caller
        self._security_logger.log(
            SecurityAction.SUSPICIOUS_ACTIVITY,
            status=SecurityStatus.FAILED,
            user_id=session.user_id,
            description="Refresh token reuse detected; session revoked",
            device=parse_device(user_agent, ip_address),
            metadata={
                "session_id": str(session.id),
                "reason": RevokeReason.TOKEN_REUSE_DETECTED,
                "rotation_count": session.rotation_count,
            },
        )
        self.revoke(session.id, RevokeReason.TOKEN_REUSE_DETECTED)
        logger.warning(f"Refresh token reuse on session {session.id}; revoked")

    def revoke(self, session_id: UUID, reason: str) -> bool:
        """
        Revoke a session. Idempotent.

        Returns True only for the call that actually revoked it.
        """
        revoked = self._store.revoke_session(session_id, reason, now_utc())
        if revoked:
            logger.info(f"Session {session_id} revoked ({reason})")
        return revoked

    def revoke_all(self, user_id: UUID, reason: str, except_session_id: UUID | None = None) -> int:
        """Revoke every active session of a user, optionally sparing one."""
        count = self._store.revoke_user_sessions(user_id, reason, now_utc(), except_session_id)
        logger.info(f"Revoked {count} sessions for user {user_id} ({reason})")
        return count

    def list_active(self, user_id: UUID) -> list[Session]:
        """Non-revoked sessions with an open refresh window, most recent first."""
        return self._store.list_active_sessions(user_id, now_utc())

    def get(self, session_id: UUID) -> Session | None:
        return self._store.get_session(session_id)

    def authenticate(self, access_token: str) -> tuple[Session, User]:
        """
        Resolve a bearer access token to its live session and user.

        Raises:
            TokenExpiredError: Access token past exp (client should refresh).
            UnauthorizedError: Bad token, or the session is gone or revoked.
        """
        claims = self._codec.decode(access_token)
        session = self._store.get_session(claims.session_id)
        if session is None or session.is_revoked or session.user_id != claims.user_id:
            raise UnauthorizedError("Session is no longer active")

        user = self._store.get_user_by_id(claims.user_id)
        if user is None:
            raise UnauthorizedError("Account no longer exists")
        return session, user
