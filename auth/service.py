"""Authentication service - orchestrates sign-in, refresh and session management."""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from auth.alerts import SecurityAlerts
from auth.auto_block import AutoBlocker
from auth.config import AuthConfig
from auth.csrf import CsrfBinder
from auth.device import parse_device
from auth.exceptions import (
    AuthError,
    ForbiddenError,
    InvalidInputError,
    ProviderError,
    SuspiciousActivityBlockedError,
    TokenExpiredError,
    TokenUsedError,
    UnauthorizedError,
)
from auth.exchange_codes import ExchangeCodeStore
from auth.magic_link import MagicLinkIssuer
from auth.oauth import OAuthExchanger
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger, safe_get_preferences
from auth.session import RevokeReason, SessionManager
from auth.store import AuthStore
from auth.tokens import hash_token
from auth.types import (
    BlockStatus,
    DeviceInfo,
    Identity,
    MagicLinkPurpose,
    MagicLinkStatus,
    SecurityAction,
    SecurityLogFilter,
    SecurityLogPage,
    SecurityLogStats,
    SecurityPreferences,
    SecurityPreferencesUpdate,
    SecurityStatus,
    Session,
    SessionView,
    TokenPair,
    UnblockRequest,
    User,
    UserRole,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Audit reason for upstream OAuth failures; never counted toward auto-block
PROVIDER_FAILURE_REASON = "PROVIDER_UNAVAILABLE"


@dataclass
class MagicLinkResult:
    """Result of magic link request."""

    sent: bool
    purpose: MagicLinkPurpose
    expires_at: datetime


@dataclass
class LoginResult:
    """Tokens for a completed sign-in."""

    tokens: TokenPair
    user: User
    is_new_user: bool


class AuthService:
    """Orchestrates passwordless and OAuth authentication.

    Handles:
    - Magic link requests and verification
    - OAuth code exchange
    - Token refresh, logout and device (session) management
    - Security log, stats and preferences for the signed-in user
    """

    def __init__(
        self,
        config: AuthConfig,
        store: AuthStore,
        magic_links: MagicLinkIssuer,
        oauth: OAuthExchanger,
        sessions: SessionManager,
        csrf: CsrfBinder,
        security_logger: SecurityLogger,
        auto_blocker: AutoBlocker,
        exchange_codes: ExchangeCodeStore,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient | None,
        alerts: SecurityAlerts,
    ):
        self._config = config
        self._store = store
        self._magic_links = magic_links
        self._oauth = oauth
        self._sessions = sessions
        self._csrf = csrf
        self._security_logger = security_logger
        self._auto_blocker = auto_blocker
        self._exchange_codes = exchange_codes
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._alerts = alerts

    @property
    def config(self) -> AuthConfig:
        return self._config

    def _ensure_not_blocked(self, ip_address: str | None, user_id: UUID | None = None) -> None:
        if self._security_logger.is_blocked(ip_address, user_id):
            logger.warning(f"Blocked sign-in attempt: user={user_id} ip={ip_address}")
            raise SuspiciousActivityBlockedError()

    def _record_failed_login(
        self,
        error: AuthError,
        device: DeviceInfo,
        user_id: UUID | None = None,
        method: str = "magic_link",
    ) -> None:
        """Audit a failed attempt and feed auto-block. Never raises."""
        self._security_logger.log(
            SecurityAction.LOGIN_FAILED,
            status=SecurityStatus.FAILED,
            user_id=user_id,
            description=error.message,
            device=device,
            metadata={"method": method, "reason": error.code},
        )
        try:
            self._auto_blocker.evaluate_failed_login(user_id=user_id, ip_address=device.ip_address)
        except AuthError:
            logger.exception("Auto-block evaluation failed")

    def _record_provider_failure(self, error: ProviderError, device: DeviceInfo, provider: str) -> None:
        """Audit an upstream OAuth failure. Logged as WARNING, which auto-block never counts."""
        self._security_logger.log(
            SecurityAction.LOGIN_FAILED,
            status=SecurityStatus.WARNING,
            description=error.message,
            device=device,
            metadata={"method": f"oauth:{provider}", "reason": PROVIDER_FAILURE_REASON},
        )

    # Magic link flow

    def request_magic_link(
        self,
        email: str,
        purpose: MagicLinkPurpose | None,
        ip_address: str | None,
        user_agent: str | None,
    ) -> MagicLinkResult:
        """Request a sign-in link for email.

        Flow:
        1. Refuse blocked IPs and throttle per IP
        2. Look up user; purpose defaults to LOGIN/SIGNUP accordingly
        3. Issue token (per-email cooldown, supersedes older links)
        4. Log MAGIC_LINK_REQUESTED
        5. Send email

        Raises:
            SuspiciousActivityBlockedError: IP or user under auto-block.
            RateLimitedError: IP throttle or per-email cooldown.
            EmailGatewayError: If email send fails. The unsent token is discarded.
        """
        email = email.lower().strip()

        self._ensure_not_blocked(ip_address)
        if ip_address:
            self._rate_limiter.check(ip_address)

        user = self._store.get_user_by_email(email)
        if user is not None:
            self._ensure_not_blocked(None, user.id)
        if purpose is None:
            purpose = MagicLinkPurpose.LOGIN if user else MagicLinkPurpose.SIGNUP

        issued = self._magic_links.issue(email, purpose, ip_address=ip_address, user_agent=user_agent)

        self._security_logger.log(
            SecurityAction.MAGIC_LINK_REQUESTED,
            user_id=user.id if user else None,
            ip_address=ip_address,
            device=parse_device(user_agent, ip_address),
            metadata={"purpose": purpose.value},
        )

        if self._email_client is None:
            logger.warning(f"Email disabled; magic link for {email} not delivered")
            return MagicLinkResult(sent=False, purpose=purpose, expires_at=issued.expires_at)

        try:
            self._email_client.send_magic_link(
                email=issued.email,
                link=issued.link,
                purpose=purpose.value,
                expires_minutes=self._config.magic_link_expiry_minutes,
            )
        except EmailGatewayError:
            # Undelivered token must not hold the cooldown against a retry
            self._magic_links.discard(issued.token)
            raise
        return MagicLinkResult(sent=True, purpose=purpose, expires_at=issued.expires_at)

    def check_magic_link(self, token: str) -> MagicLinkStatus:
        return self._magic_links.check(token)

    def verify_magic_link(
        self,
        token: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> LoginResult:
        """Consume a magic link and sign the user in.

        Flow:
        1. Refuse blocked IPs
        2. Consume token (exactly-once)
        3. On failure: log LOGIN_FAILED, evaluate auto-block, re-raise
        4. Get or provision the user (email is verified by construction)
        5. Mint session, log LOGIN_SUCCESS

        Raises:
            TokenUsedError, TokenExpiredError, UnauthorizedError: Bad token.
            SuspiciousActivityBlockedError: IP or user under auto-block.
        """
        device = parse_device(user_agent, ip_address)
        self._ensure_not_blocked(ip_address)

        try:
            record = self._magic_links.verify(token)
        except (TokenUsedError, TokenExpiredError, UnauthorizedError) as e:
            self._record_failed_login(e, device, user_id=self._token_owner(token))
            raise

        user = self._store.get_user_by_email(record.email)
        is_new_user = user is None
        if user is None:
            user = self._store.create_user(record.email, email_verified=True)
            logger.info(f"Provisioned user {user.id} from magic link")
        else:
            self._ensure_not_blocked(None, user.id)

        identity = Identity(user=user, method="magic_link", is_new_user=is_new_user)
        return self._complete_login(identity, device)

    def _token_owner(self, token: str) -> UUID | None:
        """User behind a (failed) magic link token, for attributing the failure."""
        try:
            record = self._store.get_magic_token(hash_token(token))
            if record is None:
                return None
            user = self._store.get_user_by_email(record.email)
            return user.id if user else None
        except AuthError:
            return None

    def verify_for_redirect(self, token: str, ip_address: str | None, user_agent: str | None) -> str:
        """Verify, then return the client callback URL carrying a one-time exchange code."""
        result = self.verify_magic_link(token, ip_address, user_agent)
        code = self._exchange_codes.create(result.tokens, is_new_user=result.is_new_user)
        return f"{self.callback_url()}?code={code}"

    def callback_url(self) -> str:
        return f"{self._config.frontend_url.rstrip('/')}/auth/callback"

    def redeem_exchange_code(self, code: str) -> tuple[TokenPair, bool]:
        return self._exchange_codes.redeem(code)

    # OAuth flow

    def oauth_login(
        self,
        provider: str,
        code: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> LoginResult:
        """Exchange an OAuth code and sign the user in.

        Raises:
            ProviderError: Provider call failed (never retried).
            SuspiciousActivityBlockedError: IP or user under auto-block.
        """
        device = parse_device(user_agent, ip_address)
        self._ensure_not_blocked(ip_address)

        try:
            identity = self._oauth.exchange(provider, code)
        except ProviderError as e:
            self._record_provider_failure(e, device, provider)
            raise

        self._ensure_not_blocked(None, identity.user.id)
        return self._complete_login(identity, device)

    def _complete_login(self, identity: Identity, device: DeviceInfo) -> LoginResult:
        """Shared tail of every sign-in: device check, mint, audit."""
        user = identity.user
        new_device = not identity.is_new_user and not self._store.user_has_device(user.id, device.device_hash)

        tokens = self._sessions.mint(identity, device)
        self._store.record_login(user.id, now_utc(), email_verified=True)

        self._security_logger.log(
            SecurityAction.LOGIN_SUCCESS,
            user_id=user.id,
            description=f"Signed in via {identity.method}",
            device=device,
            metadata={
                "method": identity.method,
                "session_id": str(tokens.session_id),
                "new_user": identity.is_new_user,
            },
        )

        if new_device:
            self._security_logger.log(
                SecurityAction.DEVICE_NEW,
                status=SecurityStatus.WARNING,
                user_id=user.id,
                description=f"New device: {device.display_name}",
                device=device,
                metadata={"session_id": str(tokens.session_id)},
            )
            if safe_get_preferences(self._security_logger, user.id).email_on_new_device:
                self._alerts.new_device(user, device)

        if device.ip_address:
            self._rate_limiter.reset(device.ip_address)

        return LoginResult(tokens=tokens, user=user, is_new_user=identity.is_new_user)

    # Sessions

    def refresh(self, refresh_token: str | None, ip_address: str | None, user_agent: str | None) -> TokenPair:
        if not refresh_token:
            raise UnauthorizedError("Refresh token required")
        return self._sessions.refresh(refresh_token, ip_address=ip_address, user_agent=user_agent)

    def authenticate(self, access_token: str) -> tuple[Session, User]:
        return self._sessions.authenticate(access_token)

    def require_csrf(self, session_id: UUID, presented: str | None) -> None:
        self._csrf.require(session_id, presented)

    def logout(self, user_id: UUID, session_id: UUID, ip_address: str | None) -> None:
        """Revoke the current session. Safe to repeat."""
        if self._sessions.revoke(session_id, RevokeReason.LOGOUT):
            self._security_logger.log(
                SecurityAction.LOGOUT,
                user_id=user_id,
                ip_address=ip_address,
                metadata={"session_id": str(session_id)},
            )

    def list_sessions(self, user_id: UUID, current_session_id: UUID | None) -> list[SessionView]:
        return [
            SessionView(
                id=s.id,
                device_type=s.device_type,
                browser=s.browser,
                os=s.os,
                ip_address=s.ip_address,
                location=s.location,
                last_activity=s.last_activity,
                created_at=s.created_at,
                is_current=s.id == current_session_id,
            )
            for s in self._sessions.list_active(user_id)
        ]

    def revoke_session(
        self,
        user_id: UUID,
        session_id: UUID,
        current_session_id: UUID | None,
        ip_address: str | None,
    ) -> None:
        """Revoke one of the caller's other sessions.

        Raises:
            InvalidInputError: Target is the current session (use logout) or
                not one of the caller's sessions.
        """
        if session_id == current_session_id:
            raise InvalidInputError("Use logout to end the current session")

        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            raise InvalidInputError("Session not found")

        if self._sessions.revoke(session_id, RevokeReason.USER_REVOKED):
            self._security_logger.log(
                SecurityAction.SESSION_REVOKED,
                user_id=user_id,
                ip_address=ip_address,
                description=f"Signed out {session.browser or 'unknown'} on {session.os or 'unknown'}",
                metadata={"session_id": str(session_id)},
            )

    def revoke_other_sessions(self, user_id: UUID, current_session_id: UUID | None, ip_address: str | None) -> int:
        count = self._sessions.revoke_all(user_id, RevokeReason.USER_REVOKED, except_session_id=current_session_id)
        if count:
            self._security_logger.log(
                SecurityAction.SESSION_REVOKED,
                user_id=user_id,
                ip_address=ip_address,
                description="Signed out of all other sessions",
                metadata={"revoked_count": count},
            )
        return count

    # Security log & preferences

    def security_logs(self, requester: User, criteria: SecurityLogFilter) -> SecurityLogPage:
        """Audit log view. Non-admins only ever see their own entries."""
        if requester.role != UserRole.ADMIN:
            criteria = criteria.model_copy(update={"user_id": requester.id})
        return self._security_logger.filter(criteria)

    def security_stats(self, user_id: UUID) -> SecurityLogStats:
        return self._security_logger.stats(user_id)

    def get_preferences(self, user_id: UUID) -> SecurityPreferences:
        return self._security_logger.get_preferences(user_id)

    def update_preferences(
        self,
        user_id: UUID,
        update: SecurityPreferencesUpdate,
        ip_address: str | None,
    ) -> SecurityPreferences:
        return self._security_logger.update_preferences(user_id, update, ip_address=ip_address)

    # Blocks

    def _require_admin(self, requester: User) -> None:
        if requester.role != UserRole.ADMIN:
            raise ForbiddenError("Admin role required")

    def block_status(
        self,
        requester: User,
        client_ip: str | None,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> BlockStatus:
        """Active block on an IP or user.

        Non-admins (and admins naming no target) get their own account and
        calling IP.
        """
        if requester.role != UserRole.ADMIN or (ip_address is None and user_id is None):
            ip_address, user_id = client_ip, requester.id

        block = self._store.get_active_block(now_utc(), ip_address=ip_address, user_id=user_id)
        if block is None:
            return BlockStatus(blocked=False, ip_address=ip_address, user_id=user_id)
        return BlockStatus(
            blocked=True,
            ip_address=ip_address,
            user_id=user_id,
            reason=block.reason,
            blocked_until=block.expires_at,
        )

    def unblock(self, requester: User, request: UnblockRequest, client_ip: str | None) -> int:
        """Lift active blocks on an IP and/or user. Returns the number lifted.

        Raises:
            ForbiddenError: Requester is not an admin.
            InvalidInputError: Neither ip_address nor user_id given.
        """
        self._require_admin(requester)
        ip_address = str(request.ip_address) if request.ip_address else None
        if ip_address is None and request.user_id is None:
            raise InvalidInputError("ip_address or user_id is required")

        lifted = self._store.lift_blocks(now_utc(), ip_address=ip_address, user_id=request.user_id)
        logger.info(f"Admin {requester.id} lifted {lifted} block(s): user={request.user_id} ip={ip_address}")
        self._security_logger.log(
            SecurityAction.IP_UNBLOCKED,
            user_id=request.user_id,
            ip_address=ip_address,
            description=f"Blocks lifted by {requester.email}",
            metadata={"lifted_count": lifted, "admin_id": str(requester.id), "admin_ip": client_ip},
        )
        return lifted

    def cleanup_blocks(self, requester: User) -> int:
        """Delete expired block rows now rather than waiting for the sweeper. Admin only."""
        self._require_admin(requester)
        return self._store.delete_expired_blocks(now_utc())
