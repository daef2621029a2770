"""Auto-block after repeated failed sign-ins.

Counts LOGIN_FAILED events with status FAILED for a subject (user, or IP when the user is
unknown) inside a sliding window. Crossing the threshold persists a 24h
block that the service consults before issuing or verifying credentials.
"""

import logging
from datetime import timedelta
from uuid import UUID

from auth.alerts import SecurityAlerts
from auth.config import AuthConfig
from auth.security_logger import SecurityLogger, safe_get_preferences
from auth.store import AuthStore
from auth.types import BlockDecision, IpBlock, SecurityAction, SecurityStatus
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

BLOCK_REASON = "FAILED_LOGIN_THRESHOLD"


class AutoBlocker:
    """Turn failed-login counts into block decisions."""

    def __init__(
        self,
        store: AuthStore,
        security_logger: SecurityLogger,
        config: AuthConfig,
        alerts: SecurityAlerts | None = None,
    ):
        self._store = store
        self._security_logger = security_logger
        self._config = config
        self._alerts = alerts

    def evaluate_failed_login(
        self,
        user_id: UUID | None = None,
        ip_address: str | None = None,
    ) -> BlockDecision | None:
        """
        Call after recording a LOGIN_FAILED event.

        Returns the decision when a block was created, else None.
        """
        if user_id is None and not ip_address:
            return None

        if user_id is not None:
            preferences = safe_get_preferences(self._security_logger, user_id)
            threshold = preferences.failed_login_threshold
            window_minutes = preferences.failed_login_time_window
            auto_block = preferences.auto_block_suspicious_ip
        else:
            preferences = None
            threshold = self._config.failed_login_threshold
            window_minutes = self._config.failed_login_time_window_minutes
            auto_block = self._config.auto_block_anonymous_ip

        now = now_utc()
        attempts = self._store.count_security_events(
            SecurityAction.LOGIN_FAILED,
            since=now - timedelta(minutes=window_minutes),
            user_id=user_id,
            ip_address=None if user_id is not None else ip_address,
            status=SecurityStatus.FAILED,
        )
        if attempts < threshold:
            return None

        # Alert once, on the attempt that crosses the threshold
        if preferences is not None and attempts == threshold and preferences.email_on_failed_login:
            self._alert(user_id, attempts, window_minutes)

        if not auto_block:
            return None

        blocked_until = now + timedelta(hours=self._config.ip_block_hours)
        self._store.create_ip_block(IpBlock(
            user_id=user_id,
            ip_address=ip_address,
            reason=BLOCK_REASON,
            failed_attempts=attempts,
            blocked_at=now,
            expires_at=blocked_until,
        ))

        metadata = {
            "failed_attempts": attempts,
            "threshold": threshold,
            "window_minutes": window_minutes,
            "blocked_until": blocked_until.isoformat(),
        }
        self._security_logger.log(
            SecurityAction.SUSPICIOUS_ACTIVITY,
            status=SecurityStatus.WARNING,
            user_id=user_id,
            description=f"{attempts} failed sign-in attempts in {window_minutes} minutes",
            ip_address=ip_address,
            metadata=metadata,
        )
        if ip_address:
            self._security_logger.log(
                SecurityAction.IP_BLOCKED,
                status=SecurityStatus.WARNING,
                user_id=user_id,
                description=f"Blocked for {self._config.ip_block_hours} hours",
                ip_address=ip_address,
                metadata=metadata,
            )

        logger.warning(
            f"Auto-block: user={user_id} ip={ip_address} "
            f"attempts={attempts}/{threshold} until {blocked_until.isoformat()}"
        )
        return BlockDecision(
            user_id=user_id,
            ip_address=ip_address,
            failed_attempts=attempts,
            threshold=threshold,
            window_minutes=window_minutes,
            blocked_until=blocked_until,
        )

    def _alert(self, user_id: UUID, attempts: int, window_minutes: int) -> None:
        if self._alerts is None:
            return
        user = self._store.get_user_by_id(user_id)
        if user is not None:
            self._alerts.failed_logins(user, attempts, window_minutes)
