"""Security event logging for the auth audit trail.

Append-only. Recording must never break the flow being audited, so
record() logs and swallows storage failures. Also owns the per-user
security preferences that drive alerts and auto-block.
"""

import logging
import math
from datetime import timedelta
from uuid import UUID

from auth.config import AuthConfig
from auth.exceptions import StorageUnavailableError
from auth.store import AuthStore
from auth.types import (
    DeviceInfo,
    MetadataValue,
    SecurityAction,
    SecurityLogEntry,
    SecurityLogFilter,
    SecurityLogPage,
    SecurityLogStats,
    SecurityPreferences,
    SecurityPreferencesUpdate,
    SecurityStatus,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Window for the "recent activity" counter in stats()
RECENT_ACTIVITY_HOURS = 24


class SecurityLogger:
    """Append-only security event log plus preference storage."""

    def __init__(self, store: AuthStore, config: AuthConfig):
        self._store = store
        self._config = config

    def record(self, entry: SecurityLogEntry) -> None:
        """Append an entry. Never raises."""
        try:
            self._store.insert_security_log(entry)
        except Exception:
            logger.exception(f"Failed to record security event {entry.action.value}")

    def log(
        self,
        action: SecurityAction,
        status: SecurityStatus = SecurityStatus.SUCCESS,
        user_id: UUID | None = None,
        description: str | None = None,
        ip_address: str | None = None,
        device: DeviceInfo | None = None,
        metadata: dict[str, MetadataValue] | None = None,
    ) -> SecurityLogEntry:
        """Build an entry from parts and record it. Returns the entry."""
        entry = SecurityLogEntry(
            user_id=user_id,
            action=action,
            status=status,
            description=description,
            ip_address=ip_address or (device.ip_address if device else None),
            device_type=device.device_type if device else None,
            browser=device.browser if device else None,
            os=device.os if device else None,
            user_agent=device.user_agent if device else None,
            metadata=metadata or {},
            created_at=now_utc(),
        )
        self.record(entry)
        if status != SecurityStatus.SUCCESS:
            logger.warning(
                f"Security event {action.value}/{status.value} "
                f"user={user_id} ip={entry.ip_address}"
            )
        return entry

    def filter(self, criteria: SecurityLogFilter) -> SecurityLogPage:
        """Paginated, newest-first view of the log."""
        items, total = self._store.query_security_logs(criteria)
        return SecurityLogPage(
            items=items,
            total=total,
            page=criteria.page,
            limit=criteria.limit,
            total_pages=math.ceil(total / criteria.limit) if total else 0,
        )

    def stats(self, user_id: UUID) -> SecurityLogStats:
        since = now_utc() - timedelta(hours=RECENT_ACTIVITY_HOURS)
        return self._store.security_log_stats(user_id, since)

    def is_blocked(self, ip_address: str | None, user_id: UUID | None = None) -> bool:
        """True while an auto-block covers this IP or user."""
        if not ip_address and not user_id:
            return False
        block = self._store.get_active_block(now_utc(), ip_address=ip_address, user_id=user_id)
        return block is not None

    def default_preferences(self, user_id: UUID) -> SecurityPreferences:
        return SecurityPreferences(
            user_id=user_id,
            failed_login_threshold=self._config.failed_login_threshold,
            failed_login_time_window=self._config.failed_login_time_window_minutes,
            updated_at=now_utc(),
        )

    def get_preferences(self, user_id: UUID) -> SecurityPreferences:
        """Current preferences; a row with defaults is created on first read."""
        preferences = self._store.get_preferences(user_id)
        if preferences is None:
            preferences = self._store.save_preferences(self.default_preferences(user_id))
        return preferences

    def update_preferences(
        self,
        user_id: UUID,
        update: SecurityPreferencesUpdate,
        ip_address: str | None = None,
    ) -> SecurityPreferences:
        """Apply a partial update. Only fields present in `update` change."""
        current = self.get_preferences(user_id)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            return current

        updated = SecurityPreferences.model_validate(
            {**current.model_dump(), **changes, "updated_at": now_utc()}
        )
        saved = self._store.save_preferences(updated)

        self.log(
            SecurityAction.PREFERENCES_UPDATED,
            user_id=user_id,
            description="Security preferences updated",
            ip_address=ip_address,
            metadata={"fields": ",".join(sorted(changes))},
        )
        logger.info(f"Security preferences updated for user {user_id}")
        return saved


def safe_get_preferences(security_logger: SecurityLogger, user_id: UUID) -> SecurityPreferences:
    """
    Preferences for decisions taken on a failure path.

    Falls back to defaults if storage is down, so the original failure (not
    a storage error) reaches the caller.
    """
    try:
        return security_logger.get_preferences(user_id)
    except StorageUnavailableError:
        logger.error(f"Preferences unavailable for user {user_id}; using defaults")
        return security_logger.default_preferences(user_id)
