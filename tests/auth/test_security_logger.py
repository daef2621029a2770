"""Tests for auth/security_logger.py - audit trail and preferences."""

from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import pytest

from auth.exceptions import StorageUnavailableError
from auth.security_logger import SecurityLogger, safe_get_preferences
from auth.types import (
    IpBlock,
    SecurityAction,
    SecurityLogEntry,
    SecurityLogFilter,
    SecurityPreferencesUpdate,
    SecurityStatus,
)
from conftest import TEST_IP
from utils.timezone import now_utc


def _entry(user_id, action=SecurityAction.LOGIN_SUCCESS, minutes_ago=0, status=SecurityStatus.SUCCESS):
    return SecurityLogEntry(
        user_id=user_id,
        action=action,
        status=status,
        created_at=now_utc() - timedelta(minutes=minutes_ago),
    )


class TestLog:
    """Appending entries."""

    def test_log_appends_entry(self, security_logger, store, user):
        security_logger.log(SecurityAction.LOGIN_SUCCESS, user_id=user.id, ip_address=TEST_IP)

        assert len(store.security_logs) == 1
        entry = store.security_logs[0]
        assert entry.user_id == user.id
        assert entry.ip_address == TEST_IP
        assert entry.metadata_version == 1

    def test_device_fields_copied(self, security_logger, store, user, device):
        security_logger.log(SecurityAction.DEVICE_NEW, user_id=user.id, device=device)
        entry = store.security_logs[0]
        assert entry.browser == "Chrome"
        assert entry.os == "macOS"
        assert entry.ip_address == device.ip_address

    def test_metadata_kept(self, security_logger, store):
        security_logger.log(SecurityAction.LOGIN_FAILED, metadata={"reason": "TOKEN_USED", "attempt": 2})
        assert store.security_logs[0].metadata == {"reason": "TOKEN_USED", "attempt": 2}

    def test_record_never_raises(self, config):
        broken = Mock()
        broken.insert_security_log.side_effect = StorageUnavailableError()
        logger = SecurityLogger(broken, config)

        entry = logger.log(SecurityAction.LOGIN_FAILED, status=SecurityStatus.FAILED)

        assert entry.action == SecurityAction.LOGIN_FAILED

    def test_empty_metadata_key_rejected(self):
        with pytest.raises(ValueError):
            SecurityLogEntry(action=SecurityAction.LOGOUT, metadata={"": 1}, created_at=now_utc())


class TestFilter:
    """Paginated view."""

    def test_newest_first(self, security_logger, store, user):
        store.insert_security_log(_entry(user.id, minutes_ago=10))
        store.insert_security_log(_entry(user.id, action=SecurityAction.LOGOUT, minutes_ago=1))

        page = security_logger.filter(SecurityLogFilter(user_id=user.id))

        assert [e.action for e in page.items] == [SecurityAction.LOGOUT, SecurityAction.LOGIN_SUCCESS]

    def test_pagination(self, security_logger, store, user):
        for i in range(45):
            store.insert_security_log(_entry(user.id, minutes_ago=i))

        page = security_logger.filter(SecurityLogFilter(user_id=user.id, page=3, limit=20))

        assert page.total == 45
        assert page.total_pages == 3
        assert len(page.items) == 5

    def test_empty_result(self, security_logger, user):
        page = security_logger.filter(SecurityLogFilter(user_id=user.id))
        assert page.total == 0
        assert page.total_pages == 0
        assert page.items == []

    def test_filters_by_action_and_status(self, security_logger, store, user):
        store.insert_security_log(_entry(user.id))
        store.insert_security_log(_entry(user.id, SecurityAction.LOGIN_FAILED, status=SecurityStatus.FAILED))

        page = security_logger.filter(SecurityLogFilter(
            user_id=user.id, action=SecurityAction.LOGIN_FAILED, status=SecurityStatus.FAILED,
        ))
        assert page.total == 1

    def test_filters_by_date_range(self, security_logger, store, user):
        store.insert_security_log(_entry(user.id, minutes_ago=120))
        store.insert_security_log(_entry(user.id, minutes_ago=5))

        page = security_logger.filter(SecurityLogFilter(
            user_id=user.id, start_date=now_utc() - timedelta(minutes=60),
        ))
        assert page.total == 1

    def test_isolates_users(self, security_logger, store, user, other_user):
        store.insert_security_log(_entry(user.id))
        store.insert_security_log(_entry(other_user.id))

        page = security_logger.filter(SecurityLogFilter(user_id=user.id))
        assert all(e.user_id == user.id for e in page.items)

    @pytest.mark.parametrize("kwargs", [{"page": 0}, {"limit": 0}, {"limit": 101}])
    def test_invalid_paging(self, kwargs):
        with pytest.raises(ValueError):
            SecurityLogFilter(**kwargs)


class TestStats:

    def test_counts(self, security_logger, store, user):
        store.insert_security_log(_entry(user.id))
        store.insert_security_log(_entry(user.id, SecurityAction.LOGIN_FAILED, minutes_ago=60 * 30))
        store.insert_security_log(_entry(user.id, SecurityAction.LOGOUT))

        stats = security_logger.stats(user.id)

        assert stats.total_logs == 3
        assert stats.successful_logins == 1
        assert stats.failed_logins == 1
        assert stats.recent_activity == 2


class TestPreferences:
    """Per-user settings."""

    def test_defaults_created_on_first_read(self, security_logger, store, user, config):
        prefs = security_logger.get_preferences(user.id)

        assert prefs.failed_login_threshold == config.failed_login_threshold
        assert prefs.auto_block_suspicious_ip is False
        assert user.id in store.preferences

    def test_partial_update(self, security_logger, user):
        updated = security_logger.update_preferences(
            user.id, SecurityPreferencesUpdate(failed_login_threshold=5)
        )
        assert updated.failed_login_threshold == 5
        assert updated.email_on_new_device is True

    def test_update_is_logged(self, security_logger, store, user):
        security_logger.update_preferences(user.id, SecurityPreferencesUpdate(auto_block_suspicious_ip=True))
        entries = [e for e in store.security_logs if e.action == SecurityAction.PREFERENCES_UPDATED]
        assert len(entries) == 1
        assert entries[0].metadata["fields"] == "auto_block_suspicious_ip"

    def test_empty_update_changes_nothing(self, security_logger, store, user):
        security_logger.update_preferences(user.id, SecurityPreferencesUpdate())
        assert store.security_logs == []

    @pytest.mark.parametrize("field,value", [
        ("failed_login_threshold", 0),
        ("failed_login_threshold", 11),
        ("failed_login_time_window", 4),
        ("failed_login_time_window", 61),
    ])
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValueError):
            SecurityPreferencesUpdate(**{field: value})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            SecurityPreferencesUpdate(bogus=True)

    def test_safe_get_falls_back_to_defaults(self, config):
        broken = Mock()
        broken.get_preferences.side_effect = StorageUnavailableError()
        logger = SecurityLogger(broken, config)
        user_id = uuid4()

        prefs = safe_get_preferences(logger, user_id)

        assert prefs.user_id == user_id
        assert prefs.failed_login_threshold == config.failed_login_threshold


class TestIsBlocked:

    def test_active_block(self, security_logger, store):
        now = now_utc()
        store.create_ip_block(IpBlock(
            ip_address=TEST_IP, reason="test", failed_attempts=3,
            blocked_at=now, expires_at=now + timedelta(hours=1),
        ))
        assert security_logger.is_blocked(TEST_IP)

    def test_expired_block(self, security_logger, store):
        now = now_utc()
        store.create_ip_block(IpBlock(
            ip_address=TEST_IP, reason="test", failed_attempts=3,
            blocked_at=now - timedelta(days=2), expires_at=now - timedelta(days=1),
        ))
        assert not security_logger.is_blocked(TEST_IP)

    def test_no_subject(self, security_logger):
        assert not security_logger.is_blocked(None)
