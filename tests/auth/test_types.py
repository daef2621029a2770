"""Tests for auth/types.py - domain models and their validation."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from pydantic import ValidationError

from auth.types import (
    DeviceInfo,
    ExchangeCodeRequest,
    MagicLinkRequest,
    SecurityLogFilter,
    Session,
    SessionState,
    TokenPair,
)
from utils.timezone import now_utc


class TestMagicLinkRequest:

    def test_valid_email(self):
        assert MagicLinkRequest(email="alice@example.com").purpose is None

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            MagicLinkRequest(email="not-an-email")


class TestExchangeCodeRequest:

    def test_short_code_rejected(self):
        with pytest.raises(ValidationError):
            ExchangeCodeRequest(code="abc")


class TestSession:

    def _session(self, **overrides):
        now = now_utc()
        fields = dict(
            id=uuid4(),
            user_id=uuid4(),
            refresh_token_hash="h",
            expires_at=now + timedelta(minutes=15),
            refresh_expires_at=now + timedelta(days=14),
            last_activity=now,
            created_at=now,
        )
        fields.update(overrides)
        return Session(**fields)

    def test_active_state(self):
        assert self._session().state == SessionState.ACTIVE

    def test_revoked_state(self):
        assert self._session(is_revoked=True).state == SessionState.REVOKED


class TestTokenPair:

    def test_expires_in_never_negative(self):
        now = now_utc()
        pair = TokenPair(
            access_token="a",
            refresh_token="r",
            csrf_token="c",
            session_id=uuid4(),
            user_id=uuid4(),
            access_expires_at=now - timedelta(seconds=5),
            refresh_expires_at=now + timedelta(days=1),
        )
        assert pair.expires_in(now) == 0


class TestDeviceInfo:

    def test_hash_is_case_insensitive(self):
        a = DeviceInfo(browser="Chrome", os="macOS")
        b = DeviceInfo(browser="chrome", os="MACOS")
        assert a.device_hash == b.device_hash

    def test_display_name_for_desktop(self):
        assert DeviceInfo(browser="Firefox", os="Linux").display_name == "Firefox - Linux"


class TestSecurityLogFilter:

    def test_defaults(self):
        criteria = SecurityLogFilter()
        assert criteria.page == 1
        assert criteria.limit == 20

    def test_naive_dates_read_as_utc(self):
        criteria = SecurityLogFilter(start_date=datetime(2024, 1, 1, 12, 0))
        assert criteria.start_date.tzinfo == timezone.utc
        assert criteria.start_date.hour == 12
