"""Tests for auth/expiry.py - client-side countdown contract."""

from datetime import timedelta
from uuid import uuid4

import pytest

from auth.exceptions import UnauthorizedError
from auth.expiry import ExpiryCountdown, ExpiryState
from utils.timezone import now_utc


class TestExpiryCountdown:

    def test_active_well_before_expiry(self):
        now = now_utc()
        countdown = ExpiryCountdown(expires_at=now + timedelta(minutes=10))
        assert countdown.state(now) == ExpiryState.ACTIVE
        assert not countdown.should_refresh(now)

    def test_warning_inside_threshold(self):
        now = now_utc()
        countdown = ExpiryCountdown(expires_at=now + timedelta(seconds=60))
        assert countdown.state(now) == ExpiryState.WARNING
        assert countdown.should_refresh(now)

    def test_expired_at_zero(self):
        now = now_utc()
        countdown = ExpiryCountdown(expires_at=now)
        assert countdown.state(now) == ExpiryState.EXPIRED
        assert countdown.remaining_seconds(now) == 0

    def test_remaining_never_negative(self):
        now = now_utc()
        countdown = ExpiryCountdown(expires_at=now - timedelta(minutes=5))
        assert countdown.remaining_seconds(now) == 0

    def test_custom_warning_window(self):
        now = now_utc()
        countdown = ExpiryCountdown(expires_at=now + timedelta(seconds=90), warning_seconds=120)
        assert countdown.state(now) == ExpiryState.WARNING

    def test_from_access_token(self, codec, user):
        token, expires_at = codec.encode(user, uuid4())
        countdown = ExpiryCountdown.from_access_token(token)
        assert countdown.expires_at == expires_at
        assert countdown.state(now_utc()) == ExpiryState.ACTIVE

    def test_from_bad_token(self):
        with pytest.raises(UnauthorizedError):
            ExpiryCountdown.from_access_token("bad")
