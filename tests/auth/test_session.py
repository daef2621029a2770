"""Tests for SessionManager - mint, rotation, reuse detection, revocation."""

import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from auth.exceptions import TokenExpiredError, UnauthorizedError
from auth.session import RevokeReason
from auth.tokens import hash_token
from auth.types import Identity, SecurityAction, SecurityStatus
from utils.timezone import now_utc


class TestMint:
    """Session creation."""

    def test_creates_active_session(self, minted, store, user):
        session = store.sessions[minted.session_id]
        assert session.user_id == user.id
        assert not session.is_revoked
        assert session.rotation_count == 0

    def test_stores_only_hashes(self, minted, store):
        session = store.sessions[minted.session_id]
        assert session.refresh_token_hash == hash_token(minted.refresh_token)
        assert session.csrf_token_hash == hash_token(minted.csrf_token)
        assert minted.refresh_token not in session.model_dump_json()

    def test_refresh_window_follows_config(self, minted, config):
        delta = minted.refresh_expires_at - now_utc()
        assert timedelta(days=config.refresh_token_expiry_days - 1) < delta <= timedelta(
            days=config.refresh_token_expiry_days
        )

    def test_access_expires_before_refresh(self, minted):
        assert minted.access_expires_at < minted.refresh_expires_at

    def test_records_device(self, minted, store, device):
        session = store.sessions[minted.session_id]
        assert session.browser == "Chrome"
        assert session.device_hash == device.device_hash


class TestRefresh:
    """Rotation."""

    def test_returns_new_triple(self, session_manager, minted):
        rotated = session_manager.refresh(minted.refresh_token)

        assert rotated.session_id == minted.session_id
        assert rotated.refresh_token != minted.refresh_token
        assert rotated.csrf_token != minted.csrf_token
        assert rotated.access_token != minted.access_token

    def test_increments_rotation_count_by_one(self, session_manager, minted, store):
        rotated = session_manager.refresh(minted.refresh_token)
        assert store.sessions[minted.session_id].rotation_count == 1

        session_manager.refresh(rotated.refresh_token)
        assert store.sessions[minted.session_id].rotation_count == 2

    def test_moves_old_hash_to_previous(self, session_manager, minted, store):
        rotated = session_manager.refresh(minted.refresh_token)
        session = store.sessions[minted.session_id]
        assert session.previous_refresh_token_hash == hash_token(minted.refresh_token)
        assert session.refresh_token_hash == hash_token(rotated.refresh_token)

    def test_rebinds_csrf(self, session_manager, minted, store):
        rotated = session_manager.refresh(minted.refresh_token)
        assert store.sessions[minted.session_id].csrf_token_hash == hash_token(rotated.csrf_token)

    def test_logs_token_refreshed(self, session_manager, minted, store):
        session_manager.refresh(minted.refresh_token)
        actions = [e.action for e in store.security_logs]
        assert SecurityAction.TOKEN_REFRESHED in actions

    def test_unknown_token(self, session_manager):
        with pytest.raises(UnauthorizedError):
            session_manager.refresh("never-issued")

    def test_empty_token(self, session_manager):
        with pytest.raises(UnauthorizedError):
            session_manager.refresh("")

    def test_revoked_session(self, session_manager, minted):
        session_manager.revoke(minted.session_id, RevokeReason.LOGOUT)
        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

    def test_expired_refresh_window(self, session_manager, minted, store):
        session = store.sessions[minted.session_id]
        store.sessions[minted.session_id] = session.model_copy(
            update={"refresh_expires_at": now_utc() - timedelta(seconds=1)}
        )
        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

    def test_rotation_ceiling_revokes(self, session_manager, minted, store, config):
        session = store.sessions[minted.session_id]
        store.sessions[minted.session_id] = session.model_copy(
            update={"rotation_count": config.max_rotation_count}
        )

        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

        revoked = store.sessions[minted.session_id]
        assert revoked.is_revoked
        assert revoked.revoked_reason == RevokeReason.MAX_ROTATIONS_EXCEEDED


class TestReuseDetection:
    """Presenting an already-rotated refresh token."""

    def test_reuse_revokes_session(self, session_manager, minted, store):
        session_manager.refresh(minted.refresh_token)

        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

        session = store.sessions[minted.session_id]
        assert session.is_revoked
        assert session.revoked_reason == RevokeReason.TOKEN_REUSE_DETECTED

    def test_reuse_is_audited(self, session_manager, minted, store, user):
        session_manager.refresh(minted.refresh_token)

        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

        suspicious = [e for e in store.security_logs if e.action == SecurityAction.SUSPICIOUS_ACTIVITY]
        assert len(suspicious) == 1
        assert suspicious[0].user_id == user.id
        assert suspicious[0].status == SecurityStatus.FAILED
        assert suspicious[0].metadata["session_id"] == str(minted.session_id)

    def test_newest_token_dies_with_session(self, session_manager, minted):
        rotated = session_manager.refresh(minted.refresh_token)
        with pytest.raises(UnauthorizedError):
            session_manager.refresh(minted.refresh_token)

        with pytest.raises(UnauthorizedError):
            session_manager.refresh(rotated.refresh_token)

    def test_concurrent_refresh_has_one_winner(self, session_manager, minted, store):
        wins, losses = [], []

        def refresh():
            try:
                wins.append(session_manager.refresh(minted.refresh_token))
            except UnauthorizedError as e:
                losses.append(e)

        threads = [threading.Thread(target=refresh) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) <= 1
        assert len(wins) + len(losses) == 6
        if wins:
            assert store.sessions[minted.session_id].rotation_count == 1


class TestRevoke:
    """Revocation is idempotent and terminal."""

    def test_first_revoke_returns_true(self, session_manager, minted):
        assert session_manager.revoke(minted.session_id, RevokeReason.LOGOUT) is True

    def test_second_revoke_returns_false(self, session_manager, minted):
        session_manager.revoke(minted.session_id, RevokeReason.LOGOUT)
        assert session_manager.revoke(minted.session_id, RevokeReason.LOGOUT) is False

    def test_reason_is_kept_from_first_revoke(self, session_manager, minted, store):
        session_manager.revoke(minted.session_id, RevokeReason.LOGOUT)
        session_manager.revoke(minted.session_id, RevokeReason.USER_REVOKED)
        assert store.sessions[minted.session_id].revoked_reason == RevokeReason.LOGOUT

    def test_unknown_session(self, session_manager):
        assert session_manager.revoke(uuid4(), RevokeReason.LOGOUT) is False

    def test_revoke_all_spares_current(self, session_manager, user, device, minted, store):
        second = session_manager.mint(Identity(user=user, method="magic_link"), device)
        third = session_manager.mint(Identity(user=user, method="magic_link"), device)

        count = session_manager.revoke_all(user.id, RevokeReason.USER_REVOKED, except_session_id=minted.session_id)

        assert count == 2
        assert not store.sessions[minted.session_id].is_revoked
        assert store.sessions[second.session_id].is_revoked
        assert store.sessions[third.session_id].is_revoked

    def test_list_active_excludes_revoked(self, session_manager, user, device, minted):
        second = session_manager.mint(Identity(user=user, method="magic_link"), device)
        session_manager.revoke(second.session_id, RevokeReason.LOGOUT)

        active = session_manager.list_active(user.id)
        assert [s.id for s in active] == [minted.session_id]


class TestAuthenticate:
    """Bearer token resolution."""

    def test_valid_token(self, session_manager, minted, user):
        session, resolved = session_manager.authenticate(minted.access_token)
        assert session.id == minted.session_id
        assert resolved.id == user.id

    def test_revoked_session_rejects_unexpired_token(self, session_manager, minted):
        session_manager.revoke(minted.session_id, RevokeReason.LOGOUT)
        with pytest.raises(UnauthorizedError):
            session_manager.authenticate(minted.access_token)

    def test_expired_token(self, session_manager, codec, minted, user):
        token, _ = codec.encode(user, minted.session_id, now_utc() - timedelta(minutes=20))
        with pytest.raises(TokenExpiredError):
            session_manager.authenticate(token)

    def test_session_of_another_user(self, session_manager, codec, minted, other_user):
        token, _ = codec.encode(other_user, minted.session_id)
        with pytest.raises(UnauthorizedError):
            session_manager.authenticate(token)
