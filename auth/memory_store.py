"""In-process AuthStore.

Single re-entrant lock around every operation, so each method is atomic in
the same way the PostgreSQL statements are. Used for local development and
by the test suite; state is lost on restart.
"""

import logging
import math
import threading
from datetime import datetime
from uuid import UUID, uuid4

from auth.exceptions import RateLimitedError
from auth.types import (
    IpBlock,
    MagicLinkToken,
    SecurityAction,
    SecurityLogEntry,
    SecurityLogFilter,
    SecurityLogStats,
    SecurityPreferences,
    SecurityStatus,
    Session,
    User,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class MemoryAuthStore:
    """Dict-backed implementation of auth.store.AuthStore."""

    def __init__(self):
        self._lock = threading.RLock()
        self.users: dict[UUID, User] = {}
        self.magic_tokens: dict[str, MagicLinkToken] = {}
        self.sessions: dict[UUID, Session] = {}
        self.security_logs: list[SecurityLogEntry] = []
        self.preferences: dict[UUID, SecurityPreferences] = {}
        self.ip_blocks: list[IpBlock] = []

    # Users

    def get_user_by_email(self, email: str) -> User | None:
        email = email.lower()
        with self._lock:
            for user in self.users.values():
                if user.email == email:
                    return user.model_copy()
        return None

    def get_user_by_id(self, user_id: UUID) -> User | None:
        with self._lock:
            user = self.users.get(user_id)
            return user.model_copy() if user else None

    def create_user(self, email: str, email_verified: bool = False) -> User:
        email = email.lower()
        with self._lock:
            existing = self.get_user_by_email(email)
            if existing:
                return existing
            user = User(
                id=uuid4(),
                email=email,
                email_verified=email_verified,
                created_at=now_utc(),
            )
            self.users[user.id] = user
            return user.model_copy()

    def record_login(self, user_id: UUID, at: datetime, email_verified: bool = False) -> None:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return
            update = {"last_login_at": at}
            if email_verified:
                update["email_verified"] = True
            self.users[user_id] = user.model_copy(update=update)

    # Magic link tokens

    def create_magic_token(self, token: MagicLinkToken, cooldown_seconds: int) -> None:
        with self._lock:
            now = token.issued_at
            for existing in self.magic_tokens.values():
                if existing.email != token.email or existing.used_at is not None:
                    continue
                if existing.expires_at <= now:
                    continue
                elapsed = (now - existing.issued_at).total_seconds()
                if elapsed < cooldown_seconds:
                    raise RateLimitedError(
                        retry_after_seconds=max(math.ceil(cooldown_seconds - elapsed), 1)
                    )

            for token_hash, existing in list(self.magic_tokens.items()):
                if (
                    existing.email == token.email
                    and existing.purpose == token.purpose
                    and existing.used_at is None
                ):
                    self.magic_tokens[token_hash] = existing.model_copy(update={"used_at": now})

            self.magic_tokens[token.token_hash] = token.model_copy()

    def get_magic_token(self, token_hash: str) -> MagicLinkToken | None:
        with self._lock:
            token = self.magic_tokens.get(token_hash)
            return token.model_copy() if token else None

    def consume_magic_token(self, token_hash: str, now: datetime) -> MagicLinkToken | None:
        with self._lock:
            token = self.magic_tokens.get(token_hash)
            if token is None or token.used_at is not None or token.expires_at <= now:
                return None
            used = token.model_copy(update={"used_at": now})
            self.magic_tokens[token_hash] = used
            return used.model_copy()

    def delete_magic_token(self, token_hash: str) -> bool:
        with self._lock:
            return self.magic_tokens.pop(token_hash, None) is not None

    def delete_stale_magic_tokens(self, before: datetime) -> int:
        with self._lock:
            stale = [
                h for h, t in self.magic_tokens.items()
                if t.expires_at < before or (t.used_at is not None and t.used_at < before)
            ]
            for token_hash in stale:
                del self.magic_tokens[token_hash]
            return len(stale)

    # Sessions

    def create_session(self, session: Session) -> Session:
        with self._lock:
            self.sessions[session.id] = session.model_copy()
            return session.model_copy()

    def get_session(self, session_id: UUID) -> Session | None:
        with self._lock:
            session = self.sessions.get(session_id)
            return session.model_copy() if session else None

    def get_session_by_refresh_hash(self, refresh_token_hash: str) -> Session | None:
        with self._lock:
            for session in self.sessions.values():
                if session.refresh_token_hash == refresh_token_hash:
                    return session.model_copy()
        return None

    def get_session_by_previous_hash(self, refresh_token_hash: str) -> Session | None:
        with self._lock:
            for session in self.sessions.values():
                if session.previous_refresh_token_hash == refresh_token_hash:
                    return session.model_copy()
        return None

    def rotate_refresh_token(
        self,
        old_hash: str,
        new_hash: str,
        csrf_hash: str,
        expires_at: datetime,
        refresh_expires_at: datetime,
        now: datetime,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session | None:
        with self._lock:
            for session_id, session in self.sessions.items():
                if session.refresh_token_hash != old_hash:
                    continue
                if session.is_revoked or session.refresh_expires_at <= now:
                    return None
                update = {
                    "refresh_token_hash": new_hash,
                    "previous_refresh_token_hash": old_hash,
                    "csrf_token_hash": csrf_hash,
                    "expires_at": expires_at,
                    "refresh_expires_at": refresh_expires_at,
                    "rotation_count": session.rotation_count + 1,
                    "last_activity": now,
                    "last_rotated_at": now,
                }
                if ip_address:
                    update["ip_address"] = ip_address
                if user_agent:
                    update["user_agent"] = user_agent
                rotated = session.model_copy(update=update)
                self.sessions[session_id] = rotated
                return rotated.model_copy()
        return None

    def set_csrf_hash(self, session_id: UUID, csrf_hash: str) -> bool:
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None or session.is_revoked:
                return False
            self.sessions[session_id] = session.model_copy(update={"csrf_token_hash": csrf_hash})
            return True

    def revoke_session(self, session_id: UUID, reason: str, now: datetime) -> bool:
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None or session.is_revoked:
                return False
            self.sessions[session_id] = session.model_copy(
                update={"is_revoked": True, "revoked_reason": reason, "revoked_at": now}
            )
            return True

    def revoke_user_sessions(
        self,
        user_id: UUID,
        reason: str,
        now: datetime,
        except_session_id: UUID | None = None,
    ) -> int:
        with self._lock:
            targets = [
                s.id for s in self.sessions.values()
                if s.user_id == user_id and not s.is_revoked and s.id != except_session_id
            ]
            for session_id in targets:
                self.revoke_session(session_id, reason, now)
            return len(targets)

    def list_active_sessions(self, user_id: UUID, now: datetime) -> list[Session]:
        with self._lock:
            active = [
                s.model_copy() for s in self.sessions.values()
                if s.user_id == user_id and not s.is_revoked and s.refresh_expires_at > now
            ]
        return sorted(active, key=lambda s: s.last_activity, reverse=True)

    def user_has_device(self, user_id: UUID, device_hash: str) -> bool:
        with self._lock:
            return any(
                s.user_id == user_id and s.device_hash == device_hash
                for s in self.sessions.values()
            )

    def revoke_expired_sessions(self, now: datetime) -> int:
        with self._lock:
            expired = [
                s.id for s in self.sessions.values()
                if not s.is_revoked and s.refresh_expires_at <= now
            ]
            for session_id in expired:
                self.revoke_session(session_id, "EXPIRED", now)
            return len(expired)

    def delete_stale_sessions(self, before: datetime) -> int:
        with self._lock:
            stale = [
                s.id for s in self.sessions.values()
                if s.expires_at < before and s.refresh_expires_at < before
            ]
            for session_id in stale:
                del self.sessions[session_id]
            return len(stale)

    # Security log

    def insert_security_log(self, entry: SecurityLogEntry) -> None:
        with self._lock:
            self.security_logs.append(entry.model_copy())

    def _matches(self, entry: SecurityLogEntry, criteria: SecurityLogFilter) -> bool:
        if criteria.user_id and entry.user_id != criteria.user_id:
            return False
        if criteria.action and entry.action != criteria.action:
            return False
        if criteria.status and entry.status != criteria.status:
            return False
        if criteria.start_date and entry.created_at < criteria.start_date:
            return False
        if criteria.end_date and entry.created_at > criteria.end_date:
            return False
        return True

    def query_security_logs(self, criteria: SecurityLogFilter) -> tuple[list[SecurityLogEntry], int]:
        with self._lock:
            matched = [e for e in self.security_logs if self._matches(e, criteria)]
        matched.sort(key=lambda e: e.created_at, reverse=True)
        offset = (criteria.page - 1) * criteria.limit
        return [e.model_copy() for e in matched[offset:offset + criteria.limit]], len(matched)

    def count_security_events(
        self,
        action: SecurityAction,
        since: datetime,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        status: SecurityStatus | None = None,
    ) -> int:
        with self._lock:
            return sum(
                1 for e in self.security_logs
                if e.action == action
                and e.created_at >= since
                and (user_id is None or e.user_id == user_id)
                and (ip_address is None or e.ip_address == ip_address)
                and (status is None or e.status == status)
            )

    def security_log_stats(self, user_id: UUID, since: datetime) -> SecurityLogStats:
        with self._lock:
            mine = [e for e in self.security_logs if e.user_id == user_id]
        return SecurityLogStats(
            total_logs=len(mine),
            successful_logins=sum(1 for e in mine if e.action == SecurityAction.LOGIN_SUCCESS),
            failed_logins=sum(1 for e in mine if e.action == SecurityAction.LOGIN_FAILED),
            recent_activity=sum(1 for e in mine if e.created_at >= since),
        )

    # Preferences & blocks

    def get_preferences(self, user_id: UUID) -> SecurityPreferences | None:
        with self._lock:
            prefs = self.preferences.get(user_id)
            return prefs.model_copy() if prefs else None

    def save_preferences(self, preferences: SecurityPreferences) -> SecurityPreferences:
        with self._lock:
            self.preferences[preferences.user_id] = preferences.model_copy()
            return preferences.model_copy()

    def create_ip_block(self, block: IpBlock) -> IpBlock:
        with self._lock:
            self.ip_blocks.append(block.model_copy())
            return block.model_copy()

    def get_active_block(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> IpBlock | None:
        with self._lock:
            for block in reversed(self.ip_blocks):
                if block.expires_at <= now:
                    continue
                if ip_address and block.ip_address == ip_address:
                    return block.model_copy()
                if user_id and block.user_id == user_id:
                    return block.model_copy()
        return None

    def lift_blocks(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> int:
        lifted = 0
        with self._lock:
            for i, block in enumerate(self.ip_blocks):
                if block.expires_at <= now:
                    continue
                if (ip_address and block.ip_address == ip_address) or (user_id and block.user_id == user_id):
                    self.ip_blocks[i] = block.model_copy(update={"expires_at": now})
                    lifted += 1
        return lifted

    def delete_expired_blocks(self, before: datetime) -> int:
        with self._lock:
            kept = [b for b in self.ip_blocks if b.expires_at > before]
            deleted = len(self.ip_blocks) - len(kept)
            self.ip_blocks = kept
            return deleted

    def close(self) -> None:
        logger.info("MemoryAuthStore closed")
