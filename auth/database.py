"""PostgreSQL implementation of the auth store.

Tables: users, magic_link_tokens, sessions, security_logs,
security_preferences, ip_blocks (see sql/auth_schema.sql). None of them use
RLS; the auth service runs before any user context exists.

Concurrency-sensitive operations are single statements (compare-and-set
UPDATE ... RETURNING) or one transaction under an advisory lock.
"""

import functools
import logging
import math
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import psycopg2
import psycopg2.pool
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from auth.exceptions import RateLimitedError, StorageUnavailableError
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

logger = logging.getLogger(__name__)

_USER_COLUMNS = """id, email, phone, role, two_factor_enabled, email_verified,
                   created_at, last_login_at"""

_TOKEN_COLUMNS = """token_hash, email, purpose, issued_at, expires_at, used_at,
                    ip_address::text AS ip_address, user_agent"""

_SESSION_COLUMNS = """id, user_id, device_type, browser, os,
                      ip_address::text AS ip_address, location, user_agent, device_hash,
                      refresh_token_hash, previous_refresh_token_hash, csrf_token_hash,
                      expires_at, refresh_expires_at, rotation_count, is_revoked,
                      revoked_reason, revoked_at, last_activity, last_rotated_at, created_at"""

_LOG_COLUMNS = """id, user_id, action, status, description, ip_address::text AS ip_address,
                  device_type, browser, os, user_agent, metadata, metadata_version, created_at"""

_STORAGE_ERRORS = (psycopg2.OperationalError, psycopg2.InterfaceError, psycopg2.pool.PoolError)


def _storage_guard(method):
    """Translate connection-level database failures into StorageUnavailableError."""

    @functools.wraps(method)
    def wrapper(*args, **kwargs):
        try:
            return method(*args, **kwargs)
        except _STORAGE_ERRORS as e:
            logger.error(f"Database unavailable during {method.__name__}: {e}")
            raise StorageUnavailableError() from e

    return wrapper


class PostgresAuthStore:
    """Auth state in PostgreSQL. Implements auth.store.AuthStore."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    # Users

    @_storage_guard
    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
            (email,),
        )
        return User.model_validate(row) if row else None

    @_storage_guard
    def get_user_by_id(self, user_id: UUID) -> User | None:
        row = self._db.execute_single(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
            (user_id,),
        )
        return User.model_validate(row) if row else None

    @_storage_guard
    def create_user(self, email: str, email_verified: bool = False) -> User:
        """Create user with email (lowercased). Returns the existing row on conflict."""
        rows = self._db.execute_returning(
            f"""INSERT INTO users (email, email_verified)
                VALUES (lower(%s), %s)
                ON CONFLICT (email) DO UPDATE SET email = EXCLUDED.email
                RETURNING {_USER_COLUMNS}""",
            (email, email_verified),
        )
        return User.model_validate(rows[0])

    @_storage_guard
    def record_login(self, user_id: UUID, at: datetime, email_verified: bool = False) -> None:
        self._db.execute_rowcount(
            """UPDATE users
               SET last_login_at = %s, email_verified = email_verified OR %s
               WHERE id = %s""",
            (at, email_verified, user_id),
        )

    # Magic link tokens

    @_storage_guard
    def create_magic_token(self, token: MagicLinkToken, cooldown_seconds: int) -> None:
        now = token.issued_at
        with self._db.transaction() as cur:
            # Serializes concurrent requests for one email
            cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (token.email,))
            cur.execute(
                """SELECT issued_at FROM magic_link_tokens
                   WHERE email = %s AND used_at IS NULL
                     AND expires_at > %s AND issued_at > %s
                   ORDER BY issued_at DESC LIMIT 1""",
                (token.email, now, now - timedelta(seconds=cooldown_seconds)),
            )
            recent = cur.fetchone()
            if recent is not None:
                elapsed = (now - recent["issued_at"]).total_seconds()
                raise RateLimitedError(
                    retry_after_seconds=max(math.ceil(cooldown_seconds - elapsed), 1)
                )

            cur.execute(
                """UPDATE magic_link_tokens SET used_at = %s
                   WHERE email = %s AND purpose = %s AND used_at IS NULL""",
                (now, token.email, token.purpose.value),
            )
            cur.execute(
                """INSERT INTO magic_link_tokens
                   (token_hash, email, purpose, issued_at, expires_at, ip_address, user_agent)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)""",
                (
                    token.token_hash,
                    token.email,
                    token.purpose.value,
                    token.issued_at,
                    token.expires_at,
                    token.ip_address,
                    token.user_agent,
                ),
            )

    @_storage_guard
    def get_magic_token(self, token_hash: str) -> MagicLinkToken | None:
        row = self._db.execute_single(
            f"SELECT {_TOKEN_COLUMNS} FROM magic_link_tokens WHERE token_hash = %s",
            (token_hash,),
        )
        return MagicLinkToken.model_validate(row) if row else None

    @_storage_guard
    def consume_magic_token(self, token_hash: str, now: datetime) -> MagicLinkToken | None:
        rows = self._db.execute_returning(
            f"""UPDATE magic_link_tokens SET used_at = %s
                WHERE token_hash = %s AND used_at IS NULL AND expires_at > %s
                RETURNING {_TOKEN_COLUMNS}""",
            (now, token_hash, now),
        )
        return MagicLinkToken.model_validate(rows[0]) if rows else None

    @_storage_guard
    def delete_magic_token(self, token_hash: str) -> bool:
        return self._db.execute_rowcount(
            "DELETE FROM magic_link_tokens WHERE token_hash = %s",
            (token_hash,),
        ) > 0

    @_storage_guard
    def delete_stale_magic_tokens(self, before: datetime) -> int:
        return self._db.execute_rowcount(
            """DELETE FROM magic_link_tokens
               WHERE expires_at < %s OR (used_at IS NOT NULL AND used_at < %s)""",
            (before, before),
        )

    # Sessions

    @_storage_guard
    def create_session(self, session: Session) -> Session:
        rows = self._db.execute_returning(
            f"""INSERT INTO sessions
                (id, user_id, device_type, browser, os, ip_address, location, user_agent,
                 device_hash, refresh_token_hash, csrf_token_hash, expires_at,
                 refresh_expires_at, rotation_count, last_activity, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_SESSION_COLUMNS}""",
            (
                session.id,
                session.user_id,
                session.device_type,
                session.browser,
                session.os,
                session.ip_address,
                session.location,
                session.user_agent,
                session.device_hash,
                session.refresh_token_hash,
                session.csrf_token_hash,
                session.expires_at,
                session.refresh_expires_at,
                session.rotation_count,
                session.last_activity,
                session.created_at,
            ),
        )
        return Session.model_validate(rows[0])

    @_storage_guard
    def get_session(self, session_id: UUID) -> Session | None:
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE id = %s",
            (session_id,),
        )
        return Session.model_validate(row) if row else None

    @_storage_guard
    def get_session_by_refresh_hash(self, refresh_token_hash: str) -> Session | None:
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE refresh_token_hash = %s",
            (refresh_token_hash,),
        )
        return Session.model_validate(row) if row else None

    @_storage_guard
    def get_session_by_previous_hash(self, refresh_token_hash: str) -> Session | None:
        row = self._db.execute_single(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE previous_refresh_token_hash = %s",
            (refresh_token_hash,),
        )
        return Session.model_validate(row) if row else None

    @_storage_guard
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
        rows = self._db.execute_returning(
            f"""UPDATE sessions
                SET previous_refresh_token_hash = refresh_token_hash,
                    refresh_token_hash = %s,
                    csrf_token_hash = %s,
                    expires_at = %s,
                    refresh_expires_at = %s,
                    rotation_count = rotation_count + 1,
                    last_activity = %s,
                    last_rotated_at = %s,
                    ip_address = COALESCE(%s, ip_address),
                    user_agent = COALESCE(%s, user_agent)
                WHERE refresh_token_hash = %s
                  AND NOT is_revoked
                  AND refresh_expires_at > %s
                RETURNING {_SESSION_COLUMNS}""",
            (
                new_hash,
                csrf_hash,
                expires_at,
                refresh_expires_at,
                now,
                now,
                ip_address,
                user_agent,
                old_hash,
                now,
            ),
        )
        return Session.model_validate(rows[0]) if rows else None

    @_storage_guard
    def set_csrf_hash(self, session_id: UUID, csrf_hash: str) -> bool:
        count = self._db.execute_rowcount(
            "UPDATE sessions SET csrf_token_hash = %s WHERE id = %s AND NOT is_revoked",
            (csrf_hash, session_id),
        )
        return count > 0

    @_storage_guard
    def revoke_session(self, session_id: UUID, reason: str, now: datetime) -> bool:
        count = self._db.execute_rowcount(
            """UPDATE sessions
               SET is_revoked = true, revoked_reason = %s, revoked_at = %s
               WHERE id = %s AND NOT is_revoked""",
            (reason, now, session_id),
        )
        return count > 0

    @_storage_guard
    def revoke_user_sessions(
        self,
        user_id: UUID,
        reason: str,
        now: datetime,
        except_session_id: UUID | None = None,
    ) -> int:
        return self._db.execute_rowcount(
            """UPDATE sessions
               SET is_revoked = true, revoked_reason = %s, revoked_at = %s
               WHERE user_id = %s AND NOT is_revoked
                 AND (%s::uuid IS NULL OR id <> %s::uuid)""",
            (reason, now, user_id, except_session_id, except_session_id),
        )

    @_storage_guard
    def list_active_sessions(self, user_id: UUID, now: datetime) -> list[Session]:
        rows = self._db.execute(
            f"""SELECT {_SESSION_COLUMNS} FROM sessions
                WHERE user_id = %s AND NOT is_revoked AND refresh_expires_at > %s
                ORDER BY last_activity DESC""",
            (user_id, now),
        )
        return [Session.model_validate(row) for row in rows]

    @_storage_guard
    def user_has_device(self, user_id: UUID, device_hash: str) -> bool:
        return bool(self._db.execute_scalar(
            "SELECT EXISTS (SELECT 1 FROM sessions WHERE user_id = %s AND device_hash = %s)",
            (user_id, device_hash),
        ))

    @_storage_guard
    def revoke_expired_sessions(self, now: datetime) -> int:
        return self._db.execute_rowcount(
            """UPDATE sessions
               SET is_revoked = true, revoked_reason = 'EXPIRED', revoked_at = %s
               WHERE NOT is_revoked AND refresh_expires_at <= %s""",
            (now, now),
        )

    @_storage_guard
    def delete_stale_sessions(self, before: datetime) -> int:
        return self._db.execute_rowcount(
            "DELETE FROM sessions WHERE expires_at < %s AND refresh_expires_at < %s",
            (before, before),
        )

    # Security log

    @_storage_guard
    def insert_security_log(self, entry: SecurityLogEntry) -> None:
        self._db.execute_rowcount(
            """INSERT INTO security_logs
               (id, user_id, action, status, description, ip_address, device_type,
                browser, os, user_agent, metadata, metadata_version, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (
                entry.id,
                entry.user_id,
                entry.action.value,
                entry.status.value,
                entry.description,
                entry.ip_address,
                entry.device_type,
                entry.browser,
                entry.os,
                entry.user_agent,
                Json(entry.metadata),
                entry.metadata_version,
                entry.created_at,
            ),
        )

    def _where(self, criteria: SecurityLogFilter) -> tuple[str, list[Any]]:
        conditions = []
        params: list[Any] = []

        if criteria.user_id:
            conditions.append("user_id = %s")
            params.append(str(criteria.user_id))

        if criteria.action:
            conditions.append("action = %s")
            params.append(criteria.action.value)

        if criteria.status:
            conditions.append("status = %s")
            params.append(criteria.status.value)

        if criteria.start_date:
            conditions.append("created_at >= %s")
            params.append(criteria.start_date)

        if criteria.end_date:
            conditions.append("created_at <= %s")
            params.append(criteria.end_date)

        return (" AND ".join(conditions) if conditions else "1=1"), params

    @_storage_guard
    def query_security_logs(self, criteria: SecurityLogFilter) -> tuple[list[SecurityLogEntry], int]:
        where_clause, params = self._where(criteria)

        total = self._db.execute_scalar(
            f"SELECT COUNT(*) FROM security_logs WHERE {where_clause}",
            tuple(params),
        )
        rows = self._db.execute(
            f"""SELECT {_LOG_COLUMNS} FROM security_logs
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s OFFSET %s""",
            tuple(params + [criteria.limit, (criteria.page - 1) * criteria.limit]),
        )
        return [SecurityLogEntry.model_validate(row) for row in rows], int(total or 0)

    @_storage_guard
    def count_security_events(
        self,
        action: SecurityAction,
        since: datetime,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        status: SecurityStatus | None = None,
    ) -> int:
        conditions = ["action = %s", "created_at >= %s"]
        params: list[Any] = [action.value, since]

        if user_id:
            conditions.append("user_id = %s")
            params.append(str(user_id))
        if ip_address:
            conditions.append("ip_address = %s")
            params.append(ip_address)
        if status:
            conditions.append("status = %s")
            params.append(status.value)

        count = self._db.execute_scalar(
            f"SELECT COUNT(*) FROM security_logs WHERE {' AND '.join(conditions)}",
            tuple(params),
        )
        return int(count or 0)

    @_storage_guard
    def security_log_stats(self, user_id: UUID, since: datetime) -> SecurityLogStats:
        row = self._db.execute_single(
            """SELECT COUNT(*) AS total_logs,
                      COUNT(*) FILTER (WHERE action = 'LOGIN_SUCCESS') AS successful_logins,
                      COUNT(*) FILTER (WHERE action = 'LOGIN_FAILED') AS failed_logins,
                      COUNT(*) FILTER (WHERE created_at >= %s) AS recent_activity
               FROM security_logs WHERE user_id = %s""",
            (since, user_id),
        )
        return SecurityLogStats.model_validate(row)

    # Preferences & blocks

    @_storage_guard
    def get_preferences(self, user_id: UUID) -> SecurityPreferences | None:
        row = self._db.execute_single(
            "SELECT * FROM security_preferences WHERE user_id = %s",
            (user_id,),
        )
        return SecurityPreferences.model_validate(row) if row else None

    @_storage_guard
    def save_preferences(self, preferences: SecurityPreferences) -> SecurityPreferences:
        data = preferences.model_dump()
        columns = list(data.keys())
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in columns if c != "user_id")
        rows = self._db.execute_returning(
            f"""INSERT INTO security_preferences ({', '.join(columns)})
                VALUES ({', '.join(['%s'] * len(columns))})
                ON CONFLICT (user_id) DO UPDATE SET {updates}
                RETURNING *""",
            tuple(data[c] for c in columns),
        )
        return SecurityPreferences.model_validate(rows[0])

    @_storage_guard
    def create_ip_block(self, block: IpBlock) -> IpBlock:
        self._db.execute_rowcount(
            """INSERT INTO ip_blocks
               (user_id, ip_address, reason, failed_attempts, blocked_at, expires_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            (
                block.user_id,
                block.ip_address,
                block.reason,
                block.failed_attempts,
                block.blocked_at,
                block.expires_at,
            ),
        )
        return block

    @_storage_guard
    def get_active_block(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> IpBlock | None:
        if not ip_address and not user_id:
            return None
        row = self._db.execute_single(
            """SELECT user_id, ip_address::text AS ip_address, reason, failed_attempts,
                      blocked_at, expires_at
               FROM ip_blocks
               WHERE expires_at > %s
                 AND ((%s::inet IS NOT NULL AND ip_address = %s::inet)
                      OR (%s::uuid IS NOT NULL AND user_id = %s::uuid))
               ORDER BY blocked_at DESC LIMIT 1""",
            (now, ip_address, ip_address, user_id, user_id),
        )
        return IpBlock.model_validate(row) if row else None

    @_storage_guard
    def lift_blocks(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> int:
        if not ip_address and not user_id:
            return 0
        return self._db.execute_rowcount(
            """UPDATE ip_blocks SET expires_at = %s
               WHERE expires_at > %s
                 AND ((%s::inet IS NOT NULL AND ip_address = %s::inet)
                      OR (%s::uuid IS NOT NULL AND user_id = %s::uuid))""",
            (now, now, ip_address, ip_address, user_id, user_id),
        )

    @_storage_guard
    def delete_expired_blocks(self, before: datetime) -> int:
        return self._db.execute_rowcount(
            "DELETE FROM ip_blocks WHERE expires_at <= %s",
            (before,),
        )

    def close(self) -> None:
        self._db.close()
