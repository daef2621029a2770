"""Repository interface for auth state.

Two implementations: PostgresAuthStore (auth/database.py) for production and
MemoryAuthStore (auth/memory_store.py) for local runs and tests. Every
operation that must be atomic under concurrency is a single method here so
the guarantee lives in the store, not in callers.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

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


class AuthStore(Protocol):
    # Users

    def get_user_by_email(self, email: str) -> User | None: ...

    def get_user_by_id(self, user_id: UUID) -> User | None: ...

    def create_user(self, email: str, email_verified: bool = False) -> User: ...

    def record_login(self, user_id: UUID, at: datetime, email_verified: bool = False) -> None: ...

    # Magic link tokens

    def create_magic_token(self, token: MagicLinkToken, cooldown_seconds: int) -> None:
        """
        Insert `token` unless another unused, unexpired token for the same
        email was issued within `cooldown_seconds` of token.issued_at.

        Earlier unused tokens for the same email+purpose are marked used in
        the same atomic step.

        Raises:
            RateLimitedError: Cooldown still running.
        """
        ...

    def get_magic_token(self, token_hash: str) -> MagicLinkToken | None: ...

    def consume_magic_token(self, token_hash: str, now: datetime) -> MagicLinkToken | None:
        """Set used_at iff unused and unexpired. None when the swap did not happen."""
        ...

    def delete_magic_token(self, token_hash: str) -> bool:
        """Remove a token outright, releasing its email cooldown."""
        ...

    def delete_stale_magic_tokens(self, before: datetime) -> int: ...

    # Sessions

    def create_session(self, session: Session) -> Session: ...

    def get_session(self, session_id: UUID) -> Session | None: ...

    def get_session_by_refresh_hash(self, refresh_token_hash: str) -> Session | None: ...

    def get_session_by_previous_hash(self, refresh_token_hash: str) -> Session | None: ...

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
        """
        Compare-and-set rotation keyed by the current refresh hash.

        Succeeds only for a non-revoked session whose refresh window is still
        open. Moves old_hash to previous_refresh_token_hash and increments
        rotation_count by exactly one. None when no row matched.
        """
        ...

    def set_csrf_hash(self, session_id: UUID, csrf_hash: str) -> bool: ...

    def revoke_session(self, session_id: UUID, reason: str, now: datetime) -> bool:
        """Revoke if still active. False when already revoked or missing."""
        ...

    def revoke_user_sessions(
        self,
        user_id: UUID,
        reason: str,
        now: datetime,
        except_session_id: UUID | None = None,
    ) -> int: ...

    def list_active_sessions(self, user_id: UUID, now: datetime) -> list[Session]: ...

    def user_has_device(self, user_id: UUID, device_hash: str) -> bool: ...

    def revoke_expired_sessions(self, now: datetime) -> int: ...

    def delete_stale_sessions(self, before: datetime) -> int: ...

    # Security log

    def insert_security_log(self, entry: SecurityLogEntry) -> None: ...

    def query_security_logs(self, criteria: SecurityLogFilter) -> tuple[list[SecurityLogEntry], int]:
        """One page (newest first) plus the total count for the criteria."""
        ...

    def count_security_events(
        self,
        action: SecurityAction,
        since: datetime,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        status: SecurityStatus | None = None,
    ) -> int: ...

    def security_log_stats(self, user_id: UUID, since: datetime) -> SecurityLogStats: ...

    # Preferences & blocks

    def get_preferences(self, user_id: UUID) -> SecurityPreferences | None: ...

    def save_preferences(self, preferences: SecurityPreferences) -> SecurityPreferences: ...

    def create_ip_block(self, block: IpBlock) -> IpBlock: ...

    def get_active_block(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> IpBlock | None: ...

    def lift_blocks(
        self,
        now: datetime,
        ip_address: str | None = None,
        user_id: UUID | None = None,
    ) -> int:
        """End active blocks on ip_address or user_id as of `now`. Returns the count lifted."""
        ...

    def delete_expired_blocks(self, before: datetime) -> int: ...
    def close(self) -> None: ...
