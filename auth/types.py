"""Pydantic models for auth domain."""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, EmailStr, Field, IPvAnyAddress, field_validator

# Security event metadata: flat mapping of string keys to JSON scalars.
MetadataValue = str | int | float | bool | None

METADATA_SCHEMA_VERSION = 1


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class MagicLinkPurpose(str, Enum):
    LOGIN = "LOGIN"
    SIGNUP = "SIGNUP"


class SessionState(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


class SecurityAction(str, Enum):
    """Auth security event types."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    DEVICE_NEW = "DEVICE_NEW"
    SESSION_REVOKED = "SESSION_REVOKED"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    MAGIC_LINK_REQUESTED = "MAGIC_LINK_REQUESTED"
    IP_BLOCKED = "IP_BLOCKED"
    IP_UNBLOCKED = "IP_UNBLOCKED"
    PREFERENCES_UPDATED = "PREFERENCES_UPDATED"


class SecurityStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    WARNING = "WARNING"


class User(BaseModel):
    """A registered user of the system."""

    id: UUID
    email: EmailStr
    phone: str | None = None
    role: UserRole = UserRole.USER
    two_factor_enabled: bool = False
    email_verified: bool = False
    created_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class MagicLinkToken(BaseModel):
    """A magic link token awaiting verification.

    Only the SHA-256 hash of the token is persisted.
    """

    token_hash: str
    email: EmailStr
    purpose: MagicLinkPurpose
    issued_at: datetime
    expires_at: datetime
    used_at: datetime | None = None  # Set exactly once
    ip_address: str | None = None
    user_agent: str | None = None


class MagicLinkStatus(BaseModel):
    """Read-only status of a magic link token."""

    valid: bool
    used: bool
    expired: bool


class IssuedMagicLink(BaseModel):
    """Raw token and sign-in link, returned once to the caller."""

    token: str
    link: str
    email: EmailStr
    purpose: MagicLinkPurpose
    expires_at: datetime


class Identity(BaseModel):
    """A verified user, produced by magic link verification or OAuth."""

    user: User
    method: str = Field(..., description="'magic_link' or 'oauth:<provider>'")
    is_new_user: bool = False


class DeviceInfo(BaseModel):
    """Best-effort, non-authoritative client metadata."""

    device_type: str = "desktop"
    browser: str = "Unknown"
    os: str = "Unknown"
    ip_address: str | None = None
    location: str | None = None
    user_agent: str | None = None

    @property
    def device_hash(self) -> str:
        """Fingerprint used for new-device detection (IP deliberately excluded)."""
        raw = f"{self.browser}-{self.os}-{self.device_type}".lower()
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.browser, self.os) if p and p != "Unknown"]
        if self.device_type and self.device_type != "desktop":
            parts.append(self.device_type)
        return " - ".join(parts) if parts else "Unknown Device"


class Session(BaseModel):
    """One authenticated device/browser binding."""

    id: UUID
    user_id: UUID
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    ip_address: str | None = None
    location: str | None = None
    user_agent: str | None = None
    device_hash: str | None = None
    refresh_token_hash: str
    previous_refresh_token_hash: str | None = None
    csrf_token_hash: str | None = None
    expires_at: datetime
    refresh_expires_at: datetime
    rotation_count: int = 0
    is_revoked: bool = False
    revoked_reason: str | None = None
    revoked_at: datetime | None = None
    last_activity: datetime
    last_rotated_at: datetime | None = None
    created_at: datetime

    @property
    def state(self) -> SessionState:
        return SessionState.REVOKED if self.is_revoked else SessionState.ACTIVE


class TokenPair(BaseModel):
    """Access + refresh + CSRF tokens handed to the client after mint/refresh."""

    access_token: str
    refresh_token: str
    csrf_token: str
    session_id: UUID
    user_id: UUID
    access_expires_at: datetime
    refresh_expires_at: datetime

    def expires_in(self, now: datetime) -> int:
        """Seconds until the access token expires (never negative)."""
        return max(int((self.access_expires_at - now).total_seconds()), 0)


class SessionView(BaseModel):
    """Session as shown in the device-management UI."""

    id: UUID
    device_type: str | None
    browser: str | None
    os: str | None
    ip_address: str | None
    location: str | None
    last_activity: datetime
    created_at: datetime
    is_current: bool


class SecurityLogEntry(BaseModel):
    """Append-only audit record of an authentication-relevant event."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID | None = None
    action: SecurityAction
    status: SecurityStatus = SecurityStatus.SUCCESS
    description: str | None = None
    ip_address: str | None = None
    device_type: str | None = None
    browser: str | None = None
    os: str | None = None
    user_agent: str | None = None
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)
    metadata_version: int = METADATA_SCHEMA_VERSION
    created_at: datetime

    @field_validator("metadata")
    @classmethod
    def _keys_are_identifiers(cls, value: dict[str, MetadataValue]) -> dict[str, MetadataValue]:
        for key in value:
            if not key or len(key) > 64:
                raise ValueError(f"Invalid metadata key: {key!r}")
        return value


class SecurityLogFilter(BaseModel):
    """Criteria for the audit log view."""

    user_id: UUID | None = None
    action: SecurityAction | None = None
    status: SecurityStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        """Dates without an offset are read as UTC."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class SecurityLogPage(BaseModel):
    items: list[SecurityLogEntry]
    total: int
    page: int
    limit: int
    total_pages: int


class SecurityLogStats(BaseModel):
    total_logs: int
    successful_logins: int
    failed_logins: int
    recent_activity: int


class SecurityPreferences(BaseModel):
    """Per-user security settings. Read by auto-block on every failed attempt."""

    user_id: UUID
    email_on_new_device: bool = True
    email_on_password_change: bool = True
    email_on_failed_login: bool = True
    email_on_email_change: bool = True
    email_on_2fa_change: bool = True
    email_on_suspicious_activity: bool = True
    failed_login_threshold: int = Field(default=3, ge=1, le=10)
    failed_login_time_window: int = Field(default=15, ge=5, le=60)
    auto_block_suspicious_ip: bool = False
    updated_at: datetime


class SecurityPreferencesUpdate(BaseModel):
    """Partial update - only provided fields change."""

    email_on_new_device: bool | None = None
    email_on_password_change: bool | None = None
    email_on_failed_login: bool | None = None
    email_on_email_change: bool | None = None
    email_on_2fa_change: bool | None = None
    email_on_suspicious_activity: bool | None = None
    failed_login_threshold: int | None = Field(default=None, ge=1, le=10)
    failed_login_time_window: int | None = Field(default=None, ge=5, le=60)
    auto_block_suspicious_ip: bool | None = None

    model_config = {"extra": "forbid"}


class IpBlock(BaseModel):
    """Active block produced by auto-block."""

    user_id: UUID | None = None
    ip_address: str | None = None
    reason: str
    failed_attempts: int
    blocked_at: datetime
    expires_at: datetime


class BlockStatus(BaseModel):
    """Whether an IP or user is currently under auto-block."""

    blocked: bool
    ip_address: str | None = None
    user_id: UUID | None = None
    reason: str | None = None
    blocked_until: datetime | None = None


class BlockDecision(BaseModel):
    """Auto-block verdict consumed by the enforcement point."""

    user_id: UUID | None = None
    ip_address: str | None = None
    failed_attempts: int
    threshold: int
    window_minutes: int
    blocked_until: datetime


# Request payloads


class MagicLinkRequest(BaseModel):
    """Request payload for magic link."""

    email: EmailStr
    purpose: MagicLinkPurpose | None = None


class ExchangeCodeRequest(BaseModel):
    code: str = Field(..., min_length=16, max_length=128)


class UnblockRequest(BaseModel):
    """Admin request to lift blocks on an IP, a user, or both."""

    ip_address: IPvAnyAddress | None = None
    user_id: UUID | None = None

    model_config = {"extra": "forbid"}


class OAuthCallbackRequest(BaseModel):
    provider: str = Field(..., min_length=1, max_length=32)
    code: str = Field(..., min_length=1, max_length=2048)
