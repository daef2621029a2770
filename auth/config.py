"""Authentication configuration."""

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication configuration.

    Durations use their natural units (seconds for cooldowns, minutes for
    short-lived credentials, days for retention) to keep values readable.
    Secrets are not part of this model; they come from Vault.
    """

    # Magic link settings
    magic_link_expiry_minutes: int = Field(
        default=10,
        description="How long magic links remain valid",
        ge=5,
        le=60,
    )
    magic_link_cooldown_seconds: int = Field(
        default=60,
        description="Minimum delay between two links for the same email",
        ge=10,
        le=600,
    )

    # Access / refresh tokens
    access_token_expiry_minutes: int = Field(
        default=15,
        description="Lifetime of stateless access tokens",
        ge=1,
        le=60,
    )
    refresh_token_expiry_days: int = Field(
        default=14,
        description="Rolling refresh window, extended on every rotation",
        ge=1,
        le=90,
    )
    max_rotation_count: int = Field(
        default=100,
        description="Rotations allowed before the session must sign in again",
        ge=1,
    )
    jwt_algorithm: str = Field(default="HS256")
    jwt_issuer: str = Field(default="quicksign-auth")

    # CSRF / cookies
    csrf_header_name: str = Field(default="X-CSRF-Token")
    refresh_cookie_name: str = Field(default="refresh_token")
    csrf_cookie_name: str = Field(default="csrf_token")
    refresh_cookie_path: str = Field(default="/auth")
    cookie_secure: bool = Field(
        default=True,
        description="Only disable for plain-http local development",
    )

    # One-time exchange codes (verify redirect -> client)
    exchange_code_ttl_seconds: int = Field(default=300, ge=30, le=900)

    # OAuth
    oauth_timeout_seconds: float = Field(
        default=10.0,
        description="Bounded timeout for provider calls (never retried)",
        gt=0,
        le=60,
    )

    # Auto-block defaults (used for IP-only subjects and new preference rows)
    failed_login_threshold: int = Field(default=3, ge=1, le=10)
    failed_login_time_window_minutes: int = Field(default=15, ge=5, le=60)
    ip_block_hours: int = Field(default=24, ge=1, le=720)
    auto_block_anonymous_ip: bool = Field(
        default=False,
        description="Block IPs whose failures match no known user",
    )

    # Request throttling (per client IP, quicksign request endpoint)
    rate_limit_attempts: int = Field(
        default=5,
        description="Max magic link requests per IP per window",
        ge=1,
        le=50,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=1,
        le=60,
    )

    # Retention sweep
    retention_days: int = Field(default=7, ge=1, le=365)
    sweep_interval_seconds: int = Field(default=3600, ge=60)

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for magic link generation",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Client callback base for verify redirects",
    )
    app_name: str = Field(
        default="QuickSign",
        description="Application name for emails",
    )
