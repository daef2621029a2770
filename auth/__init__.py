"""Authentication and authorization modules.

HTTP pieces (auth.api, auth.security_middleware) depend on api.errors and
are imported from their modules directly.
"""

from auth.exceptions import (
    AuthError,
    InvalidInputError,
    TokenExpiredError,
    TokenUsedError,
    RateLimitedError,
    UnauthorizedError,
    ForbiddenError,
    ProviderError,
    StorageUnavailableError,
    SuspiciousActivityBlockedError,
)
from auth.types import (
    User,
    UserRole,
    Session,
    SessionState,
    TokenPair,
    MagicLinkPurpose,
    MagicLinkToken,
    SecurityAction,
    SecurityStatus,
    SecurityLogEntry,
    SecurityPreferences,
    BlockDecision,
)
from auth.config import AuthConfig
from auth.store import AuthStore
from auth.memory_store import MemoryAuthStore
from auth.database import PostgresAuthStore
from auth.tokens import AccessTokenCodec
from auth.magic_link import MagicLinkIssuer
from auth.oauth import OAuthExchanger
from auth.csrf import CsrfBinder
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.auto_block import AutoBlocker
from auth.session import SessionManager, RevokeReason
from auth.sweeper import SessionSweeper, SweepScheduler
from auth.expiry import ExpiryCountdown, ExpiryState
from auth.service import AuthService, MagicLinkResult, LoginResult
