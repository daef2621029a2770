"""Shared test fixtures for the auth service test suite.

Everything runs in-process: MemoryAuthStore stands in for PostgreSQL and
FakeValkey for Valkey. The email gateway is always a Mock.
"""

import json
import time
from pathlib import Path
from unittest.mock import Mock

import pytest
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.alerts import SecurityAlerts
from auth.auto_block import AutoBlocker
from auth.config import AuthConfig
from auth.csrf import CsrfBinder
from auth.exchange_codes import ExchangeCodeStore
from auth.magic_link import MagicLinkIssuer
from auth.memory_store import MemoryAuthStore
from auth.oauth import OAuthExchanger
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionManager
from auth.tokens import AccessTokenCodec
from auth.types import DeviceInfo, Identity, User
from clients.email_client import EmailGatewayClient


# =============================================================================
# TEST CONSTANTS
# =============================================================================

TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
TEST_IP = "203.0.113.10"
TEST_IP_B = "198.51.100.7"
CHROME_MAC_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
)
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)

OAUTH_CREDENTIALS = {
    "google": {
        "client_id": "google-client-id",
        "client_secret": "google-client-secret",
        "redirect_uri": "https://app.example.com/auth/oauth/google",
    },
    "github": {
        "client_id": "github-client-id",
        "client_secret": "github-client-secret",
        "redirect_uri": "https://app.example.com/auth/oauth/github",
    },
}


def load_test_oauth_credentials(provider: str) -> dict[str, str]:
    return OAUTH_CREDENTIALS[provider]


# =============================================================================
# VALKEY DOUBLE
# =============================================================================


class FakeValkey:
    """Dict-backed stand-in for ValkeyClient with the same method surface."""

    def __init__(self):
        self._data: dict[str, str] = {}
        self._expiry: dict[str, float] = {}

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self._data.pop(key, None)
            self._expiry.pop(key, None)

    def ping(self) -> bool:
        return True

    def getdel(self, key: str) -> str | None:
        self._purge(key)
        self._expiry.pop(key, None)
        return self._data.pop(key, None)

    def set(self, key: str, value: str, expire_seconds: int | None = None) -> None:
        self._data[key] = value
        if expire_seconds is not None:
            self._expiry[key] = time.monotonic() + expire_seconds
        else:
            self._expiry.pop(key, None)

    def delete(self, key: str) -> bool:
        self._expiry.pop(key, None)
        return self._data.pop(key, None) is not None

    def expire(self, key: str, seconds: int) -> bool:
        self._purge(key)
        if key not in self._data:
            return False
        self._expiry[key] = time.monotonic() + seconds
        return True

    def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._data:
            return -2
        if key not in self._expiry:
            return -1
        return max(int(self._expiry[key] - time.monotonic()), 0)

    def incr(self, key: str) -> int:
        self._purge(key)
        value = int(self._data.get(key, "0")) + 1
        self._data[key] = str(value)
        return value

    def set_json(self, key: str, value: dict | list, expire_seconds: int | None = None) -> None:
        self.set(key, json.dumps(value), expire_seconds)

    def getdel_json(self, key: str) -> dict | list | None:
        value = self.getdel(key)
        return json.loads(value) if value is not None else None

    def close(self) -> None:
        pass


# =============================================================================
# CORE FIXTURES
# =============================================================================


@pytest.fixture
def config() -> AuthConfig:
    return AuthConfig(
        app_base_url="https://api.example.com",
        frontend_url="https://app.example.com",
        cookie_secure=False,
    )


@pytest.fixture
def store() -> MemoryAuthStore:
    return MemoryAuthStore()


@pytest.fixture
def valkey() -> FakeValkey:
    return FakeValkey()


@pytest.fixture
def codec(config) -> AccessTokenCodec:
    return AccessTokenCodec(TEST_JWT_SECRET, config)


@pytest.fixture
def security_logger(store, config) -> SecurityLogger:
    return SecurityLogger(store, config)


@pytest.fixture
def mock_email_client():
    """Mock email client - the only outbound dependency that is always mocked."""
    return Mock(spec=EmailGatewayClient)


@pytest.fixture
def alerts(mock_email_client, config) -> SecurityAlerts:
    return SecurityAlerts(mock_email_client, config.app_name)


@pytest.fixture
def session_manager(store, codec, config, security_logger) -> SessionManager:
    return SessionManager(store, codec, config, security_logger)


@pytest.fixture
def auto_blocker(store, security_logger, config, alerts) -> AutoBlocker:
    return AutoBlocker(store, security_logger, config, alerts)


@pytest.fixture
def auth_service(
    config, store, valkey, codec, security_logger, session_manager,
    auto_blocker, mock_email_client, alerts,
) -> AuthService:
    """Fully wired AuthService over in-process storage."""
    return AuthService(
        config=config,
        store=store,
        magic_links=MagicLinkIssuer(store, config),
        oauth=OAuthExchanger(store, config, load_test_oauth_credentials),
        sessions=session_manager,
        csrf=CsrfBinder(store),
        security_logger=security_logger,
        auto_blocker=auto_blocker,
        exchange_codes=ExchangeCodeStore(valkey, config),
        rate_limiter=RateLimiter(valkey, config),
        email_client=mock_email_client,
        alerts=alerts,
    )


# =============================================================================
# DATA FIXTURES
# =============================================================================


@pytest.fixture
def user(store) -> User:
    return store.create_user("alice@example.com", email_verified=True)


@pytest.fixture
def other_user(store) -> User:
    return store.create_user("bob@example.com", email_verified=True)


@pytest.fixture
def device() -> DeviceInfo:
    return DeviceInfo(
        device_type="desktop",
        browser="Chrome",
        os="macOS",
        ip_address=TEST_IP,
        user_agent=CHROME_MAC_UA,
    )


@pytest.fixture
def minted(session_manager, user, device):
    """A freshly minted token triple for `user`."""
    return session_manager.mint(Identity(user=user, method="magic_link"), device)
