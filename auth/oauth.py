"""OAuth authorization-code exchange.

The client completes the provider redirect and posts us the code. We trade
it for an access token, read the profile, and map it onto a local user.
Calls are bounded by a timeout and never retried: codes are single-use.
"""

import logging
from dataclasses import dataclass
from typing import Callable

import requests
from pydantic import EmailStr, TypeAdapter, ValidationError

from auth.config import AuthConfig
from auth.exceptions import ProviderError
from auth.store import AuthStore
from auth.types import Identity

logger = logging.getLogger(__name__)

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class OAuthProviderConfig:
    """Static endpoints for one provider."""

    name: str
    token_url: str
    userinfo_url: str
    emails_url: str | None = None  # Secondary lookup when the profile hides the email


OAUTH_PROVIDERS = {
    "google": OAuthProviderConfig(
        name="google",
        token_url="https://oauth2.googleapis.com/token",
        userinfo_url="https://www.googleapis.com/oauth2/v3/userinfo",
    ),
    "github": OAuthProviderConfig(
        name="github",
        token_url="https://github.com/login/oauth/access_token",
        userinfo_url="https://api.github.com/user",
        emails_url="https://api.github.com/user/emails",
    ),
}


@dataclass(frozen=True)
class OAuthProfile:
    """Subset of the provider profile we rely on."""

    provider_id: str
    email: str
    email_verified: bool


def _provider_email(raw, provider: str) -> str:
    """Lowercased provider email, or ProviderError if it would not pass as a user email."""
    try:
        return _EMAIL_ADAPTER.validate_python(raw).lower()
    except ValidationError:
        logger.error(f"OAuth provider {provider} returned an unusable email address")
        raise ProviderError("Sign-in provider returned an unusable email address")


class OAuthExchanger:
    """Exchange authorization codes for a local Identity."""

    def __init__(
        self,
        store: AuthStore,
        config: AuthConfig,
        credentials_loader: Callable[[str], dict[str, str]],
    ):
        """
        Args:
            store: User lookup/provisioning
            config: Supplies oauth_timeout_seconds
            credentials_loader: provider -> {client_id, client_secret, redirect_uri}
                (clients.vault_client.get_oauth_config in production)
        """
        self._store = store
        self._config = config
        self._credentials_loader = credentials_loader

    def exchange(self, provider: str, code: str) -> Identity:
        """
        Trade `code` for an Identity, provisioning the user on first sign-in.

        Raises:
            ProviderError: Unknown/unconfigured provider, network failure,
                timeout, non-2xx response or unusable payload.
        """
        provider_config = OAUTH_PROVIDERS.get(provider)
        if provider_config is None:
            raise ProviderError(f"Unsupported sign-in provider: {provider}")
        if not code:
            raise ProviderError("Missing authorization code")

        credentials = self._load_credentials(provider)
        access_token = self._exchange_code(provider_config, credentials, code)
        profile = self._fetch_profile(provider_config, access_token)

        user = self._store.get_user_by_email(profile.email)
        if user is not None:
            logger.info(f"OAuth sign-in via {provider} for existing user {user.id}")
            return Identity(user=user, method=f"oauth:{provider}", is_new_user=False)

        user = self._store.create_user(profile.email, email_verified=profile.email_verified)
        logger.info(f"OAuth sign-in via {provider} provisioned user {user.id}")
        return Identity(user=user, method=f"oauth:{provider}", is_new_user=True)

    def _load_credentials(self, provider: str) -> dict[str, str]:
        try:
            credentials = self._credentials_loader(provider)
        except (KeyError, PermissionError) as e:
            logger.error(f"OAuth provider {provider} is not configured: {e}")
            raise ProviderError(f"Sign-in provider {provider} is not configured")
        if not credentials.get("client_id") or not credentials.get("client_secret"):
            raise ProviderError(f"Sign-in provider {provider} is not configured")
        return credentials

    def _request(self, method: str, url: str, provider: str, **kwargs) -> dict | list:
        """One provider HTTP call. Any failure becomes ProviderError."""
        try:
            response = requests.request(
                method,
                url,
                timeout=self._config.oauth_timeout_seconds,
                **kwargs,
            )
        except requests.exceptions.Timeout:
            logger.error(f"OAuth provider {provider} timed out: {url}")
            raise ProviderError("Sign-in provider did not respond in time")
        except requests.exceptions.RequestException as e:
            logger.error(f"OAuth provider {provider} request failed: {e}")
            raise ProviderError()

        if not 200 <= response.status_code < 300:
            logger.error(f"OAuth provider {provider} returned {response.status_code} for {url}")
            raise ProviderError()

        try:
            return response.json()
        except ValueError:
            logger.error(f"OAuth provider {provider} returned non-JSON body for {url}")
            raise ProviderError()

    def _exchange_code(
        self,
        provider_config: OAuthProviderConfig,
        credentials: dict[str, str],
        code: str,
    ) -> str:
        data = self._request(
            "POST",
            provider_config.token_url,
            provider_config.name,
            data={
                "client_id": credentials["client_id"],
                "client_secret": credentials["client_secret"],
                "code": code,
                "redirect_uri": credentials.get("redirect_uri", ""),
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        # GitHub reports bad codes as 200 {"error": ...}
        if not isinstance(data, dict) or data.get("error") or not data.get("access_token"):
            logger.error(f"OAuth token exchange with {provider_config.name} rejected the code")
            raise ProviderError("Sign-in provider rejected the authorization code")
        return data["access_token"]

    def _fetch_profile(self, provider_config: OAuthProviderConfig, access_token: str) -> OAuthProfile:
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        data = self._request("GET", provider_config.userinfo_url, provider_config.name, headers=headers)
        if not isinstance(data, dict):
            raise ProviderError()

        if provider_config.name == "github":
            return self._github_profile(provider_config, data, headers)

        email = data.get("email")
        provider_id = data.get("sub") or data.get("id")
        if not email or not provider_id:
            raise ProviderError("Sign-in provider did not return an email address")
        return OAuthProfile(
            provider_id=str(provider_id),
            email=_provider_email(email, provider_config.name),
            email_verified=bool(data.get("email_verified", False)),
        )

    def _github_profile(
        self,
        provider_config: OAuthProviderConfig,
        data: dict,
        headers: dict[str, str],
    ) -> OAuthProfile:
        if data.get("id") is None:
            raise ProviderError()

        emails = self._request("GET", provider_config.emails_url, provider_config.name, headers=headers)
        primary = None
        if isinstance(emails, list):
            primary = next(
                (e for e in emails if isinstance(e, dict) and e.get("primary") and e.get("email")),
                None,
            )
        if primary is None:
            raise ProviderError("Sign-in provider did not return an email address")

        return OAuthProfile(
            provider_id=str(data["id"]),
            email=_provider_email(primary["email"], provider_config.name),
            email_verified=bool(primary.get("verified", False)),
        )
