"""FastAPI application factory for the auth service.

Collaborators that are not injected are built from Vault secrets:
PostgreSQL for auth state, Valkey for exchange codes and throttling,
the email gateway for sign-in links and alerts.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable

import redis
from fastapi import FastAPI, Request

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.alerts import SecurityAlerts
from auth.api import create_auth_router, create_security_router
from auth.auto_block import AutoBlocker
from auth.config import AuthConfig
from auth.csrf import CsrfBinder
from auth.database import PostgresAuthStore
from auth.exchange_codes import ExchangeCodeStore
from auth.magic_link import MagicLinkIssuer
from auth.oauth import OAuthExchanger
from auth.rate_limiter import RateLimiter
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.session import SessionManager
from auth.store import AuthStore
from auth.sweeper import SessionSweeper, SweepScheduler
from auth.tokens import AccessTokenCodec
from clients.email_client import EmailGatewayClient
from clients.valkey_client import ValkeyClient

logger = logging.getLogger(__name__)


def build_auth_service(
    config: AuthConfig,
    store: AuthStore,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient | None,
    jwt_secret: str,
    credentials_loader: Callable[[str], dict[str, str]],
) -> AuthService:
    """Wire the auth components around one store."""
    security_logger = SecurityLogger(store, config)
    alerts = SecurityAlerts(email_client, config.app_name)
    codec = AccessTokenCodec(jwt_secret, config)

    return AuthService(
        config=config,
        store=store,
        magic_links=MagicLinkIssuer(store, config),
        oauth=OAuthExchanger(store, config, credentials_loader),
        sessions=SessionManager(store, codec, config, security_logger),
        csrf=CsrfBinder(store),
        security_logger=security_logger,
        auto_blocker=AutoBlocker(store, security_logger, config, alerts),
        exchange_codes=ExchangeCodeStore(valkey, config),
        rate_limiter=RateLimiter(valkey, config),
        email_client=email_client,
        alerts=alerts,
    )


def create_app(
    config: AuthConfig | None = None,
    store: AuthStore | None = None,
    valkey: ValkeyClient | None = None,
    email_client: EmailGatewayClient | None = None,
    jwt_secret: str | None = None,
    credentials_loader: Callable[[str], dict[str, str]] | None = None,
    run_sweeper: bool = True,
) -> FastAPI:
    """
    Build the app.

    Anything not passed in is loaded from Vault. Passing `store` and
    `valkey` (e.g. MemoryAuthStore and a fake) makes the app self-contained.
    """
    from clients import vault_client

    config = config or AuthConfig()
    owned = []

    if store is None:
        from clients.postgres_client import PostgresClient

        postgres = PostgresClient(vault_client.get_database_url())
        store = PostgresAuthStore(postgres)
        owned.append(store)
    if valkey is None:
        valkey = ValkeyClient(vault_client.get_valkey_url())
        owned.append(valkey)
    if email_client is None:
        email_client = EmailGatewayClient(**vault_client.get_email_config())
    if jwt_secret is None:
        jwt_secret = vault_client.get_jwt_secret()
    if credentials_loader is None:
        credentials_loader = vault_client.get_oauth_config

    auth_service = build_auth_service(config, store, valkey, email_client, jwt_secret, credentials_loader)
    scheduler = SweepScheduler(SessionSweeper(store, config), config.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_sweeper:
            await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            for resource in owned:
                resource.close()
            logger.info("Auth service shut down")

    app = FastAPI(title=f"{config.app_name} Auth", lifespan=lifespan)
    app.state.auth_service = auth_service
    app.state.sweep_scheduler = scheduler

    register_error_handlers(app)
    # Last added runs first: request IDs exist before auth can fail
    app.add_middleware(AuthMiddleware, auth_service=auth_service)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(create_auth_router(auth_service))
    app.include_router(create_security_router(auth_service))

    @app.get("/health")
    async def health(request: Request):
        try:
            valkey_status = "ok" if valkey.ping() else "unavailable"
        except redis.RedisError:
            logger.warning("Health check could not reach Valkey")
            valkey_status = "unavailable"
        return success_response(
            {"status": "ok", "valkey": valkey_status},
            getattr(request.state, "request_id", None),
        )

    return app
