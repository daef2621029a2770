"""Tests for AuthMiddleware - bearer validation and CSRF."""

from datetime import timedelta

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.security_middleware import AuthMiddleware
from auth.session import RevokeReason
from utils.timezone import now_utc


@pytest.fixture
def app(auth_service):
    """Minimal app with one protected read, one protected write and one public route."""
    app = FastAPI()
    register_error_handlers(app)
    app.add_middleware(AuthMiddleware, auth_service=auth_service)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/protected")
    async def protected(request: Request):
        return {
            "user_id": str(request.state.user.id),
            "session_id": str(request.state.session.id),
        }

    @app.post("/protected")
    async def protected_write():
        return {"ok": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


@pytest.fixture
def client(app):
    return TestClient(app, raise_server_exceptions=False)


def _bearer(minted) -> dict:
    return {"Authorization": f"Bearer {minted.access_token}"}


class TestPublicPaths:

    def test_public_path_needs_no_token(self, client):
        assert client.get("/health").status_code == 200

    def test_prefix_matching(self, app, auth_service):
        middleware = AuthMiddleware(app, auth_service)
        assert middleware._is_public_path("/auth/quicksign/verify/abc")
        assert middleware._is_public_path("/auth/refresh")
        assert not middleware._is_public_path("/auth/sessions")
        assert not middleware._is_public_path("/security/logs")


class TestBearer:

    def test_missing_token(self, client):
        response = client.get("/protected")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"

    def test_wrong_scheme(self, client, minted):
        response = client.get("/protected", headers={"Authorization": f"Basic {minted.access_token}"})
        assert response.status_code == 401

    def test_valid_token_sets_request_state(self, client, minted, user):
        response = client.get("/protected", headers=_bearer(minted))

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == str(user.id)
        assert body["session_id"] == str(minted.session_id)

    def test_expired_token(self, client, codec, minted, user):
        token, _ = codec.encode(user, minted.session_id, now_utc() - timedelta(minutes=20))
        response = client.get("/protected", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "TOKEN_EXPIRED"

    def test_revoked_session(self, client, minted, session_manager):
        session_manager.revoke(minted.session_id, RevokeReason.LOGOUT)
        assert client.get("/protected", headers=_bearer(minted)).status_code == 401

    def test_error_carries_request_id(self, client):
        response = client.get("/protected")
        assert response.headers["x-request-id"]


class TestCsrf:

    def test_write_without_csrf_is_forbidden(self, client, minted):
        response = client.post("/protected", headers=_bearer(minted))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_write_with_wrong_csrf(self, client, minted):
        headers = {**_bearer(minted), "X-CSRF-Token": "forged"}
        assert client.post("/protected", headers=headers).status_code == 403

    def test_write_with_csrf(self, client, minted):
        headers = {**_bearer(minted), "X-CSRF-Token": minted.csrf_token}
        assert client.post("/protected", headers=headers).status_code == 200

    def test_read_needs_no_csrf(self, client, minted):
        assert client.get("/protected", headers=_bearer(minted)).status_code == 200
