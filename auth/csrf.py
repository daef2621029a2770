"""Anti-CSRF tokens bound to a session.

Double-submit: the token is set as a readable cookie and must come back in
the X-CSRF-Token header. The session row holds only the SHA-256 hash, so a
revoked or deleted session can never validate.
"""

import logging
from uuid import UUID

from auth.exceptions import ForbiddenError, UnauthorizedError
from auth.store import AuthStore
from auth.tokens import generate_token, hash_token, tokens_match

logger = logging.getLogger(__name__)


def new_csrf_token() -> tuple[str, str]:
    """Fresh (token, token_hash) pair."""
    token = generate_token(32)
    return token, hash_token(token)


class CsrfBinder:
    """Issue and check CSRF tokens against the session store."""

    def __init__(self, store: AuthStore):
        self._store = store

    def issue(self, session_id: UUID) -> str:
        """
        Bind a new token to an active session, replacing the previous one.

        Raises:
            UnauthorizedError: Session missing or revoked.
        """
        token, token_hash = new_csrf_token()
        if not self._store.set_csrf_hash(session_id, token_hash):
            raise UnauthorizedError("Session is no longer active")
        return token

    def validate(self, session_id: UUID, presented: str | None) -> bool:
        if not presented:
            return False
        session = self._store.get_session(session_id)
        if session is None or session.is_revoked:
            return False
        return tokens_match(presented, session.csrf_token_hash)

    def require(self, session_id: UUID, presented: str | None) -> None:
        """Raise ForbiddenError unless `presented` matches the session binding."""
        if not self.validate(session_id, presented):
            logger.warning(f"CSRF validation failed for session {session_id}")
            raise ForbiddenError("Invalid or missing CSRF token")
