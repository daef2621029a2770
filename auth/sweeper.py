"""Retention sweep for sessions, magic link tokens and expired blocks.

sweep() is a plain synchronous call so it can be tested directly.
SweepScheduler runs it periodically on the event loop, in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.config import AuthConfig
from auth.store import AuthStore
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    sessions_revoked: int
    sessions_deleted: int
    tokens_deleted: int
    blocks_deleted: int


class SessionSweeper:
    """Expire and purge stale auth state. Idempotent."""

    def __init__(self, store: AuthStore, config: AuthConfig):
        self._store = store
        self._config = config

    def sweep(self) -> SweepResult:
        """
        1. Revoke sessions past refresh_expires_at (reason EXPIRED).
        2. Delete sessions whose expires_at and refresh_expires_at are both
           older than the retention window.
        3. Delete magic link tokens used or expired before the retention window.
        4. Delete auto-blocks that have expired or were lifted.
        """
        now = now_utc()
        cutoff = now - timedelta(days=self._config.retention_days)

        result = SweepResult(
            sessions_revoked=self._store.revoke_expired_sessions(now),
            sessions_deleted=self._store.delete_stale_sessions(cutoff),
            tokens_deleted=self._store.delete_stale_magic_tokens(cutoff),
            blocks_deleted=self._store.delete_expired_blocks(now),
        )
        logger.info(
            f"Sweep complete: {result.sessions_revoked} sessions expired, "
            f"{result.sessions_deleted} sessions purged, {result.tokens_deleted} tokens purged, "
            f"{result.blocks_deleted} blocks purged"
        )
        return result


class SweepScheduler:
    """Background asyncio task running SessionSweeper.sweep on an interval."""

    def __init__(self, sweeper: SessionSweeper, interval_seconds: float):
        self._sweeper = sweeper
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("Sweep scheduler already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Sweep scheduler started (every {self._interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sweep scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.to_thread(self._sweeper.sweep)
            except Exception:
                # Keep the loop alive; the next tick retries
                logger.exception("Sweep failed")
            await asyncio.sleep(self._interval)
