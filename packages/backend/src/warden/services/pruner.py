"""Token pruner — deletes credential rows that can no longer matter.

Learn: Denylist rows only matter until the revoked access token would
have expired anyway; expired refresh, two-factor and reset rows are
already rejected by every read path. Deleting them is pure housekeeping,
so the pruner runs on its own cadence with no coordination with requests.

This runs as a background task in the FastAPI lifespan. It can also be
run once from the CLI (`warden prune`).

Usage:
    pruner = TokenPruner(settings, interval=3600)
    asyncio.create_task(pruner.run_loop())
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from warden.config import Settings
from warden.services.revocation import PruneResult, RevocationRegistry

logger = structlog.get_logger()


class TokenPruner:
    """Background worker that periodically prunes expired token rows."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        interval: float = 3600.0,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.interval = interval
        self._running = False

    async def run_loop(self) -> None:
        """Prune, sleep, repeat. A failed pass is logged and retried next tick."""
        self._running = True
        logger.info("pruner.started", interval=self.interval)

        while self._running:
            try:
                await self.prune_once()
            except Exception:
                logger.exception("pruner.error")
            await asyncio.sleep(self.interval)

    async def prune_once(self) -> PruneResult:
        """One pass in its own session/transaction."""
        async with self.session_factory() as db:
            return await RevocationRegistry(db, self.settings).prune_expired()

    def stop(self) -> None:
        """Signal the worker to stop."""
        self._running = False
        logger.info("pruner.stopping")
