"""
Expiry Sweeper - abandons sessions that have been idle too long.

Meant to be triggered on a schedule (see `python main.py sweep` and
POST /v1/maintenance/sweep). A run that fails logs the error and reports
zero; the next run picks up the same records.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from src.domain.session.cache import SessionCache
from src.domain.session.storage.base import SessionGateway
from src.shared.clock import utcnow
from src.shared.constants import (
    IDLE_TIMEOUT_REASON,
    SESSION_IDLE_THRESHOLD_SECONDS,
    STATE_ACTIVE,
)
from src.shared.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Batch-abandons idle active sessions and tidies the cache."""

    def __init__(
            self,
            gateway: SessionGateway,
            cache: SessionCache,
            idle_threshold_seconds: float = SESSION_IDLE_THRESHOLD_SECONDS,
            clock: Callable[[], datetime] = utcnow,
    ):
        if idle_threshold_seconds <= 0:
            raise ValueError("idle_threshold_seconds must be > 0")

        self.gateway = gateway
        self.cache = cache
        self.idle_threshold_seconds = idle_threshold_seconds
        self._clock = clock

    async def sweep(self, idle_threshold: Optional[float] = None) -> int:
        """
        Abandon every active session idle for longer than the threshold.

        Paused sessions are left alone. Running it twice in a row abandons
        nothing the second time.

        Args:
            idle_threshold: Override of the configured idle threshold (seconds)

        Returns:
            Number of sessions abandoned (0 when the gateway failed)
        """
        threshold = self.idle_threshold_seconds if idle_threshold is None else idle_threshold
        now = self._clock()
        cutoff = now - timedelta(seconds=threshold)

        try:
            expired = await self.gateway.get_expired(cutoff)
            active = [record for record in expired if record.lifecycle_state == STATE_ACTIVE]
            if not active:
                purged = self.cache.purge_expired()
                logger.debug(f"Sweep found no idle sessions (purged {purged} cache entries)")
                return 0

            abandoned = await self.gateway.batch_abandon(
                [record.id for record in active], now, IDLE_TIMEOUT_REASON
            )
        except PersistenceError as e:
            logger.error(f"Session sweep failed: {e}")
            return 0

        for record in active:
            self.cache.invalidate(record.session_id)
        self.cache.purge_expired()

        logger.info(f"Sweep abandoned {abandoned} idle sessions (threshold {threshold}s)")
        return abandoned
