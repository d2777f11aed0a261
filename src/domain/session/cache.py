"""
Session Cache - process-local, TTL-bounded read-through cache.

Entries expire exactly ttl seconds after insertion and are removed rather
than served stale. The cache holds deep copies, so edits a caller makes to a
loaded session never show up here until the manager saves them.
"""

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional
import logging
import time

from src.domain.session.models import ConversationSession
from src.shared.constants import SESSION_CACHE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    session: ConversationSession
    expires_at: float


class SessionCache:
    """
    TTL cache keyed by session id.

    Lifecycle: construct, inject into the lifecycle manager, purge
    periodically (the sweeper does this), close on shutdown.
    """

    def __init__(
            self,
            ttl_seconds: float = SESSION_CACHE_TTL_SECONDS,
            max_entries: Optional[int] = None,
            clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl_seconds: Default lifetime of an entry
            max_entries: Optional bound; oldest insertions are evicted first
            clock: Monotonic time source (seconds)
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be > 0")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._closed = False
        logger.info(
            f"SessionCache initialized (ttl={ttl_seconds}s, max_entries={max_entries})"
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: str) -> bool:
        return self.get(session_id) is not None

    def get(self, session_id: str) -> Optional[ConversationSession]:
        """Return a copy of the cached session, or None on miss or expiry."""
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[session_id]
            logger.debug(f"Cache entry for {session_id} expired")
            return None
        return entry.session.model_copy(deep=True)

    def put(self, session: ConversationSession, ttl: Optional[float] = None) -> None:
        """Store a copy of session for ttl seconds (default ttl_seconds)."""
        if self._closed:
            logger.debug(f"Cache closed, not storing {session.session_id}")
            return

        lifetime = self.ttl_seconds if ttl is None else ttl
        self._entries.pop(session.session_id, None)
        self._entries[session.session_id] = _CacheEntry(
            session=session.model_copy(deep=True),
            expires_at=self._clock() + lifetime,
        )

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted {evicted} from session cache")

    def invalidate(self, session_id: str) -> bool:
        """Drop an entry. Returns True if one was present."""
        return self._entries.pop(session_id, None) is not None

    def purge_expired(self) -> int:
        """Remove every expired entry and return how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Purged {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def close(self) -> None:
        """Release all entries and stop accepting new ones."""
        self.clear()
        self._closed = True
        logger.info("SessionCache closed")
