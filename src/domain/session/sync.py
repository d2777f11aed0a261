"""
Session Synchronizer - multi-device state reconciliation.

Compares what a client last saw with the server's current session and tells
the client whether it is behind and whether its own unsynced edits collide
with newer server state. Conflicts are reported, never resolved here.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
import hashlib
import json
import logging

from pydantic import BaseModel, Field

from src.domain.session.manager import SessionLifecycleManager
from src.domain.session.models import ConversationSession, SessionMessage
from src.shared.clock import as_utc
from src.shared.constants import CONFLICT_RESOLUTION_OPTIONS, SYNC_RECENT_MESSAGES

logger = logging.getLogger(__name__)


# ============================================================================
# Sync Models
# ============================================================================


class ClientSyncState(BaseModel):
    """What the client reports about its copy."""

    last_updated: Optional[datetime] = Field(
        default=None,
        description="Server timestamp the client last synced to; None if never synced"
    )
    last_modified: Optional[datetime] = Field(
        default=None,
        description="When the client last edited its local copy"
    )
    client_id: Optional[str] = None


class ServerSyncState(BaseModel):
    current_state: str
    progress: float
    last_updated: datetime
    message_count: int
    context_hash: str


class SyncPayload(BaseModel):
    """Data a lagging client needs to catch up."""

    current_state: str
    progress: float
    context_data: Dict[str, Any]
    recent_messages: List[SessionMessage]
    last_updated: datetime


class ConflictInfo(BaseModel):
    server_timestamp: datetime
    client_timestamp: datetime
    resolution_options: Dict[str, str] = Field(
        default_factory=lambda: dict(CONFLICT_RESOLUTION_OPTIONS)
    )


class SyncResponse(BaseModel):
    session_id: str
    server_state: ServerSyncState
    needs_update: bool = False
    updates: Optional[SyncPayload] = None
    conflict_detected: bool = False
    conflict_info: Optional[ConflictInfo] = None


# ============================================================================
# Synchronizer
# ============================================================================


def context_hash(context_data: Dict[str, Any]) -> str:
    """MD5 of the canonical (key-sorted) JSON form of context_data."""
    canonical = json.dumps(context_data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()


class SessionSynchronizer:
    """
    Reconciles client copies of a session with the server copy.

    Read-only: it loads through the lifecycle manager and never saves.
    """

    def __init__(
            self,
            manager: SessionLifecycleManager,
            recent_message_count: int = SYNC_RECENT_MESSAGES,
    ):
        self.manager = manager
        self.recent_message_count = recent_message_count

    def server_state(self, session: ConversationSession) -> ServerSyncState:
        return ServerSyncState(
            current_state=session.current_state,
            progress=session.progress,
            last_updated=session.last_updated_at,
            message_count=len(session.messages),
            context_hash=context_hash(session.context_data),
        )

    async def reconcile(
            self,
            session_id: str,
            client_state: Optional[ClientSyncState] = None,
    ) -> SyncResponse:
        """
        Compare a client's view with the server session.

        Args:
            session_id: Session to reconcile
            client_state: Client timestamps; missing values mean "never"

        Returns:
            SyncResponse with the catch-up payload and/or conflict details

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        client_state = client_state or ClientSyncState()
        session = await self.manager.load_session(session_id)

        server = self.server_state(session)
        server_updated = as_utc(server.last_updated)
        client_updated = as_utc(client_state.last_updated)
        client_modified = as_utc(client_state.last_modified)

        response = SyncResponse(session_id=session_id, server_state=server)

        if client_updated is None or server_updated > client_updated:
            response.needs_update = True
            response.updates = SyncPayload(
                current_state=session.current_state,
                progress=session.progress,
                context_data=session.context_data,
                recent_messages=session.recent_messages(self.recent_message_count),
                last_updated=session.last_updated_at,
            )

        if client_modified is not None and client_modified > server_updated:
            response.conflict_detected = True
            response.conflict_info = ConflictInfo(
                server_timestamp=server.last_updated,
                client_timestamp=client_state.last_modified,
            )
            logger.info(
                f"Sync conflict on session {session_id} "
                f"(client {client_state.client_id or 'unknown'})"
            )

        logger.debug(
            f"Reconciled session {session_id}: needs_update={response.needs_update}, "
            f"conflict={response.conflict_detected}"
        )
        return response
