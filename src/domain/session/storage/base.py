from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.shared.clock import as_utc, utcnow
from src.shared.constants import (
    DEFAULT_CONTEXT_TYPE,
    DEFAULT_WORKFLOW_STATE,
    STATE_ACTIVE,
    STATE_ABANDONED,
)


# Version assigned by insert; every update increments it.
INITIAL_RECORD_VERSION = 1


class SessionRecord(BaseModel):
    """
    Persisted shape of a session, as stored by a gateway.

    Maps to: draft_sessions table. Structured fields are stored as JSON.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)

    id: Optional[str] = None
    session_id: str
    user_id: str
    context_type: str = DEFAULT_CONTEXT_TYPE
    title: str = ""
    lifecycle_state: str = STATE_ACTIVE
    current_state: str = DEFAULT_WORKFLOW_STATE
    state_history: List[Dict[str, Any]] = Field(default_factory=list)
    context_data: Dict[str, Any] = Field(default_factory=dict)
    progress: float = 0.0
    confidence_score: float = 0.0
    paused_from_state: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    total_tokens: int = 0
    total_cost: float = 0.0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    version: int = 0

    @field_validator("created_at", "updated_at", "completed_at")
    @classmethod
    def _timestamps_as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


def abandon_transition(reason: str, timestamp: datetime) -> Dict[str, Any]:
    """History entry appended to each record abandoned by batch_abandon."""
    return {
        "from_state": STATE_ACTIVE,
        "to_state": STATE_ABANDONED,
        "reason": reason,
        "timestamp": timestamp.isoformat(),
        "data": {},
    }


class SessionGateway(ABC):
    """Interface for durable session storage."""

    @abstractmethod
    async def insert(self, record: SessionRecord) -> str:
        """Insert a new record and return its gateway id."""
        pass

    @abstractmethod
    async def get_by_id(self, record_id: str) -> Optional[SessionRecord]:
        """Load a record by gateway id."""
        pass

    @abstractmethod
    async def get_by_session_id(self, session_id: str) -> Optional[SessionRecord]:
        """Load a record by session id."""
        pass

    @abstractmethod
    async def get_by_session_ids(self, session_ids: List[str]) -> Dict[str, SessionRecord]:
        """Load many records in a single call, keyed by session id."""
        pass

    @abstractmethod
    async def update(
            self,
            record_id: str,
            record: SessionRecord,
            expected_version: Optional[int] = None,
    ) -> int:
        """
        Replace a stored record and return its new version.

        Raises:
            SessionNotFoundError: If the record does not exist
            ConcurrentModificationError: If expected_version is given and stale
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def get_expired(self, older_than: datetime) -> List[SessionRecord]:
        """Active or paused records last updated before older_than."""
        pass

    @abstractmethod
    async def batch_abandon(
            self,
            record_ids: List[str],
            timestamp: datetime,
            reason: str = "",
    ) -> int:
        """Abandon every still-active record in record_ids in one call."""
        pass

    @abstractmethod
    async def count_active_for_user(self, user_id: str) -> int:
        """Number of active records owned by user_id."""
        pass

    @abstractmethod
    async def get_oldest_active_for_user(self, user_id: str) -> Optional[SessionRecord]:
        """Active record of user_id with the earliest creation time."""
        pass

    @abstractmethod
    async def list_for_user(
            self,
            user_id: str,
            limit: int = 20,
            offset: int = 0,
            lifecycle_state: Optional[str] = None,
    ) -> List[SessionRecord]:
        """Records of user_id, most recently updated first."""
        pass
