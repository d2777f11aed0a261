from datetime import datetime
from typing import Optional, List, Dict
import itertools
import logging

from src.domain.session.storage.base import (
    INITIAL_RECORD_VERSION,
    SessionGateway,
    SessionRecord,
    abandon_transition,
)
from src.shared.constants import STATE_ACTIVE, STATE_PAUSED, STATE_ABANDONED
from src.shared.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)


class InMemorySessionGateway(SessionGateway):
    """
    In-memory session gateway.

    Pro:
    - Zero external dependencies
    - Fast for testing/development

    Con:
    - Data lost on restart
    - Not shared across processes, so multi-instance deployments need Postgres

    Use case: tests, local development, single-process demos
    """

    def __init__(self):
        self._records: Dict[str, SessionRecord] = {}
        self._ids_by_session: Dict[str, str] = {}
        self._sequence = itertools.count(1)
        logger.info("InMemorySessionGateway initialized")

    async def insert(self, record: SessionRecord) -> str:
        if record.session_id in self._ids_by_session:
            raise PersistenceError(
                f"Duplicate session id {record.session_id}",
                details={"session_id": record.session_id},
            )
        record_id = str(next(self._sequence))
        self._records[record_id] = record.model_copy(
            update={"id": record_id, "version": INITIAL_RECORD_VERSION}, deep=True
        )
        self._ids_by_session[record.session_id] = record_id
        logger.debug(f"Inserted session {record.session_id} as record {record_id}")
        return record_id

    async def get_by_id(self, record_id: str) -> Optional[SessionRecord]:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def get_by_session_id(self, session_id: str) -> Optional[SessionRecord]:
        record_id = self._ids_by_session.get(session_id)
        if record_id is None:
            return None
        return await self.get_by_id(record_id)

    async def get_by_session_ids(self, session_ids: List[str]) -> Dict[str, SessionRecord]:
        found = {}
        for session_id in session_ids:
            record_id = self._ids_by_session.get(session_id)
            if record_id is not None:
                found[session_id] = self._records[record_id].model_copy(deep=True)
        return found

    async def update(
            self,
            record_id: str,
            record: SessionRecord,
            expected_version: Optional[int] = None,
    ) -> int:
        stored = self._records.get(record_id)
        if stored is None:
            raise SessionNotFoundError(record.session_id)
        if expected_version is not None and stored.version != expected_version:
            raise ConcurrentModificationError(
                f"Session {record.session_id} was modified concurrently",
                details={
                    "session_id": record.session_id,
                    "expected_version": expected_version,
                    "stored_version": stored.version,
                },
            )
        new_version = stored.version + 1
        self._records[record_id] = record.model_copy(
            update={"id": record_id, "version": new_version}, deep=True
        )
        logger.debug(f"Updated record {record_id} to version {new_version}")
        return new_version

    async def delete(self, record_id: str) -> bool:
        record = self._records.pop(record_id, None)
        if record is None:
            return False
        self._ids_by_session.pop(record.session_id, None)
        logger.debug(f"Deleted record {record_id}")
        return True

    async def get_expired(self, older_than: datetime) -> List[SessionRecord]:
        return [
            record.model_copy(deep=True)
            for record in self._records.values()
            if record.lifecycle_state in (STATE_ACTIVE, STATE_PAUSED)
            and record.updated_at < older_than
        ]

    async def batch_abandon(
            self,
            record_ids: List[str],
            timestamp: datetime,
            reason: str = "",
    ) -> int:
        abandoned = 0
        for record_id in record_ids:
            record = self._records.get(record_id)
            if record is None or record.lifecycle_state != STATE_ACTIVE:
                continue
            record.state_history.append(abandon_transition(reason, timestamp))
            record.lifecycle_state = STATE_ABANDONED
            record.metadata["abandoned_at"] = timestamp.isoformat()
            record.metadata["abandon_reason"] = reason
            record.updated_at = timestamp
            record.version += 1
            abandoned += 1
        logger.debug(f"Batch abandoned {abandoned} records")
        return abandoned

    async def count_active_for_user(self, user_id: str) -> int:
        return sum(
            1
            for record in self._records.values()
            if record.user_id == user_id and record.lifecycle_state == STATE_ACTIVE
        )

    async def get_oldest_active_for_user(self, user_id: str) -> Optional[SessionRecord]:
        active = [
            record
            for record in self._records.values()
            if record.user_id == user_id and record.lifecycle_state == STATE_ACTIVE
        ]
        if not active:
            return None
        return min(active, key=lambda r: r.created_at).model_copy(deep=True)

    async def list_for_user(
            self,
            user_id: str,
            limit: int = 20,
            offset: int = 0,
            lifecycle_state: Optional[str] = None,
    ) -> List[SessionRecord]:
        records = [
            record
            for record in self._records.values()
            if record.user_id == user_id
            and (lifecycle_state is None or record.lifecycle_state == lifecycle_state)
        ]
        records.sort(key=lambda r: r.updated_at, reverse=True)
        return [r.model_copy(deep=True) for r in records[offset:offset + limit]]

    def clear_all(self) -> None:
        """Utility for testing: wipe every record."""
        self._records.clear()
        self._ids_by_session.clear()
        logger.debug("Cleared all session records")
