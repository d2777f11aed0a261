"""
Session Record Converter - the single boundary between stored records and
typed session entities.

Records coming back from a gateway are validated once here, with defaults
already applied by SessionRecord, so business logic never deals with
partially-populated rows.
"""

import copy
import logging

from pydantic import ValidationError as PydanticValidationError

from src.domain.session.models import ConversationSession, LifecycleState
from src.domain.session.storage.base import SessionRecord
from src.shared.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class SessionRecordConverter:
    """Static conversions between ConversationSession and SessionRecord."""

    @staticmethod
    def to_record(session: ConversationSession) -> SessionRecord:
        """
        Serialize a session into the gateway record shape.

        Args:
            session: Session entity

        Returns:
            SessionRecord detached from the entity (deep copies)
        """
        completed_at = None
        if session.lifecycle_state == LifecycleState.COMPLETED and session.state_history:
            completed_at = session.state_history[-1].timestamp

        return SessionRecord(
            id=session.database_id,
            session_id=session.session_id,
            user_id=session.user_id,
            context_type=session.context_type,
            title=session.title,
            lifecycle_state=session.lifecycle_state.value,
            current_state=session.current_state,
            state_history=[t.model_dump(mode="json") for t in session.state_history],
            context_data=copy.deepcopy(session.context_data),
            progress=session.progress,
            confidence_score=session.confidence_score,
            paused_from_state=session.paused_from_state,
            messages=[m.model_dump(mode="json") for m in session.messages],
            metadata=copy.deepcopy(session.metadata),
            total_tokens=session.total_tokens,
            total_cost=session.total_cost,
            created_at=session.created_at,
            updated_at=session.last_updated_at,
            completed_at=completed_at,
            version=session.version,
        )

    @staticmethod
    def from_record(record: SessionRecord) -> ConversationSession:
        """
        Materialize a typed session from a stored record.

        Raises:
            PersistenceError: If the stored record cannot be interpreted
        """
        try:
            session = ConversationSession(
                session_id=record.session_id,
                user_id=record.user_id,
                context_type=record.context_type,
                title=record.title,
                lifecycle_state=record.lifecycle_state,
                current_state=record.current_state,
                state_history=copy.deepcopy(record.state_history),
                context_data=copy.deepcopy(record.context_data),
                progress=record.progress,
                confidence_score=record.confidence_score,
                paused_from_state=record.paused_from_state,
                messages=copy.deepcopy(record.messages),
                metadata=copy.deepcopy(record.metadata),
                total_tokens=record.total_tokens,
                total_cost=record.total_cost,
                created_at=record.created_at,
                last_updated_at=record.updated_at,
                database_id=record.id,
                version=record.version,
            )
        except PydanticValidationError as e:
            logger.error(f"Corrupt record for session {record.session_id}: {e}")
            raise PersistenceError(
                f"Stored record for session {record.session_id} is malformed",
                details={"session_id": record.session_id, "error_count": e.error_count()},
            ) from e

        session.mark_saved()
        return session
