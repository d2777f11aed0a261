from typing import Any, Callable, Dict, List, Optional, Union
import copy
import logging
import time
import uuid

from pydantic import ValidationError as PydanticValidationError

from src.domain.session.analytics import SessionAnalytics, session_statistics
from src.domain.session.cache import SessionCache
from src.domain.session.converter import SessionRecordConverter
from src.domain.session.models import (
    ConversationSession,
    LifecycleState,
    SessionSnapshot,
)
from src.domain.session.storage.base import INITIAL_RECORD_VERSION, SessionGateway
from src.shared.clock import utcnow
from src.shared.constants import (
    DEFAULT_CONTEXT_TYPE,
    DEFAULT_WORKFLOW_STATE,
    EXPORT_VERSION,
    LIMIT_EXCEEDED_REASON,
    MAX_ACTIVE_SESSIONS_PER_USER,
    SESSION_ID_PREFIX,
    WORKFLOW_PROGRESS,
)
from src.shared.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    PersistenceError,
    SessionNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _new_session_id() -> str:
    return f"{SESSION_ID_PREFIX}{uuid.uuid4().hex}"


class SessionLifecycleManager:
    """
    Manages the lifecycle of drafting sessions.

    Responsibilities:
    - Create sessions, enforcing the per-user active-session limit
    - Load sessions (cache first, then one gateway read) and batch-load them
    - Save sessions with an optimistic version check
    - Pause / resume / complete / abandon / delete
    - Export and import portable snapshots

    Persistence goes through a SessionGateway and reads are shielded by an
    injected SessionCache, so both can be swapped in tests.
    """

    def __init__(
            self,
            gateway: SessionGateway,
            cache: SessionCache,
            max_active_sessions_per_user: int = MAX_ACTIVE_SESSIONS_PER_USER,
            optimistic_locking: bool = True,
            id_factory: Callable[[], str] = _new_session_id,
    ):
        """
        Args:
            gateway: Durable session storage
            cache: Process-local session cache
            max_active_sessions_per_user: Active sessions allowed per user
            optimistic_locking: Reject saves whose stored version has advanced
            id_factory: Generator for new session ids
        """
        if max_active_sessions_per_user < 1:
            raise ValueError("max_active_sessions_per_user must be >= 1")

        self.gateway = gateway
        self.cache = cache
        self.max_active_sessions_per_user = max_active_sessions_per_user
        self.optimistic_locking = optimistic_locking
        self._id_factory = id_factory
        logger.info(
            f"SessionLifecycleManager initialized with {type(gateway).__name__} "
            f"(limit={max_active_sessions_per_user}, optimistic_locking={optimistic_locking})"
        )

    # ========================================================================
    # Create / Load / Save
    # ========================================================================

    async def create_session(
            self,
            user_id: str,
            context_type: str = DEFAULT_CONTEXT_TYPE,
            initial_data: Optional[Dict[str, Any]] = None,
            *,
            session_id: Optional[str] = None,
            title: Optional[str] = None,
            workflow_state: str = DEFAULT_WORKFLOW_STATE,
            metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        """
        Create and durably store a new session.

        If the user is already at the active-session limit, their oldest
        active session is abandoned first.

        Args:
            user_id: Owning user
            context_type: Purpose of the session (e.g. "course_creation")
            initial_data: Initial context data
            session_id: Explicit id; generated when omitted
            title: Display title
            workflow_state: Initial workflow step
            metadata: Caller-supplied metadata

        Returns:
            The persisted session, in the active state

        Raises:
            ValidationError: On malformed input or a session id already in use
            PersistenceError: If the record could not be stored
        """
        self._validate_identity(user_id, context_type)
        if initial_data is not None and not isinstance(initial_data, dict):
            raise ValidationError("initial_data must be a mapping")

        if session_id is not None:
            if not session_id.strip():
                raise ValidationError("session_id must not be blank")
            if self.cache.get(session_id) or await self.gateway.get_by_session_id(session_id):
                raise ValidationError(
                    f"Session id {session_id} is already in use",
                    details={"session_id": session_id},
                )

        await self._enforce_session_limit(user_id)

        now = utcnow()
        session = ConversationSession(
            session_id=session_id or self._id_factory(),
            user_id=user_id,
            context_type=context_type,
            title=title or "New Course (Draft)",
            current_state=workflow_state,
            progress=WORKFLOW_PROGRESS.get(workflow_state, 0.0),
            context_data=copy.deepcopy(initial_data or {}),
            metadata=copy.deepcopy(metadata or {}),
            created_at=now,
            last_updated_at=now,
        )

        await self._insert(session)
        logger.info(f"Created session {session.session_id} for user {user_id}")
        return session

    async def load_session(self, session_id: str) -> ConversationSession:
        """
        Load a session, cache first.

        Raises:
            SessionNotFoundError: If no record exists
        """
        cached = self.cache.get(session_id)
        if cached is not None:
            logger.debug(f"Cache hit for session {session_id}")
            return cached

        record = await self.gateway.get_by_session_id(session_id)
        if record is None:
            logger.warning(f"Session {session_id} not found")
            raise SessionNotFoundError(session_id)

        session = SessionRecordConverter.from_record(record)
        self.cache.put(session)
        logger.debug(f"Loaded session {session_id} from storage")
        return session

    async def load_sessions(self, session_ids: List[str]) -> Dict[str, ConversationSession]:
        """
        Load many sessions. Cache hits are served locally and every miss is
        fetched in a single batched gateway call. Unknown ids are omitted.
        """
        if not session_ids:
            return {}

        sessions: Dict[str, ConversationSession] = {}
        misses: List[str] = []

        for session_id in dict.fromkeys(session_ids):
            cached = self.cache.get(session_id)
            if cached is not None:
                sessions[session_id] = cached
            else:
                misses.append(session_id)

        if not misses:
            return sessions

        records = await self.gateway.get_by_session_ids(misses)
        for session_id, record in records.items():
            session = SessionRecordConverter.from_record(record)
            self.cache.put(session)
            sessions[session_id] = session

        logger.debug(
            f"Batch loaded {len(session_ids)} sessions "
            f"({len(session_ids) - len(misses)} cached, {len(records)} from storage)"
        )
        return sessions

    async def save_session(self, session: ConversationSession) -> None:
        """
        Persist a session and refresh its cache entry.

        On failure the cached copy is left as it was and the session keeps
        its unsaved changes, so the caller may retry.

        Raises:
            ConcurrentModificationError: If the stored version moved on since load
            PersistenceError: If the write failed
            SessionNotFoundError: If the record no longer exists
        """
        if not session.is_persisted:
            raise PersistenceError(
                f"Session {session.session_id} has never been persisted",
                details={"session_id": session.session_id},
            )

        record = SessionRecordConverter.to_record(session)
        expected_version = session.version if self.optimistic_locking else None

        try:
            new_version = await self.gateway.update(
                session.database_id, record, expected_version=expected_version
            )
        except ConcurrentModificationError:
            # The cached copy is now known to be behind the store.
            self.cache.invalidate(session.session_id)
            logger.warning(f"Concurrent modification of session {session.session_id}")
            raise
        except (PersistenceError, SessionNotFoundError) as e:
            logger.error(f"Failed to save session {session.session_id}: {e}")
            raise

        session.version = new_version
        session.mark_saved()
        self.cache.put(session)
        logger.info(f"Saved session {session.session_id}")

    # ========================================================================
    # Lifecycle Transitions
    # ========================================================================

    async def pause_session(self, session_id: str, reason: str = "") -> ConversationSession:
        session = await self.load_session(session_id)
        session.pause(reason)
        await self.save_session(session)
        logger.info(f"Paused session {session_id}")
        return session

    async def resume_session(self, session_id: str) -> ConversationSession:
        session = await self.load_session(session_id)
        session.resume()
        await self.save_session(session)
        logger.info(f"Resumed session {session_id}")
        return session

    async def complete_session(
            self,
            session_id: str,
            completion_data: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        session = await self.load_session(session_id)
        session.complete(completion_data)
        await self.save_session(session)
        logger.info(f"Completed session {session_id}")
        return session

    async def abandon_session(self, session_id: str, reason: str = "") -> ConversationSession:
        session = await self.load_session(session_id)
        session.abandon(reason)
        await self.save_session(session)
        logger.info(f"Abandoned session {session_id} ({reason or 'no reason'})")
        return session

    async def mark_session_error(self, session_id: str, reason: str = "") -> ConversationSession:
        """Record that an operation on the session failed."""
        session = await self.load_session(session_id)
        session.mark_error(reason)
        await self.save_session(session)
        logger.warning(f"Session {session_id} moved to error: {reason}")
        return session

    async def delete_session(self, session_id: str) -> bool:
        """
        Permanently delete a session.

        The durable record goes first; the cache entry is dropped only once
        the gateway call returned.

        Returns:
            True if a record was deleted, False if it was already gone
        """
        session = await self.load_session(session_id)

        try:
            deleted = await self.gateway.delete(session.database_id)
        except PersistenceError as e:
            logger.error(f"Failed to delete session {session_id}: {e}")
            raise

        self.cache.invalidate(session_id)
        if deleted:
            logger.info(f"Deleted session {session_id}")
        else:
            logger.warning(f"Session {session_id} record was already gone")
        return deleted

    # ========================================================================
    # Content Mutations
    # ========================================================================

    async def append_message(
            self,
            session_id: str,
            message_type: str,
            content: str,
            metadata: Optional[Dict[str, Any]] = None,
    ) -> ConversationSession:
        session = await self.load_session(session_id)
        session.add_message(message_type, content, metadata)
        await self.save_session(session)
        return session

    async def update_context(
            self,
            session_id: str,
            data: Dict[str, Any],
            merge: bool = True,
    ) -> ConversationSession:
        session = await self.load_session(session_id)
        session.update_context(data, merge=merge)
        await self.save_session(session)
        return session

    async def set_workflow_state(self, session_id: str, state: str) -> ConversationSession:
        session = await self.load_session(session_id)
        session.set_workflow_state(state)
        await self.save_session(session)
        return session

    async def record_usage(
            self,
            session_id: str,
            tokens: int = 0,
            cost: float = 0.0,
    ) -> ConversationSession:
        session = await self.load_session(session_id)
        session.add_usage(tokens, cost)
        await self.save_session(session)
        return session

    # ========================================================================
    # Queries
    # ========================================================================

    async def list_user_sessions(
            self,
            user_id: str,
            limit: int = 20,
            offset: int = 0,
    ) -> List[ConversationSession]:
        """Sessions of a user, most recently updated first."""
        records = await self.gateway.list_for_user(user_id, limit=limit, offset=offset)
        return [SessionRecordConverter.from_record(record) for record in records]

    async def list_active_sessions(
            self,
            user_id: str,
            limit: int = 100,
            offset: int = 0,
    ) -> List[ConversationSession]:
        """Active sessions of a user, read from storage rather than tracked in memory."""
        records = await self.gateway.list_for_user(
            user_id, limit=limit, offset=offset, lifecycle_state=LifecycleState.ACTIVE.value
        )
        return [SessionRecordConverter.from_record(record) for record in records]

    async def get_session_analytics(self, session_id: str) -> SessionAnalytics:
        session = await self.load_session(session_id)
        return session_statistics(session)

    # ========================================================================
    # Export / Import
    # ========================================================================

    async def export_session(self, session_id: str) -> SessionSnapshot:
        """
        Produce a versioned snapshot for backup or transfer.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        session = await self.load_session(session_id)
        data = session.model_dump(
            mode="json", exclude={"database_id", "version", "last_updated_at"}
        )
        snapshot = SessionSnapshot(
            export_version=EXPORT_VERSION,
            export_timestamp=int(time.time()),
            last_updated=session.last_updated_at,
            **data,
        )
        logger.info(f"Exported session {session_id}")
        return snapshot

    async def import_session(
            self,
            snapshot: Union[SessionSnapshot, Dict[str, Any]],
            *,
            target_user_id: Optional[str] = None,
    ) -> ConversationSession:
        """
        Rebuild a session from a snapshot and store it as a new record.

        The imported session gets a fresh session id. Messages are replayed
        through the session's append path.

        Args:
            snapshot: SessionSnapshot or its JSON form
            target_user_id: Import on behalf of another user

        Raises:
            ValidationError: If the snapshot is malformed or of another version
            PersistenceError: If the new record could not be stored
        """
        if not isinstance(snapshot, SessionSnapshot):
            try:
                snapshot = SessionSnapshot.model_validate(snapshot)
            except PydanticValidationError as e:
                raise ValidationError(
                    "Malformed session snapshot",
                    details={"error_count": e.error_count()},
                ) from e

        if snapshot.export_version != EXPORT_VERSION:
            raise ValidationError(
                f"Unsupported export version {snapshot.export_version}",
                details={"supported": EXPORT_VERSION},
            )

        user_id = target_user_id or snapshot.user_id
        self._validate_identity(user_id, snapshot.context_type)

        session = ConversationSession(
            session_id=self._id_factory(),
            user_id=user_id,
            context_type=snapshot.context_type,
            title=snapshot.title,
            current_state=snapshot.current_state,
            state_history=[t.model_copy(deep=True) for t in snapshot.state_history],
            context_data=copy.deepcopy(snapshot.context_data),
            progress=snapshot.progress,
            confidence_score=snapshot.confidence_score,
            paused_from_state=snapshot.paused_from_state,
            metadata=copy.deepcopy(snapshot.metadata),
            created_at=snapshot.created_at,
        )
        for message in snapshot.messages:
            session.append_message(message.model_copy(deep=True))

        # Snapshot totals also cover usage recorded outside messages.
        session.total_tokens = snapshot.total_tokens
        session.total_cost = snapshot.total_cost
        session.metadata["import_info"] = {
            "original_session_id": snapshot.session_id,
            "original_user_id": snapshot.user_id,
            "export_version": snapshot.export_version,
            "export_timestamp": snapshot.export_timestamp,
            "imported_at": utcnow().isoformat(),
        }
        session.lifecycle_state = snapshot.lifecycle_state
        session.last_updated_at = snapshot.last_updated

        await self._insert(session)
        logger.info(f"Imported session {snapshot.session_id} as {session.session_id}")
        return session

    # ========================================================================
    # Internals
    # ========================================================================

    async def _insert(self, session: ConversationSession) -> None:
        record = SessionRecordConverter.to_record(session)
        try:
            database_id = await self.gateway.insert(record)
        except PersistenceError as e:
            logger.error(f"Failed to store session {session.session_id}: {e}")
            raise

        session.assign_database_id(database_id)
        session.version = INITIAL_RECORD_VERSION
        session.mark_saved()
        self.cache.put(session)

    async def _enforce_session_limit(self, user_id: str) -> None:
        """
        Abandon the user's oldest active session when at the limit.

        Count and abandon are separate gateway calls, so two concurrent
        creates for one user can briefly exceed the limit by one. If the
        oldest session is finished or rewritten elsewhere in between, the
        create goes ahead.
        """
        active_count = await self.gateway.count_active_for_user(user_id)
        if active_count < self.max_active_sessions_per_user:
            return

        oldest = await self.gateway.get_oldest_active_for_user(user_id)
        if oldest is None:
            return

        logger.info(
            f"User {user_id} has {active_count} active sessions, "
            f"abandoning oldest {oldest.session_id}"
        )
        self.cache.invalidate(oldest.session_id)
        try:
            await self.abandon_session(oldest.session_id, LIMIT_EXCEEDED_REASON)
        except (InvalidTransitionError, ConcurrentModificationError, SessionNotFoundError) as e:
            logger.warning(
                f"Could not abandon {oldest.session_id} for user {user_id}, "
                f"continuing with create: {e}"
            )

    @staticmethod
    def _validate_identity(user_id: Any, context_type: Any) -> None:
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValidationError("user_id must be a non-empty string")
        if not isinstance(context_type, str) or not context_type.strip():
            raise ValidationError("context_type must be a non-empty string")
