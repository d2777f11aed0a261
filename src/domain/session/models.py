"""
Domain models for drafting sessions.

ConversationSession is the authoritative in-memory representation of one
course-authoring conversation. Its lifecycle state only changes through the
transition methods below; every transition is appended to state_history.

The workflow step (current_state) is caller-defined and orthogonal to the
lifecycle state machine.
"""

from typing import List, Dict, Any, Optional
from datetime import datetime
from enum import Enum
import logging
import uuid

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from src.shared.clock import as_utc, utcnow
from src.shared.constants import (
    DEFAULT_CONTEXT_TYPE,
    DEFAULT_WORKFLOW_STATE,
    EXPORT_VERSION,
    MAX_MESSAGE_HISTORY,
    MESSAGE_TYPE_SYSTEM,
    STATE_ACTIVE,
    STATE_PAUSED,
    STATE_COMPLETED,
    STATE_ABANDONED,
    STATE_ERROR,
    WORKFLOW_PROGRESS,
)
from src.shared.exceptions import (
    InvalidTransitionError,
    TerminalStateError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    """Lifecycle states governed by the session state machine."""

    ACTIVE = STATE_ACTIVE
    PAUSED = STATE_PAUSED
    COMPLETED = STATE_COMPLETED
    ABANDONED = STATE_ABANDONED
    ERROR = STATE_ERROR


TERMINAL_STATES = frozenset({LifecycleState.COMPLETED, LifecycleState.ABANDONED})


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# ============================================================================
# Value Objects
# ============================================================================


class SessionMessage(BaseModel):
    """A single message in a drafting conversation."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    type: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    workflow_state: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _timestamp_as_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class StateTransition(BaseModel):
    """One applied lifecycle transition."""

    from_state: LifecycleState
    to_state: LifecycleState
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_as_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


# ============================================================================
# Session Entity
# ============================================================================


class ConversationSession(BaseModel):
    """
    One persistent, stateful authoring conversation belonging to one user.

    Mutate it only through its methods: they enforce the lifecycle rules,
    keep last_updated_at current and flag the session as dirty until the
    manager persists it.
    """

    session_id: str
    user_id: str
    context_type: str = DEFAULT_CONTEXT_TYPE
    title: str = ""
    lifecycle_state: LifecycleState = LifecycleState.ACTIVE
    current_state: str = DEFAULT_WORKFLOW_STATE
    state_history: List[StateTransition] = Field(default_factory=list)
    context_data: Dict[str, Any] = Field(default_factory=dict)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    messages: List[SessionMessage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    total_tokens: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)
    created_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)
    paused_from_state: Optional[str] = None
    database_id: Optional[str] = None
    version: int = 0

    _dirty: bool = PrivateAttr(default=False)

    @field_validator("created_at", "last_updated_at")
    @classmethod
    def _timestamps_as_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC so they compare with utcnow()."""
        return as_utc(v)

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self.lifecycle_state == LifecycleState.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.lifecycle_state in TERMINAL_STATES

    @property
    def is_persisted(self) -> bool:
        return self.database_id is not None

    @property
    def has_unsaved_changes(self) -> bool:
        return self._dirty

    def is_expired(self, idle_seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the session has been idle longer than idle_seconds."""
        now = now or utcnow()
        return (now - self.last_updated_at).total_seconds() > idle_seconds

    # ------------------------------------------------------------------
    # Persistence bookkeeping (used by the lifecycle manager)
    # ------------------------------------------------------------------

    def mark_saved(self) -> None:
        self._dirty = False

    def assign_database_id(self, database_id: str) -> None:
        """Record the gateway handle. It can be set once only."""
        if self.database_id is not None and self.database_id != database_id:
            raise ValidationError(
                "database_id is immutable once assigned",
                details={"session_id": self.session_id, "database_id": self.database_id},
            )
        self.database_id = database_id

    def _touch(self) -> None:
        self.last_updated_at = utcnow()
        self._dirty = True

    def _ensure_mutable(self) -> None:
        if self.is_terminal:
            raise TerminalStateError(
                f"Session {self.session_id} is {self.lifecycle_state.value}",
                details={
                    "session_id": self.session_id,
                    "state": self.lifecycle_state.value,
                },
            )

    def _require_state(self, action: str, *allowed: LifecycleState) -> None:
        self._ensure_mutable()
        if self.lifecycle_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot {action} session {self.session_id} from state "
                f"{self.lifecycle_state.value}",
                details={
                    "session_id": self.session_id,
                    "state": self.lifecycle_state.value,
                    "allowed": [state.value for state in allowed],
                },
            )

    def _transition(
            self,
            to_state: LifecycleState,
            reason: str = "",
            data: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.state_history.append(
            StateTransition(
                from_state=self.lifecycle_state,
                to_state=to_state,
                reason=reason,
                data=data or {},
            )
        )
        self.lifecycle_state = to_state
        self._touch()

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
            self,
            message_type: str,
            content: str,
            metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionMessage:
        """Append a new message stamped with the current workflow step."""
        self._ensure_mutable()
        message = SessionMessage(
            type=message_type,
            content=content,
            metadata=metadata or {},
            workflow_state=self.current_state,
        )
        self.append_message(message)
        return message

    def append_message(self, message: SessionMessage) -> None:
        """
        Append an already-built message.

        Token and cost figures found in the message metadata
        (tokens_used, cost) are added to the session accumulators.
        """
        self._ensure_mutable()
        self.messages.append(message)

        tokens = message.metadata.get("tokens_used")
        if isinstance(tokens, (int, float)) and tokens > 0:
            self.total_tokens += int(tokens)
        cost = message.metadata.get("cost")
        if isinstance(cost, (int, float)) and cost > 0:
            self.total_cost += float(cost)

        # TODO: enforce a trimming/archival policy once product decides which end to drop
        if len(self.messages) > MAX_MESSAGE_HISTORY:
            logger.warning(
                f"Session {self.session_id} holds {len(self.messages)} messages "
                f"(configured maximum {MAX_MESSAGE_HISTORY})"
            )

        self._touch()

    def recent_messages(self, count: int = 10) -> List[SessionMessage]:
        if count <= 0:
            return []
        return self.messages[-count:]

    def messages_by_type(self, message_type: str) -> List[SessionMessage]:
        return [msg for msg in self.messages if msg.type == message_type]

    # ------------------------------------------------------------------
    # Workflow, context and scores
    # ------------------------------------------------------------------

    def set_workflow_state(self, state: str) -> None:
        """Move the caller-defined workflow step; known steps also set progress."""
        self._ensure_mutable()
        if state == self.current_state:
            return
        self.current_state = state
        if state in WORKFLOW_PROGRESS:
            self.progress = _clamp_unit(WORKFLOW_PROGRESS[state])
        self._touch()

    def update_context(self, data: Dict[str, Any], merge: bool = True) -> None:
        """Merge keys into context_data (last writer wins) or replace it."""
        self._ensure_mutable()
        if merge:
            self.context_data.update(data)
        else:
            self.context_data = dict(data)
        self._touch()

    def set_context(self, key: str, value: Any) -> None:
        self.update_context({key: value})

    def get_context(self, key: Optional[str] = None, default: Any = None) -> Any:
        if key is None:
            return self.context_data
        return self.context_data.get(key, default)

    def set_progress(self, progress: float) -> None:
        self._ensure_mutable()
        self.progress = _clamp_unit(progress)
        self._touch()

    def set_confidence_score(self, score: float) -> None:
        self._ensure_mutable()
        self.confidence_score = _clamp_unit(score)
        self._touch()

    def add_usage(self, tokens: int = 0, cost: float = 0.0) -> None:
        """Increment the token and cost accumulators."""
        if tokens < 0 or cost < 0:
            raise ValidationError(
                "Usage increments must be non-negative",
                details={"tokens": tokens, "cost": cost},
            )
        self.total_tokens += int(tokens)
        self.total_cost += float(cost)
        self._touch()

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def pause(self, reason: str = "") -> None:
        """active -> paused, remembering the workflow step for resume."""
        self._require_state("pause", LifecycleState.ACTIVE)
        self.paused_from_state = self.current_state
        self.add_message(
            MESSAGE_TYPE_SYSTEM,
            "Conversation paused",
            {"reason": reason, "paused_from_state": self.paused_from_state},
        )
        self._transition(LifecycleState.PAUSED, reason)

    def resume(self) -> None:
        """paused -> active, restoring the workflow step saved by pause."""
        self._require_state("resume", LifecycleState.PAUSED)
        restored = self.paused_from_state or self.current_state
        self.add_message(
            MESSAGE_TYPE_SYSTEM,
            "Conversation resumed",
            {"resumed_to_state": restored},
        )
        self.current_state = restored
        self.paused_from_state = None
        self._transition(LifecycleState.ACTIVE)

    def complete(self, completion_data: Optional[Dict[str, Any]] = None) -> None:
        """active|paused -> completed (terminal)."""
        self._require_state("complete", LifecycleState.ACTIVE, LifecycleState.PAUSED)
        completion_data = completion_data or {}
        self.add_message(MESSAGE_TYPE_SYSTEM, "Conversation completed", completion_data)
        self.progress = 1.0
        self.paused_from_state = None
        self.metadata["completed_at"] = utcnow().isoformat()
        self.metadata["completion_data"] = completion_data
        self._transition(LifecycleState.COMPLETED, data=completion_data)

    def abandon(self, reason: str = "") -> None:
        """active|paused -> abandoned (terminal)."""
        self._require_state("abandon", LifecycleState.ACTIVE, LifecycleState.PAUSED)
        self.add_message(MESSAGE_TYPE_SYSTEM, "Conversation abandoned", {"reason": reason})
        self.paused_from_state = None
        self.metadata["abandoned_at"] = utcnow().isoformat()
        self.metadata["abandon_reason"] = reason
        self._transition(LifecycleState.ABANDONED, reason)

    def mark_error(self, reason: str = "") -> None:
        """active|paused -> error."""
        self._require_state("flag as error", LifecycleState.ACTIVE, LifecycleState.PAUSED)
        self.metadata["error_reason"] = reason
        self._transition(LifecycleState.ERROR, reason)


# ============================================================================
# Export Snapshot
# ============================================================================


class SessionSnapshot(BaseModel):
    """Versioned, portable snapshot produced by export and consumed by import."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    export_version: str = EXPORT_VERSION
    export_timestamp: int
    session_id: str
    user_id: str
    context_type: str = DEFAULT_CONTEXT_TYPE
    title: str = ""
    lifecycle_state: LifecycleState = LifecycleState.ACTIVE
    current_state: str = DEFAULT_WORKFLOW_STATE
    state_history: List[StateTransition] = Field(default_factory=list)
    context_data: Dict[str, Any] = Field(default_factory=dict)
    progress: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)
    paused_from_state: Optional[str] = None
    messages: List[SessionMessage] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    last_updated: datetime
    total_tokens: int = Field(default=0, ge=0)
    total_cost: float = Field(default=0.0, ge=0.0)

    @field_validator("created_at", "last_updated")
    @classmethod
    def _timestamps_as_utc(cls, v: datetime) -> datetime:
        return as_utc(v)
