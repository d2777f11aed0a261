"""
API request/response schemas.

These Pydantic models define the API contract for HTTP endpoints,
separate from domain models to maintain clean architecture.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from src.domain.session.models import (
    ConversationSession,
    SessionMessage,
    StateTransition,
)
from src.shared.constants import DEFAULT_CONTEXT_TYPE, DEFAULT_WORKFLOW_STATE


# ============================================================================
# Health Check Schemas
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Health status (healthy/degraded)")
    version: str = Field(..., description="Application version")
    timestamp: str = Field(..., description="Current timestamp")
    storage_backend: str = Field(..., description="Configured storage backend")
    storage_ok: bool = Field(default=True, description="Storage connectivity")
    cached_sessions: int = Field(default=0, description="Entries in the session cache")


# ============================================================================
# Session Schemas
# ============================================================================


class CreateSessionRequest(BaseModel):
    """Request to start a new drafting session."""

    user_id: str = Field(..., min_length=1, description="Owning user")
    context_type: str = Field(default=DEFAULT_CONTEXT_TYPE, min_length=1)
    initial_data: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = Field(
        default=None,
        description="Explicit session id (generated if not specified)"
    )
    title: Optional[str] = None
    workflow_state: str = DEFAULT_WORKFLOW_STATE
    metadata: Dict[str, Any] = Field(default_factory=dict)


class BatchLoadRequest(BaseModel):
    session_ids: List[str] = Field(..., max_length=500)


class TransitionRequest(BaseModel):
    """Body for pause / abandon / error / complete transitions."""

    reason: str = ""
    data: Dict[str, Any] = Field(
        default_factory=dict,
        description="Completion data (complete only)"
    )


class AppendMessageRequest(BaseModel):
    type: str = Field(..., min_length=1, examples=["user", "assistant", "system"])
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class UpdateContextRequest(BaseModel):
    data: Dict[str, Any]
    merge: bool = Field(default=True, description="Merge keys (true) or replace the context")


class WorkflowStateRequest(BaseModel):
    state: str = Field(..., min_length=1)


class UsageRequest(BaseModel):
    tokens: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0.0)


class ImportRequest(BaseModel):
    snapshot: Dict[str, Any] = Field(..., description="Snapshot produced by export")
    target_user_id: Optional[str] = None


class SessionResponse(BaseModel):
    """Session state returned to API clients."""

    session_id: str
    user_id: str
    context_type: str
    title: str
    lifecycle_state: str
    current_state: str
    progress: float
    confidence_score: float
    context_data: Dict[str, Any]
    metadata: Dict[str, Any]
    state_history: List[StateTransition]
    message_count: int
    total_tokens: int
    total_cost: float
    created_at: datetime
    last_updated_at: datetime
    messages: Optional[List[SessionMessage]] = Field(
        default=None,
        description="Full message history (only if requested)"
    )

    @classmethod
    def from_session(
            cls,
            session: ConversationSession,
            include_messages: bool = False,
    ) -> "SessionResponse":
        return cls(
            session_id=session.session_id,
            user_id=session.user_id,
            context_type=session.context_type,
            title=session.title,
            lifecycle_state=session.lifecycle_state.value,
            current_state=session.current_state,
            progress=session.progress,
            confidence_score=session.confidence_score,
            context_data=session.context_data,
            metadata=session.metadata,
            state_history=session.state_history,
            message_count=len(session.messages),
            total_tokens=session.total_tokens,
            total_cost=session.total_cost,
            created_at=session.created_at,
            last_updated_at=session.last_updated_at,
            messages=session.messages if include_messages else None,
        )


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse] = Field(..., description="Sessions, newest first")
    count: int = Field(..., description="Number of sessions returned")


class DeleteSessionResponse(BaseModel):
    session_id: str
    deleted: bool


# ============================================================================
# Maintenance Schemas
# ============================================================================


class SweepRequest(BaseModel):
    idle_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Idle threshold override (uses configured value if not specified)"
    )


class SweepResponse(BaseModel):
    abandoned: int = Field(..., description="Number of sessions abandoned")


# ============================================================================
# Error Schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response format."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Dict[str, Any] = Field(
        default_factory=dict, description="Detailed error information"
    )
