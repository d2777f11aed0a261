"""
Session analytics - read-only engagement and completion estimates.

All functions are pure reads of a loaded session. The one-second duration
floor keeps every division defined.
"""

from typing import Optional

from pydantic import BaseModel, Field

from src.domain.session.models import ConversationSession
from src.shared.constants import (
    COMPLETION_ENGAGEMENT_WEIGHT,
    COMPLETION_PROGRESS_WEIGHT,
    COMPLETION_TRANSITIONS_SATURATION,
    COMPLETION_TRANSITIONS_WEIGHT,
    ENGAGEMENT_FREQUENCY_WEIGHT,
    ENGAGEMENT_PROGRESS_WEIGHT,
    MESSAGE_TYPE_ASSISTANT,
    MESSAGE_TYPE_USER,
)

SECONDS_PER_HOUR = 3600.0


class SessionAnalytics(BaseModel):
    """Statistics and scores derived from one session."""

    session_id: str
    duration_seconds: float
    total_messages: int
    user_messages: int
    assistant_messages: int
    system_messages: int
    average_response_time: float
    progress: float
    current_state: str
    lifecycle_state: str
    state_transitions: int
    total_tokens: int
    total_cost: float
    engagement_score: float = Field(..., ge=0.0, le=1.0)
    completion_likelihood: float = Field(..., ge=0.0, le=1.0)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def session_duration_seconds(session: ConversationSession) -> float:
    """Time between creation and last update, floored at one second."""
    elapsed = (session.last_updated_at - session.created_at).total_seconds()
    return max(1.0, elapsed)


def engagement_score(session: ConversationSession) -> float:
    """Weighted mix of user messages per hour and progress per hour, in [0, 1]."""
    user_messages = len(session.messages_by_type(MESSAGE_TYPE_USER))
    hours = session_duration_seconds(session) / SECONDS_PER_HOUR

    message_frequency = user_messages / hours
    progress_rate = session.progress / max(1.0, hours)

    score = (
        message_frequency * ENGAGEMENT_FREQUENCY_WEIGHT
        + progress_rate * ENGAGEMENT_PROGRESS_WEIGHT
    )
    return round(_clamp(score), 2)


def completion_likelihood(
        session: ConversationSession,
        engagement: Optional[float] = None,
) -> float:
    """Weighted mix of progress, engagement and transition count, in [0, 1]."""
    if engagement is None:
        engagement = engagement_score(session)
    transitions = min(1.0, len(session.state_history) / COMPLETION_TRANSITIONS_SATURATION)

    likelihood = (
        _clamp(session.progress) * COMPLETION_PROGRESS_WEIGHT
        + engagement * COMPLETION_ENGAGEMENT_WEIGHT
        + transitions * COMPLETION_TRANSITIONS_WEIGHT
    )
    return round(_clamp(likelihood), 2)


def session_statistics(session: ConversationSession) -> SessionAnalytics:
    user = len(session.messages_by_type(MESSAGE_TYPE_USER))
    assistant = len(session.messages_by_type(MESSAGE_TYPE_ASSISTANT))
    total = len(session.messages)
    duration = (session.last_updated_at - session.created_at).total_seconds()
    engagement = engagement_score(session)

    return SessionAnalytics(
        session_id=session.session_id,
        duration_seconds=duration,
        total_messages=total,
        user_messages=user,
        assistant_messages=assistant,
        system_messages=total - user - assistant,
        average_response_time=duration / max(1, assistant),
        progress=session.progress,
        current_state=session.current_state,
        lifecycle_state=session.lifecycle_state.value,
        state_transitions=len(session.state_history),
        total_tokens=session.total_tokens,
        total_cost=session.total_cost,
        engagement_score=engagement,
        completion_likelihood=completion_likelihood(session, engagement),
    )
