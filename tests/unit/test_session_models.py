"""
Unit tests for ConversationSession and its lifecycle state machine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.domain.session.models import ConversationSession, LifecycleState
from src.domain.session.storage.base import SessionRecord
from src.shared.clock import utcnow
from src.shared.exceptions import (
    InvalidTransitionError,
    TerminalStateError,
    ValidationError,
)


def make_session(**overrides) -> ConversationSession:
    data = {"session_id": "session_test", "user_id": "user-1"}
    data.update(overrides)
    return ConversationSession(**data)


class TestNewSession:
    """Test freshly built sessions."""

    def test_defaults(self):
        """Should start active, with empty history and no unsaved changes."""
        session = make_session()

        assert session.lifecycle_state == LifecycleState.ACTIVE
        assert session.current_state == "initial"
        assert session.context_type == "course_creation"
        assert session.state_history == []
        assert session.messages == []
        assert session.is_persisted is False
        assert session.has_unsaved_changes is False

    def test_database_id_is_set_once(self):
        """Should accept the same id again but refuse a different one."""
        session = make_session()
        session.assign_database_id("7")
        session.assign_database_id("7")

        with pytest.raises(ValidationError):
            session.assign_database_id("8")
        assert session.database_id == "7"

    def test_naive_timestamps_become_utc(self):
        """Should read timezone-less timestamps as UTC, in messages and history too."""
        session = make_session(
            created_at=datetime(2024, 1, 1),
            last_updated_at="2024-01-02T08:30:00",
            messages=[{"type": "user", "content": "hi", "timestamp": "2024-01-01T09:00:00"}],
            state_history=[
                {"from_state": "active", "to_state": "paused", "timestamp": "2024-01-01T10:00:00"}
            ],
        )

        assert session.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert session.last_updated_at.tzinfo == timezone.utc
        assert session.messages[0].timestamp.tzinfo == timezone.utc
        assert session.state_history[0].timestamp.tzinfo == timezone.utc
        assert session.is_expired(3600)

    def test_record_timestamps_become_utc(self):
        record = SessionRecord(
            session_id="s",
            user_id="u",
            created_at="2024-01-01T00:00:00",
            updated_at="2024-01-01T00:00:00",
            completed_at="2024-01-01T00:00:00",
        )

        assert record.created_at.tzinfo == timezone.utc
        assert record.updated_at < utcnow()
        assert record.completed_at.tzinfo == timezone.utc


class TestLifecycleTransitions:
    """Test the legal and illegal lifecycle transitions."""

    def test_pause_records_transition_and_message(self):
        """Pausing should append history, a system message and flag the session dirty."""
        session = make_session()
        session.set_workflow_state("structure_review")

        session.pause("lunch")

        assert session.lifecycle_state == LifecycleState.PAUSED
        assert session.paused_from_state == "structure_review"
        assert len(session.state_history) == 1
        transition = session.state_history[0]
        assert transition.from_state == LifecycleState.ACTIVE
        assert transition.to_state == LifecycleState.PAUSED
        assert transition.reason == "lunch"
        assert session.messages[-1].type == "system"
        assert session.has_unsaved_changes is True

    def test_pause_twice_fails(self):
        session = make_session()
        session.pause()

        with pytest.raises(InvalidTransitionError):
            session.pause()
        assert len(session.state_history) == 1

    def test_resume_restores_workflow_step(self):
        """Resume should return to the step that was current when paused."""
        session = make_session()
        session.set_workflow_state("content_generation")
        session.pause()
        session.set_workflow_state("welcome")

        session.resume()

        assert session.lifecycle_state == LifecycleState.ACTIVE
        assert session.current_state == "content_generation"
        assert session.paused_from_state is None

    def test_resume_requires_paused(self):
        with pytest.raises(InvalidTransitionError):
            make_session().resume()

    def test_complete_from_paused(self):
        """Completion is allowed from paused and fixes progress at 1.0."""
        session = make_session()
        session.pause()

        session.complete({"course_id": "c-42"})

        assert session.lifecycle_state == LifecycleState.COMPLETED
        assert session.progress == 1.0
        assert session.metadata["completion_data"] == {"course_id": "c-42"}
        assert "completed_at" in session.metadata
        assert session.is_terminal

    def test_abandon_stores_reason(self):
        session = make_session()
        session.abandon("user left")

        assert session.lifecycle_state == LifecycleState.ABANDONED
        assert session.metadata["abandon_reason"] == "user left"
        assert session.state_history[-1].reason == "user left"

    def test_mark_error_is_not_terminal(self):
        """The error state is not terminal but allows no lifecycle transitions."""
        session = make_session()
        session.mark_error("gateway timeout")

        assert session.lifecycle_state == LifecycleState.ERROR
        assert not session.is_terminal
        with pytest.raises(InvalidTransitionError):
            session.pause()
        with pytest.raises(InvalidTransitionError):
            session.resume()

    def test_history_length_matches_transitions(self):
        """Every applied transition adds exactly one entry, chained end to end."""
        session = make_session()
        session.pause()
        session.resume()
        session.pause()
        session.abandon()

        assert len(session.state_history) == 4
        for previous, current in zip(session.state_history, session.state_history[1:]):
            assert previous.to_state == current.from_state


class TestTerminalStates:
    """Test that completed and abandoned sessions reject every change."""

    @pytest.mark.parametrize("finish", ["complete", "abandon"])
    def test_mutations_rejected(self, finish):
        session = make_session()
        getattr(session, finish)()
        history_length = len(session.state_history)

        with pytest.raises(TerminalStateError):
            session.add_message("user", "hello?")
        with pytest.raises(TerminalStateError):
            session.update_context({"a": 1})
        with pytest.raises(TerminalStateError):
            session.set_workflow_state("content_review")
        with pytest.raises(TerminalStateError):
            session.pause()
        with pytest.raises(TerminalStateError):
            session.complete()
        with pytest.raises(TerminalStateError):
            session.abandon()

        assert len(session.state_history) == history_length

    def test_terminal_error_is_invalid_transition(self):
        """Callers catching InvalidTransitionError also see terminal violations."""
        assert issubclass(TerminalStateError, InvalidTransitionError)


class TestContentMutations:
    """Test messages, context, progress and usage accounting."""

    def test_message_usage_accumulates(self):
        session = make_session()
        session.add_message("assistant", "outline", {"tokens_used": 120, "cost": 0.25})
        session.add_message("assistant", "draft", {"tokens_used": 80, "cost": 0.5})
        session.add_message("user", "thanks")

        assert session.total_tokens == 200
        assert session.total_cost == pytest.approx(0.75)

    def test_messages_carry_workflow_state(self):
        session = make_session()
        session.set_workflow_state("requirements_gathering")
        message = session.add_message("user", "I teach chemistry")

        assert message.workflow_state == "requirements_gathering"
        assert message.id.startswith("msg_")

    def test_add_usage_rejects_negative(self):
        session = make_session()

        with pytest.raises(ValidationError):
            session.add_usage(tokens=-1)
        with pytest.raises(ValidationError):
            session.add_usage(cost=-0.1)
        assert session.total_tokens == 0

    def test_known_workflow_state_sets_progress(self):
        session = make_session()
        session.set_workflow_state("content_review")
        assert session.progress == pytest.approx(0.75)

        session.set_workflow_state("custom_step")
        assert session.current_state == "custom_step"
        assert session.progress == pytest.approx(0.75)

    def test_progress_and_confidence_are_clamped(self):
        session = make_session()
        session.set_progress(1.5)
        session.set_confidence_score(-0.2)

        assert session.progress == 1.0
        assert session.confidence_score == 0.0

    def test_update_context_merge_and_replace(self):
        session = make_session(context_data={"topic": "biology", "level": "intro"})

        session.update_context({"level": "advanced"})
        assert session.context_data == {"topic": "biology", "level": "advanced"}

        session.update_context({"topic": "physics"}, merge=False)
        assert session.context_data == {"topic": "physics"}
        assert session.get_context("topic") == "physics"
        assert session.get_context("missing", "fallback") == "fallback"

    def test_recent_and_typed_messages(self):
        session = make_session()
        for i in range(5):
            session.add_message("user" if i % 2 == 0 else "assistant", f"m{i}")

        assert [m.content for m in session.recent_messages(2)] == ["m3", "m4"]
        assert session.recent_messages(0) == []
        assert len(session.messages_by_type("user")) == 3

    def test_is_expired(self):
        now = utcnow()
        session = make_session(last_updated_at=now - timedelta(hours=2))

        assert session.is_expired(3600, now=now)
        assert not session.is_expired(3 * 3600, now=now)
