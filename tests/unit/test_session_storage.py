"""
Unit tests for the record converter and the in-memory gateway.
"""

from datetime import timedelta

import pytest

from src.domain.session.converter import SessionRecordConverter
from src.domain.session.models import ConversationSession, LifecycleState
from src.domain.session.storage.base import SessionRecord
from src.domain.session.storage.memory import InMemorySessionGateway
from src.shared.clock import utcnow
from src.shared.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    SessionNotFoundError,
)


def make_record(session_id: str = "session_a", user_id: str = "user-1", **overrides) -> SessionRecord:
    data = {"session_id": session_id, "user_id": user_id}
    data.update(overrides)
    return SessionRecord(**data)


class TestSessionRecordConverter:
    """Test conversions at the storage boundary."""

    def test_round_trip(self):
        session = ConversationSession(
            session_id="session_a",
            user_id="user-1",
            context_data={"nested": {"x": [1, 2]}},
        )
        session.add_message("user", "hi", {"tokens_used": 5})
        session.pause("brb")
        session.assign_database_id("3")

        restored = SessionRecordConverter.from_record(SessionRecordConverter.to_record(session))

        assert restored.messages == session.messages
        assert restored.state_history == session.state_history
        assert restored.context_data == session.context_data
        assert restored.lifecycle_state == LifecycleState.PAUSED
        assert restored.database_id == "3"
        assert restored.has_unsaved_changes is False

    def test_record_is_detached(self):
        session = ConversationSession(session_id="session_a", user_id="u", context_data={"k": []})
        record = SessionRecordConverter.to_record(session)

        record.context_data["k"].append("leak")

        assert session.context_data == {"k": []}

    def test_completed_at_from_history(self):
        session = ConversationSession(session_id="session_a", user_id="u")
        assert SessionRecordConverter.to_record(session).completed_at is None

        session.complete()
        record = SessionRecordConverter.to_record(session)
        assert record.completed_at == session.state_history[-1].timestamp

    def test_corrupt_record_raises_persistence_error(self):
        record = make_record(lifecycle_state="exploded")

        with pytest.raises(PersistenceError):
            SessionRecordConverter.from_record(record)

    def test_numeric_ids_are_strings(self):
        record = SessionRecord.model_validate({"id": 12, "session_id": "s", "user_id": 99})

        assert record.id == "12"
        assert record.user_id == "99"


class TestInMemorySessionGateway:
    """Test the in-memory gateway contract."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_version(self):
        gateway = InMemorySessionGateway()

        record_id = await gateway.insert(make_record())
        stored = await gateway.get_by_id(record_id)

        assert stored.id == record_id
        assert stored.version == 1

    @pytest.mark.asyncio
    async def test_duplicate_session_id(self):
        gateway = InMemorySessionGateway()
        await gateway.insert(make_record())

        with pytest.raises(PersistenceError):
            await gateway.insert(make_record())

    @pytest.mark.asyncio
    async def test_update_version_check(self):
        gateway = InMemorySessionGateway()
        record_id = await gateway.insert(make_record())

        assert await gateway.update(record_id, make_record(title="v2"), expected_version=1) == 2
        with pytest.raises(ConcurrentModificationError):
            await gateway.update(record_id, make_record(title="v3"), expected_version=1)
        assert await gateway.update(record_id, make_record(title="v3")) == 3

    @pytest.mark.asyncio
    async def test_update_missing(self):
        with pytest.raises(SessionNotFoundError):
            await InMemorySessionGateway().update("404", make_record())

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        gateway = InMemorySessionGateway()
        await gateway.insert(make_record(metadata={"a": 1}))

        loaded = await gateway.get_by_session_id("session_a")
        loaded.metadata["a"] = 2

        assert (await gateway.get_by_session_id("session_a")).metadata == {"a": 1}

    @pytest.mark.asyncio
    async def test_delete(self):
        gateway = InMemorySessionGateway()
        record_id = await gateway.insert(make_record())

        assert await gateway.delete(record_id) is True
        assert await gateway.delete(record_id) is False
        assert await gateway.get_by_session_id("session_a") is None

    @pytest.mark.asyncio
    async def test_expired_and_batch_abandon(self):
        gateway = InMemorySessionGateway()
        old = utcnow() - timedelta(hours=3)
        active_id = await gateway.insert(make_record("session_a", updated_at=old))
        paused_id = await gateway.insert(
            make_record("session_b", updated_at=old, lifecycle_state="paused")
        )
        await gateway.insert(make_record("session_c", updated_at=old, lifecycle_state="completed"))
        await gateway.insert(make_record("session_d"))

        expired = await gateway.get_expired(utcnow() - timedelta(hours=1))
        assert {r.session_id for r in expired} == {"session_a", "session_b"}

        now = utcnow()
        assert await gateway.batch_abandon([active_id, paused_id], now, "idle timeout") == 1

        abandoned = await gateway.get_by_id(active_id)
        assert abandoned.lifecycle_state == "abandoned"
        assert abandoned.state_history[-1]["to_state"] == "abandoned"
        assert abandoned.updated_at == now
        assert abandoned.version == 2
        assert (await gateway.get_by_id(paused_id)).lifecycle_state == "paused"

    @pytest.mark.asyncio
    async def test_user_queries(self):
        gateway = InMemorySessionGateway()
        base = utcnow()
        await gateway.insert(make_record("s1", created_at=base, updated_at=base))
        await gateway.insert(
            make_record("s2", created_at=base + timedelta(seconds=1), updated_at=base + timedelta(seconds=5))
        )
        await gateway.insert(make_record("s3", lifecycle_state="completed", updated_at=base))
        await gateway.insert(make_record("other", user_id="user-2"))

        assert await gateway.count_active_for_user("user-1") == 2
        assert (await gateway.get_oldest_active_for_user("user-1")).session_id == "s1"
        assert await gateway.get_oldest_active_for_user("nobody") is None

        listed = await gateway.list_for_user("user-1")
        assert [r.session_id for r in listed][:1] == ["s2"]
        active = await gateway.list_for_user("user-1", lifecycle_state="active")
        assert {r.session_id for r in active} == {"s1", "s2"}
        assert len(await gateway.list_for_user("user-1", limit=1, offset=1)) == 1

    @pytest.mark.asyncio
    async def test_batch_read(self):
        gateway = InMemorySessionGateway()
        await gateway.insert(make_record("s1"))
        await gateway.insert(make_record("s2"))

        found = await gateway.get_by_session_ids(["s1", "s2", "missing"])

        assert set(found) == {"s1", "s2"}

    @pytest.mark.asyncio
    async def test_clear_all(self):
        gateway = InMemorySessionGateway()
        await gateway.insert(make_record("s1"))

        gateway.clear_all()

        assert await gateway.get_by_session_id("s1") is None
        await gateway.insert(make_record("s1"))
