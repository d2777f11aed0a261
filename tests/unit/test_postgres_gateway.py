"""
Unit tests for PostgresSessionGateway.

The connection manager is replaced by a stub whose cursor is a MagicMock,
so these tests check SQL shape, parameter handling and error mapping
without a database.
"""

from contextlib import contextmanager
from unittest.mock import MagicMock

import psycopg2
import pytest
from psycopg2.extras import Json

from src.domain.session.storage.base import SessionRecord
from src.infrastructure.database.models import (
    WRITABLE_COLUMNS,
    record_from_row,
    record_to_params,
)
from src.infrastructure.database.repository import PostgresSessionGateway
from src.shared.clock import utcnow
from src.shared.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    SessionNotFoundError,
)


class StubConnectionManager:
    """Hands out the same mocked cursor for every operation."""

    def __init__(self):
        self.cursor = MagicMock()

    @contextmanager
    def get_cursor(self):
        yield self.cursor

    def test_connection(self):
        return True


def make_row(**overrides):
    row = SessionRecord(id="1", session_id="session_a", user_id="user-1", version=1).model_dump()
    row["id"] = 1
    row.update(overrides)
    return row


@pytest.fixture
def db():
    return StubConnectionManager()


@pytest.fixture
def pg_gateway(db):
    return PostgresSessionGateway(db)


class TestRowMapping:
    """Test record <-> row conversion helpers."""

    def test_params_follow_column_order(self):
        record = SessionRecord(session_id="s", user_id="u", context_data={"a": 1})

        params = record_to_params(record)

        assert len(params) == len(WRITABLE_COLUMNS)
        context_param = params[WRITABLE_COLUMNS.index("context_data")]
        assert isinstance(context_param, Json)
        assert params[WRITABLE_COLUMNS.index("session_id")] == "s"

    def test_null_json_columns_default(self):
        record = record_from_row(make_row(messages=None, metadata=None))

        assert record.messages == []
        assert record.metadata == {}
        assert record.id == "1"


class TestPostgresSessionGateway:
    """Test gateway operations against a mocked cursor."""

    @pytest.mark.asyncio
    async def test_insert_returns_string_id(self, pg_gateway, db):
        db.cursor.fetchone.return_value = {"id": 42}

        record_id = await pg_gateway.insert(SessionRecord(session_id="s", user_id="u"))

        assert record_id == "42"
        query, params = db.cursor.execute.call_args[0]
        assert query.startswith("INSERT INTO draft_sessions")
        assert "RETURNING id" in query
        assert len(params) == len(WRITABLE_COLUMNS)

    @pytest.mark.asyncio
    async def test_get_by_session_id(self, pg_gateway, db):
        db.cursor.fetchone.return_value = make_row()

        record = await pg_gateway.get_by_session_id("session_a")

        assert record.session_id == "session_a"
        assert record.id == "1"

    @pytest.mark.asyncio
    async def test_get_missing(self, pg_gateway, db):
        db.cursor.fetchone.return_value = None

        assert await pg_gateway.get_by_id("9") is None

    @pytest.mark.asyncio
    async def test_batch_read_is_one_query(self, pg_gateway, db):
        db.cursor.fetchall.return_value = [
            make_row(id=1, session_id="s1"),
            make_row(id=2, session_id="s2"),
        ]

        found = await pg_gateway.get_by_session_ids(["s1", "s2", "s3"])

        assert set(found) == {"s1", "s2"}
        assert db.cursor.execute.call_count == 1
        query, params = db.cursor.execute.call_args[0]
        assert "ANY(%s)" in query
        assert params == (["s1", "s2", "s3"],)

    @pytest.mark.asyncio
    async def test_batch_read_empty(self, pg_gateway, db):
        assert await pg_gateway.get_by_session_ids([]) == {}
        db.cursor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_returns_new_version(self, pg_gateway, db):
        db.cursor.fetchone.return_value = {"version": 4}

        version = await pg_gateway.update(
            "1", SessionRecord(session_id="s", user_id="u"), expected_version=3
        )

        assert version == 4
        query, params = db.cursor.execute.call_args[0]
        assert "AND version = %s" in query
        assert params[-2:] == ("1", 3)

    @pytest.mark.asyncio
    async def test_update_stale_version(self, pg_gateway, db):
        db.cursor.fetchone.side_effect = [None, {"version": 5}]

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await pg_gateway.update(
                "1", SessionRecord(session_id="s", user_id="u"), expected_version=3
            )
        assert exc_info.value.details["stored_version"] == 5

    @pytest.mark.asyncio
    async def test_update_missing_record(self, pg_gateway, db):
        db.cursor.fetchone.side_effect = [None, None]

        with pytest.raises(SessionNotFoundError):
            await pg_gateway.update("1", SessionRecord(session_id="s", user_id="u"))

    @pytest.mark.asyncio
    async def test_driver_errors_become_persistence_errors(self, pg_gateway, db):
        db.cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(PersistenceError) as exc_info:
            await pg_gateway.get_by_session_id("session_a")
        assert exc_info.value.details["operation"] == "get_by_session_id"

    @pytest.mark.asyncio
    async def test_delete(self, pg_gateway, db):
        db.cursor.rowcount = 1
        assert await pg_gateway.delete("1") is True

        db.cursor.rowcount = 0
        assert await pg_gateway.delete("1") is False

    @pytest.mark.asyncio
    async def test_batch_abandon_single_statement(self, pg_gateway, db):
        db.cursor.rowcount = 2

        abandoned = await pg_gateway.batch_abandon(["1", "2"], utcnow(), "idle timeout")

        assert abandoned == 2
        assert db.cursor.execute.call_count == 1
        query, params = db.cursor.execute.call_args[0]
        assert "state_history = state_history ||" in query
        assert "ANY(%s::bigint[])" in query
        assert params[4] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_batch_abandon_nothing(self, pg_gateway, db):
        assert await pg_gateway.batch_abandon([], utcnow()) == 0
        db.cursor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_for_user_filters(self, pg_gateway, db):
        db.cursor.fetchall.return_value = [make_row()]

        records = await pg_gateway.list_for_user("user-1", limit=5, offset=10, lifecycle_state="active")

        assert len(records) == 1
        query, params = db.cursor.execute.call_args[0]
        assert "ORDER BY updated_at DESC" in query
        assert params == ("user-1", "active", 5, 10)

    @pytest.mark.asyncio
    async def test_count_active(self, pg_gateway, db):
        db.cursor.fetchone.return_value = {"active": 3}

        assert await pg_gateway.count_active_for_user("user-1") == 3

    @pytest.mark.asyncio
    async def test_health_check(self, pg_gateway):
        assert await pg_gateway.health_check() is True
