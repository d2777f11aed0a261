"""
Database Repository - PostgreSQL implementation of SessionGateway.

Location: src/infrastructure/database/repository.py

psycopg2 is blocking, so every call runs in a worker thread
(anyio.to_thread) and the event loop serving other sessions never stalls on
the database. Driver errors are wrapped into PersistenceError.

Usage:
    gateway = PostgresSessionGateway(get_db_manager())
    await gateway.initialize_schema()
    record = await gateway.get_by_session_id("session_abc")
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging

import anyio
import psycopg2

from src.domain.session.storage.base import (
    SessionGateway,
    SessionRecord,
    abandon_transition,
)
from src.infrastructure.database.connection import DatabaseConnectionManager
from src.infrastructure.database.models import (
    SCHEMA_SQL,
    SELECT_COLUMNS,
    WRITABLE_COLUMNS,
    record_from_row,
    record_to_params,
    to_json,
)
from src.shared.constants import (
    SESSIONS_TABLE,
    STATE_ABANDONED,
    STATE_ACTIVE,
    STATE_PAUSED,
)
from src.shared.exceptions import (
    ConcurrentModificationError,
    PersistenceError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INSERT_SQL = (
    f"INSERT INTO {SESSIONS_TABLE} ({', '.join(WRITABLE_COLUMNS)}) "
    f"VALUES ({', '.join(['%s'] * len(WRITABLE_COLUMNS))}) RETURNING id"
)
_UPDATE_SET = ", ".join(f"{column} = %s" for column in WRITABLE_COLUMNS)


class PostgresSessionGateway(SessionGateway):
    """
    Session gateway backed by the draft_sessions table.

    Usage:
        gateway = PostgresSessionGateway(db_manager)
        record_id = await gateway.insert(record)
    """

    def __init__(self, db_manager: DatabaseConnectionManager):
        """
        Initialize gateway with database manager.

        Args:
            db_manager: Database connection manager instance (pool initialized)
        """
        self.db_manager = db_manager

    # ========================================================================
    # Execution Helpers
    # ========================================================================

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return await anyio.to_thread.run_sync(func, *args)
        except psycopg2.Error as e:
            logger.error(f"{operation} failed: {e}")
            raise PersistenceError(
                f"Database operation '{operation}' failed: {e}",
                details={"operation": operation},
            ) from e

    def _fetch_one(self, query: str, params: tuple) -> Optional[Dict[str, Any]]:
        with self.db_manager.get_cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

    def _fetch_all(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        with self.db_manager.get_cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def _execute(self, query: str, params: tuple = ()) -> int:
        with self.db_manager.get_cursor() as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    # ========================================================================
    # Schema
    # ========================================================================

    async def initialize_schema(self) -> None:
        """Create the sessions table and its indexes if missing."""
        await self._run("initialize_schema", self._execute, SCHEMA_SQL)
        logger.info(f"Schema for {SESSIONS_TABLE} ready")

    async def health_check(self) -> bool:
        return await anyio.to_thread.run_sync(self.db_manager.test_connection)

    # ========================================================================
    # SessionGateway
    # ========================================================================

    async def insert(self, record: SessionRecord) -> str:
        row = await self._run(
            "insert", self._fetch_one, _INSERT_SQL, record_to_params(record)
        )
        record_id = str(row["id"])
        logger.debug(f"Inserted session {record.session_id} as record {record_id}")
        return record_id

    async def get_by_id(self, record_id: str) -> Optional[SessionRecord]:
        row = await self._run(
            "get_by_id",
            self._fetch_one,
            f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} WHERE id = %s",
            (record_id,),
        )
        return record_from_row(row) if row else None

    async def get_by_session_id(self, session_id: str) -> Optional[SessionRecord]:
        row = await self._run(
            "get_by_session_id",
            self._fetch_one,
            f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} WHERE session_id = %s",
            (session_id,),
        )
        return record_from_row(row) if row else None

    async def get_by_session_ids(self, session_ids: List[str]) -> Dict[str, SessionRecord]:
        if not session_ids:
            return {}
        rows = await self._run(
            "get_by_session_ids",
            self._fetch_all,
            f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} WHERE session_id = ANY(%s)",
            (list(session_ids),),
        )
        records = [record_from_row(row) for row in rows]
        return {record.session_id: record for record in records}

    async def update(
            self,
            record_id: str,
            record: SessionRecord,
            expected_version: Optional[int] = None,
    ) -> int:
        return await self._run(
            "update", self._update_sync, record_id, record, expected_version
        )

    def _update_sync(
            self,
            record_id: str,
            record: SessionRecord,
            expected_version: Optional[int],
    ) -> int:
        query = (
            f"UPDATE {SESSIONS_TABLE} SET {_UPDATE_SET}, version = version + 1 "
            f"WHERE id = %s"
        )
        params = record_to_params(record) + (record_id,)
        if expected_version is not None:
            query += " AND version = %s"
            params += (expected_version,)
        query += " RETURNING version"

        with self.db_manager.get_cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            if row is not None:
                return row["version"]

            cursor.execute(
                f"SELECT version FROM {SESSIONS_TABLE} WHERE id = %s", (record_id,)
            )
            current = cursor.fetchone()

        if current is None:
            raise SessionNotFoundError(record.session_id)
        raise ConcurrentModificationError(
            f"Session {record.session_id} was modified concurrently",
            details={
                "session_id": record.session_id,
                "expected_version": expected_version,
                "stored_version": current["version"],
            },
        )

    async def delete(self, record_id: str) -> bool:
        rowcount = await self._run(
            "delete",
            self._execute,
            f"DELETE FROM {SESSIONS_TABLE} WHERE id = %s",
            (record_id,),
        )
        return rowcount > 0

    async def get_expired(self, older_than: datetime) -> List[SessionRecord]:
        rows = await self._run(
            "get_expired",
            self._fetch_all,
            f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} "
            f"WHERE lifecycle_state IN (%s, %s) AND updated_at < %s",
            (STATE_ACTIVE, STATE_PAUSED, older_than),
        )
        return [record_from_row(row) for row in rows]

    async def batch_abandon(
            self,
            record_ids: List[str],
            timestamp: datetime,
            reason: str = "",
    ) -> int:
        if not record_ids:
            return 0
        metadata_patch = {"abandoned_at": timestamp.isoformat(), "abandon_reason": reason}
        abandoned = await self._run(
            "batch_abandon",
            self._execute,
            f"UPDATE {SESSIONS_TABLE} SET "
            f"lifecycle_state = %s, "
            f"state_history = state_history || %s::jsonb, "
            f"metadata = metadata || %s::jsonb, "
            f"updated_at = %s, "
            f"version = version + 1 "
            f"WHERE id = ANY(%s::bigint[]) AND lifecycle_state = %s",
            (
                STATE_ABANDONED,
                to_json([abandon_transition(reason, timestamp)]),
                to_json(metadata_patch),
                timestamp,
                [str(record_id) for record_id in record_ids],
                STATE_ACTIVE,
            ),
        )
        logger.debug(f"Batch abandoned {abandoned} records")
        return abandoned

    async def count_active_for_user(self, user_id: str) -> int:
        row = await self._run(
            "count_active_for_user",
            self._fetch_one,
            f"SELECT COUNT(*) AS active FROM {SESSIONS_TABLE} "
            f"WHERE user_id = %s AND lifecycle_state = %s",
            (user_id, STATE_ACTIVE),
        )
        return int(row["active"]) if row else 0

    async def get_oldest_active_for_user(self, user_id: str) -> Optional[SessionRecord]:
        row = await self._run(
            "get_oldest_active_for_user",
            self._fetch_one,
            f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} "
            f"WHERE user_id = %s AND lifecycle_state = %s "
            f"ORDER BY created_at ASC LIMIT 1",
            (user_id, STATE_ACTIVE),
        )
        return record_from_row(row) if row else None

    async def list_for_user(
            self,
            user_id: str,
            limit: int = 20,
            offset: int = 0,
            lifecycle_state: Optional[str] = None,
    ) -> List[SessionRecord]:
        query = f"SELECT {SELECT_COLUMNS} FROM {SESSIONS_TABLE} WHERE user_id = %s"
        params: tuple = (user_id,)
        if lifecycle_state is not None:
            query += " AND lifecycle_state = %s"
            params += (lifecycle_state,)
        query += " ORDER BY updated_at DESC LIMIT %s OFFSET %s"
        params += (limit, offset)

        rows = await self._run("list_for_user", self._fetch_all, query, params)
        return [record_from_row(row) for row in rows]
