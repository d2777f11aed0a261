"""
Database Models - table definition and row mapping for draft sessions.

Location: src/infrastructure/database/models.py

Rows map 1:1 onto SessionRecord. Structured fields (history, messages,
context, metadata) are JSONB columns.
"""

from functools import partial
from typing import Any, Dict, Tuple
import json

from psycopg2.extras import Json

from src.domain.session.storage.base import SessionRecord
from src.shared.constants import SESSIONS_TABLE

# Columns written on insert/update, in parameter order.
WRITABLE_COLUMNS: Tuple[str, ...] = (
    "session_id",
    "user_id",
    "context_type",
    "title",
    "lifecycle_state",
    "current_state",
    "state_history",
    "context_data",
    "progress",
    "confidence_score",
    "paused_from_state",
    "messages",
    "metadata",
    "total_tokens",
    "total_cost",
    "created_at",
    "updated_at",
    "completed_at",
)

JSON_COLUMNS = frozenset({"state_history", "context_data", "messages", "metadata"})

SELECT_COLUMNS = ", ".join(("id",) + WRITABLE_COLUMNS + ("version",))

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {SESSIONS_TABLE} (
    id                BIGSERIAL PRIMARY KEY,
    session_id        TEXT NOT NULL UNIQUE,
    user_id           TEXT NOT NULL,
    context_type      TEXT NOT NULL,
    title             TEXT NOT NULL DEFAULT '',
    lifecycle_state   TEXT NOT NULL DEFAULT 'active',
    current_state     TEXT NOT NULL DEFAULT 'initial',
    state_history     JSONB NOT NULL DEFAULT '[]'::jsonb,
    context_data      JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    progress          DOUBLE PRECISION NOT NULL DEFAULT 0,
    confidence_score  DOUBLE PRECISION NOT NULL DEFAULT 0,
    paused_from_state TEXT,
    messages          JSONB NOT NULL DEFAULT '[]'::jsonb,
    metadata          JSONB NOT NULL DEFAULT '{{}}'::jsonb,
    total_tokens      BIGINT NOT NULL DEFAULT 0,
    total_cost        DOUBLE PRECISION NOT NULL DEFAULT 0,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    completed_at      TIMESTAMPTZ,
    version           INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_{SESSIONS_TABLE}_user_state
    ON {SESSIONS_TABLE} (user_id, lifecycle_state);
CREATE INDEX IF NOT EXISTS idx_{SESSIONS_TABLE}_state_updated
    ON {SESSIONS_TABLE} (lifecycle_state, updated_at);
"""

_json_dumps = partial(json.dumps, default=str)


def to_json(value: Any) -> Json:
    """Adapt a Python structure for a JSONB parameter."""
    return Json(value, dumps=_json_dumps)


def record_to_params(record: SessionRecord) -> Tuple[Any, ...]:
    """Parameters for WRITABLE_COLUMNS, JSON columns wrapped for psycopg2."""
    params = []
    for column in WRITABLE_COLUMNS:
        value = getattr(record, column)
        params.append(to_json(value) if column in JSON_COLUMNS else value)
    return tuple(params)


def record_from_row(row: Dict[str, Any]) -> SessionRecord:
    """
    Create a SessionRecord from a database row.

    Args:
        row: Dictionary from database query (RealDictRow)

    Returns:
        SessionRecord instance (NULL JSON columns fall back to empty values)
    """
    data = dict(row)
    for column in ("state_history", "messages"):
        if data.get(column) is None:
            data[column] = []
    for column in ("context_data", "metadata"):
        if data.get(column) is None:
            data[column] = {}
    return SessionRecord.model_validate(data)
