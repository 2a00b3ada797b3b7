"""Response data access helpers.

Encapsulates every query against the `responses` table so the resolver and
promoter stay free of inline SQL. Functions take a caller-owned SQLAlchemy
`Connection`; transaction boundaries belong to the caller.

Live drafts are protected by the partial unique index
`uq_responses_live_draft` over (questionnaire_id, respondent_id) filtered to
status = 'in-progress'. An insert rejected by that index surfaces as
`DraftConflict`, which is distinguishable from every other store error.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
import json
import logging
import uuid

from sqlalchemy import text as sql_text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from draftsync.logic.scope import DraftScope
from draftsync.logic.timestamps import normalize_timestamp

logger = logging.getLogger(__name__)

STATUS_IN_PROGRESS = "in-progress"
STATUS_SUBMITTED = "submitted"

LIVE_DRAFT_INDEX = "uq_responses_live_draft"
IDEMPOTENCY_INDEX = "uq_responses_idempotency_key"

# SQLite reports the offending columns rather than the index name
_SQLITE_UNIQUE_SIGNATURES = {
    LIVE_DRAFT_INDEX: "responses.questionnaire_id, responses.respondent_id",
    IDEMPOTENCY_INDEX: "responses.idempotency_key",
}

_COLUMNS = (
    "id, questionnaire_id, respondent_id, answers, status, idempotency_key, "
    "created_at, last_saved_at, submitted_at"
)


class DraftConflict(Exception):
    """A concurrent writer created the live draft for this scope first."""


def _is_postgres(conn: Connection) -> bool:
    return (getattr(conn.dialect, "name", "") or "").lower() == "postgresql"


def _answers_param(conn: Connection) -> str:
    return "CAST(:answers AS JSONB)" if _is_postgres(conn) else ":answers"


def _load_answers(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, (str, bytes, bytearray)):
        return json.loads(raw)
    return dict(raw)


def _row_to_dict(row: Any) -> Dict[str, Any]:
    m = row._mapping
    return {
        "id": str(m["id"]),
        "questionnaire_id": str(m["questionnaire_id"]),
        "respondent_id": str(m["respondent_id"]),
        "answers": _load_answers(m["answers"]),
        "status": str(m["status"]),
        "idempotency_key": m["idempotency_key"],
        "created_at": normalize_timestamp(m["created_at"]),
        "last_saved_at": normalize_timestamp(m["last_saved_at"]),
        "submitted_at": normalize_timestamp(m["submitted_at"]),
    }


def is_unique_violation(exc: IntegrityError, index_name: str) -> bool:
    """Return True when `exc` was raised by the named unique index.

    PostgreSQL reports SQLSTATE 23505 with the index as constraint name;
    SQLite reports "UNIQUE constraint failed" followed by the column list.
    """
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        if pgcode != "23505":
            return False
        diag = getattr(orig, "diag", None)
        constraint = getattr(diag, "constraint_name", None)
        return constraint is None or constraint == index_name
    message = str(orig if orig is not None else exc)
    if "UNIQUE constraint failed" not in message:
        return False
    signature = _SQLITE_UNIQUE_SIGNATURES.get(index_name)
    return signature is None or signature in message


def update_draft(conn: Connection, scope: DraftScope, answers: Dict[str, Any], saved_at: str) -> int:
    """Overwrite the live draft's answers; return the affected row count."""
    result = conn.execute(
        sql_text(
            f"""
            UPDATE responses
               SET answers = {_answers_param(conn)},
                   last_saved_at = :saved_at
             WHERE questionnaire_id = :qid
               AND respondent_id = :rid
               AND status = :status
            """
        ),
        {
            "answers": json.dumps(answers),
            "saved_at": saved_at,
            "qid": scope.questionnaire_id,
            "rid": scope.respondent_key,
            "status": STATUS_IN_PROGRESS,
        },
    )
    return int(result.rowcount or 0)


def insert_draft(conn: Connection, scope: DraftScope, answers: Dict[str, Any], saved_at: str) -> str:
    """Create the live draft for `scope`; return its id.

    Raises DraftConflict when another writer's draft already occupies the
    scope. Any other integrity failure propagates unchanged.
    """
    response_id = str(uuid.uuid4())
    try:
        conn.execute(
            sql_text(
                f"""
                INSERT INTO responses (id, questionnaire_id, respondent_id, answers, status, created_at, last_saved_at)
                VALUES (:id, :qid, :rid, {_answers_param(conn)}, :status, :saved_at, :saved_at)
                """
            ),
            {
                "id": response_id,
                "qid": scope.questionnaire_id,
                "rid": scope.respondent_key,
                "answers": json.dumps(answers),
                "status": STATUS_IN_PROGRESS,
                "saved_at": saved_at,
            },
        )
    except IntegrityError as exc:
        if is_unique_violation(exc, LIVE_DRAFT_INDEX):
            raise DraftConflict(scope.questionnaire_id) from exc
        raise
    return response_id


def fetch_draft(conn: Connection, scope: DraftScope) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        sql_text(
            f"""
            SELECT {_COLUMNS}
              FROM responses
             WHERE questionnaire_id = :qid
               AND respondent_id = :rid
               AND status = :status
            """
        ),
        {
            "qid": scope.questionnaire_id,
            "rid": scope.respondent_key,
            "status": STATUS_IN_PROGRESS,
        },
    ).fetchone()
    return _row_to_dict(row) if row is not None else None


def delete_draft(conn: Connection, scope: DraftScope) -> int:
    result = conn.execute(
        sql_text(
            """
            DELETE FROM responses
             WHERE questionnaire_id = :qid
               AND respondent_id = :rid
               AND status = :status
            """
        ),
        {
            "qid": scope.questionnaire_id,
            "rid": scope.respondent_key,
            "status": STATUS_IN_PROGRESS,
        },
    )
    return int(result.rowcount or 0)


def insert_submission(
    conn: Connection,
    questionnaire_id: str,
    respondent_id: str,
    answers: Dict[str, Any],
    submitted_at: str,
    idempotency_key: str | None = None,
) -> Dict[str, Any]:
    """Insert a terminal submitted row and return it."""
    response_id = str(uuid.uuid4())
    conn.execute(
        sql_text(
            f"""
            INSERT INTO responses (id, questionnaire_id, respondent_id, answers, status, idempotency_key, created_at, submitted_at)
            VALUES (:id, :qid, :rid, {_answers_param(conn)}, :status, :idem, :submitted_at, :submitted_at)
            """
        ),
        {
            "id": response_id,
            "qid": questionnaire_id,
            "rid": respondent_id,
            "answers": json.dumps(answers),
            "status": STATUS_SUBMITTED,
            "idem": idempotency_key,
            "submitted_at": submitted_at,
        },
    )
    return {
        "id": response_id,
        "questionnaire_id": questionnaire_id,
        "respondent_id": respondent_id,
        "answers": dict(answers),
        "status": STATUS_SUBMITTED,
        "idempotency_key": idempotency_key,
        "created_at": submitted_at,
        "last_saved_at": None,
        "submitted_at": submitted_at,
    }


def find_submission_by_key(conn: Connection, idempotency_key: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        sql_text(f"SELECT {_COLUMNS} FROM responses WHERE idempotency_key = :idem"),
        {"idem": idempotency_key},
    ).fetchone()
    return _row_to_dict(row) if row is not None else None


def list_submissions(conn: Connection, questionnaire_id: str) -> List[Dict[str, Any]]:
    rows = conn.execute(
        sql_text(
            f"""
            SELECT {_COLUMNS}
              FROM responses
             WHERE questionnaire_id = :qid
               AND status = :status
             ORDER BY submitted_at DESC
            """
        ),
        {"qid": questionnaire_id, "status": STATUS_SUBMITTED},
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


def count_live_drafts(conn: Connection, scope: DraftScope) -> int:
    row = conn.execute(
        sql_text(
            """
            SELECT COUNT(*) FROM responses
             WHERE questionnaire_id = :qid
               AND respondent_id = :rid
               AND status = :status
            """
        ),
        {
            "qid": scope.questionnaire_id,
            "rid": scope.respondent_key,
            "status": STATUS_IN_PROGRESS,
        },
    ).fetchone()
    return int(row[0]) if row else 0


__all__ = [
    "STATUS_IN_PROGRESS",
    "STATUS_SUBMITTED",
    "LIVE_DRAFT_INDEX",
    "IDEMPOTENCY_INDEX",
    "DraftConflict",
    "is_unique_violation",
    "update_draft",
    "insert_draft",
    "fetch_draft",
    "delete_draft",
    "insert_submission",
    "find_submission_by_key",
    "list_submissions",
    "count_live_drafts",
]
