"""Final-submission promoter.

Converts a scope's in-progress draft into a permanent submitted record. The
draft delete and the submitted insert run inside one database transaction:
if the insert fails the delete is rolled back and the draft stays intact, so
a failed submission never loses the respondent's answers.

Submitted rows are never updated. Each successful promotion inserts a new
row whose respondent id is fresh for collaborative scopes, so concurrent
submitters of one shared draft never collide on write. An optional
client-generated idempotency key guards against a retried or double-clicked
submit producing a second submitted row.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping
from datetime import datetime
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from draftsync.logic import repository_responses as repo
from draftsync.logic.answers import filter_answers
from draftsync.logic.errors import (
    AlreadySubmitted,
    NothingToSave,
    StoreUnavailable,
    SubmissionFailed,
)
from draftsync.logic.events import RESPONSE_SUBMITTED, publish
from draftsync.logic.scope import (
    MODE_COLLABORATIVE,
    DraftScope,
    describe,
    new_submission_respondent_id,
)
from draftsync.logic.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)


def final_respondent_id(scope: DraftScope) -> str:
    """Respondent id recorded on the submitted row."""
    if scope.mode == MODE_COLLABORATIVE:
        return new_submission_respondent_id()
    return scope.respondent_key


class SubmissionPromoter:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def promote(
        self,
        scope: DraftScope,
        answers: Mapping[str, Any] | None,
        idempotency_key: str | None = None,
    ) -> Dict[str, Any]:
        filtered = filter_answers(answers)
        if not filtered:
            raise NothingToSave("Please answer at least one question before submitting.")
        key = (idempotency_key or "").strip() or None
        submitted_at = format_timestamp(self.clock())

        try:
            with self.engine.begin() as conn:
                if key is not None:
                    prior = repo.find_submission_by_key(conn, key)
                    if prior is not None:
                        raise AlreadySubmitted(prior["id"])
                retired = repo.delete_draft(conn, scope)
                record = repo.insert_submission(
                    conn,
                    scope.questionnaire_id,
                    final_respondent_id(scope),
                    filtered,
                    submitted_at,
                    key,
                )
        except AlreadySubmitted:
            logger.info("submission.replay_rejected scope=%s key=%s", describe(scope), key)
            raise
        except IntegrityError as exc:
            if key is not None and repo.is_unique_violation(exc, repo.IDEMPOTENCY_INDEX):
                logger.info("submission.concurrent_duplicate scope=%s key=%s", describe(scope), key)
                raise AlreadySubmitted(self._existing_id(key)) from exc
            logger.error("submission.integrity_error scope=%s", describe(scope), exc_info=True)
            raise SubmissionFailed("Submission could not be recorded; your answers are kept") from exc
        except OperationalError as exc:
            logger.error("submission.store_unreachable scope=%s", describe(scope), exc_info=True)
            raise StoreUnavailable("Submission service unreachable; retry later") from exc
        except SQLAlchemyError as exc:
            logger.error("submission.store_error scope=%s", describe(scope), exc_info=True)
            raise SubmissionFailed("Submission could not be recorded; your answers are kept") from exc

        logger.info(
            "submission.promoted scope=%s response_id=%s drafts_retired=%d",
            describe(scope),
            record["id"],
            retired,
        )
        publish(
            RESPONSE_SUBMITTED,
            {
                "questionnaire_id": scope.questionnaire_id,
                "response_id": record["id"],
                "respondent_id": record["respondent_id"],
            },
        )
        return record

    def _existing_id(self, key: str) -> str | None:
        try:
            with self.engine.connect() as conn:
                prior = repo.find_submission_by_key(conn, key)
        except SQLAlchemyError:
            logger.warning("submission.replay_lookup_failed key=%s", key, exc_info=True)
            return None
        return prior["id"] if prior else None

    def list_submitted(self, questionnaire_id: str) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                return repo.list_submissions(conn, questionnaire_id)
        except SQLAlchemyError as exc:
            logger.error("submission.list_failed questionnaire_id=%s", questionnaire_id, exc_info=True)
            raise StoreUnavailable("Submissions could not be loaded; retry later") from exc


__all__ = ["SubmissionPromoter", "final_respondent_id"]
