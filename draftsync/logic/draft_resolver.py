"""Draft upsert resolver.

Maps an incoming partial-answer payload to exactly one in-progress row per
scope. The store's native upsert-on-conflict is not used: its conflict target
has not been stable across schema versions, so the resolver performs a
manual upsert as an explicit three-branch state machine:

1. UPDATE the live draft for the scope. One row affected -> UPDATED.
2. Zero rows -> INSERT a new draft. Success -> INSERTED.
3. INSERT rejected by the live-draft unique index -> RACE_LOST. A concurrent
   caller created the draft between steps 1 and 2 and its row now holds the
   data. This is a successful outcome: the losing client re-sends its
   current form state on its next autosave tick.

Each step runs in its own short transaction so the losing INSERT never
holds locks taken by the UPDATE.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional
from datetime import datetime
import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from draftsync.logic import repository_responses as repo
from draftsync.logic.answers import filter_answers
from draftsync.logic.errors import DraftRejected, NothingToSave, StoreUnavailable
from draftsync.logic.events import DRAFT_SAVED, publish
from draftsync.logic.scope import DraftScope, describe
from draftsync.logic.timestamps import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class SaveOutcome(str, Enum):
    UPDATED = "updated"
    INSERTED = "inserted"
    RACE_LOST = "race_lost"


@dataclass(frozen=True)
class SaveResult:
    response_id: Optional[str]
    saved_at: str
    outcome: SaveOutcome

    @property
    def created(self) -> bool:
        return self.outcome is SaveOutcome.INSERTED


class DraftUpsertResolver:
    """Keeps one live draft per scope converging on the latest answers."""

    def __init__(self, engine: Engine, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self.clock = clock

    def save(self, scope: DraftScope, answers: Mapping[str, Any] | None) -> SaveResult:
        filtered = filter_answers(answers)
        if not filtered:
            raise NothingToSave()
        saved_at = format_timestamp(self.clock())
        try:
            result = self._upsert(scope, filtered, saved_at)
        except IntegrityError as exc:
            logger.error("draft.save integrity_error scope=%s", describe(scope), exc_info=True)
            raise DraftRejected("Draft was rejected by the store") from exc
        except SQLAlchemyError as exc:
            logger.error("draft.save store_error scope=%s", describe(scope), exc_info=True)
            raise StoreUnavailable("Draft could not be saved; retry later") from exc
        logger.info(
            "draft.save outcome=%s scope=%s response_id=%s answers=%d",
            result.outcome.value,
            describe(scope),
            result.response_id,
            len(filtered),
        )
        publish(
            DRAFT_SAVED,
            {
                "questionnaire_id": scope.questionnaire_id,
                "respondent_id": scope.respondent_key,
                "response_id": result.response_id,
                "outcome": result.outcome.value,
            },
        )
        return result

    def _upsert(self, scope: DraftScope, answers: Dict[str, Any], saved_at: str) -> SaveResult:
        # Branch 1: conditional update of the existing draft
        with self.engine.begin() as conn:
            updated = repo.update_draft(conn, scope, answers, saved_at)
            if updated:
                existing = repo.fetch_draft(conn, scope)
                return SaveResult(
                    response_id=existing["id"] if existing else None,
                    saved_at=saved_at,
                    outcome=SaveOutcome.UPDATED,
                )

        # Branch 2: no draft yet, create it
        try:
            with self.engine.begin() as conn:
                response_id = repo.insert_draft(conn, scope, answers, saved_at)
            return SaveResult(response_id=response_id, saved_at=saved_at, outcome=SaveOutcome.INSERTED)
        except repo.DraftConflict:
            pass

        # Branch 3: a concurrent writer won the insert race
        logger.info("draft.save race_lost scope=%s", describe(scope))
        return SaveResult(response_id=self._winner_id(scope), saved_at=saved_at, outcome=SaveOutcome.RACE_LOST)

    def _winner_id(self, scope: DraftScope) -> Optional[str]:
        try:
            with self.engine.connect() as conn:
                winner = repo.fetch_draft(conn, scope)
        except SQLAlchemyError:
            logger.warning("draft.save winner_lookup_failed scope=%s", describe(scope), exc_info=True)
            return None
        return winner["id"] if winner else None

    def load(self, scope: DraftScope) -> Optional[Dict[str, Any]]:
        """Return the live draft row for `scope`, or None."""
        try:
            with self.engine.connect() as conn:
                return repo.fetch_draft(conn, scope)
        except SQLAlchemyError as exc:
            logger.error("draft.load store_error scope=%s", describe(scope), exc_info=True)
            raise StoreUnavailable("Draft could not be loaded; retry later") from exc


__all__ = ["SaveOutcome", "SaveResult", "DraftUpsertResolver"]
