"""Form session: one respondent's view of one questionnaire.

Holds the live form state and wires it to the autosave scheduler, the API
client and, in session mode, the persisted session identifier. Manual saves
and the final submission run through the scheduler's exclusive slot so they
never race an autosave.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from draftsync.client.api import AlreadySubmitted, ClientError, DraftSyncClient
from draftsync.client.scheduler import AutosavePolicy, AutosaveScheduler
from draftsync.client.session_store import SessionStore
from draftsync.config import AutosaveConfig
from draftsync.logic.answers import filter_answers
from draftsync.logic.errors import NothingToSave

logger = logging.getLogger(__name__)


class SubmissionError(Exception):
    """Final submission failed; the form state and server draft are intact."""

    def __init__(self, message: str, cause: ClientError | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class FormSession:
    def __init__(
        self,
        client: DraftSyncClient,
        questionnaire_id: str,
        *,
        collaborative: bool = True,
        session_store: SessionStore | None = None,
        autosave: AutosaveConfig | None = None,
    ) -> None:
        if not collaborative and session_store is None:
            raise ValueError("session mode requires a session_store")
        self.client = client
        self.questionnaire_id = questionnaire_id
        self.collaborative = collaborative
        self.session_store = session_store
        self.answers: Dict[str, Any] = {}
        self.submitted: Optional[Dict[str, Any]] = None
        self._respondent_id: Optional[str] = None
        # One key per logical submission, reused when a failed submit is retried
        self._idempotency_key = str(uuid.uuid4())
        cfg = autosave or AutosaveConfig()
        self.scheduler = AutosaveScheduler.from_config(self._autosave, cfg)

    @property
    def respondent_id(self) -> Optional[str]:
        if self.collaborative:
            return None
        if self._respondent_id is None:
            self._respondent_id = self.session_store.get_or_create(self.questionnaire_id)  # type: ignore[union-attr]
        return self._respondent_id

    async def _autosave(self, answers: Dict[str, Any]) -> bool:
        ack = await self.client.save_draft(self.questionnaire_id, answers, self.respondent_id)
        # race_lost: a concurrent writer created the row and ours was dropped
        return ack.get("outcome") != "race_lost"

    async def load(self) -> Dict[str, Any]:
        """Seed form state from the server draft, if one exists."""
        draft = await self.client.fetch_draft(self.questionnaire_id, self.respondent_id)
        if draft:
            self.answers = dict(draft.get("answers") or {})
            self.scheduler.acknowledge(self.answers)
            self.scheduler.notify_change(self.answers)
        if self.scheduler.policy is AutosavePolicy.INTERVAL:
            self.scheduler.start()
        return dict(self.answers)

    def set_answer(self, question_id: str, value: Any) -> None:
        self.answers[question_id] = value
        self.scheduler.notify_change(self.answers)

    def update(self, answers: Mapping[str, Any]) -> None:
        self.answers.update(answers)
        self.scheduler.notify_change(self.answers)

    async def save_now(self) -> Dict[str, Any]:
        """Manual save. Raises NothingToSave without any network call."""
        payload = filter_answers(self.answers)
        if not payload:
            raise NothingToSave("Please answer at least one question to save progress.")

        async def _save() -> Dict[str, Any]:
            result = await self.client.save_draft(self.questionnaire_id, payload, self.respondent_id)
            if result.get("outcome") == "race_lost":
                # Not stored: leave the snapshot alone so autosave resends it
                logger.info("manual_save.race_lost questionnaire_id=%s", self.questionnaire_id)
                self.scheduler.notify_change(self.answers)
            else:
                self.scheduler.acknowledge(payload)
            return result

        return await self.scheduler.run_exclusive(_save)

    async def submit(self, idempotency_key: str | None = None) -> Dict[str, Any]:
        """Submit final answers; autosave never fires again once this succeeds.

        `idempotency_key` replaces the per-session key, e.g. when the caller
        persists its own key across process restarts.
        """
        if idempotency_key:
            self._idempotency_key = idempotency_key
        payload = filter_answers(self.answers)
        if not payload:
            raise NothingToSave("Please answer at least one question before submitting.")
        respondent_id = self.respondent_id
        self.scheduler.seal()

        async def _submit() -> Dict[str, Any]:
            return await self.client.submit(
                self.questionnaire_id,
                payload,
                respondent_id,
                idempotency_key=self._idempotency_key,
            )

        try:
            record = await self.scheduler.run_exclusive(_submit)
        except AlreadySubmitted as exc:
            # An earlier attempt with this key reached the server
            logger.info("submission.already_complete response_id=%s", exc.response_id)
            record = {"id": exc.response_id, "answers": payload, "status": "submitted"}
        except ClientError as exc:
            self.scheduler.unseal()
            raise SubmissionError(exc.message, cause=exc) from exc

        self.submitted = record
        await self.scheduler.stop()
        if self.session_store is not None and not self.collaborative:
            self.session_store.clear(self.questionnaire_id)
            self._respondent_id = None
        return record

    async def close(self) -> None:
        await self.scheduler.stop()


__all__ = ["FormSession", "SubmissionError"]
