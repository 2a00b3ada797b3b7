"""Draft autosave and final submission endpoints.

GET fetches the live draft for a scope, PATCH autosaves or manually saves it,
POST promotes it to a submitted record. The scope is chosen from caller
context: a respondent_id selects the caller's own session draft, its absence
selects the questionnaire's shared collaborative draft.
"""

from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse

from draftsync.logic.draft_resolver import DraftUpsertResolver, SaveOutcome
from draftsync.logic.scope import resolve_scope
from draftsync.logic.submission_promoter import SubmissionPromoter
from draftsync.models.response_types import DraftPayload, DraftView, ResponseRecord, SaveAck
from draftsync.routes.dependencies import get_promoter, get_resolver

router = APIRouter()
logger = logging.getLogger(__name__)

_PROBLEM_RESPONSES = {
    400: {"content": {"application/problem+json": {}}},
    503: {"content": {"application/problem+json": {}}},
}


@router.get(
    "/responses",
    summary="Fetch the in-progress draft for a scope",
    operation_id="getDraft",
    responses=_PROBLEM_RESPONSES,
)
def get_draft(
    questionnaire_id: str = Query(..., min_length=1),
    respondent_id: Optional[str] = Query(None),
    resolver: DraftUpsertResolver = Depends(get_resolver),
):
    scope = resolve_scope(questionnaire_id, respondent_id)
    draft = resolver.load(scope)
    if draft is None:
        return JSONResponse({}, status_code=200)
    view = DraftView(id=draft["id"], answers=draft["answers"], last_saved_at=draft["last_saved_at"])
    return JSONResponse(view.model_dump(), status_code=200)


@router.patch(
    "/responses",
    summary="Autosave or manually save the in-progress draft",
    operation_id="saveDraft",
    responses=_PROBLEM_RESPONSES,
)
def save_draft(
    payload: DraftPayload,
    resolver: DraftUpsertResolver = Depends(get_resolver),
):
    scope = resolve_scope(payload.questionnaire_id, payload.respondent_id)
    result = resolver.save(scope, payload.answers)
    ack = SaveAck(
        id=result.response_id,
        message="Progress saved",
        saved_at=result.saved_at,
        outcome=result.outcome.value,
    )
    status_code = 201 if result.outcome is SaveOutcome.INSERTED else 200
    return JSONResponse(ack.model_dump(), status_code=status_code)


@router.post(
    "/responses",
    summary="Submit final answers and retire the draft",
    operation_id="submitResponse",
    responses={**_PROBLEM_RESPONSES, 409: {"content": {"application/problem+json": {}}}},
)
def submit_response(
    payload: DraftPayload,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    promoter: SubmissionPromoter = Depends(get_promoter),
):
    scope = resolve_scope(payload.questionnaire_id, payload.respondent_id)
    record = promoter.promote(scope, payload.answers, idempotency_key=idempotency_key)
    body = ResponseRecord(**record).model_dump()
    return JSONResponse(body, status_code=201)


__all__ = ["router", "get_draft", "save_draft", "submit_response"]
