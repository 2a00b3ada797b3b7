"""Read-only review of submitted responses for a questionnaire."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from draftsync.logic.submission_promoter import SubmissionPromoter
from draftsync.models.response_types import ResponseRecord
from draftsync.routes.dependencies import get_promoter

router = APIRouter()


@router.get(
    "/questionnaires/{questionnaire_id}/responses",
    summary="List submitted responses, newest first",
    operation_id="listSubmittedResponses",
    response_model=list[ResponseRecord],
)
def list_submitted_responses(
    questionnaire_id: str,
    promoter: SubmissionPromoter = Depends(get_promoter),
):
    return [ResponseRecord(**row) for row in promoter.list_submitted(questionnaire_id)]


__all__ = ["router", "list_submitted_responses"]
