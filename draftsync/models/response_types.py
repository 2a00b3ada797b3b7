"""Pydantic models for response request and response bodies."""

from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr


# Blank values (null, "", []) are accepted on input and filtered before persistence
AnswerValue = Union[StrictStr, StrictInt, StrictFloat, List[StrictStr], None]


class DraftPayload(BaseModel):
    questionnaire_id: str = Field(min_length=1)
    respondent_id: Optional[str] = None
    answers: Dict[str, AnswerValue]


class SaveAck(BaseModel):
    id: Optional[str]
    message: str
    saved_at: str
    outcome: str


class DraftView(BaseModel):
    id: str
    answers: Dict[str, AnswerValue]
    last_saved_at: Optional[str] = None


class ResponseRecord(BaseModel):
    id: str
    questionnaire_id: str
    respondent_id: str
    answers: Dict[str, AnswerValue]
    status: str
    idempotency_key: Optional[str] = None
    created_at: Optional[str] = None
    last_saved_at: Optional[str] = None
    submitted_at: Optional[str] = None


__all__ = [
    "AnswerValue",
    "DraftPayload",
    "SaveAck",
    "DraftView",
    "ResponseRecord",
]
