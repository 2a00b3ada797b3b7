"""Draft scopes: which shared draft row a request targets.

Two addressing modes exist. In session mode each browser session owns its
own draft, keyed by a client-generated respondent id. In collaborative mode
every contributor to a questionnaire shares one draft, keyed by a synthetic
respondent id derived from the questionnaire id. Both are expressed as a
`DraftScope` so the resolver and promoter are written once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union
import uuid

from draftsync.logic.errors import ScopeInvalid


COLLABORATIVE_PREFIX = "collaborative_"
SUBMITTED_PREFIX = "submitted_"
_RESERVED_PREFIXES = (COLLABORATIVE_PREFIX, SUBMITTED_PREFIX)

MODE_SESSION = "session"
MODE_COLLABORATIVE = "collaborative"


def collaborative_respondent_id(questionnaire_id: str) -> str:
    return f"{COLLABORATIVE_PREFIX}{questionnaire_id}"


def new_submission_respondent_id() -> str:
    return f"{SUBMITTED_PREFIX}{uuid.uuid4()}"


@dataclass(frozen=True)
class SessionScope:
    questionnaire_id: str
    respondent_id: str

    mode = MODE_SESSION

    @property
    def respondent_key(self) -> str:
        return self.respondent_id


@dataclass(frozen=True)
class CollaborativeScope:
    questionnaire_id: str

    mode = MODE_COLLABORATIVE

    @property
    def respondent_key(self) -> str:
        return collaborative_respondent_id(self.questionnaire_id)


DraftScope = Union[SessionScope, CollaborativeScope]


def resolve_scope(questionnaire_id: str | None, respondent_id: str | None = None) -> DraftScope:
    """Select the addressing mode from caller context.

    A respondent id selects session mode; without one the caller joins the
    questionnaire's collaborative draft.
    """
    qid = (questionnaire_id or "").strip()
    if not qid:
        raise ScopeInvalid("questionnaire_id is required")
    if respondent_id is None:
        return CollaborativeScope(questionnaire_id=qid)
    rid = respondent_id.strip()
    if not rid:
        raise ScopeInvalid("respondent_id must not be blank")
    if rid.startswith(_RESERVED_PREFIXES):
        raise ScopeInvalid("respondent_id uses a reserved prefix")
    return SessionScope(questionnaire_id=qid, respondent_id=rid)


def describe(scope: DraftScope) -> str:
    """Short log-friendly representation."""
    return f"{scope.mode}:{scope.questionnaire_id}:{scope.respondent_key}"


__all__ = [
    "COLLABORATIVE_PREFIX",
    "SUBMITTED_PREFIX",
    "MODE_SESSION",
    "MODE_COLLABORATIVE",
    "SessionScope",
    "CollaborativeScope",
    "DraftScope",
    "resolve_scope",
    "collaborative_respondent_id",
    "new_submission_respondent_id",
    "describe",
]
