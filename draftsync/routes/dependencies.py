"""FastAPI dependencies that hand route handlers their collaborators.

The Engine is created once by the application lifespan and stored on
`app.state`; resolvers and promoters are cheap wrappers built per request.
"""

from __future__ import annotations

from fastapi import Request
from sqlalchemy.engine import Engine

from draftsync.logic.draft_resolver import DraftUpsertResolver
from draftsync.logic.submission_promoter import SubmissionPromoter


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_resolver(request: Request) -> DraftUpsertResolver:
    return DraftUpsertResolver(get_engine(request))


def get_promoter(request: Request) -> SubmissionPromoter:
    return SubmissionPromoter(get_engine(request))


__all__ = ["get_engine", "get_resolver", "get_promoter"]
