"""APIRouter registration for the draft synchronization service."""

from __future__ import annotations

from fastapi import APIRouter

from draftsync.routes.questionnaires import router as questionnaires_router
from draftsync.routes.responses import router as responses_router

api_router = APIRouter()
api_router.include_router(responses_router, tags=["Responses", "Autosave"])
api_router.include_router(questionnaires_router, tags=["Questionnaires"])

__all__ = ["api_router"]
