"""Respondent-side autosave and submission client."""

from draftsync.client.api import (
    AlreadySubmitted,
    ClientError,
    DraftSyncClient,
    SaveRejected,
    TransientSaveError,
)
from draftsync.client.scheduler import AutosavePolicy, AutosaveScheduler, SaveStatus
from draftsync.client.session import FormSession, SubmissionError
from draftsync.client.session_store import SessionStore

__all__ = [
    "AlreadySubmitted",
    "ClientError",
    "DraftSyncClient",
    "SaveRejected",
    "TransientSaveError",
    "AutosavePolicy",
    "AutosaveScheduler",
    "SaveStatus",
    "FormSession",
    "SubmissionError",
    "SessionStore",
]
