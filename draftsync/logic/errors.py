"""Error taxonomy for draft synchronization.

Every failure raised by the resolver and promoter is translated into one of
these classes before it leaves the logic layer, so route handlers and the
respondent-side client only ever reason about a stable `code`, an HTTP
`status`, and whether the failure is worth retrying. Store-specific error
internals never cross this boundary.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging


logger = logging.getLogger(__name__)


class DraftSyncError(Exception):
    code = "DRAFT_SYNC_ERROR"
    status = 500
    title = "Internal Server Error"
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.title)
        self.message = message or self.title


class ValidationFailed(DraftSyncError):
    """Permanent rejection of a malformed scope or payload."""

    code = "VALIDATION_FAILED"
    status = 400
    title = "Invalid Request"


class ScopeInvalid(ValidationFailed):
    code = "SCOPE_INVALID"


class NothingToSave(ValidationFailed):
    """Raised when the answer map is empty after filtering."""

    code = "ANSWERS_EMPTY"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Nothing to save")


class DraftRejected(DraftSyncError):
    """The store refused the draft for a reason other than the live-draft index."""

    code = "DRAFT_REJECTED"
    status = 422
    title = "Unprocessable Entity"


class StoreUnavailable(DraftSyncError):
    """The backing store could not be reached; callers may retry."""

    code = "STORE_UNAVAILABLE"
    status = 503
    title = "Service Unavailable"
    retryable = True


class SubmissionFailed(DraftSyncError):
    """Final submission did not complete; the draft is left intact."""

    code = "SUBMISSION_FAILED"
    status = 500
    title = "Submission Failed"


class AlreadySubmitted(DraftSyncError):
    code = "SUBMISSION_ALREADY_COMPLETE"
    status = 409
    title = "Conflict"

    def __init__(self, response_id: str | None = None, message: str | None = None) -> None:
        super().__init__(message or "Submission already completed")
        self.response_id = response_id


def problem_for(exc: DraftSyncError) -> Dict[str, Any]:
    """Return an RFC7807 body for a taxonomy error."""
    problem: Dict[str, Any] = {
        "title": exc.title,
        "status": exc.status,
        "detail": exc.message,
        "message": exc.message,
        "code": exc.code,
        "retryable": exc.retryable,
    }
    response_id: Optional[str] = getattr(exc, "response_id", None)
    if response_id:
        problem["response_id"] = response_id
    logger.info("error_handler.handle code=%s status=%s", exc.code, exc.status)
    return problem


__all__ = [
    "DraftSyncError",
    "ValidationFailed",
    "ScopeInvalid",
    "NothingToSave",
    "DraftRejected",
    "StoreUnavailable",
    "SubmissionFailed",
    "AlreadySubmitted",
    "problem_for",
]
