"""FastAPI application package for the Draft Response Synchronization Service.

Respondents of a shared questionnaire autosave a single in-progress draft
and later promote it to a permanent submission. The package exposes an
application factory that wires cross-cutting middleware (request id, CORS,
problem+json errors) and mounts the API routers. Business logic lives in
`draftsync/logic/`, route handlers in `draftsync/routes/`, and the
respondent-side autosave scheduler in `draftsync/client/`.

Serve with: ``uvicorn --factory draftsync.main:create_app``
"""

from __future__ import annotations

from draftsync.main import create_app

__all__ = ["create_app"]
