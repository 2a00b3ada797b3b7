"""Async HTTP client for the draft synchronization API.

Wraps `httpx.AsyncClient` and translates every failure into the small set of
outcomes the autosave scheduler and submit flow care about. Callers never see
store-specific details: only whether a failure is transient, a permanent
rejection, or an already-completed submission.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional
import logging

import httpx

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class ClientError(Exception):
    """Base class for respondent-side API failures."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class TransientSaveError(ClientError):
    """Network failure or retryable server error; try again on the next tick."""


class SaveRejected(ClientError):
    """The server permanently rejected the payload (4xx)."""


class AlreadySubmitted(ClientError):
    def __init__(self, message: str, response_id: str | None = None) -> None:
        super().__init__(message, status=409, code="SUBMISSION_ALREADY_COMPLETE")
        self.response_id = response_id


def _problem(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class DraftSyncClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        if client is None and base_url is None:
            raise ValueError("either base_url or client is required")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url or "", timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "DraftSyncClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, f"{API_PREFIX}{path}", **kwargs)
        except httpx.TransportError as exc:
            raise TransientSaveError(f"{method} {path} failed: {exc}") from exc
        if response.status_code >= 500:
            problem = _problem(response)
            raise TransientSaveError(
                str(problem.get("message") or f"server error {response.status_code}"),
                status=response.status_code,
                code=problem.get("code"),
            )
        return response

    async def fetch_draft(self, questionnaire_id: str, respondent_id: str | None = None) -> Optional[Dict[str, Any]]:
        params = {"questionnaire_id": questionnaire_id}
        if respondent_id is not None:
            params["respondent_id"] = respondent_id
        response = await self._request("GET", "/responses", params=params)
        if response.status_code >= 400:
            problem = _problem(response)
            raise SaveRejected(
                str(problem.get("message") or problem.get("detail") or "draft fetch rejected"),
                status=response.status_code,
                code=problem.get("code"),
            )
        body = response.json()
        return body if isinstance(body, dict) and body.get("answers") is not None else None

    async def save_draft(
        self,
        questionnaire_id: str,
        answers: Mapping[str, Any],
        respondent_id: str | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"questionnaire_id": questionnaire_id, "answers": dict(answers)}
        if respondent_id is not None:
            payload["respondent_id"] = respondent_id
        response = await self._request("PATCH", "/responses", json=payload)
        if response.status_code >= 400:
            problem = _problem(response)
            raise SaveRejected(
                str(problem.get("message") or problem.get("detail") or "save rejected"),
                status=response.status_code,
                code=problem.get("code"),
            )
        return response.json()

    async def submit(
        self,
        questionnaire_id: str,
        answers: Mapping[str, Any],
        respondent_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"questionnaire_id": questionnaire_id, "answers": dict(answers)}
        if respondent_id is not None:
            payload["respondent_id"] = respondent_id
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        response = await self._request("POST", "/responses", json=payload, headers=headers)
        if response.status_code == 409:
            problem = _problem(response)
            raise AlreadySubmitted(
                str(problem.get("message") or "submission already completed"),
                response_id=problem.get("response_id"),
            )
        if response.status_code >= 400:
            problem = _problem(response)
            raise SaveRejected(
                str(problem.get("message") or problem.get("detail") or "submission rejected"),
                status=response.status_code,
                code=problem.get("code"),
            )
        return response.json()


__all__ = [
    "ClientError",
    "TransientSaveError",
    "SaveRejected",
    "AlreadySubmitted",
    "DraftSyncClient",
]
