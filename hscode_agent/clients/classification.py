"""Client wrapper for the external HS code classification service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

import httpx

from hscode_agent.core.config import ClassificationSettings
from hscode_agent.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)


class ClassificationServiceError(RuntimeError):
    """Raised when the classification service cannot be reached or rejects a call."""


class ClassificationService(Protocol):
    """Collaborator contract consumed by the analysis workflow."""

    async def start_session(
        self, *, session_id: str, query: str, options: dict[str, Any]
    ) -> dict[str, Any]:  # pragma: no cover - protocol
        ...

    async def submit_answer(
        self, *, session_id: str, question_id: str, answer: str
    ) -> dict[str, Any]:  # pragma: no cover - protocol
        ...

    async def poll_session(
        self, *, session_id: str
    ) -> dict[str, Any]:  # pragma: no cover - protocol
        ...

    async def cancel_session(
        self, *, session_id: str
    ) -> None:  # pragma: no cover - protocol
        ...


class ClassificationClient:
    """Talk to the classification API over HTTP with bounded retries."""

    def __init__(
        self,
        settings: ClassificationSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._http = http_client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout_seconds,
        )
        self._retry = RetryConfig(
            attempts=settings.retry_attempts,
            backoff_seconds=settings.retry_backoff_seconds,
        )

    async def start_session(
        self, *, session_id: str, query: str, options: dict[str, Any]
    ) -> dict[str, Any]:
        """Open a classification session for a product description."""
        payload = {
            "sessionId": session_id,
            "productDescription": query,
            "timestamp": _timestamp(),
            **{key: value for key, value in options.items() if value is not None},
        }
        return await self._request("POST", "/hscode/analyze", json=payload)

    async def submit_answer(
        self, *, session_id: str, question_id: str, answer: str
    ) -> dict[str, Any]:
        payload = {
            "questionId": question_id,
            "answer": answer,
            "timestamp": _timestamp(),
        }
        return await self._request(
            "POST", f"/hscode/analyze/{session_id}/answer", json=payload
        )

    async def poll_session(self, *, session_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/hscode/analyze/{session_id}/status")

    async def cancel_session(self, *, session_id: str) -> None:
        await self._request("DELETE", f"/hscode/analyze/{session_id}")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await request_with_retry(
                self._http.request,
                method,
                path,
                retry_config=self._retry,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            logger.warning("Classification call %s %s failed: %s", method, path, exc)
            raise ClassificationServiceError(
                f"Classification service call {method} {path} failed: {exc}"
            ) from exc

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise ClassificationServiceError(
                f"Classification service returned non-JSON body for {path}"
            ) from exc
        # Some deployments wrap payloads in {"data": ...}.
        if isinstance(body, dict) and set(body) == {"data"}:
            body = body["data"]
        if not isinstance(body, dict):
            raise ClassificationServiceError(
                f"Classification service returned unexpected payload for {path}"
            )
        return body


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


__all__ = [
    "ClassificationClient",
    "ClassificationService",
    "ClassificationServiceError",
]
