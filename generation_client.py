"""HTTP client for the AirMems proxy endpoints.

One attempt per call and no retries: failures are raised to the caller so the
user can simply try again.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from errors import MalformedUpstreamResponse, NetworkFailure, UpstreamError
from schemas import (
    Explanation,
    ExplainMemeRequest,
    GenerateLessonRequest,
    Lesson,
    MediaItem,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000"

_M = TypeVar("_M", bound=BaseModel)


class GenerationClient:
    """Requests explanations and lessons for feed items from the proxy."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or os.getenv("AIRMEMS_API_URL") or DEFAULT_API_URL).rstrip("/")
        # No timeout unless one is asked for.
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkFailure(f"Could not reach {self.base_url}{path}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error:
            error = payload.get("error") if isinstance(payload, dict) else None
            details = payload.get("details") if isinstance(payload, dict) else None
            raise UpstreamError(
                error or f"Request failed with status {response.status_code}",
                status_code=response.status_code,
                details=details,
            )
        if payload is None:
            raise MalformedUpstreamResponse(f"{path} returned a non-JSON body")
        return payload

    @staticmethod
    def _validate(payload: Any, model: Type[_M], path: str) -> _M:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Malformed reply from %s: %s", path, exc)
            raise MalformedUpstreamResponse(f"{path} returned an incomplete record") from exc

    async def health(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/health")

    async def generate_lesson(self, item: MediaItem, level: str) -> Lesson:
        body = GenerateLessonRequest(
            meme_id=item.id, meme_title=item.title, meme_url=item.url, level=level
        )
        payload = await self._request("POST", "/api/generate-lesson", body.to_wire())
        return self._validate(payload, Lesson, "/api/generate-lesson")

    async def explain(self, item: MediaItem, language: str) -> Explanation:
        body = ExplainMemeRequest(
            meme_id=item.id, meme_title=item.title, meme_url=item.url, language=language
        )
        payload = await self._request("POST", "/api/explain-meme", body.to_wire())
        return self._validate(payload, Explanation, "/api/explain-meme")


__all__ = ["GenerationClient", "DEFAULT_API_URL"]
