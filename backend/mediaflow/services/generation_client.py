"""
HTTP client used by node executors to reach the generation endpoints.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mediaflow.config import get_settings
from mediaflow.services.errors import GenerationTimeoutError, RemoteCallError

logger = logging.getLogger(__name__)

# Base URL used when the generation endpoints are served by this same app
IN_PROCESS_BASE_URL = "http://mediaflow/api/v1"


class GenerationClient:
    """Thin wrapper that turns non-OK responses into RemoteCallError."""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        operation: str,
    ) -> dict[str, Any]:
        try:
            response = await self._http.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(operation, f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise RemoteCallError(operation, None, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            body = response.text
            if response.status_code == 504:
                raise GenerationTimeoutError(operation, body, status_code=504)
            raise RemoteCallError(operation, response.status_code, body)

        try:
            data = response.json()
        except ValueError as e:
            raise RemoteCallError(operation, response.status_code, response.text) from e
        if not isinstance(data, dict):
            raise RemoteCallError(operation, response.status_code, response.text)
        return data

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def create_generation_client(app: Any | None = None) -> GenerationClient:
    """
    Build a client for the generation endpoints.

    Uses GENERATION_API_URL when configured; otherwise routes requests
    in-process to ``app`` through an ASGI transport.
    """
    settings = get_settings()
    timeout = httpx.Timeout(settings.generation_http_timeout_seconds)

    if settings.generation_api_url:
        logger.debug("Using remote generation API at %s", settings.generation_api_url)
        http = httpx.AsyncClient(base_url=settings.generation_api_url, timeout=timeout)
    elif app is not None:
        http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url=IN_PROCESS_BASE_URL,
            timeout=timeout,
        )
    else:
        raise ValueError(
            "GENERATION_API_URL is not set and no app was given for in-process calls"
        )
    return GenerationClient(http)
