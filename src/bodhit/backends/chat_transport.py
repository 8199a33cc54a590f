"""Streaming HTTP transport to the assistant provider."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

import httpx

from bodhit.config import settings
from bodhit.errors import CreditsExhaustedError, RateLimitedError, TransportError
from bodhit.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["HttpChatTransport", "ProviderError", "status_error"]


class ProviderError(TransportError):
    """The provider answered with a non-success status."""

    error = "provider_error"
    title = "Error"
    description = "Failed to get response"


def status_error(response: httpx.Response) -> TransportError:
    """Map a non-success response to the matching transport error."""
    status_code = response.status_code
    if status_code == 429:
        return RateLimitedError(status_code=status_code)
    if status_code == 402:
        return CreditsExhaustedError(status_code=status_code)

    detail: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        detail = str(body["error"])
    return ProviderError(
        f"Chat endpoint returned HTTP {status_code}",
        status_code=status_code,
        description=detail,
    )


class HttpChatTransport:
    """POST the chat body and yield raw response chunks as they arrive.

    There is no retry: any failure surfaces as :class:`TransportError`.
    """

    def __init__(
        self,
        url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
    ):
        self.url = url or settings.chat_url
        self.api_key = api_key if api_key is not None else settings.chat_api_key
        self._client = client
        self._timeout = timeout or httpx.Timeout(
            settings.chat_read_timeout_s, connect=settings.chat_connect_timeout_s
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @asynccontextmanager
    async def _client_scope(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def stream(self, body: Mapping[str, Any]) -> AsyncIterator[bytes]:
        try:
            async with self._client_scope() as client:
                async with client.stream("POST", self.url, json=dict(body), headers=self._headers()) as response:
                    if not response.is_success:
                        await response.aread()
                        error = status_error(response)
                        logger.warning(
                            "chat_request_rejected",
                            status_code=response.status_code,
                            error=error.error,
                        )
                        raise error
                    async for chunk in response.aiter_bytes():
                        yield chunk
        except httpx.HTTPError as exc:
            logger.error("chat_transport_failed", url=self.url, error=str(exc))
            raise TransportError(str(exc)) from exc
