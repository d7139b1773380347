"""
HTTP plumbing: the authenticated JSON request gateway and the push-stream
transport used for real-time updates.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from httpx_sse import aconnect_sse

from flagdash.config import FlagDashConfig
from flagdash.errors import FlagDashError, RateLimitError, classify_error, error_for_status

logger = logging.getLogger("flagdash")


class RequestGateway:
    """
    Authenticated, timeout-bounded GET requests against the FlagDash API.

    One attempt per call; any non-2xx status or timeout raises a
    ``FlagDashError``.
    """

    def __init__(self, config: FlagDashConfig, http_client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=config.timeout_ms / 1000)
        self._in_flight = 0
        self._drained: Optional[asyncio.Event] = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    @property
    def in_flight(self) -> int:
        """Number of requests currently awaiting a response."""
        return self._in_flight

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.sdk_key}",
            "Content-Type": "application/json",
        }

    async def request(self, path: str) -> Any:
        """
        GET ``{base_url}/api/v1{path}`` and decode the JSON body.

        Args:
            path: API path, including any query string

        Returns:
            Decoded JSON response

        Raises:
            FlagDashError: On transport failure, timeout or non-2xx status
        """
        url = f"{self._config.api_url}{path}"

        self._in_flight += 1
        try:
            response = await self._http_client.get(url, headers=self.headers)
        except httpx.HTTPError as e:
            raise classify_error(e) from e
        finally:
            self._in_flight -= 1
            if self._in_flight == 0 and self._drained is not None:
                self._drained.set()

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        if not response.is_success:
            raise error_for_status(response.status_code, response.reason_phrase)

        try:
            return response.json()
        except ValueError as e:
            raise FlagDashError(f"Invalid JSON response from {path}: {e}") from e

    async def aclose(self) -> None:
        """
        Close the underlying HTTP client if this gateway created it.

        Requests still in flight finish (or time out) first.
        """
        if not self._owns_client:
            return
        if self._in_flight:
            self._drained = asyncio.Event()
            await self._drained.wait()
        await self._http_client.aclose()


@dataclass
class StreamMessage:
    """A named event received from the push stream."""

    event: str
    data: str = ""


class StreamTransport:
    """
    Source of push-stream messages.

    ``connect`` yields messages until the stream ends; any exception or a
    normal end counts as a disconnect.
    """

    available: bool = True
    """False when the runtime cannot open a push stream at all."""

    def connect(self, url: str, params: Dict[str, str]) -> AsyncIterator[StreamMessage]:
        raise NotImplementedError


class SSEStreamTransport(StreamTransport):
    """Server-sent events over the client's httpx connection pool."""

    def __init__(self, http_client: httpx.AsyncClient, connect_timeout: float = 5.0):
        self._http_client = http_client
        # Idle streams must not hit the read timeout
        self._timeout = httpx.Timeout(connect_timeout, read=None)

    async def connect(self, url: str, params: Dict[str, str]) -> AsyncIterator[StreamMessage]:
        async with aconnect_sse(
            self._http_client,
            "GET",
            url,
            params=params,
            timeout=self._timeout,
        ) as event_source:
            event_source.response.raise_for_status()
            async for sse in event_source.aiter_sse():
                yield StreamMessage(event=sse.event, data=sse.data)
