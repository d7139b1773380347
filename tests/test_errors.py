"""Tests for error classification and the request gateway."""

import asyncio

import httpx
import pytest
import respx

from flagdash.config import FlagDashConfig
from flagdash.errors import (
    AuthenticationError,
    ErrorCategory,
    FlagDashError,
    InternalError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    classify_error,
    error_for_status,
)
from flagdash.transport import RequestGateway
from tests.conftest import API, BASE_URL, settle


class TestErrorForStatus:
    """Tests for status code mapping."""

    @pytest.mark.parametrize(
        "status,error_type",
        [
            (400, ValidationError),
            (401, AuthenticationError),
            (403, AuthenticationError),
            (404, NotFoundError),
            (429, RateLimitError),
            (500, InternalError),
            (503, InternalError),
        ],
    )
    def test_maps_status(self, status, error_type):
        """Each status should map to its error type."""
        error = error_for_status(status, "Reason")

        assert isinstance(error, error_type)
        assert error.message == f"FlagDash API error: {status} Reason"

    def test_unknown_status(self):
        """Unmapped statuses should give a plain FlagDashError."""
        error = error_for_status(418)

        assert type(error) is FlagDashError
        assert error.status_code == 418
        assert error.message == "FlagDash API error: 418"


class TestClassifyError:
    """Tests for classify_error."""

    def test_passes_through_flagdash_errors(self):
        """Already classified errors should be returned unchanged."""
        error = NotFoundError()
        assert classify_error(error) is error

    def test_httpx_transport_errors_are_network(self):
        """Timeouts and connection errors should be network errors."""
        assert isinstance(classify_error(httpx.ConnectError("refused")), NetworkError)
        assert isinstance(classify_error(httpx.ReadTimeout("slow")), NetworkError)

    def test_message_indicators(self):
        """Plain exceptions mentioning the network should be network errors."""
        error = classify_error(RuntimeError("Connection reset by peer"))

        assert isinstance(error, NetworkError)
        assert error.retryable

    def test_status_code_hint(self):
        """A status code hint should pick the matching type."""
        assert isinstance(classify_error(RuntimeError("nope"), status_code=401), AuthenticationError)

    def test_unknown(self):
        """Anything else should be an unknown FlagDashError."""
        error = classify_error(RuntimeError("weird"))

        assert error.category is ErrorCategory.UNKNOWN
        assert error.message == "weird"


class TestRequestGateway:
    """Tests for RequestGateway."""

    @pytest.fixture
    def gateway(self):
        return RequestGateway(FlagDashConfig(sdk_key="client_pk_123", base_url=BASE_URL))

    @respx.mock
    async def test_get_with_auth_headers(self, gateway):
        """Requests should be GETs carrying the bearer token."""
        route = respx.get(f"{API}/flags").mock(
            return_value=httpx.Response(200, json={"flags": {}})
        )

        assert await gateway.request("/flags") == {"flags": {}}

        request = route.calls.last.request
        assert request.method == "GET"
        assert request.headers["Authorization"] == "Bearer client_pk_123"
        assert request.headers["Content-Type"] == "application/json"
        await gateway.aclose()

    @respx.mock
    async def test_status_error(self, gateway):
        """Non-2xx responses should raise the mapped error."""
        respx.get(f"{API}/flags").mock(return_value=httpx.Response(401))

        with pytest.raises(AuthenticationError) as exc_info:
            await gateway.request("/flags")

        assert exc_info.value.message == "FlagDash API error: 401 Unauthorized"
        await gateway.aclose()

    @respx.mock
    async def test_rate_limit_retry_after(self, gateway):
        """429 should carry Retry-After."""
        respx.get(f"{API}/flags").mock(
            return_value=httpx.Response(429, headers={"Retry-After": "30"})
        )

        with pytest.raises(RateLimitError) as exc_info:
            await gateway.request("/flags")

        assert exc_info.value.retry_after == 30
        await gateway.aclose()

    @respx.mock
    async def test_timeout_is_network_error(self, gateway):
        """A timeout should surface as a NetworkError."""
        respx.get(f"{API}/flags").mock(side_effect=httpx.ConnectTimeout("timed out"))

        with pytest.raises(NetworkError):
            await gateway.request("/flags")
        await gateway.aclose()

    @respx.mock
    async def test_invalid_json(self, gateway):
        """A non-JSON body should raise a FlagDashError."""
        respx.get(f"{API}/flags").mock(return_value=httpx.Response(200, text="<html>"))

        with pytest.raises(FlagDashError, match="Invalid JSON"):
            await gateway.request("/flags")
        await gateway.aclose()

    async def test_aclose_waits_for_in_flight_request(self, gateway, monkeypatch):
        """Closing should let a pending request finish before the client closes."""
        released = asyncio.Event()

        async def slow_get(url, headers=None):
            await released.wait()
            return httpx.Response(200, json={"flags": {"a": True}})

        monkeypatch.setattr(gateway.http_client, "get", slow_get)
        request = asyncio.create_task(gateway.request("/flags"))
        await settle()
        assert gateway.in_flight == 1

        closing = asyncio.create_task(gateway.aclose())
        await settle()
        assert not closing.done()
        assert not gateway.http_client.is_closed

        released.set()

        assert await request == {"flags": {"a": True}}
        await closing
        assert gateway.http_client.is_closed

    async def test_aclose_without_requests(self, gateway):
        """An idle gateway should close at once."""
        await gateway.aclose()

        assert gateway.http_client.is_closed

    async def test_shared_client_not_closed(self):
        """A caller-supplied httpx client should stay open."""
        http_client = httpx.AsyncClient()
        gateway = RequestGateway(FlagDashConfig(sdk_key="k"), http_client)

        await gateway.aclose()

        assert not http_client.is_closed
        await http_client.aclose()
