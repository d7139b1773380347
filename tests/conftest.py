"""Shared fixtures for FlagDash tests."""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
import respx

from flagdash import FlagDashClient, FlagDashConfig
from flagdash.errors import StreamError
from flagdash.transport import StreamMessage, StreamTransport

BASE_URL = "https://flagdash.test"
API = f"{BASE_URL}/api/v1"

FLAGS = {"test-flag": True, "other": "hello"}
CONFIGS = [{"key": "theme", "value": "dark"}, {"key": "limits", "value": {"max": 5}}]

HOLD = "__hold__"
"""Stream script marker: keep the connection open until cancelled."""


async def settle(rounds: int = 100) -> None:
    """Let every runnable task make progress."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """Replaces asyncio.sleep so polling and backoff run on virtual time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self._waiters: List[Tuple[float, asyncio.Future]] = []

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.now + delay, future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.now + seconds
        await settle()
        while True:
            due = [w for w in self._waiters if w[0] <= target]
            if not due:
                break
            deadline = min(d for d, _ in due)
            self.now = deadline
            for waiter in [w for w in self._waiters if w[0] <= deadline]:
                self._waiters.remove(waiter)
                if not waiter[1].done():
                    waiter[1].set_result(None)
            await settle()
        self.now = target
        await settle()


class FakeStreamTransport(StreamTransport):
    """
    Scripted push stream.

    Each connect consumes one session: an exception is raised, a list of
    event names is delivered (then the stream ends, unless it contains HOLD).
    Once the script runs out every connect fails.
    """

    def __init__(self, sessions: Optional[List[Any]] = None, available: bool = True):
        self.available = available
        self.sessions = list(sessions or [])
        self.connects = 0
        self.last_url: Optional[str] = None
        self.last_params: Dict[str, str] = {}

    async def connect(self, url: str, params: Dict[str, str]):
        self.connects += 1
        self.last_url = url
        self.last_params = params

        session = self.sessions.pop(0) if self.sessions else StreamError("connection refused")
        if isinstance(session, Exception):
            raise session

        for name in session:
            if name == HOLD:
                await asyncio.get_running_loop().create_future()
            yield StreamMessage(event=name, data="{}")


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def mock_api():
    """Mock API with default /flags and /configs responses."""
    with respx.mock(assert_all_called=False) as router:
        router.get(f"{API}/flags", name="flags").mock(
            return_value=httpx.Response(200, json={"flags": FLAGS})
        )
        router.get(f"{API}/configs", name="configs").mock(
            return_value=httpx.Response(200, json={"configs": CONFIGS})
        )
        yield router


@pytest.fixture
def config():
    """Create test configuration."""
    return FlagDashConfig(sdk_key="client_pk_123", base_url=BASE_URL)


@pytest.fixture
async def make_client(clock):
    """Build clients on virtual time and destroy them after the test."""
    clients: List[FlagDashClient] = []

    def factory(config: FlagDashConfig, transport: Optional[StreamTransport] = None) -> FlagDashClient:
        client = FlagDashClient(
            config,
            stream_transport=transport or FakeStreamTransport(),
            sleep=clock.sleep,
        )
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.destroy()
