"""
Live-update channel.

Keeps the client's cache current with exactly one of: nothing, periodic
polling, or a server-sent event stream that reconnects with exponential
backoff and falls back to polling when it keeps failing.

States:
- IDLE: no background updates
- POLLING: fixed-interval refresh
- STREAMING: push stream connected (or connecting)
- RECONNECTING: stream dropped, waiting out the backoff delay
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from flagdash.config import SSE_FALLBACK_POLLING_INTERVAL_MS, SSE_MAX_RETRIES
from flagdash.errors import StreamError, classify_error
from flagdash.transport import StreamTransport

logger = logging.getLogger("flagdash.realtime")

Sleep = Callable[[float], Awaitable[None]]


class ChannelState(str, Enum):
    """Live-update channel states."""

    IDLE = "idle"
    POLLING = "polling"
    STREAMING = "streaming"
    RECONNECTING = "reconnecting"


class StreamEventCategory(str, Enum):
    """What a push-stream event means for the client."""

    CONNECTED = "connected"
    FLAG_CHANGED = "flag_changed"
    CONFIG_CHANGED = "config_changed"
    AI_CONFIG_CHANGED = "ai_config_changed"


FLAG_EVENTS = frozenset(
    {
        "flag.created",
        "flag.updated",
        "flag.toggled",
        "flag.deleted",
        "flag.rollout_updated",
        "flag.rules_updated",
        "flag.variations_updated",
    }
)

CONFIG_EVENTS = frozenset(
    {
        "config.created",
        "config.updated",
        "config.deleted",
        "config.toggled",
        "config.value_updated",
    }
)

AI_CONFIG_EVENTS = frozenset(
    {
        "ai_config.created",
        "ai_config.updated",
        "ai_config.deleted",
    }
)


def classify_stream_event(name: str) -> Optional[StreamEventCategory]:
    """Map a push-stream event name to its category, or None to ignore it."""
    if name == "connected":
        return StreamEventCategory.CONNECTED
    if name in FLAG_EVENTS:
        return StreamEventCategory.FLAG_CHANGED
    if name in CONFIG_EVENTS:
        return StreamEventCategory.CONFIG_CHANGED
    if name in AI_CONFIG_EVENTS:
        return StreamEventCategory.AI_CONFIG_CHANGED
    return None


def reconnect_delay(retry_count: int) -> float:
    """
    Backoff before reconnect attempt ``retry_count`` (1-indexed).

    Returns:
        Delay in seconds: 1, 2, 4, 8, 16 for attempts 1-5
    """
    return float(2 ** (retry_count - 1))


class LiveUpdateChannel:
    """
    Background update loop for a FlagDash client.

    The channel never touches the cache itself. Polling ticks call
    ``on_poll`` and stream events are handed to ``on_stream_event``.
    Every state change goes through ``_transition_to``.
    """

    def __init__(
        self,
        *,
        stream_url: str,
        stream_params: Dict[str, str],
        transport: Optional[StreamTransport],
        refresh_interval_ms: int,
        on_poll: Callable[[], Awaitable[None]],
        on_stream_event: Callable[[StreamEventCategory], None],
        sleep: Sleep = asyncio.sleep,
        on_state_change: Optional[Callable[[ChannelState, ChannelState], None]] = None,
    ):
        self._stream_url = stream_url
        self._stream_params = stream_params
        self._transport = transport
        self._poll_interval_ms = refresh_interval_ms
        self._on_poll = on_poll
        self._on_stream_event = on_stream_event
        self._sleep = sleep
        self._on_state_change = on_state_change

        self._state = ChannelState.IDLE
        self._retry_count = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def polling_interval_ms(self) -> int:
        return self._poll_interval_ms

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, streaming: bool) -> None:
        """
        Leave IDLE: stream if requested, else poll if an interval is set.

        Must be called from a running event loop.
        """
        if streaming:
            self.enable_streaming()
        elif self._poll_interval_ms > 0:
            self._start_polling()

    def enable_streaming(self) -> None:
        """Switch to the push stream, cancelling any polling."""
        if self._closed:
            return

        if self._transport is None or not self._transport.available:
            logger.info("Push stream unavailable, using polling instead")
            self._fallback_to_polling()
            return

        self._cancel_polling()
        if self._stream_task is None or self._stream_task.done():
            self._transition_to(ChannelState.STREAMING)
            self._stream_task = asyncio.create_task(self._run_stream())

    def disable_streaming(self) -> None:
        """Close the stream; poll if an interval is configured, else go IDLE."""
        if self._closed:
            return

        self._cancel_stream()
        self._retry_count = 0

        if self._poll_interval_ms > 0:
            self._start_polling()
        else:
            self._transition_to(ChannelState.IDLE)

    async def close(self) -> None:
        """Cancel every background task. The channel cannot be restarted."""
        self._closed = True
        current = asyncio.current_task()

        tasks = [t for t in (self._poll_task, self._stream_task) if t is not None]
        self._poll_task = None
        self._stream_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            if task is current:
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._retry_count = 0
        self._transition_to(ChannelState.IDLE)

    # -- polling --------------------------------------------------------

    def _start_polling(self) -> None:
        if self._closed:
            return
        if self._poll_task is not None and not self._poll_task.done():
            return

        self._transition_to(ChannelState.POLLING)
        self._poll_task = asyncio.create_task(self._poll_loop())

    def _cancel_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self) -> None:
        """Refresh every ``polling_interval_ms`` until cancelled."""
        interval = self._poll_interval_ms / 1000
        while not self._closed:
            await self._sleep(interval)
            if self._closed:
                break
            try:
                await self._on_poll()
            except Exception as e:
                logger.warning(f"Polling error: {e}")

    def _fallback_to_polling(self) -> None:
        if self._poll_interval_ms <= 0:
            self._poll_interval_ms = SSE_FALLBACK_POLLING_INTERVAL_MS
        self._start_polling()

    # -- streaming ------------------------------------------------------

    def _cancel_stream(self) -> None:
        if self._stream_task is not None:
            self._stream_task.cancel()
            self._stream_task = None

    async def _run_stream(self) -> None:
        """Connect, dispatch events, and reconnect with backoff on failure."""
        while not self._closed:
            self._transition_to(ChannelState.STREAMING)
            try:
                async for message in self._transport.connect(
                    self._stream_url, self._stream_params
                ):
                    category = classify_stream_event(message.event)
                    if category is None:
                        continue
                    if category is StreamEventCategory.CONNECTED:
                        self._retry_count = 0
                    self._on_stream_event(category)
                raise StreamError("Stream closed by server")
            except Exception as e:
                error = classify_error(e)

            self._retry_count += 1

            if self._retry_count > SSE_MAX_RETRIES:
                logger.warning(
                    f"Stream failed {SSE_MAX_RETRIES} reconnects ({error.message}), "
                    f"falling back to polling"
                )
                self._stream_task = None
                self._fallback_to_polling()
                return

            delay = reconnect_delay(self._retry_count)
            logger.warning(
                f"Stream error: {error.message}. Reconnecting in {delay:.0f}s "
                f"(attempt {self._retry_count}/{SSE_MAX_RETRIES})"
            )
            self._transition_to(ChannelState.RECONNECTING)
            await self._sleep(delay)

    def _transition_to(self, new_state: ChannelState) -> None:
        """Transition to a new state."""
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state

        logger.debug(f"Live updates: {old_state.value} -> {new_state.value}")
        if self._on_state_change is not None:
            try:
                self._on_state_change(old_state, new_state)
            except Exception as e:
                logger.warning(f"Error in state change callback: {e}")
