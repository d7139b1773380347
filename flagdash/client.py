"""
FlagDash client for flag, remote config and AI config evaluation.
"""

import asyncio
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    TypeVar,
    Union,
)

import httpx

from flagdash.cache import MISSING, CacheKind, CacheStats, ValueCache
from flagdash.config import FlagDashConfig
from flagdash.context import EvaluationContext, encode_component, with_context
from flagdash.errors import ConfigurationError, FlagDashError, classify_error
from flagdash.events import ClientEvent, EventBus, Listener
from flagdash.models import AiConfigFile, AiConfigFileType, ConfigInfo, FlagDetail, FlagInfo
from flagdash.realtime import ChannelState, LiveUpdateChannel, Sleep, StreamEventCategory
from flagdash.transport import RequestGateway, SSEStreamTransport, StreamTransport

logger = logging.getLogger("flagdash")

T = TypeVar("T")


class FlagDashClient:
    """
    FlagDash feature flag and remote config client.

    Example:
        ```python
        client = FlagDashClient(FlagDashConfig(sdk_key="client_pk_..."))
        await client.init()

        if await client.flag("new-checkout", default=False):
            ...

        plan = await client.flag("plan-banner", {"user": {"id": "alice", "plan": "pro"}})
        pricing = await client.config("pricing", default={})

        await client.destroy()
        ```

    No evaluation method raises on network failures. They fall back to cached
    or default values and emit an ``error`` event instead.
    """

    def __init__(
        self,
        config: FlagDashConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        stream_transport: Optional[StreamTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the FlagDash client.

        Args:
            config: Client configuration
            http_client: Optional shared httpx client
            stream_transport: Push-stream source (default: server-sent events)
            sleep: Coroutine used for polling and backoff delays

        Raises:
            ConfigurationError: If ``config.sdk_key`` is empty
        """
        if not config.sdk_key:
            raise ConfigurationError("FlagDash: sdk_key is required")

        self._config = config
        self._gateway = RequestGateway(config, http_client)
        self._cache = ValueCache(config.cache_ttl_ms, config.persist_path)
        self._events = EventBus()
        self._realtime = config.realtime
        self._ready = False
        self._destroyed = False
        self._init_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        if stream_transport is None:
            stream_transport = SSEStreamTransport(
                self._gateway.http_client,
                connect_timeout=config.timeout_ms / 1000,
            )

        self._channel = LiveUpdateChannel(
            stream_url=config.stream_url,
            stream_params={"api_key": config.sdk_key},
            transport=stream_transport,
            refresh_interval_ms=config.refresh_interval_ms,
            on_poll=self.refresh,
            on_stream_event=self._handle_stream_event,
            sleep=sleep,
        )

    # -- lifecycle ------------------------------------------------------

    def start(self) -> "asyncio.Task[None]":
        """
        Schedule the initial load of flags and configs.

        Safe to call more than once; every call returns the same task.
        """
        if self._init_task is None:
            if self._cache.load():
                logger.info("Restored persisted flags and configs")
            self._init_task = asyncio.create_task(self._initial_load())
        return self._init_task

    async def init(self) -> None:
        """Fetch flags and configs, emit ``ready`` and start live updates."""
        await self.start()

    async def _initial_load(self) -> None:
        await self._refresh_all()
        if self._destroyed:
            return

        self._ready = True
        self._events.emit(ClientEvent.READY)
        self._channel.start(self._realtime)

    async def _ensure_loaded(self) -> None:
        if self._ready or self._destroyed:
            return
        await self.start()

    async def destroy(self) -> None:
        """
        Stop polling and streaming, drop all listeners and close the client.

        Requests already in flight, including the initial load, are left to
        finish or time out before the HTTP client is closed.
        """
        if self._destroyed:
            return
        self._destroyed = True

        await self._channel.close()

        pending = list(self._background)
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._events.clear()
        self._cache.close()
        await self._gateway.aclose()

    async def __aenter__(self) -> "FlagDashClient":
        """Async context manager entry."""
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.destroy()

    # -- flags ----------------------------------------------------------

    async def flag(
        self,
        key: str,
        context: Optional[EvaluationContext] = None,
        default: Any = None,
    ) -> Any:
        """
        Evaluate a feature flag.

        Without a context the cached value is returned. With a context the
        server evaluates targeting rules and rollout; the context travels as
        query parameters on a GET request.

        Args:
            key: Flag key
            context: Optional evaluation context, e.g. ``{"user": {"id": "alice"}}``
            default: Returned when the flag is unknown or cannot be evaluated

        Returns:
            The flag value, or ``default``
        """
        if context is not None:
            path = with_context(f"/flags/{encode_component(key)}", context)
            try:
                data = await self._gateway.request(path)
                value = data.get("value")
            except Exception as e:
                self._report(e, f"evaluating flag {key!r}")
                return self._cache.get(CacheKind.FLAGS, key, default)
            return default if value is None else value

        value = self._cache.get(CacheKind.FLAGS, key)
        if value is not MISSING:
            return value

        await self._ensure_loaded()
        flags = await self._current(CacheKind.FLAGS)
        return flags.get(key, default)

    async def all_flags(self, context: Optional[EvaluationContext] = None) -> Dict[str, Any]:
        """
        Evaluate all flags at once.

        Args:
            context: Optional evaluation context; when given the server
                evaluates every flag for it

        Returns:
            Dictionary of flag keys to values
        """
        if context is not None:
            try:
                data = await self._gateway.request(with_context("/flags", context))
                return dict(data.get("flags") or {})
            except Exception as e:
                self._report(e, "evaluating flags")
                return self._cache.snapshot(CacheKind.FLAGS) or {}

        await self._ensure_loaded()
        return await self._current(CacheKind.FLAGS)

    async def flag_detail(
        self,
        key: str,
        context: Optional[EvaluationContext] = None,
        default: Any = None,
    ) -> FlagDetail:
        """
        Evaluate a flag with its reason and variation key.

        Always calls the server; details are never cached.
        """
        path = with_context(f"/flags/{encode_component(key)}", context)
        try:
            data = await self._gateway.request(path)
            return FlagDetail.from_response(data, key, default)
        except Exception as e:
            self._report(e, f"evaluating flag detail {key!r}")
            return FlagDetail(key=key, value=default)

    async def get_flag(self, key: str) -> Optional[FlagInfo]:
        """
        Get a flag's full definition (server keys only).

        Cached per key when a positive ``cache_ttl_ms`` is set.

        Returns:
            The flag definition, or None if it cannot be fetched
        """
        if self._cache.expiring:
            cached = self._cache.get(CacheKind.FLAG_INFO, key)
            if cached is not MISSING:
                return cached

        try:
            data = await self._gateway.request(f"/server/flags/{encode_component(key)}")
            flag = FlagInfo.from_dict(data["flag"])
        except Exception as e:
            self._report(e, f"fetching flag definition {key!r}")
            return None

        if self._cache.expiring:
            self._cache.set(CacheKind.FLAG_INFO, key, flag)
        return flag

    async def list_flags(self) -> List[FlagInfo]:
        """List every flag definition (server keys only); [] on failure."""
        try:
            data = await self._gateway.request("/server/flags")
            items = data.get("flags") or []
        except Exception as e:
            self._report(e, "listing flags")
            return []
        return _parse_items(items, FlagInfo.from_dict, "flag")

    # -- remote config --------------------------------------------------

    async def config(self, key: str, default: Any = None) -> Any:
        """
        Get a remote config value.

        Served from cache when possible; otherwise the single key is fetched.

        Returns:
            The config value, or ``default``
        """
        value = self._cache.get(CacheKind.CONFIGS, key)
        if value is not MISSING:
            return value

        await self._ensure_loaded()

        value = self._cache.get(CacheKind.CONFIGS, key)
        if value is not MISSING:
            return value

        try:
            data = await self._gateway.request(f"/configs/{encode_component(key)}")
            value = data.get("value")
        except Exception as e:
            self._report(e, f"fetching config {key!r}")
            return default

        if value is None:
            return default
        self._cache.set(CacheKind.CONFIGS, key, value)
        return value

    async def all_configs(self) -> Dict[str, Any]:
        """Get all remote config values."""
        await self._ensure_loaded()
        return await self._current(CacheKind.CONFIGS)

    async def get_config(self, key: str) -> Optional[ConfigInfo]:
        """Get a config with its full metadata (server keys only); None on failure."""
        try:
            data = await self._gateway.request(f"/server/configs/{encode_component(key)}")
            return ConfigInfo.from_dict(data)
        except Exception as e:
            self._report(e, f"fetching config metadata {key!r}")
            return None

    async def list_configs(self) -> List[ConfigInfo]:
        """List every config with its metadata (server keys only); [] on failure."""
        try:
            items = await self._gateway.request("/server/configs")
            if not isinstance(items, list):
                raise FlagDashError("Unexpected response from /server/configs")
        except Exception as e:
            self._report(e, "listing configs")
            return []
        return _parse_items(items, ConfigInfo.from_dict, "config")

    # -- AI configs -----------------------------------------------------

    async def ai_config(
        self, file_name: str, default: Optional[str] = None
    ) -> Optional[AiConfigFile]:
        """
        Get an AI config file by name.

        Args:
            file_name: File name, e.g. ``"agent.md"``
            default: Content to return as a skill file if the fetch fails

        Returns:
            The file, a synthesized file holding ``default``, or None
        """
        if self._cache.expiring:
            cached = self._cache.get(CacheKind.AI_CONFIGS, file_name)
            if cached is not MISSING:
                return cached

        try:
            data = await self._gateway.request(f"/ai-configs/{encode_component(file_name)}")
            ai_config = AiConfigFile.from_dict(data["ai_config"])
        except Exception as e:
            self._report(e, f"fetching AI config {file_name!r}")
            if default is not None:
                return AiConfigFile(
                    file_name=file_name,
                    file_type=AiConfigFileType.SKILL,
                    content=default,
                    folder=None,
                )
            return None

        if self._cache.expiring:
            self._cache.set(CacheKind.AI_CONFIGS, file_name, ai_config)
        return ai_config

    async def list_ai_configs(
        self,
        file_type: Optional[Union[AiConfigFileType, str]] = None,
        folder: Optional[str] = None,
    ) -> List[AiConfigFile]:
        """
        List AI config files, optionally filtered by type and/or folder.

        Items the server sends with an unknown file type or without a name
        are logged and skipped. An unknown ``file_type`` filter matches nothing.

        Returns:
            Matching files, or an empty list if the fetch fails
        """
        try:
            data = await self._gateway.request("/ai-configs")
            items = data.get("ai_configs") or []
        except Exception as e:
            self._report(e, "listing AI configs")
            return []

        files = _parse_items(items, AiConfigFile.from_dict, "AI config")
        if file_type is not None:
            wanted = file_type.value if isinstance(file_type, AiConfigFileType) else file_type
            files = [f for f in files if f.file_type.value == wanted]
        if folder is not None:
            files = [f for f in files if f.folder == folder]
        return files

    # -- events ---------------------------------------------------------

    def on(self, event: Union[ClientEvent, str], listener: Listener) -> Callable[[], None]:
        """
        Register an event listener.

        Args:
            event: Event name (``ready``, ``error``, ``flags_updated``, ...)
            listener: Callback receiving the event payload

        Returns:
            A function that removes the listener
        """
        return self._events.on(event, listener)

    def off(self, event: Union[ClientEvent, str], listener: Listener) -> None:
        """Remove an event listener."""
        self._events.off(event, listener)

    # -- real-time control ----------------------------------------------

    @property
    def is_ready(self) -> bool:
        """Whether the initial load has completed."""
        return self._ready

    @property
    def is_realtime_enabled(self) -> bool:
        """Whether real-time (SSE) mode is currently enabled."""
        return self._realtime

    @property
    def channel_state(self) -> ChannelState:
        """Current live-update mode."""
        return self._channel.state

    def enable_realtime(self) -> None:
        """
        Switch to real-time updates over server-sent events.

        Polling stops and flags and configs are refreshed immediately.
        """
        if self._realtime or self._destroyed:
            return
        self._realtime = True

        if self._ready:
            self._channel.enable_streaming()
            self._spawn(self._refresh_all())

        self._events.emit(ClientEvent.REALTIME_CHANGED, True)

    def disable_realtime(self) -> None:
        """
        Close the real-time stream.

        Cached values stay available. Polling resumes if a refresh interval
        is configured.
        """
        if not self._realtime or self._destroyed:
            return
        self._realtime = False

        if self._ready:
            self._channel.disable_streaming()

        self._events.emit(ClientEvent.REALTIME_CHANGED, False)

    # -- cache ----------------------------------------------------------

    async def refresh(self) -> None:
        """Force refresh of flags and configs."""
        await self._refresh_all()

    def get_cache_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._cache.get_stats()

    def clear_cache(self) -> None:
        """Drop every cached value. The next read fetches from the API."""
        self._cache.clear()

    # -- internal -------------------------------------------------------

    async def _refresh_all(self) -> None:
        # Both run to completion; a failure in one never discards the other
        await asyncio.gather(
            self._refresh_flags(),
            self._refresh_configs(),
            return_exceptions=True,
        )

    async def _refresh_flags(self, emit: bool = True) -> Dict[str, Any]:
        """
        Re-fetch the full flag map.

        Args:
            emit: Emit ``flags_updated`` once ready; read-through fetches
                pass False
        """
        try:
            data = await self._gateway.request("/flags")
            flags = dict(data.get("flags") or {})
        except Exception as e:
            error = self._report(e, "fetching flags")
            if error is e:
                raise
            raise error from e

        self._cache.replace(CacheKind.FLAGS, flags)
        if emit and self._ready:
            self._events.emit(ClientEvent.FLAGS_UPDATED, dict(flags))
        return flags

    async def _refresh_configs(self, emit: bool = True) -> Dict[str, Any]:
        try:
            data = await self._gateway.request("/configs")
            configs = {item["key"]: item.get("value") for item in data.get("configs") or []}
        except Exception as e:
            error = self._report(e, "fetching configs")
            if error is e:
                raise
            raise error from e

        self._cache.replace(CacheKind.CONFIGS, configs)
        if emit and self._ready:
            self._events.emit(ClientEvent.CONFIGS_UPDATED, dict(configs))
            self._events.emit(ClientEvent.CONFIG_UPDATED)
        return configs

    async def _current(self, kind: CacheKind) -> Dict[str, Any]:
        """Cached full map for ``kind``, re-fetched silently when absent or expired."""
        values = self._cache.snapshot(kind)
        if values is not None:
            return values

        refresh = self._refresh_flags if kind is CacheKind.FLAGS else self._refresh_configs
        try:
            return dict(await refresh(emit=False))
        except FlagDashError:
            return {}

    def _handle_stream_event(self, category: StreamEventCategory) -> None:
        if category is StreamEventCategory.FLAG_CHANGED:
            self._cache.invalidate(CacheKind.FLAG_INFO)
            self._spawn(self._refresh_flags())
        elif category is StreamEventCategory.CONFIG_CHANGED:
            self._spawn(self._refresh_configs())
        elif category is StreamEventCategory.AI_CONFIG_CHANGED:
            self._cache.invalidate(CacheKind.AI_CONFIGS)
            self._events.emit(ClientEvent.AI_CONFIG_UPDATED)
        else:
            logger.debug("Real-time stream connected")

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._run_quietly(coro))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    async def _run_quietly(coro: Awaitable[Any]) -> None:
        try:
            await coro
        except FlagDashError:
            pass  # already reported through the error event

    def _report(self, error: Exception, action: str) -> FlagDashError:
        """Log and emit a transport failure; returns the classified error."""
        classified = classify_error(error)
        logger.error(f"Error {action}: {classified.message}")
        self._events.emit(ClientEvent.ERROR, classified)
        return classified


def _parse_items(
    items: Iterable[Any], parse: Callable[[Mapping[str, Any]], T], what: str
) -> List[T]:
    """Parse list items one by one, skipping the ones that are malformed."""
    parsed: List[T] = []
    for item in items:
        try:
            parsed.append(parse(item))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed {what} item: {e!r}")
    return parsed
