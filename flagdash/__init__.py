"""
FlagDash Python SDK - feature flags, remote config and AI config files.

Usage:
    from flagdash import FlagDashClient, FlagDashConfig

    client = FlagDashClient(FlagDashConfig(sdk_key="client_pk_..."))
    await client.init()

    if await client.flag("my-feature", default=False):
        # Feature is enabled
        pass

    await client.destroy()
"""

from flagdash.client import FlagDashClient
from flagdash.config import (
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_MS,
    SSE_FALLBACK_POLLING_INTERVAL_MS,
    SSE_MAX_RETRIES,
    FlagDashConfig,
)
from flagdash.cache import MISSING, CacheKind, CacheStats, ValueCache
from flagdash.context import EvaluationContext, context_params, encode_context
from flagdash.errors import (
    FlagDashError,
    ConfigurationError,
    AuthenticationError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ValidationError,
    InternalError,
    StreamError,
    ErrorCategory,
    classify_error,
)
from flagdash.events import ClientEvent, EventBus
from flagdash.models import (
    AiConfigFile,
    AiConfigFileType,
    ConfigInfo,
    FlagDetail,
    FlagInfo,
    FlagReason,
)
from flagdash.realtime import (
    ChannelState,
    LiveUpdateChannel,
    StreamEventCategory,
    classify_stream_event,
    reconnect_delay,
)
from flagdash.transport import (
    RequestGateway,
    SSEStreamTransport,
    StreamMessage,
    StreamTransport,
)

__version__ = "0.1.0"
__all__ = [
    # Client
    "FlagDashClient",
    "FlagDashConfig",
    "DEFAULT_BASE_URL",
    "DEFAULT_TIMEOUT_MS",
    "SSE_FALLBACK_POLLING_INTERVAL_MS",
    "SSE_MAX_RETRIES",
    # Models
    "AiConfigFile",
    "AiConfigFileType",
    "ConfigInfo",
    "FlagDetail",
    "FlagInfo",
    "FlagReason",
    # Context
    "EvaluationContext",
    "context_params",
    "encode_context",
    # Cache
    "MISSING",
    "CacheKind",
    "CacheStats",
    "ValueCache",
    # Events
    "ClientEvent",
    "EventBus",
    # Live updates
    "ChannelState",
    "LiveUpdateChannel",
    "StreamEventCategory",
    "classify_stream_event",
    "reconnect_delay",
    # Transport
    "RequestGateway",
    "SSEStreamTransport",
    "StreamMessage",
    "StreamTransport",
    # Errors
    "FlagDashError",
    "ConfigurationError",
    "AuthenticationError",
    "NetworkError",
    "NotFoundError",
    "RateLimitError",
    "ValidationError",
    "InternalError",
    "StreamError",
    "ErrorCategory",
    "classify_error",
]
