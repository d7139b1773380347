"""Configuration for the FlagDash client."""

from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "https://flagdash.io"
DEFAULT_TIMEOUT_MS = 5000
SSE_MAX_RETRIES = 5
SSE_FALLBACK_POLLING_INTERVAL_MS = 30000


@dataclass
class FlagDashConfig:
    """Configuration for FlagDash client."""

    sdk_key: str
    """SDK key for authentication (client_pk_... or server_sk_...)."""

    base_url: str = DEFAULT_BASE_URL
    """Base URL of the FlagDash instance."""

    environment: Optional[str] = None
    """Optional environment routing hint. The SDK key already scopes requests."""

    refresh_interval_ms: int = 0
    """Polling interval in milliseconds. Set to 0 to disable."""

    timeout_ms: int = DEFAULT_TIMEOUT_MS
    """Request timeout in milliseconds."""

    realtime: bool = False
    """Receive live updates over server-sent events (default: False)."""

    cache_ttl_ms: Optional[int] = None
    """Cache expiry. None keeps values until the next refresh, 0 disables caching."""

    persist_path: Optional[str] = None
    """File path for persisting the last-known flags and configs."""

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api/v1"

    @property
    def stream_url(self) -> str:
        return f"{self.api_url}/sse"
