"""
Per-key registry of carrier clients.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

import httpx
from cachetools import Cache, TTLCache

from shared.config import BaseConfig
from shared.errors import TokenRequestError, UpstreamDecodeError, ValidationError
from shared.logging import get_logger, mask_api_key

from ..auth.token_manager import TokenManager
from .carrier_client import CarrierClient

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


logger = get_logger("carrier.client_registry")


@dataclass
class CachedClient:
    """A registered client and the last time it was handed out."""

    client: CarrierClient
    last_accessed: float


class _ClientCache(TTLCache):
    """TTLCache that logs capacity evictions."""

    def popitem(self):
        key, entry = super().popitem()
        logger.info("Evicted least recently used client", api_key=mask_api_key(key))
        return key, entry


class KeyValidationReason(str, Enum):
    INVALID = "invalid"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class KeyValidationResult:
    is_valid: bool
    reason: Optional[KeyValidationReason] = None


def classify_auth_status(status_code: int) -> KeyValidationReason:
    """Map an authorization endpoint status to a validation failure reason."""
    if status_code == 429:
        return KeyValidationReason.RATE_LIMITED
    if status_code >= 500:
        return KeyValidationReason.UNAVAILABLE
    if status_code in (400, 401, 403):
        return KeyValidationReason.INVALID
    return KeyValidationReason.UNAVAILABLE


class ClientRegistry:
    """Reuses one :class:`CarrierClient` (and its token) per API key.

    Entries idle longer than ``client_idle_ttl_seconds`` expire. When the
    registry is full, inserting a new key first drops expired entries and
    then the least recently accessed ones. Dropping an entry is always safe;
    the next call simply re-authenticates.

    The registry does not own ``http_client``; the service that created it
    closes it at shutdown.
    """

    def __init__(
        self,
        config: BaseConfig,
        http_client: httpx.AsyncClient,
        *,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.config = config
        self.metrics = metrics
        self._http = http_client
        self._clock = clock
        self._clients: TTLCache = _ClientCache(
            maxsize=config.client_registry_max_size,
            ttl=config.client_idle_ttl_seconds,
            timer=clock,
        )

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, api_key: str) -> bool:
        return api_key in self._clients

    def create_client(self, api_key: str) -> CarrierClient:
        """Build an unregistered client wired to the shared HTTP client."""
        token_manager = TokenManager(
            api_key,
            self._http,
            self.config.carrier_api_url,
            refresh_buffer_seconds=self.config.token_refresh_buffer_seconds,
            fallback_ttl_seconds=self.config.token_fallback_ttl_seconds,
            clock=self._clock,
            metrics=self.metrics,
        )
        return CarrierClient(
            api_key,
            self._http,
            self.config.carrier_api_url,
            accept_language=self.config.accept_language,
            token_manager=token_manager,
            clock=self._clock,
            metrics=self.metrics,
        )

    def get_client(self, api_key: str) -> CarrierClient:
        entry: Optional[CachedClient] = self._clients.get(api_key)
        if entry is None:
            entry = CachedClient(client=self.create_client(api_key), last_accessed=self._clock())
            logger.debug("Registered client", api_key=mask_api_key(api_key))
        else:
            entry.last_accessed = self._clock()

        # Re-inserting restarts the idle TTL and marks the key most recent.
        self._clients[api_key] = entry
        self._update_size()
        return entry.client

    def peek(self, api_key: str) -> Optional[CarrierClient]:
        """Return the registered client without touching its access time."""
        if api_key not in self._clients:
            return None
        # TTLCache.__getitem__ would move the key to the most recent end.
        entry: CachedClient = Cache.__getitem__(self._clients, api_key)
        return entry.client

    def register(self, client: CarrierClient) -> None:
        """Insert ``client`` under its key, replacing any existing entry."""
        self._clients[client.api_key] = CachedClient(client=client, last_accessed=self._clock())
        self._update_size()

    def discard(self, api_key: str) -> None:
        self._clients.pop(api_key, None)
        self._update_size()

    def _update_size(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("client_registry_size", len(self._clients))

    async def validate_api_key(self, api_key: Optional[str]) -> KeyValidationResult:
        """Check a key against the authorization endpoint.

        On success the authenticated client is registered so the next real
        request reuses its token.
        """
        key = (api_key or "").strip()
        if not key:
            raise ValidationError("API ключ не може бути порожнім")

        client = self.create_client(key)
        masked = mask_api_key(key)
        try:
            await client.token_manager.ensure_token()
        except TokenRequestError as exc:
            reason = classify_auth_status(exc.upstream_status)
            if reason is KeyValidationReason.INVALID:
                self.discard(key)
            logger.info(
                "API key validation failed",
                api_key=masked,
                status_code=exc.upstream_status,
                reason=reason.value,
            )
            return KeyValidationResult(is_valid=False, reason=reason)
        except (httpx.HTTPError, UpstreamDecodeError) as exc:
            self.discard(key)
            logger.warning("API key validation could not reach carrier", api_key=masked, error=str(exc))
            return KeyValidationResult(is_valid=False, reason=KeyValidationReason.UNAVAILABLE)

        self.register(client)
        logger.info("API key validated", api_key=masked)
        return KeyValidationResult(is_valid=True)
