"""
Bearer token lifecycle for the upstream carrier API.

The carrier exchanges an API key for a short-lived JWT at
``GET /clients/authorization?apiKey=...``. The token is sent back verbatim
in the ``Authorization`` header. Its lifetime is read from the token's own
``exp`` claim.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

import httpx
from jose import JWTError, jwt

from shared.errors import TokenRequestError, UpstreamDecodeError
from shared.logging import get_logger, mask_api_key

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


AUTHORIZATION_PATH = "/clients/authorization"
DEFAULT_REFRESH_BUFFER_SECONDS = 5 * 60
DEFAULT_FALLBACK_TTL_SECONDS = 60 * 60


def parse_token_expiry(token: str) -> Optional[float]:
    """Return the ``exp`` claim as epoch seconds, or ``None`` if unreadable.

    The signature is not verified; only the carrier can do that.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except (JWTError, ValueError, TypeError):
        return None

    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)


class TokenManager:
    """Owns the bearer token for a single API key."""

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str,
        *,
        refresh_buffer_seconds: float = DEFAULT_REFRESH_BUFFER_SECONDS,
        fallback_ttl_seconds: float = DEFAULT_FALLBACK_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.refresh_buffer_seconds = refresh_buffer_seconds
        self.fallback_ttl_seconds = fallback_ttl_seconds
        self.logger = get_logger("carrier.token_manager")
        self.metrics = metrics

        self._http = http_client
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._refresh: Optional[asyncio.Future] = None

        self.auth_requests = 0
        self.last_auth_at = 0.0

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def has_valid_token(self) -> bool:
        return self._token is not None and self._expires_at > self._clock()

    def seconds_until_expiry(self) -> int:
        if self._expires_at <= 0:
            return 0
        return round(self._expires_at - self._clock())

    def _is_fresh(self) -> bool:
        return (
            self._token is not None
            and self._expires_at - self.refresh_buffer_seconds > self._clock()
        )

    async def ensure_token(self) -> str:
        """Return a token with more than the refresh buffer of life left.

        Concurrent callers that find no fresh token all await the same
        in-flight authorization call.
        """
        if self._is_fresh():
            return self._token  # type: ignore[return-value]

        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._fetch_token())
            self._refresh.add_done_callback(self._clear_refresh)

        # shield: one caller giving up must not cancel the shared refresh
        return await asyncio.shield(self._refresh)

    def invalidate(self) -> None:
        """Drop the cached token; the next ``ensure_token`` re-authenticates."""
        self._token = None
        self._expires_at = 0.0

    def _clear_refresh(self, future: asyncio.Future) -> None:
        if self._refresh is future:
            self._refresh = None
        if not future.cancelled():
            # Mark the outcome as retrieved; awaiting callers re-raise it.
            future.exception()

    async def _fetch_token(self) -> str:
        self.auth_requests += 1
        self.last_auth_at = self._clock()
        masked = mask_api_key(self.api_key)

        self.logger.info("Authenticating", api_key=masked, auth_number=self.auth_requests)

        try:
            response = await self._http.get(
                f"{self.base_url}{AUTHORIZATION_PATH}",
                params={"apiKey": self.api_key},
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            self._record_auth("error")
            self.logger.error("Authorization request failed", api_key=masked, error=str(exc))
            raise

        if not response.is_success:
            self._record_auth("rejected")
            self.logger.warning(
                "Authorization rejected",
                api_key=masked,
                status_code=response.status_code,
            )
            raise TokenRequestError(
                response.status_code,
                f"Carrier auth failed: {response.status_code} {response.reason_phrase}".strip(),
            )

        token = self._extract_token(response)
        now = self._clock()
        self._token = token

        expiry = parse_token_expiry(token)
        if expiry is not None:
            self._expires_at = expiry
            self.logger.info(
                "Authenticated",
                api_key=masked,
                expires_in_min=round((expiry - now) / 60),
            )
        else:
            self._expires_at = now + self.fallback_ttl_seconds
            self.logger.warning(
                "Could not parse token exp claim, using fallback TTL",
                api_key=masked,
                fallback_ttl_seconds=self.fallback_ttl_seconds,
            )

        self._record_auth("success")
        return token

    def _extract_token(self, response: httpx.Response) -> str:
        try:
            payload: Any = response.json()
        except ValueError as exc:
            self._record_auth("malformed")
            raise UpstreamDecodeError("Authorization response is not JSON") from exc

        token = payload.get("jwt") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            self._record_auth("malformed")
            raise UpstreamDecodeError("Authorization response missing jwt")
        return token

    def _record_auth(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("carrier_auth_total", outcome=outcome)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "auth_requests": self.auth_requests,
            "last_auth_at": self.last_auth_at,
            "has_valid_token": self.has_valid_token(),
            "token_expires_in": self.seconds_until_expiry(),
        }
