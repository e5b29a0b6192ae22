"""
Carrier API client for the Carrier service.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Mapping, Optional, TYPE_CHECKING

import httpx

from shared.errors import AccessLayerException, UpstreamDecodeError
from shared.logging import get_logger, mask_api_key

from ..auth.token_manager import TokenManager
from .query import QueryValue, serialize_params
from .results import ApiResult

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


PDF_CONTENT_TYPE = "application/pdf"


class CarrierClient:
    """Authenticated HTTP facade for one carrier API key.

    Every call returns an :class:`ApiResult`; expected upstream and
    transport failures never raise.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str,
        *,
        accept_language: str = "uk",
        token_manager: Optional[TokenManager] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.accept_language = accept_language
        self.logger = get_logger("carrier.client")
        self.metrics = metrics
        self.token_manager = token_manager or TokenManager(
            api_key,
            http_client,
            self.base_url,
            clock=clock,
            metrics=metrics,
        )

        self._http = http_client
        self.api_requests = 0
        self.retries = 0

    async def get(self, path: str, params: Optional[Mapping[str, QueryValue]] = None) -> ApiResult[Any]:
        return await self.request("GET", path, params=params)

    async def post(
        self,
        path: str,
        body: Any = None,
        params: Optional[Mapping[str, QueryValue]] = None,
    ) -> ApiResult[Any]:
        return await self.request("POST", path, body=body, params=params)

    async def put(
        self,
        path: str,
        body: Any = None,
        params: Optional[Mapping[str, QueryValue]] = None,
    ) -> ApiResult[Any]:
        return await self.request("PUT", path, body=body, params=params)

    async def delete(
        self,
        path: str,
        body: Any = None,
        params: Optional[Mapping[str, QueryValue]] = None,
    ) -> ApiResult[Any]:
        return await self.request("DELETE", path, body=body, params=params)

    async def request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> ApiResult[Any]:
        """Issue a request, retrying once with a fresh token on 401."""
        return await self._execute(method.upper(), path, body, params, headers or {}, is_retry=False)

    async def _execute(
        self,
        method: str,
        path: str,
        body: Any,
        params: Optional[Mapping[str, QueryValue]],
        headers: Dict[str, str],
        *,
        is_retry: bool,
    ) -> ApiResult[Any]:
        try:
            token = await self.token_manager.ensure_token()
            self.api_requests += 1

            request_headers = {
                "Authorization": token,
                "Accept": "application/json",
                "Accept-Language": self.accept_language,
            }
            if body is not None:
                request_headers["Content-Type"] = "application/json"
            request_headers.update(headers)

            response = await self._http.request(
                method,
                f"{self.base_url}{path}",
                params=serialize_params(params) if params else None,
                json=body,
                headers=request_headers,
            )
            self._record_request(method, response.status_code)

            if response.status_code == 401 and not is_retry:
                self.logger.warning(
                    "Got 401, refreshing token and retrying",
                    method=method,
                    path=path,
                    api_key=mask_api_key(self.api_key),
                )
                self.retries += 1
                if self.metrics:
                    self.metrics.increment_counter("carrier_retries_total")
                self.token_manager.invalidate()
                return await self._execute(method, path, body, params, headers, is_retry=True)

            return self._to_result(response)

        except AccessLayerException as exc:
            self.logger.warning("Carrier request failed", method=method, path=path, code=exc.code)
            return ApiResult.fail(exc.message, exc.status_code)
        except httpx.HTTPError as exc:
            self.logger.error("Carrier transport error", method=method, path=path, error=str(exc))
            return ApiResult.fail(str(exc) or type(exc).__name__, 500)
        except Exception as exc:
            self.logger.error("Carrier request error", method=method, path=path, error=str(exc))
            return ApiResult.fail(str(exc) or type(exc).__name__, 500)

    def _to_result(self, response: httpx.Response) -> ApiResult[Any]:
        status = response.status_code

        if status == 204:
            return ApiResult.ok(None)

        content_type = response.headers.get("content-type", "")
        if PDF_CONTENT_TYPE in content_type:
            return ApiResult.ok(response.content)

        if not response.content:
            if response.is_success:
                return ApiResult.ok(None)
            return ApiResult.fail(f"HTTP {status}", status)

        try:
            payload = response.json()
        except ValueError:
            if not response.is_success:
                return ApiResult.fail(f"HTTP {status}", status)
            raise UpstreamDecodeError("Carrier response is not valid JSON", {"status_code": status})

        if not response.is_success:
            message = payload.get("message") if isinstance(payload, dict) else None
            errors = payload.get("errors") if isinstance(payload, dict) else None
            return ApiResult.fail(
                message or f"HTTP {status}",
                status,
                errors if isinstance(errors, dict) else None,
            )

        return ApiResult.ok(payload)

    def _record_request(self, method: str, status_code: int) -> None:
        if self.metrics:
            self.metrics.increment_counter("carrier_requests_total", method=method, status=str(status_code))

    def get_stats(self) -> Dict[str, Any]:
        """Read-only diagnostic snapshot."""
        token_stats = self.token_manager.get_stats()
        return {
            "auth_requests": token_stats["auth_requests"],
            "api_requests": self.api_requests,
            "retries": self.retries,
            "last_auth_at": token_stats["last_auth_at"],
            "has_valid_token": token_stats["has_valid_token"],
            "token_expires_in": token_stats["token_expires_in"],
        }
