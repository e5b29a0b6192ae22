"""
Carrier proxy service for the Carrier Access Layer.

Resolves the calling user's carrier API key and forwards work to a
per-key carrier client, with cached list queries and dashboard analytics.
"""

import asyncio
import time
from datetime import date
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Body, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import (
    ApiKeyNotConfiguredError,
    AuthInvalidError,
    NotAuthenticatedError,
    RateLimitError,
    UpstreamUnavailableError,
    ValidationError,
)
from shared.logging import mask_api_key, set_user_context

from .adapters.client_registry import ClientRegistry, KeyValidationReason
from .adapters.query import collapse_params
from .adapters.results import ApiResult
from .analytics.aggregator import ShipmentAnalytics, ShipmentAnalyticsService
from .caching.ttl_store import FetchCache, TTLStore
from .domain.api_keys import ApiKeyStore, InMemoryApiKeyStore
from .domain.shipments import ShipmentsApi

KEY_REJECTION_MESSAGES = {
    KeyValidationReason.INVALID: "Невалідний API ключ. Перевірте правильність ключа.",
    KeyValidationReason.RATE_LIMITED: (
        "Nova Post тимчасово обмежила кількість запитів. Спробуйте ще раз через 1-2 хвилини."
    ),
    KeyValidationReason.UNAVAILABLE: (
        "Сервіс Nova Post тимчасово недоступний. Спробуйте зберегти ключ пізніше."
    ),
}


class ApiKeyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_key: Optional[str] = Field(default=None, alias="apiKey")


class CarrierService(BaseService):
    """Carrier proxy service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        key_store: Optional[ApiKeyStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__("carrier", 8000, config or get_config("carrier", 8000))
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self.key_store: ApiKeyStore = key_store or InMemoryApiKeyStore()

        self.registry = ClientRegistry(self.config, self.http_client, clock=clock, metrics=self.metrics)
        self.list_cache: FetchCache = FetchCache(
            TTLStore(
                self.config.fetch_cache_ttl_seconds,
                self.config.fetch_cache_max_entries,
                clock=clock,
                name="shipments",
                metrics=self.metrics,
            )
        )
        self.shipments = ShipmentsApi(self.registry, self.list_cache)
        self.analytics = ShipmentAnalyticsService(
            self.shipments,
            TTLStore(
                self.config.analytics_cache_ttl_seconds,
                self.config.analytics_cache_max_entries,
                clock=clock,
                name="analytics",
                metrics=self.metrics,
            ),
            fetch_concurrency=self.config.analytics_fetch_concurrency,
            metrics=self.metrics,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            if self._owns_http_client:
                await self.http_client.aclose()
            self.logger.info("Carrier service stopped")

        self._setup_carrier_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.carrier_service = self

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "carrier_api": self.config.carrier_api_url,
            "client_registry_size": str(len(self.registry)),
        }

    async def current_user(self, x_user_id: Optional[str] = Header(default=None)) -> str:
        if not x_user_id:
            raise NotAuthenticatedError()
        set_user_context(x_user_id)
        return x_user_id

    async def resolve_api_key(self, user_id: str) -> str:
        api_key = await self.key_store.get(user_id)
        if not api_key:
            raise ApiKeyNotConfiguredError()
        return api_key

    @staticmethod
    def _relay(result: ApiResult[Any]) -> Response:
        """Translate a client result into an HTTP response."""
        if not result.success:
            return JSONResponse(status_code=result.error.status, content=result.error.to_dict())
        data = result.data
        if data is None:
            return Response(status_code=204)
        if isinstance(data, bytes):
            return Response(content=data, media_type="application/pdf")
        if isinstance(data, BaseModel):
            return JSONResponse(content=data.model_dump(mode="json", by_alias=True))
        return JSONResponse(content=data)

    @staticmethod
    def _parse_date(value: Optional[str], name: str) -> Optional[str]:
        if value is None or value == "":
            return None
        try:
            return date.fromisoformat(value).isoformat()
        except ValueError:
            raise ValidationError(f"{name} must be a YYYY-MM-DD date", {"field": name, "value": value})

    @staticmethod
    async def _json_body(request: Request, required: bool = True) -> Any:
        raw = await request.body()
        if not raw:
            if required:
                raise ValidationError("Request body is required")
            return None
        try:
            return await request.json()
        except ValueError:
            raise ValidationError("Request body must be valid JSON")

    def _setup_carrier_routes(self):
        """Set up carrier routes."""

        @self.app.api_route("/api/carrier/{path:path}", methods=["GET", "POST", "PUT", "DELETE"])
        async def carrier_proxy(path: str, request: Request, user_id: str = Depends(self.current_user)):
            """Forward a request to the carrier API with the user's key."""
            api_key = await self.resolve_api_key(user_id)
            client = self.registry.get_client(api_key)
            params = collapse_params(request.query_params.multi_items())
            method = request.method

            body = None
            if method in ("POST", "PUT"):
                body = await self._json_body(request)
            elif method == "DELETE":
                body = await self._json_body(request, required=False)

            result = await client.request(method, f"/{path}", body=body, params=params)
            return self._relay(result)

        @self.app.get("/api/shipments")
        async def list_shipments(
            request: Request,
            page: int = Query(default=1, ge=1),
            limit: int = Query(default=15, ge=1, le=100),
            user_id: str = Depends(self.current_user),
        ):
            api_key = await self.resolve_api_key(user_id)
            result = await self.shipments.get_shipments(
                api_key,
                page=page,
                limit=limit,
                ids=request.query_params.getlist("ids[]") or None,
                numbers=request.query_params.getlist("numbers[]") or None,
            )
            return self._relay(result)

        @self.app.post("/api/shipments")
        async def create_shipment(
            payload: Dict[str, Any] = Body(...),
            user_id: str = Depends(self.current_user),
        ):
            api_key = await self.resolve_api_key(user_id)
            return self._relay(await self.shipments.create_shipment(api_key, payload))

        @self.app.post("/api/shipments/calculations")
        async def calculate_shipment_cost(
            payload: Dict[str, Any] = Body(...),
            user_id: str = Depends(self.current_user),
        ):
            api_key = await self.resolve_api_key(user_id)
            return self._relay(await self.shipments.calculate_cost(api_key, payload))

        @self.app.get("/api/shipments/tracking-history")
        async def shipment_tracking_history(request: Request, user_id: str = Depends(self.current_user)):
            api_key = await self.resolve_api_key(user_id)
            numbers = request.query_params.getlist("numbers[]")
            return self._relay(await self.shipments.get_tracking_history(api_key, numbers))

        @self.app.get("/api/shipments/print")
        async def print_shipment_documents(
            request: Request,
            doc_type: str = Query(default="marking", alias="type"),
            user_id: str = Depends(self.current_user),
        ):
            api_key = await self.resolve_api_key(user_id)
            numbers = request.query_params.getlist("numbers[]")
            return self._relay(await self.shipments.print_documents(api_key, doc_type, numbers))

        @self.app.put("/api/shipments/{shipment_id}")
        async def update_shipment(
            shipment_id: str,
            payload: Dict[str, Any] = Body(...),
            user_id: str = Depends(self.current_user),
        ):
            api_key = await self.resolve_api_key(user_id)
            return self._relay(await self.shipments.update_shipment(api_key, shipment_id, payload))

        @self.app.delete("/api/shipments/{shipment_id}")
        async def delete_shipment(shipment_id: str, user_id: str = Depends(self.current_user)):
            api_key = await self.resolve_api_key(user_id)
            return self._relay(await self.shipments.delete_shipment(api_key, shipment_id))

        @self.app.get("/api/analytics/shipments")
        async def shipment_analytics(
            date_from: Optional[str] = Query(default=None, alias="dateFrom"),
            date_to: Optional[str] = Query(default=None, alias="dateTo"),
            max_pages: Optional[int] = Query(default=None, alias="maxPages", ge=1, le=50),
            per_page: Optional[int] = Query(default=None, alias="perPage", ge=1, le=100),
            user_id: str = Depends(self.current_user),
        ):
            """Dashboard analytics for the user's shipments."""
            start = self._parse_date(date_from, "dateFrom")
            end = self._parse_date(date_to, "dateTo")
            if start and end and start > end:
                raise ValidationError("dateFrom must not be after dateTo")

            api_key = await self.resolve_api_key(user_id)
            try:
                analytics: ShipmentAnalytics = await asyncio.wait_for(
                    self.analytics.compute_analytics(
                        api_key,
                        start,
                        end,
                        max_pages=max_pages or self.config.analytics_max_pages,
                        per_page=per_page or self.config.analytics_per_page,
                    ),
                    timeout=self.config.analytics_timeout_seconds,
                )
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Analytics computation timed out",
                    api_key=mask_api_key(api_key),
                    timeout_seconds=self.config.analytics_timeout_seconds,
                )
                raise UpstreamUnavailableError("Analytics computation timed out", status_code=504)

            return analytics.model_dump(mode="json", by_alias=True)

        @self.app.put("/api/settings/api-key")
        async def save_api_key(payload: ApiKeyPayload, user_id: str = Depends(self.current_user)):
            """Validate the key against the carrier, then store it for the user."""
            validation = await self.registry.validate_api_key(payload.api_key)
            if not validation.is_valid:
                message = KEY_REJECTION_MESSAGES[validation.reason]
                if validation.reason is KeyValidationReason.RATE_LIMITED:
                    raise RateLimitError(message)
                if validation.reason is KeyValidationReason.UNAVAILABLE:
                    raise UpstreamUnavailableError(message)
                raise AuthInvalidError(message)

            api_key = payload.api_key.strip()
            await self.key_store.save(user_id, api_key)
            self.logger.info("API key saved", api_key=mask_api_key(api_key))
            return {"success": True, "message": "API ключ збережено"}

        @self.app.delete("/api/settings/api-key")
        async def delete_api_key(user_id: str = Depends(self.current_user)):
            api_key = await self.key_store.get(user_id)
            await self.key_store.delete(user_id)
            if api_key:
                self.registry.discard(api_key)
                self.list_cache.invalidate(f"{api_key}{FetchCache.KEY_SEPARATOR}")
            return {"success": True, "message": "API ключ видалено"}

        @self.app.get("/api/carrier-client/stats")
        async def carrier_client_stats(user_id: str = Depends(self.current_user)):
            """Diagnostics for the user's carrier client."""
            api_key = await self.resolve_api_key(user_id)
            client = self.registry.peek(api_key)
            stats: Dict[str, Any] = {
                "api_key": mask_api_key(api_key),
                "registered": client is not None,
                "registry_size": len(self.registry),
                "inflight_requests": self.list_cache.inflight_count,
            }
            if client is not None:
                stats.update(client.get_stats())
            return stats


def create_app():
    """Create FastAPI application."""
    service = CarrierService()
    return service.app


def run():
    """Run the service with uvicorn."""
    CarrierService().run()


if __name__ == "__main__":
    run()
