"""
Shipment operations exposed through per-key carrier clients.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

from shared.errors import ValidationError
from shared.logging import get_logger, mask_api_key

from ..adapters.client_registry import ClientRegistry
from ..adapters.results import ApiResult
from ..caching.ttl_store import FetchCache
from .models import ShipmentCreated, ShipmentPage, TrackingHistory, decode_result

SHIPMENTS_PATH = "/shipments"
CALCULATIONS_PATH = "/shipments/calculations"
TRACKING_HISTORY_PATH = "/shipments/tracking/history/"
PRINT_PATH = "/shipments/print"

PRINT_TYPES = ("marking", "international", "invoice")

logger = get_logger("carrier.shipments")


class ShipmentsApi:
    """Typed shipment calls on top of the client registry.

    List queries go through ``list_cache`` so repeated dashboard loads
    within the cache TTL reuse one upstream call. Successful writes drop
    the key's cached lists.
    """

    def __init__(self, registry: ClientRegistry, list_cache: FetchCache[ApiResult[ShipmentPage]]):
        self.registry = registry
        self.list_cache = list_cache

    async def get_shipments(
        self,
        api_key: str,
        *,
        page: int = 1,
        limit: int = 15,
        ids: Optional[Sequence[Any]] = None,
        numbers: Optional[Sequence[str]] = None,
    ) -> ApiResult[ShipmentPage]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if ids:
            params["ids"] = list(ids)
        if numbers:
            params["numbers"] = list(numbers)

        key = self.list_cache.make_key(api_key, SHIPMENTS_PATH, params)
        client = self.registry.get_client(api_key)

        async def load() -> ApiResult[ShipmentPage]:
            result = await client.get(SHIPMENTS_PATH, params)
            return decode_result(result, ShipmentPage)

        return await self.list_cache.fetch(key, load)

    async def create_shipment(self, api_key: str, payload: Mapping[str, Any]) -> ApiResult[ShipmentCreated]:
        result = await self.registry.get_client(api_key).post(SHIPMENTS_PATH, dict(payload))
        decoded = decode_result(result, ShipmentCreated)
        self._after_write(api_key, decoded, "create")
        return decoded

    async def calculate_cost(self, api_key: str, payload: Mapping[str, Any]) -> ApiResult[Any]:
        return await self.registry.get_client(api_key).post(CALCULATIONS_PATH, dict(payload))

    async def update_shipment(
        self, api_key: str, shipment_id: str, payload: Mapping[str, Any]
    ) -> ApiResult[Any]:
        result = await self.registry.get_client(api_key).put(f"{SHIPMENTS_PATH}/{shipment_id}", dict(payload))
        self._after_write(api_key, result, "update")
        return result

    async def delete_shipment(self, api_key: str, shipment_id: str) -> ApiResult[Any]:
        result = await self.registry.get_client(api_key).delete(f"{SHIPMENTS_PATH}/{shipment_id}")
        self._after_write(api_key, result, "delete")
        return result

    async def get_tracking_history(self, api_key: str, numbers: Sequence[str]) -> ApiResult[TrackingHistory]:
        if not numbers:
            raise ValidationError("At least one shipment number is required")
        result = await self.registry.get_client(api_key).get(
            TRACKING_HISTORY_PATH, {"numbers": list(numbers)}
        )
        return decode_result(result, TrackingHistory)

    async def print_documents(self, api_key: str, doc_type: str, numbers: Sequence[str]) -> ApiResult[Any]:
        """Fetch printable documents; a PDF response yields raw bytes."""
        if doc_type not in PRINT_TYPES:
            raise ValidationError(
                f"Unsupported print type: {doc_type}",
                {"allowed": list(PRINT_TYPES)},
            )
        if not numbers:
            raise ValidationError("At least one shipment number is required")
        return await self.registry.get_client(api_key).get(
            PRINT_PATH, {"type": doc_type, "numbers": list(numbers)}
        )

    def _after_write(self, api_key: str, result: ApiResult[Any], operation: str) -> None:
        if not result.success:
            return
        dropped = self.list_cache.invalidate(f"{api_key}{FetchCache.KEY_SEPARATOR}")
        logger.info(
            "Shipment write invalidated cached lists",
            operation=operation,
            api_key=mask_api_key(api_key),
            dropped=dropped,
        )


