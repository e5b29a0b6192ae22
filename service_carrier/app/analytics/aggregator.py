"""
Shipment analytics: multi-page fetch, date filtering and rollups.
"""

from __future__ import annotations

import contextlib
from typing import Dict, List, Optional, Sequence, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.concurrency import gather_bounded
from shared.logging import get_logger, mask_api_key

from ..caching.ttl_store import TTLStore
from ..domain.models import Shipment, ShipmentPage
from ..domain.shipments import ShipmentsApi
from .classification import (
    TrackingGroup,
    creation_date_key,
    declared_value,
    delivery_cost,
    tracking_group,
    tracking_label,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_CURRENCY = "UAH"
RECENT_SHIPMENTS_LIMIT = 50


class AnalyticsModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DailyStats(AnalyticsModel):
    date: str
    shipments: int = 0
    delivered: int = 0
    returned: int = 0
    total_declared_value: float = 0.0
    delivered_declared_value: float = 0.0
    total_delivery_cost: float = 0.0
    delivered_delivery_cost: float = 0.0


class StatusBreakdown(AnalyticsModel):
    status: str
    label: str
    count: int
    percentage: float


class ShipmentAnalytics(AnalyticsModel):
    total_shipments: int = 0
    total_available: int = 0
    loaded_shipments: int = 0
    delivered_count: int = 0
    at_branch_count: int = 0
    in_transit_count: int = 0
    ready_to_ship_count: int = 0
    returned_count: int = 0
    returned_percentage: float = 0.0
    total_declared_value: float = 0.0
    delivered_declared_value: float = 0.0
    total_delivery_cost: float = 0.0
    delivered_delivery_cost: float = 0.0
    currency_code: str = DEFAULT_CURRENCY
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    daily_stats: List[DailyStats] = Field(default_factory=list)
    status_breakdown: List[StatusBreakdown] = Field(default_factory=list)
    recent_shipments: List[Shipment] = Field(default_factory=list)


def filter_by_date_range(
    shipments: Sequence[Shipment],
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[Shipment]:
    """Keep shipments created within the inclusive ``YYYY-MM-DD`` bounds.

    Shipments without a creation date are always kept.
    """
    kept = []
    for shipment in shipments:
        key = creation_date_key(shipment)
        if key is not None:
            if date_from and key < date_from:
                continue
            if date_to and key > date_to:
                continue
        kept.append(shipment)
    return kept


def _percentage(part: int, total: int) -> float:
    return part / total * 100 if total > 0 else 0.0


def build_analytics(
    shipments: Sequence[Shipment],
    *,
    total_available: int = 0,
    loaded_shipments: Optional[int] = None,
) -> ShipmentAnalytics:
    """Aggregate an already filtered list of shipments."""
    group_counts: Dict[TrackingGroup, int] = {group: 0 for group in TrackingGroup}
    label_counts: Dict[str, int] = {}
    daily: Dict[str, DailyStats] = {}
    result = ShipmentAnalytics(
        total_available=total_available,
        loaded_shipments=len(shipments) if loaded_shipments is None else loaded_shipments,
    )

    for shipment in shipments:
        group = tracking_group(shipment)
        group_counts[group] += 1

        label = tracking_label(shipment)
        label_counts[label] = label_counts.get(label, 0) + 1

        declared = declared_value(shipment)
        delivery = delivery_cost(shipment)
        delivered = group is TrackingGroup.DELIVERED

        result.total_declared_value += declared
        result.total_delivery_cost += delivery
        if delivered:
            result.delivered_declared_value += declared
            result.delivered_delivery_cost += delivery
        if shipment.currency_code:
            result.currency_code = shipment.currency_code

        date_key = creation_date_key(shipment)
        if date_key is None:
            continue

        if result.date_from is None or date_key < result.date_from:
            result.date_from = date_key
        if result.date_to is None or date_key > result.date_to:
            result.date_to = date_key

        day = daily.get(date_key)
        if day is None:
            day = daily[date_key] = DailyStats(date=date_key)
        day.shipments += 1
        day.total_declared_value += declared
        day.total_delivery_cost += delivery
        if delivered:
            day.delivered += 1
            day.delivered_declared_value += declared
            day.delivered_delivery_cost += delivery
        elif group is TrackingGroup.RETURNED:
            day.returned += 1

    total = len(shipments)
    result.total_shipments = total
    result.delivered_count = group_counts[TrackingGroup.DELIVERED]
    result.at_branch_count = group_counts[TrackingGroup.AT_BRANCH]
    result.in_transit_count = group_counts[TrackingGroup.IN_TRANSIT]
    result.ready_to_ship_count = group_counts[TrackingGroup.READY_TO_SHIP]
    result.returned_count = group_counts[TrackingGroup.RETURNED]
    result.returned_percentage = _percentage(result.returned_count, total)

    result.status_breakdown = sorted(
        (
            StatusBreakdown(status=label, label=label, count=count, percentage=_percentage(count, total))
            for label, count in label_counts.items()
        ),
        key=lambda item: item.count,
        reverse=True,
    )
    result.daily_stats = [daily[key] for key in sorted(daily)]
    result.recent_shipments = list(shipments[:RECENT_SHIPMENTS_LIMIT])
    return result


class ShipmentAnalyticsService:
    """Computes and caches dashboard analytics per API key and date range.

    Upstream failures degrade the result instead of failing it: a failed
    first page yields empty analytics, and a failed later page is skipped.
    """

    def __init__(
        self,
        shipments: ShipmentsApi,
        cache: TTLStore[ShipmentAnalytics],
        *,
        fetch_concurrency: int = 4,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.shipments = shipments
        self.cache = cache
        self.fetch_concurrency = fetch_concurrency
        self.metrics = metrics
        self.logger = get_logger("carrier.analytics")

    @staticmethod
    def cache_key(
        api_key: str,
        date_from: Optional[str],
        date_to: Optional[str],
        max_pages: int,
        per_page: int,
    ) -> str:
        return "|".join([api_key, date_from or "", date_to or "", str(max_pages), str(per_page)])

    async def compute_analytics(
        self,
        api_key: str,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        max_pages: int = 10,
        per_page: int = 100,
    ) -> ShipmentAnalytics:
        key = self.cache_key(api_key, date_from, date_to, max_pages, per_page)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        timer = (
            self.metrics.time_operation("analytics_duration_seconds")
            if self.metrics
            else contextlib.nullcontext()
        )
        with timer:
            loaded, total_available = await self._load_shipments(api_key, max_pages, per_page)
            filtered = filter_by_date_range(loaded, date_from, date_to)
            analytics = build_analytics(
                filtered,
                total_available=total_available,
                loaded_shipments=len(loaded),
            )

        self.cache.set(key, analytics)
        self.logger.info(
            "Computed shipment analytics",
            api_key=mask_api_key(api_key),
            loaded=len(loaded),
            total_shipments=analytics.total_shipments,
            total_available=total_available,
        )
        return analytics

    async def _load_shipments(self, api_key: str, max_pages: int, per_page: int):
        first = await self.shipments.get_shipments(api_key, page=1, limit=per_page)
        if not first.success:
            self.logger.warning(
                "First shipments page failed, returning empty analytics",
                api_key=mask_api_key(api_key),
                status=first.error.status if first.error else None,
            )
            return [], 0

        shipments: List[Shipment] = list(first.data.items)
        last_page = min(first.data.last_page, max_pages)
        remaining = range(2, last_page + 1)

        def page_loader(page: int):
            return lambda: self.shipments.get_shipments(api_key, page=page, limit=per_page)

        results = await gather_bounded(
            [page_loader(page) for page in remaining],
            self.fetch_concurrency,
            return_exceptions=True,
        )
        for page, result in zip(remaining, results):
            if isinstance(result, BaseException):
                self.logger.warning("Shipments page raised", page=page, error=str(result))
                continue
            if not result.success:
                self.logger.warning(
                    "Shipments page failed",
                    page=page,
                    status=result.error.status if result.error else None,
                )
                continue
            shipments.extend(result.data.items)

        return shipments, first.data.total
