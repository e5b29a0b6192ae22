"""
Shipment analytics for the dashboard.
"""

from .aggregator import (
    DailyStats,
    ShipmentAnalytics,
    ShipmentAnalyticsService,
    StatusBreakdown,
    build_analytics,
    filter_by_date_range,
)
from .classification import TrackingGroup, declared_value, delivery_cost, tracking_group, tracking_label

__all__ = [
    "DailyStats",
    "ShipmentAnalytics",
    "ShipmentAnalyticsService",
    "StatusBreakdown",
    "TrackingGroup",
    "build_analytics",
    "declared_value",
    "delivery_cost",
    "filter_by_date_range",
    "tracking_group",
    "tracking_label",
]
