"""
Shipment classification and cost rules.

``status`` on a shipment is the coarse document status (ReadyToShip,
Accepted, Issued...). The delivery state the dashboard reports comes from
``onlineTracking.tracking_status_code``:

    1   waiting for the parcel from the sender
    2   deleted
    3   number not found
    4   in transit
    5   in transit, delivery date known
    6   at the destination branch
    7   received by the recipient
    8   refused
    9   return in transit
    10  return received by the sender
    11  customs

A present tracking code always decides the group; the document status is
consulted only when tracking data is missing.
"""

from enum import Enum
from typing import Dict, Optional, Tuple

from ..domain.models import Shipment

COD_SERVICE_MARKER = "Контроль оплати"
UNKNOWN_LABEL = "Невідомо"


class TrackingGroup(str, Enum):
    READY_TO_SHIP = "readyToShip"
    IN_TRANSIT = "inTransit"
    AT_BRANCH = "atBranch"
    DELIVERED = "delivered"
    RETURNED = "returned"
    OTHER = "other"


TRACKING_GROUPS: Dict[int, TrackingGroup] = {
    1: TrackingGroup.READY_TO_SHIP,
    4: TrackingGroup.IN_TRANSIT,
    5: TrackingGroup.IN_TRANSIT,
    11: TrackingGroup.IN_TRANSIT,
    6: TrackingGroup.AT_BRANCH,
    7: TrackingGroup.DELIVERED,
    8: TrackingGroup.RETURNED,
    9: TrackingGroup.RETURNED,
    10: TrackingGroup.RETURNED,
}

READY_DOCUMENT_STATUSES = frozenset({"ReadyToShip", "Issued", "Created"})

TRACKING_LABELS: Dict[int, str] = {
    1: "Чекаємо на посилку",
    4: "В дорозі",
    5: "В дорозі",
    6: "У відділенні",
    7: "Отримано",
    8: "Відмова",
    9: "Повернення в дорозі",
    10: "Повернення отримано",
    11: "На митниці",
}

# Document status -> (uk, en)
STATUS_LABELS: Dict[str, Tuple[str, str]] = {
    "ReadyToShip": ("Очікує відправки", "Ready to Ship"),
    "Received": ("Отримано у відділенні", "Received at Branch"),
    "InTransit": ("В дорозі", "In Transit"),
    "Delivered": ("Доставлено", "Delivered"),
    "Returned": ("Повернення", "Returned"),
    "Deleted": ("Видалено", "Deleted"),
    "Accepted": ("Прийнято", "Accepted"),
    "Issued": ("Оформлено", "Issued"),
    "Processing": ("В обробці", "Processing"),
    "Created": ("Створено", "Created"),
    "Pending": ("Очікування", "Pending"),
    "Cancelled": ("Скасовано", "Cancelled"),
    "OnTheWay": ("В дорозі", "On the Way"),
    "LoadingCourier": ("Завантаження кур'єром", "Loading by Courier"),
    "ArrivedAtDestination": ("Прибув у пункт призначення", "Arrived at Destination"),
    "ArrivedAtSortingCenter": ("Прибув на сортувальний центр", "Arrived at Sorting Center"),
    "Sorting": ("Сортування", "Sorting"),
    "AwaitingPickup": ("Очікує отримання", "Awaiting Pickup"),
    "ReturnInTransit": ("Повернення в дорозі", "Return In Transit"),
    "Customs": ("На митниці", "Customs"),
}


def tracking_group(shipment: Shipment) -> TrackingGroup:
    code = shipment.tracking_status_code
    if code is None:
        if shipment.status in READY_DOCUMENT_STATUSES:
            return TrackingGroup.READY_TO_SHIP
        return TrackingGroup.OTHER
    return TRACKING_GROUPS.get(code, TrackingGroup.OTHER)


def document_status_label(status: Optional[str]) -> Optional[str]:
    labels = STATUS_LABELS.get(status or "")
    if labels:
        return labels[0]
    return status or None


def tracking_label(shipment: Shipment) -> str:
    """Display label used to bucket the status breakdown."""
    code = shipment.tracking_status_code
    if code in TRACKING_LABELS:
        return TRACKING_LABELS[code]

    tracking = shipment.online_tracking
    if tracking and tracking.short_description:
        return tracking.short_description

    return document_status_label(shipment.status) or UNKNOWN_LABEL


def _is_cod(service_name: Optional[str]) -> bool:
    return bool(service_name) and COD_SERVICE_MARKER in service_name


def declared_value(shipment: Shipment) -> float:
    """Insurance cost if set, else the cash-on-delivery amount, else 0."""
    if shipment.total_insurance_cost:
        return float(shipment.total_insurance_cost)
    for service in shipment.services:
        if _is_cod(service.service_name):
            return float(service.cost or 0)
    return 0.0


def delivery_cost(shipment: Shipment) -> float:
    """Sum of carrier fees; the cash-on-delivery collection is excluded."""
    return float(
        sum(service.cost or 0 for service in shipment.services if not _is_cod(service.service_name))
    )


def creation_date_key(shipment: Shipment) -> Optional[str]:
    if not shipment.created_at:
        return None
    return shipment.created_at[:10]
