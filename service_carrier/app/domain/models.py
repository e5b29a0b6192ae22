"""
Upstream carrier API schemas.

Responses are decoded into these models before use. A payload that does
not fit its schema becomes a failed ``ApiResult`` (status 502) instead of
flowing further as an untyped dict.
"""

from __future__ import annotations

from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shared.errors import UpstreamDecodeError
from shared.logging import get_logger

from ..adapters.results import ApiResult

logger = get_logger("carrier.decode")

Identifier = Union[str, int]
ModelT = TypeVar("ModelT", bound=BaseModel)
ItemT = TypeVar("ItemT")


class CarrierModel(BaseModel):
    """Base for upstream records; unknown fields are kept verbatim."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class AddressParts(CarrierModel):
    city: Optional[str] = None
    region: Optional[str] = None
    street: Optional[str] = None
    post_code: Optional[str] = None
    building: Optional[str] = None
    flat: Optional[str] = None
    block: Optional[str] = None
    note: Optional[str] = None


class ShipmentContact(CarrierModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    company_name: Optional[str] = Field(default=None, alias="companyName")
    company_tin: Optional[str] = Field(default=None, alias="companyTin")
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    settlement_id: Optional[Identifier] = Field(default=None, alias="settlementId")
    division_id: Optional[Identifier] = Field(default=None, alias="divisionId")
    address: Optional[str] = None
    address_parts: Optional[AddressParts] = Field(default=None, alias="addressParts")


class Parcel(CarrierModel):
    number: Optional[str] = None
    row_number: Optional[int] = None
    cargo_category_id: Optional[str] = None
    parcel_description: Optional[str] = None
    insurance_cost: Optional[float] = None
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    actual_weight: Optional[float] = None
    volumetric_weight: Optional[float] = None


class ShipmentService(CarrierModel):
    id: Optional[Identifier] = None
    service_id: Optional[str] = None
    service_type: Optional[str] = None
    service_name: Optional[str] = None
    service_code: Optional[str] = None
    payer_type: Optional[str] = None
    amount: Optional[float] = None
    price: Optional[float] = None
    discount: Optional[float] = None
    cost: Optional[float] = None
    payment_status: Optional[str] = None
    currency_code: Optional[str] = None


class OnlineTracking(CarrierModel):
    """Real-time tracking summary; ``tracking_status_code`` is 1..11."""

    tracking_status_code: Optional[int] = None
    tracking_update_date: Optional[str] = None
    short_description: Optional[str] = None
    long_description: Optional[str] = None
    info: Optional[str] = None
    label: Optional[str] = None


class TrackingEvent(CarrierModel):
    number: Optional[str] = None
    date: Optional[str] = None
    code: Optional[str] = None
    event: Optional[str] = None
    event_name: Optional[str] = None
    division_name: Optional[str] = None
    settlement_name: Optional[str] = None


class Shipment(CarrierModel):
    id: Identifier
    number: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")
    deleted_at: Optional[str] = Field(default=None, alias="deletedAt")
    scheduled_delivery_date: Optional[str] = Field(default=None, alias="scheduledDeliveryDate")
    payment_status: Optional[str] = Field(default=None, alias="paymentStatus")
    payer_type: Optional[str] = Field(default=None, alias="payerType")
    currency_code: Optional[str] = Field(default=None, alias="currencyCode")
    total_insurance_cost: Optional[float] = Field(default=None, alias="totalInsuranceCost")
    total_cost: Optional[float] = Field(default=None, alias="totalCost")
    total_weight: Optional[float] = Field(default=None, alias="totalWeight")
    sender: Optional[ShipmentContact] = None
    recipient: Optional[ShipmentContact] = None
    parcels: List[Parcel] = Field(default_factory=list)
    services: List[ShipmentService] = Field(default_factory=list)
    online_tracking: Optional[OnlineTracking] = Field(default=None, alias="onlineTracking")
    tracking: List[TrackingEvent] = Field(default_factory=list)

    @field_validator("parcels", "services", "tracking", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def tracking_status_code(self) -> Optional[int]:
        return self.online_tracking.tracking_status_code if self.online_tracking else None


class Page(CarrierModel, Generic[ItemT]):
    """Standard paginated response wrapper."""

    current_page: Optional[int] = None
    last_page: int
    per_page: Optional[int] = None
    total: int
    from_: Optional[int] = Field(default=None, alias="from")
    to: Optional[int] = None
    items: List[ItemT]


class ShipmentPage(Page[Shipment]):
    pass


class ShipmentCreated(CarrierModel):
    id: Identifier
    number: Optional[str] = None
    status: Optional[str] = None
    cost: Optional[float] = None
    scheduled_delivery_date: Optional[str] = Field(default=None, alias="scheduledDeliveryDate")
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class HistoryTrackingEvent(CarrierModel):
    code: Optional[str] = None
    code_name: Optional[str] = None
    country_code: Optional[str] = None
    settlement: Optional[str] = None
    date: Optional[str] = None


class TrackingHistoryItem(CarrierModel):
    id: Optional[Identifier] = None
    number: Optional[str] = None
    scheduled_delivery_date: Optional[str] = None
    history_tracking: List[HistoryTrackingEvent] = Field(default_factory=list)


class TrackingHistory(CarrierModel):
    items: List[TrackingHistoryItem]


def decode_result(result: ApiResult[Any], model: Type[ModelT]) -> ApiResult[ModelT]:
    """Validate a successful payload against ``model``; fail closed otherwise."""
    if not result.success:
        return result

    try:
        return ApiResult.ok(model.model_validate(result.data))
    except PydanticValidationError as exc:
        error = UpstreamDecodeError(
            f"Malformed upstream response for {model.__name__}",
            {"errors": exc.error_count()},
        )
        logger.warning("Upstream payload failed schema validation", model=model.__name__, errors=exc.error_count())
        return ApiResult.fail(error.message, error.status_code, _field_errors(exc))


def _field_errors(exc: PydanticValidationError) -> Dict[str, List[str]]:
    errors: Dict[str, List[str]] = {}
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "__root__"
        errors.setdefault(location, []).append(item.get("msg", "invalid"))
    return errors
