"""
Adapters package for the Carrier service.

Contains the HTTP facade for the upstream carrier API. These adapters
encapsulate:

- Base URL, headers and query-string shape
- Token refresh and the single retry on authentication rejection
- Conversion of every outcome into an ApiResult

Keep adapters thin and side-effect free outside of explicit calls.
"""

from .carrier_client import CarrierClient
from .client_registry import (
    CachedClient,
    ClientRegistry,
    KeyValidationReason,
    KeyValidationResult,
)
from .results import ApiError, ApiResult

__all__ = [
    "ApiError",
    "ApiResult",
    "CachedClient",
    "CarrierClient",
    "ClientRegistry",
    "KeyValidationReason",
    "KeyValidationResult",
]
