"""
Carrier domain: upstream schemas, shipment operations and key storage.
"""

from .api_keys import ApiKeyStore, InMemoryApiKeyStore
from .models import Page, Shipment, ShipmentPage, decode_result
from .shipments import ShipmentsApi

__all__ = [
    "ApiKeyStore",
    "InMemoryApiKeyStore",
    "Page",
    "Shipment",
    "ShipmentPage",
    "ShipmentsApi",
    "decode_result",
]
