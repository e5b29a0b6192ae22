"""
Per-user API key persistence.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol


class ApiKeyStore(Protocol):
    """Where each user's carrier API key is kept between requests."""

    async def get(self, user_id: str) -> Optional[str]:
        ...

    async def save(self, user_id: str, api_key: str) -> None:
        ...

    async def delete(self, user_id: str) -> bool:
        ...


class InMemoryApiKeyStore:
    """Process-local key store, used in development and tests."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._keys: Dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Optional[str]:
        return self._keys.get(user_id)

    async def save(self, user_id: str, api_key: str) -> None:
        async with self._lock:
            self._keys[user_id] = api_key

    async def delete(self, user_id: str) -> bool:
        async with self._lock:
            return self._keys.pop(user_id, None) is not None
