"""
Uniform result type returned by the carrier client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ApiError:
    """Failure details relayed to callers."""

    message: str
    status: int
    errors: Optional[Dict[str, List[str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message, "status": self.status}
        if self.errors is not None:
            payload["errors"] = self.errors
        return payload


@dataclass(frozen=True)
class ApiResult(Generic[T]):
    """Discriminated success/failure result.

    Exactly one of ``data`` (on success, possibly ``None`` for empty
    responses) or ``error`` is meaningful.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[ApiError] = None

    @classmethod
    def ok(cls, data: Optional[T] = None) -> "ApiResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        message: str,
        status: int,
        errors: Optional[Dict[str, List[str]]] = None,
    ) -> "ApiResult[T]":
        return cls(success=False, error=ApiError(message=message, status=status, errors=errors))
