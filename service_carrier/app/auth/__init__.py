"""
Authentication helpers for the carrier API.
"""

from .token_manager import TokenManager, parse_token_expiry

__all__ = [
    "TokenManager",
    "parse_token_expiry",
]
