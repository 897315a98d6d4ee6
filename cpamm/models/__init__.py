"""Pydantic models for pool events and shared types."""

from cpamm.models.events import (
    EventLog,
    LiquidityAdded,
    LiquidityRemoved,
    PoolEvent,
    PoolEventBase,
    Swapped,
)
from cpamm.models.types import Address, Uint256, is_valid_address, normalize_address

__all__ = [
    # Events
    "EventLog",
    "PoolEvent",
    "PoolEventBase",
    "Swapped",
    "LiquidityAdded",
    "LiquidityRemoved",
    # Types
    "Address",
    "Uint256",
    "is_valid_address",
    "normalize_address",
]
