"""Test helpers module for shared test utilities.

- constants: Token and holder addresses
- factories: Pool and ledger factory functions
"""

from tests.helpers.constants import (
    ALICE,
    BOB,
    CAROL,
    FUNDING,
    POOL,
    TOKEN_A,
    TOKEN_B,
    TOKEN_C,
)
from tests.helpers.factories import make_ledger, make_pool, make_seeded_pool

__all__ = [
    # Constants
    "TOKEN_A",
    "TOKEN_B",
    "TOKEN_C",
    "POOL",
    "ALICE",
    "BOB",
    "CAROL",
    "FUNDING",
    # Factories
    "make_ledger",
    "make_pool",
    "make_seeded_pool",
]
