"""Pool error classes.

Every failure of a pool operation is raised as one of these. The arithmetic
errors also derive from the builtin ArithmeticError so callers that only care
about "bad math" can catch them together.
"""


class PoolError(Exception):
    """Base error for pool operations."""

    pass


class InvalidAsset(PoolError):
    """Token identity is unknown to the pool, malformed, or duplicated."""

    pass


class InvalidAmount(PoolError):
    """Amount is zero, negative, or outside what the pool can honour."""

    pass


class InsufficientOutput(PoolError):
    """Swap would pay out zero tokens."""

    pass


class InsufficientLiquidityMinted(PoolError):
    """Deposit is too small to mint a single pool share."""

    pass


class InsufficientLiquidityBurned(PoolError):
    """Withdrawal must burn at least one pool share."""

    pass


class ArithmeticOverflow(PoolError, ArithmeticError):
    """Value exceeds uint256 maximum."""

    pass


class ArithmeticUnderflow(PoolError, ArithmeticError):
    """Subtraction would produce negative result."""

    pass


class DivisionByZero(PoolError, ArithmeticError):
    """Division by zero."""

    pass


class TransferFailed(PoolError):
    """Asset ledger rejected a token movement."""

    pass


class PoolLocked(PoolError):
    """An operation was started while another one on the same pool is in progress."""

    pass


__all__ = [
    "PoolError",
    "InvalidAsset",
    "InvalidAmount",
    "InsufficientOutput",
    "InsufficientLiquidityMinted",
    "InsufficientLiquidityBurned",
    "ArithmeticOverflow",
    "ArithmeticUnderflow",
    "DivisionByZero",
    "TransferFailed",
    "PoolLocked",
]
