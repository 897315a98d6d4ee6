"""Constant-product quote math.

Pure functions that price a swap, a deposit and a withdrawal against a
snapshot of pool state. Nothing here reads or writes pool state; every
intermediate value goes through SafeInt so uint256 overflow, underflow and
division by zero raise instead of wrapping.

Swap formula: amount_out = ((reserve_in + amount_in) * reserve_out - k) / (reserve_in + amount_in)

``k`` is the invariant recorded at the last reserve change, not a product of
the reserves passed in. When the two agree (reserves read right before the
quote and written right after it) this is the textbook x * y = k output.
When they disagree, for example after tokens were sent to the pool outside
of an operation, the result tracks the recorded ``k``.
"""

from __future__ import annotations

from dataclasses import dataclass
from math import isqrt

from cpamm.errors import (
    InsufficientLiquidityBurned,
    InsufficientLiquidityMinted,
    InsufficientOutput,
    InvalidAmount,
    InvalidAsset,
)
from cpamm.safe_int import S


@dataclass(frozen=True)
class LiquidityQuote:
    """Result of pricing a deposit.

    amount_a/amount_b are the amounts actually taken from the depositor; on a
    non-empty pool the non-binding side may be less than what was offered.
    """

    amount_a: int
    amount_b: int
    liquidity: int


@dataclass(frozen=True)
class WithdrawalQuote:
    """Result of pricing a withdrawal."""

    amount_a: int
    amount_b: int


def integer_sqrt(value: int) -> int:
    """Floor square root of a non-negative integer."""
    return isqrt(S(value).value)


def swap_output(amount_in: int, reserve_in: int, reserve_out: int, invariant: int) -> int:
    """Raw swap formula with no token or postcondition checks.

    Raises:
        ArithmeticOverflow: If reserve_in + amount_in or the product overflows
        ArithmeticUnderflow: If (reserve_in + amount_in) * reserve_out < invariant
    """
    total_in = S(reserve_in) + S(amount_in)
    return ((total_in * S(reserve_out) - S(invariant)) // total_in).value


def quote_swap(
    token_in: str,
    token_out: str,
    amount_in: int,
    live_reserve_in: int,
    live_reserve_out: int,
    invariant: int,
    *,
    pool_tokens: tuple[str, str],
) -> int:
    """Calculate the output of an exact-input swap.

    Args:
        token_in: Token sold to the pool
        token_out: Token bought from the pool
        amount_in: Amount of token_in sold
        live_reserve_in: Pool balance of token_in right before the swap
        live_reserve_out: Pool balance of token_out right before the swap
        invariant: k as recorded at the pool's last reserve change
        pool_tokens: The pool's (token_a, token_b)

    Returns:
        Amount of token_out paid out

    Raises:
        InvalidAsset: If either token is not in the pool, or they are equal
        InvalidAmount: If amount_in is not positive
        ArithmeticOverflow: If reserve_in + amount_in or the product overflows
        ArithmeticUnderflow: If (reserve_in + amount_in) * reserve_out < k
        InsufficientOutput: If the output rounds down to zero
    """
    if token_in not in pool_tokens or token_out not in pool_tokens:
        raise InvalidAsset(f"Token pair {token_in}/{token_out} not in pool")
    if token_in == token_out:
        raise InvalidAsset(f"Cannot swap {token_in} for itself")
    return quote_swap_amount(amount_in, live_reserve_in, live_reserve_out, invariant)


def quote_swap_amount(amount_in: int, reserve_in: int, reserve_out: int, invariant: int) -> int:
    """Price an exact-input swap given only the amounts.

    Same checks as quote_swap minus the token identity checks.

    Raises:
        InvalidAmount: If amount_in is not positive
        ArithmeticOverflow: If reserve_in + amount_in or the product overflows
        ArithmeticUnderflow: If (reserve_in + amount_in) * reserve_out < invariant
        InsufficientOutput: If the output rounds down to zero
    """
    if amount_in <= 0:
        raise InvalidAmount(f"Swap amount must be positive, got {amount_in}")

    amount_out = swap_output(amount_in, reserve_in, reserve_out, invariant)
    if amount_out == 0:
        raise InsufficientOutput(
            f"Swapping {amount_in} against reserves "
            f"({reserve_in}, {reserve_out}) yields no output"
        )
    return amount_out


def quote_add_liquidity(
    amount_a_in: int,
    amount_b_in: int,
    reserve_a: int,
    reserve_b: int,
    total_shares: int,
) -> LiquidityQuote:
    """Calculate shares minted for a deposit and the amounts actually taken.

    On an empty pool the depositor sets the price: shares are
    floor(sqrt(a * b)) and both amounts are taken in full. Otherwise each
    side implies a share count, the smaller one wins, and the amounts taken
    are re-derived from it so the deposit always matches the reserve ratio.

    Raises:
        InvalidAmount: If either amount is not positive
        InsufficientLiquidityMinted: If the deposit mints zero shares
    """
    if amount_a_in <= 0 or amount_b_in <= 0:
        raise InvalidAmount(
            f"Deposit amounts must be positive, got ({amount_a_in}, {amount_b_in})"
        )

    if total_shares == 0:
        liquidity = integer_sqrt((S(amount_a_in) * S(amount_b_in)).value)
        amount_a, amount_b = amount_a_in, amount_b_in
    else:
        shares = S(total_shares)
        liq_from_a = S(amount_a_in) * shares // S(reserve_a)
        liq_from_b = S(amount_b_in) * shares // S(reserve_b)
        binding = liq_from_a.min(liq_from_b)
        liquidity = binding.value
        amount_a = (binding * S(reserve_a) // shares).value
        amount_b = (binding * S(reserve_b) // shares).value

    if liquidity == 0:
        raise InsufficientLiquidityMinted(
            f"Deposit ({amount_a_in}, {amount_b_in}) mints no shares"
        )
    return LiquidityQuote(amount_a=amount_a, amount_b=amount_b, liquidity=liquidity)


def quote_remove_liquidity(
    liquidity: int,
    reserve_a: int,
    reserve_b: int,
    total_shares: int,
) -> WithdrawalQuote:
    """Calculate the reserves paid out for burning ``liquidity`` shares.

    Rounds down on both sides. Does not compare liquidity with total_shares;
    the caller decides how an oversized burn is rejected.

    Raises:
        InsufficientLiquidityBurned: If liquidity is not positive
        DivisionByZero: If total_shares is zero
    """
    if liquidity <= 0:
        raise InsufficientLiquidityBurned(f"Must burn a positive share amount, got {liquidity}")

    shares = S(total_shares)
    amount_a = S(liquidity) * S(reserve_a) // shares
    amount_b = S(liquidity) * S(reserve_b) // shares
    return WithdrawalQuote(amount_a=amount_a.value, amount_b=amount_b.value)


__all__ = [
    "LiquidityQuote",
    "WithdrawalQuote",
    "integer_sqrt",
    "swap_output",
    "quote_swap",
    "quote_swap_amount",
    "quote_add_liquidity",
    "quote_remove_liquidity",
]
