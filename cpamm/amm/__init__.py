"""Constant-product pool: quote math, reserve/share bookkeeping and the engine."""

from cpamm.amm.ledger import Direction, ReserveLedger, ReserveSnapshot, ShareAccounting
from cpamm.amm.pool import EventListener, PoolEngine
from cpamm.amm.quote import (
    LiquidityQuote,
    WithdrawalQuote,
    integer_sqrt,
    swap_output,
    quote_add_liquidity,
    quote_remove_liquidity,
    quote_swap,
    quote_swap_amount,
)

__all__ = [
    # Engine
    "PoolEngine",
    "EventListener",
    # Ledger
    "Direction",
    "ReserveLedger",
    "ReserveSnapshot",
    "ShareAccounting",
    # Quotes
    "LiquidityQuote",
    "WithdrawalQuote",
    "integer_sqrt",
    "swap_output",
    "quote_swap",
    "quote_swap_amount",
    "quote_add_liquidity",
    "quote_remove_liquidity",
]
