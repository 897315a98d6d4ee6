"""Pydantic models for pool domain events.

One event is emitted per successful swap, deposit or withdrawal. Amounts are
carried as uint256 decimal strings so events serialize to JSON without
precision loss.
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Discriminator, Field

from cpamm.models.types import Address, Uint256


class PoolEventBase(BaseModel):
    """Fields shared by every pool event."""

    pool: Address = Field(description="Address of the emitting pool.")
    sequence: int = Field(ge=1, description="1-based position in the pool's event log.")
    sender: Address = Field(description="Actor that initiated the operation.")
    reserve_a: Uint256 = Field(
        alias="reserveA", description="Reserve of token A after the operation."
    )
    reserve_b: Uint256 = Field(
        alias="reserveB", description="Reserve of token B after the operation."
    )

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def reserves(self) -> tuple[int, int]:
        """Post-operation reserves as ints."""
        return int(self.reserve_a), int(self.reserve_b)


class Swapped(PoolEventBase):
    """A trade of token_in for token_out."""

    kind: Literal["swap"] = "swap"
    token_in: Address = Field(alias="tokenIn")
    token_out: Address = Field(alias="tokenOut")
    amount_in: Uint256 = Field(alias="amountIn")
    amount_out: Uint256 = Field(alias="amountOut")


class LiquidityAdded(PoolEventBase):
    """A deposit that minted pool shares."""

    kind: Literal["addLiquidity"] = "addLiquidity"
    amount_a: Uint256 = Field(alias="amountA", description="Token A actually taken.")
    amount_b: Uint256 = Field(alias="amountB", description="Token B actually taken.")
    liquidity: Uint256 = Field(description="Pool shares minted.")


class LiquidityRemoved(PoolEventBase):
    """A withdrawal that burned pool shares."""

    kind: Literal["removeLiquidity"] = "removeLiquidity"
    amount_a: Uint256 = Field(alias="amountA", description="Token A paid out.")
    amount_b: Uint256 = Field(alias="amountB", description="Token B paid out.")
    liquidity: Uint256 = Field(description="Pool shares burned.")


PoolEvent = Annotated[
    Swapped | LiquidityAdded | LiquidityRemoved,
    Discriminator("kind"),
]


class EventLog(BaseModel):
    """Serializable snapshot of a pool's event history."""

    events: list[PoolEvent] = Field(default_factory=list)
