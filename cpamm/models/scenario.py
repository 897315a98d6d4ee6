"""Pydantic models for scripted pool scenarios run by the CLI.

Example:
    {
        "tokenA": "0xaa...aa",
        "tokenB": "0xbb...bb",
        "balances": {"0x11...11": {"0xaa...aa": "1000", "0xbb...bb": "4000"}},
        "operations": [
            {"op": "addLiquidity", "sender": "0x11...11", "amountA": "1000", "amountB": "4000"},
            {"op": "swap", "sender": "0x11...11", "tokenIn": "0xaa...aa",
             "tokenOut": "0xbb...bb", "amountIn": "100"}
        ]
    }
"""

from typing import Annotated, Literal

from pydantic import BaseModel, Discriminator, Field

from cpamm.config import ReserveSource
from cpamm.constants import DEFAULT_POOL_ADDRESS
from cpamm.models.types import Address, Uint256


class SwapStep(BaseModel):
    op: Literal["swap"] = "swap"
    sender: Address
    token_in: Address = Field(alias="tokenIn")
    token_out: Address = Field(alias="tokenOut")
    amount_in: Uint256 = Field(alias="amountIn")

    model_config = {"populate_by_name": True}


class AddLiquidityStep(BaseModel):
    op: Literal["addLiquidity"] = "addLiquidity"
    sender: Address
    amount_a: Uint256 = Field(alias="amountA")
    amount_b: Uint256 = Field(alias="amountB")

    model_config = {"populate_by_name": True}


class RemoveLiquidityStep(BaseModel):
    op: Literal["removeLiquidity"] = "removeLiquidity"
    sender: Address
    liquidity: Uint256

    model_config = {"populate_by_name": True}


ScenarioStep = Annotated[
    SwapStep | AddLiquidityStep | RemoveLiquidityStep,
    Discriminator("op"),
]


class Scenario(BaseModel):
    """A pool definition, starting balances and a list of operations."""

    token_a: Address = Field(alias="tokenA")
    token_b: Address = Field(alias="tokenB")
    pool: Address = Field(default=DEFAULT_POOL_ADDRESS, description="The pool's own address.")
    swap_reserve_source: ReserveSource = Field(
        default=ReserveSource.CUSTODY, alias="swapReserveSource"
    )
    check_burn_upper_bound: bool = Field(default=True, alias="checkBurnUpperBound")
    # holder -> token -> amount
    balances: dict[Address, dict[Address, Uint256]] = Field(default_factory=dict)
    operations: list[ScenarioStep] = Field(default_factory=list)

    model_config = {"populate_by_name": True}
