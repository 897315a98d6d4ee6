"""Pool engine configuration."""

import os
from dataclasses import dataclass
from enum import Enum


class ReserveSource(str, Enum):
    """Where the swap path takes its reserves from."""

    # Quote from live custody balances; re-read balances after the transfers
    CUSTODY = "custody"
    # Quote from the engine's own ledger; apply the swap as deltas
    LEDGER = "ledger"


_TRUE_VALUES = ("true", "1", "yes")


@dataclass(frozen=True)
class PoolConfig:
    """Behaviour switches for a PoolEngine.

    Attributes:
        check_burn_upper_bound: If True, remove_liquidity rejects a burn larger
            than the outstanding share supply with InvalidAmount. If False,
            the oversized burn fails later as ArithmeticUnderflow when share
            accounting or the reserve ledger goes negative.
        swap_reserve_source: CUSTODY reconciles reserves from the asset ledger
            around every swap; LEDGER treats the engine's reserves as the only
            source of truth.
    """

    check_burn_upper_bound: bool = True
    swap_reserve_source: ReserveSource = ReserveSource.CUSTODY

    @classmethod
    def from_env(cls) -> "PoolConfig":
        """Build a config from environment variables.

        - CPAMM_CHECK_BURN_UPPER_BOUND: "true"/"false" (default: true)
        - CPAMM_SWAP_RESERVE_SOURCE: "custody" or "ledger" (default: custody)

        Raises:
            ValueError: If CPAMM_SWAP_RESERVE_SOURCE is not a known source
        """
        check_bound = os.environ.get("CPAMM_CHECK_BURN_UPPER_BOUND", "true").lower() in _TRUE_VALUES
        source = ReserveSource(os.environ.get("CPAMM_SWAP_RESERVE_SOURCE", "custody").lower())
        return cls(check_burn_upper_bound=check_bound, swap_reserve_source=source)


# Default configuration instance
DEFAULT_POOL_CONFIG = PoolConfig()
