"""Two-asset constant-product liquidity pool engine."""

from cpamm.amm.pool import PoolEngine
from cpamm.config import DEFAULT_POOL_CONFIG, PoolConfig, ReserveSource
from cpamm.custody import AssetLedger, InMemoryAssetLedger, InMemoryShareLedger, ShareLedger

__version__ = "0.1.0"
__all__ = [
    "PoolEngine",
    "PoolConfig",
    "ReserveSource",
    "DEFAULT_POOL_CONFIG",
    "AssetLedger",
    "ShareLedger",
    "InMemoryAssetLedger",
    "InMemoryShareLedger",
    "__version__",
]
