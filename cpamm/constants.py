"""Pool engine constants."""

# Maximum uint256 value; every reserve, share total and intermediate
# product must stay at or below it
UINT256_MAX = 2**256 - 1

# Placeholder holder used when the pool itself is not given an address
DEFAULT_POOL_ADDRESS = "0x" + "00" * 19 + "01"
