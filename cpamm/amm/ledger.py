"""Reserve and share bookkeeping for a single pool.

ReserveLedger holds the two reserves and the invariant derived from them.
ShareAccounting holds the aggregate pool-share supply. Both compute the new
state fully before assigning it, so a failed update leaves them untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from cpamm.safe_int import S


class Direction(str, Enum):
    """Which way a reserve adjustment moves."""

    INCREASE = "increase"
    DECREASE = "decrease"


@dataclass(frozen=True)
class ReserveSnapshot:
    """Point-in-time copy of ledger state, used for rollback."""

    reserve_a: int
    reserve_b: int
    invariant: int


class ReserveLedger:
    """Current reserves of both pool tokens and the invariant k = a * b."""

    __slots__ = ("_reserve_a", "_reserve_b", "_invariant")

    def __init__(self) -> None:
        self._reserve_a = 0
        self._reserve_b = 0
        self._invariant = 0

    @property
    def reserve_a(self) -> int:
        return self._reserve_a

    @property
    def reserve_b(self) -> int:
        return self._reserve_b

    @property
    def invariant(self) -> int:
        """k as of the last reserve change."""
        return self._invariant

    def current_reserves(self) -> tuple[int, int]:
        """Return (reserve_a, reserve_b)."""
        return self._reserve_a, self._reserve_b

    def apply_delta(self, direction: Direction, delta_a: int, delta_b: int) -> None:
        """Move both reserves by the given deltas and recompute k.

        Args:
            direction: INCREASE adds the deltas, DECREASE subtracts them
            delta_a: Change in token A reserve
            delta_b: Change in token B reserve

        Raises:
            ArithmeticOverflow: If a reserve or k would exceed uint256
            ArithmeticUnderflow: If a reserve would go negative
        """
        if direction is Direction.INCREASE:
            new_a = S(self._reserve_a) + S(delta_a)
            new_b = S(self._reserve_b) + S(delta_b)
        else:
            new_a = S(self._reserve_a) - S(delta_a)
            new_b = S(self._reserve_b) - S(delta_b)
        self._set(new_a.value, new_b.value)

    def sync(self, reserve_a: int, reserve_b: int) -> None:
        """Overwrite reserves with externally observed balances and recompute k.

        Raises:
            ArithmeticOverflow: If k would exceed uint256
        """
        self._set(S(reserve_a).value, S(reserve_b).value)

    def snapshot(self) -> ReserveSnapshot:
        return ReserveSnapshot(self._reserve_a, self._reserve_b, self._invariant)

    def restore(self, snapshot: ReserveSnapshot) -> None:
        self._reserve_a = snapshot.reserve_a
        self._reserve_b = snapshot.reserve_b
        self._invariant = snapshot.invariant

    def _set(self, reserve_a: int, reserve_b: int) -> None:
        invariant = (S(reserve_a) * S(reserve_b)).value
        self._reserve_a = reserve_a
        self._reserve_b = reserve_b
        self._invariant = invariant

    def __repr__(self) -> str:
        return (
            f"ReserveLedger(reserve_a={self._reserve_a}, "
            f"reserve_b={self._reserve_b}, invariant={self._invariant})"
        )


class ShareAccounting:
    """Aggregate outstanding pool-share supply.

    Per-holder balances belong to the share ledger collaborator; this class
    only keeps the total in step with reserve changes.
    """

    __slots__ = ("_total_shares",)

    def __init__(self) -> None:
        self._total_shares = 0

    @property
    def total_shares(self) -> int:
        return self._total_shares

    def mint(self, amount: int) -> None:
        """Raises ArithmeticOverflow if the supply would exceed uint256."""
        self._total_shares = (S(self._total_shares) + S(amount)).value

    def burn(self, amount: int) -> None:
        """Raises ArithmeticUnderflow if amount exceeds the supply."""
        self._total_shares = (S(self._total_shares) - S(amount)).value

    def snapshot(self) -> int:
        return self._total_shares

    def restore(self, total_shares: int) -> None:
        self._total_shares = total_shares

    def __repr__(self) -> str:
        return f"ShareAccounting(total_shares={self._total_shares})"


__all__ = [
    "Direction",
    "ReserveSnapshot",
    "ReserveLedger",
    "ShareAccounting",
]
