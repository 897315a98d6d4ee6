"""Custody collaborators: the asset ledger and the share ledger.

The pool engine never holds tokens itself. It asks an AssetLedger to move
tokens between holders and a ShareLedger to credit or debit pool shares per
holder. Both are protocols so a host can plug in whatever backs them; the
in-memory implementations here back the tests and the CLI.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Protocol, runtime_checkable

import structlog

from cpamm.errors import ArithmeticUnderflow, InvalidAmount, InvalidAsset
from cpamm.models.types import normalize_address

logger = structlog.get_logger()


@runtime_checkable
class AssetLedger(Protocol):
    """Token balances and transfers for the pool's two assets."""

    def balance_of(self, asset: str, holder: str) -> int:
        """Return holder's balance of asset.

        Raises:
            InvalidAsset: If the ledger does not know the asset
        """
        ...

    def transfer_from(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        """Pull amount of asset from sender to recipient on the pool's behalf.

        Returns:
            True if the tokens moved, False if the ledger refused
        """
        ...

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        """Send amount of asset out of sender's (the pool's) own balance.

        Returns:
            True if the tokens moved, False if the ledger refused
        """
        ...


@runtime_checkable
class ShareLedger(Protocol):
    """Per-holder balances of the pool-share token."""

    def mint(self, holder: str, amount: int) -> None: ...

    def burn(self, holder: str, amount: int) -> None:
        """Raises ArithmeticUnderflow if holder owns fewer than amount shares."""
        ...

    def total_supply(self) -> int: ...

    def balance_of(self, holder: str) -> int: ...


class InMemoryAssetLedger:
    """Dict-backed AssetLedger.

    Assets must be registered before use. Transfers that would overdraw the
    sender return False rather than raising, the way an ERC20 returning
    false behaves. ``fail_after`` arms a one-shot fault: the transfer attempted
    after that many further attempts is refused.
    """

    def __init__(self, assets: list[str] | tuple[str, ...] = ()) -> None:
        self._balances: dict[str, defaultdict[str, int]] = {}
        self._fail_countdown: int | None = None
        self.transfer_count = 0
        for asset in assets:
            self.register(asset)

    def register(self, asset: str) -> str:
        """Make asset known to the ledger. Returns the normalized address."""
        key = normalize_address(asset, validate=True)
        self._balances.setdefault(key, defaultdict(int))
        return key

    def credit(self, asset: str, holder: str, amount: int) -> None:
        """Mint amount of asset to holder out of thin air (test faucet)."""
        if amount < 0:
            raise InvalidAmount(f"Cannot credit a negative amount: {amount}")
        self._book(asset)[normalize_address(holder)] += amount

    def fail_after(self, attempts: int = 0) -> None:
        """Refuse the transfer attempted after ``attempts`` more attempts."""
        self._fail_countdown = attempts

    def balance_of(self, asset: str, holder: str) -> int:
        return self._book(asset)[normalize_address(holder)]

    def transfer_from(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        return self._move(asset, sender, recipient, amount)

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        return self._move(asset, sender, recipient, amount)

    def _book(self, asset: str) -> defaultdict[str, int]:
        book = self._balances.get(normalize_address(asset))
        if book is None:
            raise InvalidAsset(f"Unknown asset: {asset}")
        return book

    def _move(self, asset: str, sender: str, recipient: str, amount: int) -> bool:
        book = self._book(asset)
        src = normalize_address(sender)
        dst = normalize_address(recipient)

        if self._fail_countdown is not None:
            if self._fail_countdown == 0:
                self._fail_countdown = None
                logger.debug("injected_transfer_failure", asset=asset, sender=src, amount=amount)
                return False
            self._fail_countdown -= 1

        if amount < 0 or book[src] < amount:
            return False
        book[src] -= amount
        book[dst] += amount
        self.transfer_count += 1
        return True


class InMemoryShareLedger:
    """Dict-backed ShareLedger."""

    def __init__(self) -> None:
        self._balances: defaultdict[str, int] = defaultdict(int)
        self._supply = 0

    def mint(self, holder: str, amount: int) -> None:
        self._balances[normalize_address(holder)] += amount
        self._supply += amount

    def burn(self, holder: str, amount: int) -> None:
        key = normalize_address(holder)
        if self._balances[key] < amount:
            raise ArithmeticUnderflow(
                f"Holder {key} has {self._balances[key]} shares, cannot burn {amount}"
            )
        self._balances[key] -= amount
        self._supply -= amount

    def total_supply(self) -> int:
        return self._supply

    def balance_of(self, holder: str) -> int:
        return self._balances[normalize_address(holder)]


__all__ = [
    "AssetLedger",
    "ShareLedger",
    "InMemoryAssetLedger",
    "InMemoryShareLedger",
]
