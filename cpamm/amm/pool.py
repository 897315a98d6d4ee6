"""Pool engine: swap, deposit and withdrawal as all-or-nothing operations.

Each public operation runs under the pool's lock and follows the same shape:
validate, snapshot, quote, check the quote, update reserves and shares, move
tokens through the asset ledger, then record an event. Any failure restores
the snapshot and reverses whatever token or share movement already happened,
so a caller never observes half an operation. An operation started from inside
another one on the same pool (for example by an asset ledger calling back) is
rejected with PoolLocked.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog

from cpamm.amm.ledger import Direction, ReserveLedger, ShareAccounting
from cpamm.amm.quote import (
    LiquidityQuote,
    WithdrawalQuote,
    quote_add_liquidity,
    quote_remove_liquidity,
    quote_swap,
)
from cpamm.config import DEFAULT_POOL_CONFIG, PoolConfig, ReserveSource
from cpamm.constants import DEFAULT_POOL_ADDRESS
from cpamm.custody import AssetLedger, InMemoryShareLedger, ShareLedger
from cpamm.errors import InvalidAmount, InvalidAsset, PoolError, PoolLocked, TransferFailed
from cpamm.models.events import LiquidityAdded, LiquidityRemoved, PoolEventBase, Swapped
from cpamm.models.types import is_valid_address, normalize_address

logger = structlog.get_logger()

EventListener = Callable[[PoolEventBase], None]


class PoolEngine:
    """A single two-token constant-product pool with no swap fee.

    Args:
        token_a: Address of the first pool token
        token_b: Address of the second pool token
        assets: Ledger that custodies both tokens
        shares: Ledger for per-holder pool shares (default: in-memory)
        address: The pool's own holder address on the asset ledger
        config: Behaviour switches (default: DEFAULT_POOL_CONFIG)

    Raises:
        InvalidAsset: If a token address is malformed, both are the same, or
            the asset ledger does not recognise one of them
    """

    def __init__(
        self,
        token_a: str,
        token_b: str,
        assets: AssetLedger,
        shares: ShareLedger | None = None,
        *,
        address: str = DEFAULT_POOL_ADDRESS,
        config: PoolConfig = DEFAULT_POOL_CONFIG,
    ) -> None:
        if not is_valid_address(address):
            raise ValueError(f"Invalid pool address: {address}")
        self.address = normalize_address(address)
        self.config = config
        self._assets = assets
        self._share_ledger: ShareLedger = shares if shares is not None else InMemoryShareLedger()

        self._token_a = self._validate_token(token_a)
        self._token_b = self._validate_token(token_b)
        if self._token_a == self._token_b:
            raise InvalidAsset(f"Pool tokens must differ, got {token_a} twice")

        self._reserves = ReserveLedger()
        self._shares = ShareAccounting()
        # Re-entrant so accessors stay usable from ledger callbacks; _entered
        # rejects a nested swap or liquidity change on the same thread.
        self._lock = threading.RLock()
        self._entered = False
        self._events: list[PoolEventBase] = []
        self._listeners: list[EventListener] = []

        logger.debug(
            "pool_created",
            pool=self.address,
            token_a=self._token_a,
            token_b=self._token_b,
            swap_reserve_source=config.swap_reserve_source.value,
        )

    # --- Accessors ---

    def get_token_a(self) -> str:
        return self._token_a

    def get_token_b(self) -> str:
        return self._token_b

    def get_reserves(self) -> tuple[int, int]:
        """Return (reserve_a, reserve_b)."""
        with self._lock:
            return self._reserves.current_reserves()

    def get_invariant(self) -> int:
        with self._lock:
            return self._reserves.invariant

    def get_total_shares(self) -> int:
        with self._lock:
            return self._shares.total_shares

    @property
    def tokens(self) -> tuple[str, str]:
        return self._token_a, self._token_b

    @property
    def share_ledger(self) -> ShareLedger:
        return self._share_ledger

    @property
    def events(self) -> tuple[PoolEventBase, ...]:
        """Every event emitted so far, oldest first."""
        with self._lock:
            return tuple(self._events)

    def subscribe(self, listener: EventListener) -> None:
        """Call listener with every event emitted from now on."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.remove(listener)

    # --- Operations ---

    def swap(self, sender: str, token_in: str, token_out: str, amount_in: int) -> int:
        """Sell amount_in of token_in to the pool for token_out.

        Args:
            sender: Trader paying token_in and receiving token_out
            token_in: Token sold
            token_out: Token bought
            amount_in: Amount of token_in sold

        Returns:
            Amount of token_out paid to sender

        Raises:
            InvalidAsset: If the tokens are not this pool's two distinct tokens
            InvalidAmount: If amount_in is not positive
            InsufficientOutput: If the trade would pay out nothing
            ArithmeticOverflow / ArithmeticUnderflow: On uint256 bounds violations
            TransferFailed: If the asset ledger refuses either leg
            PoolLocked: If called from inside another operation on this pool
        """
        context = {"sender": sender, "token_in": token_in, "token_out": token_out, "amount_in": amount_in}
        with self._lock, self._atomic("swap", context) as undo:
            sender = self._validate_sender(sender)
            token_in = normalize_address(token_in)
            token_out = normalize_address(token_out)
            from_custody = self.config.swap_reserve_source is ReserveSource.CUSTODY

            if from_custody and token_in in self.tokens and token_out in self.tokens:
                reserve_in = self._assets.balance_of(token_in, self.address)
                reserve_out = self._assets.balance_of(token_out, self.address)
            else:
                reserve_in, reserve_out = self._ordered_reserves(token_in)

            amount_out = quote_swap(
                token_in,
                token_out,
                amount_in,
                reserve_in,
                reserve_out,
                self._reserves.invariant,
                pool_tokens=self.tokens,
            )

            if not from_custody:
                self._apply_swap_deltas(token_in, amount_in, amount_out)

            self._pull(undo, token_in, sender, amount_in)
            self._push(undo, token_out, sender, amount_out)

            if from_custody:
                self._reserves.sync(
                    self._assets.balance_of(self._token_a, self.address),
                    self._assets.balance_of(self._token_b, self.address),
                )

            event = Swapped(
                **self._event_header(sender),
                token_in=token_in,
                token_out=token_out,
                amount_in=amount_in,
                amount_out=amount_out,
            )
            self._record(event)

        logger.info(
            "pool_swap",
            pool=self.address,
            sender=sender,
            token_in=token_in,
            amount_in=amount_in,
            amount_out=amount_out,
        )
        self._publish(event)
        return amount_out

    def add_liquidity(self, sender: str, amount_a_in: int, amount_b_in: int) -> LiquidityQuote:
        """Deposit both tokens and mint pool shares to sender.

        On a non-empty pool only the amounts matching the current reserve
        ratio are taken; the rest of the offer is never transferred.

        Returns:
            LiquidityQuote with the amounts taken and the shares minted

        Raises:
            InvalidAmount: If either amount is not positive
            InsufficientLiquidityMinted: If the deposit mints zero shares
            ArithmeticOverflow: If reserves or share supply would exceed uint256
            TransferFailed: If the asset ledger refuses either deposit leg
            PoolLocked: If called from inside another operation on this pool
        """
        context = {"sender": sender, "amount_a_in": amount_a_in, "amount_b_in": amount_b_in}
        with self._lock, self._atomic("add_liquidity", context) as undo:
            sender = self._validate_sender(sender)
            reserve_a, reserve_b = self._reserves.current_reserves()
            quote = quote_add_liquidity(
                amount_a_in, amount_b_in, reserve_a, reserve_b, self._shares.total_shares
            )

            self._reserves.apply_delta(Direction.INCREASE, quote.amount_a, quote.amount_b)
            self._shares.mint(quote.liquidity)
            self._share_ledger.mint(sender, quote.liquidity)
            undo.append(lambda: self._share_ledger.burn(sender, quote.liquidity))

            self._pull(undo, self._token_a, sender, quote.amount_a)
            self._pull(undo, self._token_b, sender, quote.amount_b)

            event = LiquidityAdded(
                **self._event_header(sender),
                amount_a=quote.amount_a,
                amount_b=quote.amount_b,
                liquidity=quote.liquidity,
            )
            self._record(event)

        logger.info(
            "liquidity_added",
            pool=self.address,
            sender=sender,
            amount_a=quote.amount_a,
            amount_b=quote.amount_b,
            liquidity=quote.liquidity,
        )
        self._publish(event)
        return quote

    def remove_liquidity(self, sender: str, liquidity: int) -> WithdrawalQuote:
        """Burn sender's pool shares and pay out the matching reserves.

        Returns:
            WithdrawalQuote with the amounts of each token paid out

        Raises:
            InsufficientLiquidityBurned: If liquidity is not positive
            InvalidAmount: If liquidity exceeds the share supply (when
                config.check_burn_upper_bound is set)
            ArithmeticUnderflow: If sender owns fewer shares than liquidity
            TransferFailed: If the asset ledger refuses either payout leg
            PoolLocked: If called from inside another operation on this pool
        """
        context = {"sender": sender, "liquidity": liquidity}
        with self._lock, self._atomic("remove_liquidity", context) as undo:
            sender = self._validate_sender(sender)
            total_shares = self._shares.total_shares
            if self.config.check_burn_upper_bound and liquidity > total_shares:
                raise InvalidAmount(
                    f"Cannot burn {liquidity} shares, only {total_shares} outstanding"
                )

            reserve_a, reserve_b = self._reserves.current_reserves()
            quote = quote_remove_liquidity(liquidity, reserve_a, reserve_b, total_shares)

            self._reserves.apply_delta(Direction.DECREASE, quote.amount_a, quote.amount_b)
            self._shares.burn(liquidity)
            self._share_ledger.burn(sender, liquidity)
            undo.append(lambda: self._share_ledger.mint(sender, liquidity))

            self._push(undo, self._token_a, sender, quote.amount_a)
            self._push(undo, self._token_b, sender, quote.amount_b)

            event = LiquidityRemoved(
                **self._event_header(sender),
                amount_a=quote.amount_a,
                amount_b=quote.amount_b,
                liquidity=liquidity,
            )
            self._record(event)

        logger.info(
            "liquidity_removed",
            pool=self.address,
            sender=sender,
            amount_a=quote.amount_a,
            amount_b=quote.amount_b,
            liquidity=liquidity,
        )
        self._publish(event)
        return quote

    # --- Internals ---

    @contextmanager
    def _atomic(self, operation: str, context: dict[str, Any]) -> Iterator[list[Callable[[], Any]]]:
        """Run an operation body; on any error undo it and re-raise.

        Yields a list the body appends compensating actions to. They run in
        reverse order after reserves and share supply are restored.
        """
        if self._entered:
            raise PoolLocked(
                f"Cannot start {operation} while another operation on {self.address} is in progress"
            )
        self._entered = True

        reserves = self._reserves.snapshot()
        total_shares = self._shares.snapshot()
        event_count = len(self._events)
        undo: list[Callable[[], Any]] = []
        try:
            yield undo
        except Exception as exc:
            self._reserves.restore(reserves)
            self._shares.restore(total_shares)
            del self._events[event_count:]
            for action in reversed(undo):
                try:
                    action()
                except Exception as rollback_exc:
                    logger.error(
                        "rollback_step_failed",
                        pool=self.address,
                        operation=operation,
                        error=type(rollback_exc).__name__,
                        detail=str(rollback_exc),
                    )
            logger.warning(
                "pool_operation_failed",
                pool=self.address,
                operation=operation,
                error=type(exc).__name__,
                detail=str(exc),
                **context,
            )
            raise
        finally:
            self._entered = False

    def _validate_token(self, token: str) -> str:
        if not is_valid_address(token):
            raise InvalidAsset(f"Invalid token address: {token}")
        token = normalize_address(token)
        try:
            self._assets.balance_of(token, self.address)
        except PoolError:
            raise
        except Exception as err:
            raise InvalidAsset(f"Asset ledger does not recognise {token}") from err
        return token

    @staticmethod
    def _validate_sender(sender: str) -> str:
        return normalize_address(sender, validate=True)

    def _ordered_reserves(self, token_in: str) -> tuple[int, int]:
        """Ledger reserves as (reserve_in, reserve_out); (0, 0) for a foreign token."""
        reserve_a, reserve_b = self._reserves.current_reserves()
        if token_in == self._token_a:
            return reserve_a, reserve_b
        if token_in == self._token_b:
            return reserve_b, reserve_a
        return 0, 0

    def _apply_swap_deltas(self, token_in: str, amount_in: int, amount_out: int) -> None:
        if token_in == self._token_a:
            self._reserves.apply_delta(Direction.INCREASE, amount_in, 0)
            self._reserves.apply_delta(Direction.DECREASE, 0, amount_out)
        else:
            self._reserves.apply_delta(Direction.INCREASE, 0, amount_in)
            self._reserves.apply_delta(Direction.DECREASE, amount_out, 0)

    def _pull(self, undo: list[Callable[[], Any]], asset: str, holder: str, amount: int) -> None:
        """Move amount of asset from holder into the pool."""
        self._transfer(self._assets.transfer_from, asset, holder, self.address, amount)
        undo.append(
            lambda: self._transfer(self._assets.transfer, asset, self.address, holder, amount)
        )

    def _push(self, undo: list[Callable[[], Any]], asset: str, holder: str, amount: int) -> None:
        """Move amount of asset from the pool to holder."""
        self._transfer(self._assets.transfer, asset, self.address, holder, amount)
        undo.append(
            lambda: self._transfer(self._assets.transfer_from, asset, holder, self.address, amount)
        )

    @staticmethod
    def _transfer(
        method: Callable[[str, str, str, int], bool],
        asset: str,
        sender: str,
        recipient: str,
        amount: int,
    ) -> None:
        try:
            moved = method(asset, sender, recipient, amount)
        except Exception as err:
            raise TransferFailed(
                f"Transfer of {amount} {asset} from {sender} to {recipient} raised: {err}"
            ) from err
        if not moved:
            raise TransferFailed(f"Transfer of {amount} {asset} from {sender} to {recipient} refused")

    def _event_header(self, sender: str) -> dict[str, Any]:
        reserve_a, reserve_b = self._reserves.current_reserves()
        return {
            "pool": self.address,
            "sequence": len(self._events) + 1,
            "sender": sender,
            "reserve_a": reserve_a,
            "reserve_b": reserve_b,
        }

    def _record(self, event: PoolEventBase) -> None:
        self._events.append(event)

    def _publish(self, event: PoolEventBase) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("event_listener_failed", pool=self.address, sequence=event.sequence)

    def __repr__(self) -> str:
        reserve_a, reserve_b = self.get_reserves()
        return (
            f"PoolEngine(address={self.address}, token_a={self._token_a}, "
            f"token_b={self._token_b}, reserves=({reserve_a}, {reserve_b}), "
            f"total_shares={self.get_total_shares()})"
        )


__all__ = ["PoolEngine", "EventListener"]
