"""Tests for the PoolEngine composite operations."""

import pytest

from cpamm.amm.pool import PoolEngine
from cpamm.amm.quote import LiquidityQuote, WithdrawalQuote
from cpamm.config import PoolConfig, ReserveSource
from cpamm.custody import InMemoryAssetLedger, InMemoryShareLedger
from cpamm.errors import (
    ArithmeticUnderflow,
    InsufficientLiquidityBurned,
    InsufficientOutput,
    InvalidAmount,
    InvalidAsset,
    PoolLocked,
    TransferFailed,
)
from cpamm.models.events import LiquidityAdded, LiquidityRemoved, Swapped
from tests.helpers import (
    ALICE,
    BOB,
    CAROL,
    FUNDING,
    POOL,
    TOKEN_A,
    TOKEN_B,
    TOKEN_C,
    make_ledger,
    make_pool,
    make_seeded_pool,
)


def pool_state(pool: PoolEngine) -> tuple:
    """Everything a failed operation must leave untouched."""
    return (pool.get_reserves(), pool.get_invariant(), pool.get_total_shares(), len(pool.events))


class TestPoolConstruction:
    """Tests for PoolEngine construction and accessors."""

    def test_accessors(self):
        """A new pool exposes its tokens and starts empty."""
        pool, _ = make_pool()
        assert pool.get_token_a() == TOKEN_A
        assert pool.get_token_b() == TOKEN_B
        assert pool.tokens == (TOKEN_A, TOKEN_B)
        assert pool.address == POOL
        assert pool.get_reserves() == (0, 0)
        assert pool.get_invariant() == 0
        assert pool.get_total_shares() == 0
        assert pool.events == ()

    def test_tokens_normalized(self):
        """Mixed-case token addresses are stored lowercase."""
        assets = make_ledger()
        pool = PoolEngine("0x" + "AA" * 20, TOKEN_B, assets, address=POOL)
        assert pool.get_token_a() == TOKEN_A

    def test_identical_tokens_rejected(self):
        """Both sides of the pair must differ."""
        with pytest.raises(InvalidAsset):
            PoolEngine(TOKEN_A, TOKEN_A, make_ledger(), address=POOL)

    def test_malformed_token_rejected(self):
        """Token identities must be well-formed addresses."""
        with pytest.raises(InvalidAsset):
            PoolEngine("0x1234", TOKEN_B, make_ledger(), address=POOL)

    def test_unknown_token_rejected(self):
        """Tokens the asset ledger does not know are rejected."""
        with pytest.raises(InvalidAsset):
            PoolEngine(TOKEN_A, "0x" + "dd" * 20, make_ledger(), address=POOL)

    def test_malformed_pool_address_rejected(self):
        """The pool's own address must be well-formed."""
        with pytest.raises(ValueError):
            PoolEngine(TOKEN_A, TOKEN_B, make_ledger(), address="pool")

    def test_default_share_ledger(self):
        """Omitting the share ledger gives an in-memory one."""
        pool = PoolEngine(TOKEN_A, TOKEN_B, make_ledger([ALICE]), address=POOL)
        pool.add_liquidity(ALICE, 1000, 4000)
        assert pool.get_total_shares() == 2000


class TestAddLiquidity:
    """Tests for PoolEngine.add_liquidity."""

    def test_bootstrap(self):
        """First deposit mints sqrt(a * b) and sets reserves to the deposit."""
        shares = InMemoryShareLedger()
        assets = make_ledger([ALICE])
        pool = PoolEngine(TOKEN_A, TOKEN_B, assets, shares, address=POOL)

        result = pool.add_liquidity(ALICE, 1000, 4000)

        assert result == LiquidityQuote(amount_a=1000, amount_b=4000, liquidity=2000)
        assert pool.get_reserves() == (1000, 4000)
        assert pool.get_invariant() == 4_000_000
        assert pool.get_total_shares() == 2000
        assert shares.balance_of(ALICE) == 2000
        assert assets.balance_of(TOKEN_A, POOL) == 1000
        assert assets.balance_of(TOKEN_B, POOL) == 4000
        assert assets.balance_of(TOKEN_A, ALICE) == FUNDING - 1000

    def test_second_deposit_exact_ratio(self):
        """(500, 2000) into (1000, 4000) mints 1000 shares."""
        pool, _ = make_seeded_pool(funded=[BOB])
        result = pool.add_liquidity(BOB, 500, 2000)
        assert result == LiquidityQuote(amount_a=500, amount_b=2000, liquidity=1000)
        assert pool.get_reserves() == (1500, 6000)
        assert pool.get_total_shares() == 3000

    def test_excess_is_not_transferred(self):
        """Only the ratio-matching amounts leave the depositor."""
        pool, assets = make_seeded_pool(funded=[BOB])
        result = pool.add_liquidity(BOB, 500, 3000)
        assert (result.amount_a, result.amount_b) == (500, 2000)
        assert assets.balance_of(TOKEN_B, BOB) == FUNDING - 2000
        assert assets.balance_of(TOKEN_B, POOL) == 6000

    @pytest.mark.parametrize("amount_a,amount_b", [(0, 1000), (1000, 0)])
    def test_zero_amount_rejected(self, amount_a, amount_b):
        """A zero on either side is InvalidAmount and changes nothing."""
        pool, _ = make_seeded_pool()
        before = pool_state(pool)
        with pytest.raises(InvalidAmount):
            pool.add_liquidity(ALICE, amount_a, amount_b)
        assert pool_state(pool) == before

    def test_unfunded_depositor_fails_atomically(self):
        """A refused pull restores reserves, shares and the first leg."""
        pool, assets = make_pool(funded=[ALICE])
        assets.credit(TOKEN_A, CAROL, 1000)  # CAROL has no TOKEN_B

        with pytest.raises(TransferFailed):
            pool.add_liquidity(CAROL, 1000, 4000)

        assert pool_state(pool) == ((0, 0), 0, 0, 0)
        assert assets.balance_of(TOKEN_A, CAROL) == 1000
        assert assets.balance_of(TOKEN_A, POOL) == 0

    def test_share_ledger_rolled_back(self):
        """Shares minted to the depositor are burned again on failure."""
        shares = InMemoryShareLedger()
        assets = make_ledger([ALICE])
        pool = PoolEngine(TOKEN_A, TOKEN_B, assets, shares, address=POOL)
        assets.fail_after(1)

        with pytest.raises(TransferFailed):
            pool.add_liquidity(ALICE, 1000, 4000)

        assert shares.balance_of(ALICE) == 0
        assert shares.total_supply() == 0
        assert assets.balance_of(TOKEN_A, ALICE) == FUNDING


class TestSwap:
    """Tests for PoolEngine.swap."""

    def test_reference_swap(self):
        """100 A into (1000, 4000) pays 363 B and re-syncs reserves."""
        pool, assets = make_seeded_pool(funded=[BOB])

        amount_out = pool.swap(BOB, TOKEN_A, TOKEN_B, 100)

        assert amount_out == 363
        assert pool.get_reserves() == (1100, 3637)
        assert pool.get_invariant() == 1100 * 3637
        assert assets.balance_of(TOKEN_A, BOB) == FUNDING - 100
        assert assets.balance_of(TOKEN_B, BOB) == FUNDING + 363

    def test_reverse_direction(self):
        """Selling B for A."""
        pool, _ = make_seeded_pool(funded=[BOB])
        assert pool.swap(BOB, TOKEN_B, TOKEN_A, 400) == 90
        assert pool.get_reserves() == (910, 4400)

    def test_mixed_case_tokens_accepted(self):
        """Token arguments are normalized before matching."""
        pool, _ = make_seeded_pool(funded=[BOB])
        assert pool.swap(BOB, TOKEN_A.replace("aa", "AA"), TOKEN_B, 100) == 363

    def test_dust_swap_rejected(self):
        """An input too small to pay anything is InsufficientOutput."""
        pool, _ = make_seeded_pool(reserve_a=10**18, reserve_b=10**6, funded=[BOB])
        before = pool_state(pool)
        with pytest.raises(InsufficientOutput):
            pool.swap(BOB, TOKEN_A, TOKEN_B, 1)
        assert pool_state(pool) == before

    @pytest.mark.parametrize(
        "token_in,token_out",
        [(TOKEN_A, TOKEN_A), (TOKEN_C, TOKEN_B), (TOKEN_A, TOKEN_C)],
    )
    def test_invalid_pair_rejected(self, token_in, token_out):
        """Foreign or identical tokens are InvalidAsset."""
        pool, _ = make_seeded_pool(funded=[BOB])
        with pytest.raises(InvalidAsset):
            pool.swap(BOB, token_in, token_out, 100)

    def test_zero_amount_rejected(self):
        """amount_in must be positive."""
        pool, _ = make_seeded_pool(funded=[BOB])
        with pytest.raises(InvalidAmount):
            pool.swap(BOB, TOKEN_A, TOKEN_B, 0)

    def test_empty_pool(self):
        """Nothing can be bought before the first deposit."""
        pool, _ = make_pool(funded=[BOB])
        with pytest.raises(InsufficientOutput):
            pool.swap(BOB, TOKEN_A, TOKEN_B, 100)

    def test_payout_failure_refunds_input(self):
        """A refused payout reverses the pulled input and keeps reserves."""
        pool, assets = make_seeded_pool(funded=[BOB])
        before = pool_state(pool)
        assets.fail_after(1)

        with pytest.raises(TransferFailed):
            pool.swap(BOB, TOKEN_A, TOKEN_B, 100)

        assert pool_state(pool) == before
        assert assets.balance_of(TOKEN_A, BOB) == FUNDING
        assert assets.balance_of(TOKEN_B, BOB) == FUNDING
        assert assets.balance_of(TOKEN_A, POOL) == 1000

    def test_invalid_sender_rejected(self):
        """The trader must be a well-formed address."""
        pool, _ = make_seeded_pool()
        with pytest.raises(ValueError):
            pool.swap("bob", TOKEN_A, TOKEN_B, 100)

    @pytest.mark.parametrize("sender", ["0x" + "2" * 39 + " ", "0x" + "2" * 38 + "_2"])
    def test_near_miss_sender_rejected(self, sender):
        """Addresses Python int parsing would accept are still rejected."""
        pool, _ = make_seeded_pool()
        before = pool_state(pool)
        with pytest.raises(ValueError):
            pool.swap(sender, TOKEN_A, TOKEN_B, 100)
        assert pool_state(pool) == before


class TestSwapReserveSource:
    """Tests for custody-reconciled versus ledger-only swap reserves."""

    def test_custody_mode_prices_donation_with_stale_invariant(self):
        """Live balances feed the quote while k still reflects the last update.

        A 1000 B donation raises the live out-reserve to 5000 but not k, so
        the trader is paid (1100 * 5000 - 4_000_000) // 1100 = 1363 instead of
        the 454 that fresh-reserve pricing would give.
        """
        pool, assets = make_seeded_pool(funded=[BOB, CAROL])
        assets.transfer(TOKEN_B, CAROL, POOL, 1000)

        assert pool.swap(BOB, TOKEN_A, TOKEN_B, 100) == 1363
        assert pool.get_reserves() == (1100, 3637)

    def test_ledger_mode_ignores_donation(self):
        """In ledger mode only the engine's own reserves are priced."""
        config = PoolConfig(swap_reserve_source=ReserveSource.LEDGER)
        pool, assets = make_seeded_pool(funded=[BOB, CAROL], config=config)
        assets.transfer(TOKEN_B, CAROL, POOL, 1000)

        assert pool.swap(BOB, TOKEN_A, TOKEN_B, 100) == 363
        assert pool.get_reserves() == (1100, 3637)
        assert pool.get_invariant() == 1100 * 3637
        assert assets.balance_of(TOKEN_B, POOL) == 4637

    def test_ledger_mode_rollback(self):
        """Ledger-mode deltas are undone when the payout fails."""
        config = PoolConfig(swap_reserve_source=ReserveSource.LEDGER)
        pool, assets = make_seeded_pool(funded=[BOB], config=config)
        before = pool_state(pool)
        assets.fail_after(1)

        with pytest.raises(TransferFailed):
            pool.swap(BOB, TOKEN_B, TOKEN_A, 400)

        assert pool_state(pool) == before


class TestRemoveLiquidity:
    """Tests for PoolEngine.remove_liquidity."""

    def test_partial_withdrawal(self):
        """Burning half the shares pays half the reserves."""
        pool, assets = make_seeded_pool()
        result = pool.remove_liquidity(ALICE, 1000)

        assert result == WithdrawalQuote(amount_a=500, amount_b=2000)
        assert pool.get_reserves() == (500, 2000)
        assert pool.get_invariant() == 1_000_000
        assert pool.get_total_shares() == 1000
        assert assets.balance_of(TOKEN_A, ALICE) == FUNDING - 500

    def test_full_withdrawal_empties_pool(self):
        """Burning every share returns the pool to empty."""
        pool, assets = make_seeded_pool()
        assert pool.remove_liquidity(ALICE, 2000) == WithdrawalQuote(1000, 4000)
        assert pool_state(pool)[:3] == ((0, 0), 0, 0)
        assert assets.balance_of(TOKEN_A, ALICE) == FUNDING

    def test_zero_rejected(self):
        """Burning nothing is InsufficientLiquidityBurned."""
        pool, _ = make_seeded_pool()
        with pytest.raises(InsufficientLiquidityBurned):
            pool.remove_liquidity(ALICE, 0)

    def test_above_supply_rejected(self):
        """Burning more than the supply is InvalidAmount by default."""
        pool, _ = make_seeded_pool()
        before = pool_state(pool)
        with pytest.raises(InvalidAmount):
            pool.remove_liquidity(ALICE, 2001)
        assert pool_state(pool) == before

    def test_empty_pool_rejected(self):
        """No shares outstanding means any burn is too large."""
        pool, _ = make_pool(funded=[ALICE])
        with pytest.raises(InvalidAmount):
            pool.remove_liquidity(ALICE, 1)

    def test_above_supply_underflows_without_bound_check(self):
        """With the bound check off the oversized burn underflows instead."""
        config = PoolConfig(check_burn_upper_bound=False)
        pool, _ = make_seeded_pool(config=config)
        before = pool_state(pool)
        with pytest.raises(ArithmeticUnderflow):
            pool.remove_liquidity(ALICE, 2001)
        assert pool_state(pool) == before

    def test_holder_without_shares_rejected(self):
        """Only shares the sender owns can be burned."""
        pool, assets = make_seeded_pool(funded=[BOB])
        before = pool_state(pool)
        with pytest.raises(ArithmeticUnderflow):
            pool.remove_liquidity(BOB, 100)
        assert pool_state(pool) == before
        assert assets.balance_of(TOKEN_A, BOB) == FUNDING

    def test_payout_failure_restores_shares(self):
        """A refused payout re-mints the burned shares and refunds leg A."""
        shares = InMemoryShareLedger()
        assets = make_ledger([ALICE])
        pool = PoolEngine(TOKEN_A, TOKEN_B, assets, shares, address=POOL)
        pool.add_liquidity(ALICE, 1000, 4000)
        before = pool_state(pool)
        assets.fail_after(1)

        with pytest.raises(TransferFailed):
            pool.remove_liquidity(ALICE, 1000)

        assert pool_state(pool) == before
        assert shares.balance_of(ALICE) == 2000
        assert assets.balance_of(TOKEN_A, POOL) == 1000
        assert assets.balance_of(TOKEN_B, POOL) == 4000


class TestEvents:
    """Tests for domain events."""

    def test_event_per_operation(self):
        """Each successful operation appends one event with full parameters."""
        pool, _ = make_seeded_pool(funded=[BOB])
        pool.swap(BOB, TOKEN_A, TOKEN_B, 100)
        pool.remove_liquidity(ALICE, 1000)

        added, swapped, removed = pool.events

        assert isinstance(added, LiquidityAdded)
        assert added.sequence == 1
        assert added.sender == ALICE
        assert (added.amount_a, added.amount_b, added.liquidity) == ("1000", "4000", "2000")
        assert added.reserves == (1000, 4000)

        assert isinstance(swapped, Swapped)
        assert swapped.sequence == 2
        assert swapped.sender == BOB
        assert swapped.token_in == TOKEN_A
        assert swapped.token_out == TOKEN_B
        assert (swapped.amount_in, swapped.amount_out) == ("100", "363")
        assert swapped.reserves == (1100, 3637)

        assert isinstance(removed, LiquidityRemoved)
        assert removed.sequence == 3
        assert removed.liquidity == "1000"
        assert removed.reserves == (550, 1819)
        assert all(event.pool == POOL for event in pool.events)

    def test_no_event_on_failure(self):
        """Failed operations leave the event log untouched."""
        pool, _ = make_seeded_pool(funded=[BOB])
        with pytest.raises(InsufficientOutput):
            pool.swap(BOB, TOKEN_B, TOKEN_A, 1)
        assert len(pool.events) == 1

    def test_listeners(self):
        """Subscribed listeners receive events until unsubscribed."""
        pool, _ = make_seeded_pool(funded=[BOB])
        received = []
        pool.subscribe(received.append)
        pool.swap(BOB, TOKEN_A, TOKEN_B, 100)
        pool.unsubscribe(received.append)
        pool.swap(BOB, TOKEN_B, TOKEN_A, 100)

        assert [event.sequence for event in received] == [2]

    def test_failing_listener_does_not_undo_operation(self):
        """A listener error is logged; the committed operation stands."""
        pool, _ = make_seeded_pool(funded=[BOB])

        def broken(event):
            raise RuntimeError("listener down")

        pool.subscribe(broken)
        assert pool.swap(BOB, TOKEN_A, TOKEN_B, 100) == 363
        assert pool.get_reserves() == (1100, 3637)

    def test_events_serialize_with_aliases(self):
        """Events dump to camelCase JSON."""
        pool, _ = make_seeded_pool(funded=[BOB])
        pool.swap(BOB, TOKEN_A, TOKEN_B, 100)
        data = pool.events[-1].model_dump(mode="json", by_alias=True)
        assert data["kind"] == "swap"
        assert data["amountOut"] == "363"
        assert data["reserveA"] == "1100"


class CallbackAssetLedger(InMemoryAssetLedger):
    """Asset ledger that runs a callback on the next transfer_from."""

    def __init__(self, assets=()):
        super().__init__(assets)
        self.on_transfer_from = None

    def transfer_from(self, asset, sender, recipient, amount):
        callback, self.on_transfer_from = self.on_transfer_from, None
        if callback is not None:
            callback()
        return super().transfer_from(asset, sender, recipient, amount)


def make_callback_pool() -> tuple[PoolEngine, CallbackAssetLedger]:
    """(1000, 4000) pool over a CallbackAssetLedger with ALICE, BOB and CAROL funded."""
    assets = CallbackAssetLedger([TOKEN_A, TOKEN_B, TOKEN_C])
    for holder in (ALICE, BOB, CAROL):
        for token in (TOKEN_A, TOKEN_B):
            assets.credit(token, holder, FUNDING)
    pool = PoolEngine(TOKEN_A, TOKEN_B, assets, address=POOL)
    pool.add_liquidity(ALICE, 1000, 4000)
    return pool, assets


def custody_reserves(assets: InMemoryAssetLedger) -> tuple[int, int]:
    return assets.balance_of(TOKEN_A, POOL), assets.balance_of(TOKEN_B, POOL)


class TestReentrancy:
    """Operations started from inside another operation on the same pool."""

    def test_nested_swap_rejected_and_outer_rolled_back(self):
        """A ledger calling back into the pool fails the outer operation cleanly."""
        pool, assets = make_callback_pool()
        before = pool_state(pool)

        def nested_swap():
            pool.swap(CAROL, TOKEN_B, TOKEN_A, 3000)

        assets.on_transfer_from = nested_swap
        with pytest.raises(TransferFailed) as excinfo:
            pool.add_liquidity(BOB, 500, 2000)

        assert isinstance(excinfo.value.__cause__, PoolLocked)
        assert pool_state(pool) == before
        assert pool.get_reserves() == custody_reserves(assets) == (1000, 4000)
        assert assets.balance_of(TOKEN_A, CAROL) == FUNDING
        assert assets.balance_of(TOKEN_B, CAROL) == FUNDING

    def test_nested_call_rejected_without_side_effects(self):
        """A caught nested rejection leaves the outer operation to complete."""
        pool, assets = make_callback_pool()
        rejected = []

        def nested_remove():
            try:
                pool.remove_liquidity(ALICE, 1000)
            except PoolLocked as err:
                rejected.append(err)

        assets.on_transfer_from = nested_remove
        quote = pool.add_liquidity(BOB, 500, 2000)

        assert len(rejected) == 1
        assert quote.liquidity == 1000
        assert pool.get_reserves() == custody_reserves(assets) == (1500, 6000)
        assert pool.get_total_shares() == 3000
        assert [event.kind for event in pool.events] == ["addLiquidity", "addLiquidity"]

    def test_pool_usable_after_rejection(self):
        """The in-progress marker is cleared once the outer operation ends."""
        pool, assets = make_callback_pool()
        assets.on_transfer_from = lambda: pool.swap(CAROL, TOKEN_B, TOKEN_A, 3000)
        with pytest.raises(TransferFailed):
            pool.swap(BOB, TOKEN_A, TOKEN_B, 100)

        assert pool.swap(BOB, TOKEN_A, TOKEN_B, 100) == 363
        assert pool.get_reserves() == custody_reserves(assets) == (1100, 3637)

    def test_listener_may_start_new_operation(self):
        """Listeners run after commit, so they can trade against the pool."""
        pool, assets = make_seeded_pool(funded=[BOB, CAROL])
        follow_ups = []

        def arbitrage(event):
            if not follow_ups:
                follow_ups.append(pool.swap(CAROL, TOKEN_A, TOKEN_B, 100))

        pool.subscribe(arbitrage)
        pool.swap(BOB, TOKEN_A, TOKEN_B, 100)

        assert follow_ups == [303]
        assert len(pool.events) == 3
        assert pool.get_reserves() == custody_reserves(assets)
