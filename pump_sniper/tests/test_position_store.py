"""
Unit tests for PositionStore

Tests seeding from a fill and from the ledger, sell bookkeeping, claims,
cooldowns, pending markers and eviction.
"""
import asyncio

import pytest

from pump_sniper.constants import TOKEN_UNIT
from pump_sniper.core.models import DirectFill, LedgerLookup, SellKind
from pump_sniper.exceptions import InvalidPositionState, NoPositionFound

from .conftest import MINT_A, MINT_B, buy_entry, sell_entry


class TestSeeding:
    """seed() with both sources"""

    async def test_seed_from_fill(self, store, oracle, clock):
        """A direct fill starts at step 0 with the full fill amount"""
        oracle.prices[MINT_A] = 0.00002
        position = await store.seed_from_fill(MINT_A, 0.00001, 500 * TOKEN_UNIT, clock.now(), token_symbol="AAA")
        assert position.selling_step == 0
        assert position.current_amount_raw == 500 * TOKEN_UNIT
        assert position.invested_amount_raw == 500 * TOKEN_UNIT
        assert position.invested_usd == pytest.approx(0.005)
        assert position.stagnation_window.reference_price == pytest.approx(0.00002)
        assert MINT_A in store

    async def test_seed_without_market_price_uses_zero_reference(self, store, clock):
        """A failed price lookup at seed time leaves a zero window reference"""
        position = await store.seed(MINT_A, DirectFill(0.00001, TOKEN_UNIT, clock.now()))
        assert position.stagnation_window.reference_price == 0.0

    async def test_seeding_twice_is_rejected(self, store, clock):
        """One tracked position per token"""
        await store.seed(MINT_A, DirectFill(0.00001, TOKEN_UNIT, clock.now()))
        with pytest.raises(InvalidPositionState):
            await store.seed(MINT_A, DirectFill(0.00002, TOKEN_UNIT, clock.now()))
        assert store.get(MINT_A).invested_price_usd == 0.00001

    async def test_rebuild_from_ledger(self, store, ledger):
        """Ledger replay: step = fills - 1, balance = bought - sold, profit summed"""
        await ledger.append(buy_entry(MINT_A, 0.001, 1000.0, 100.0, token_symbol="AAA"))
        await ledger.append(sell_entry(MINT_A, 0.0011, 200.0, 200.0, profit=0.02))
        await ledger.append(sell_entry(MINT_A, 0.0012, 300.0, 300.0, profit=0.06))

        position = await store.rebuild_from_ledger(MINT_A)
        assert position.selling_step == 2
        assert position.current_amount_raw == 500 * TOKEN_UNIT
        assert position.realized_profit_usd == pytest.approx(0.08)
        assert position.created_at == 100.0
        assert position.token_symbol == "AAA"

    async def test_rebuild_caps_step(self, store, ledger):
        """More than five fills still gives step 4"""
        await ledger.append(buy_entry(MINT_A, 0.001, 1000.0, 1.0))
        for i in range(6):
            await ledger.append(sell_entry(MINT_A, 0.001, 10.0, 10.0 + i))
        position = await store.seed(MINT_A, LedgerLookup())
        assert position.selling_step == 4

    async def test_rebuild_without_buy(self, store, ledger):
        """No buy fill raises NoPositionFound"""
        await ledger.append(sell_entry(MINT_A, 0.001, 10.0, 10.0))
        with pytest.raises(NoPositionFound):
            await store.rebuild_from_ledger(MINT_A)
        assert MINT_A not in store

    async def test_rebuild_with_bad_price(self, store, ledger):
        """A non-positive buy price is an invalid position"""
        await ledger.append(buy_entry(MINT_A, 0.0, 1000.0, 1.0))
        with pytest.raises(InvalidPositionState):
            await store.rebuild_from_ledger(MINT_A)


class TestSellFills:
    """apply_sell_fill bookkeeping"""

    async def test_staged_sell_advances_step(self, store, clock):
        """A staged fill decrements balance and moves the step"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        position = store.apply_sell_fill(MINT_A, 200, 20.0, step_index=0)
        assert position.current_amount_raw == 800
        assert position.selling_step == 1
        assert position.realized_profit_usd == 20.0

    async def test_skipped_steps_jump_forward(self, store, clock):
        """Filling step 2 from step 0 lands on step 3"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        assert store.apply_sell_fill(MINT_A, 300, 0.0, step_index=2).selling_step == 3

    async def test_exit_fill_keeps_step(self, store, clock):
        """Stop loss and other exits never move the step"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        assert store.apply_sell_fill(MINT_A, 100, -5.0).selling_step == 0

    async def test_balance_never_negative(self, store, clock):
        """Overselling clamps at zero"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        store.apply_sell_fill(MINT_A, 700, 0.0)
        assert store.apply_sell_fill(MINT_A, 10_000, 0.0).current_amount_raw == 0

    async def test_step_capped_at_four(self, store, clock):
        """The step never passes 4"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        for index in range(6):
            position = store.apply_sell_fill(MINT_A, 1, 0.0, step_index=index)
        assert position.selling_step == 4

    def test_untracked_fill_is_ignored(self, store):
        """Fills for unknown tokens return None"""
        assert store.apply_sell_fill(MINT_B, 1, 0.0) is None


class TestClaimsAndMarkers:
    """Single-flight claims, cooldowns and pending executions"""

    async def test_claim_is_exclusive(self, store, clock):
        """A second claim fails until the first is released"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        claim = store.try_claim(MINT_A, clock.now())
        assert claim is not None
        assert store.try_claim(MINT_A, clock.now()) is None
        assert store.release_claim(claim) is True
        assert store.try_claim(MINT_A, clock.now()) is not None

    async def test_stale_release_is_noop(self, store, clock):
        """Releasing an old claim does not free a newer one"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        old = store.try_claim(MINT_A, clock.now())
        store.release_claim(old)
        new = store.try_claim(MINT_A, clock.now())
        assert store.release_claim(old) is False
        assert store.is_claimed(MINT_A)
        store.release_claim(new)

    def test_untracked_token_cannot_be_claimed(self, store, clock):
        """Claims only exist for tracked tokens"""
        assert store.try_claim(MINT_B, clock.now()) is None

    async def test_cooldown(self, store, clock):
        """Cooldown holds until its deadline"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        store.set_cooldown(MINT_A, clock.now() + 5)
        assert store.in_cooldown(MINT_A, clock.now())
        clock.advance(5)
        assert not store.in_cooldown(MINT_A, clock.now())

    async def test_pending_markers_expire(self, store, clock):
        """Expired markers are dropped by has_pending"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        store.add_pending(MINT_A, SellKind.STEP, clock.now(), 10.0, step_index=0, failed=True)
        assert store.has_pending(MINT_A, clock.now())
        clock.advance(10)
        assert not store.has_pending(MINT_A, clock.now())

    async def test_remove_pending_by_identity(self, store, clock):
        """remove_pending drops only the given marker"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        first = store.add_pending(MINT_A, SellKind.STEP, clock.now(), 300)
        store.add_pending(MINT_A, SellKind.STEP, clock.now(), 300)
        store.remove_pending(first)
        assert store.has_pending(MINT_A, clock.now())
        store.clear_pending(MINT_A)
        assert not store.has_pending(MINT_A, clock.now())


class TestEviction:
    """evict() cleanup"""

    async def test_evict_runs_teardown_and_cancels_debounce(self, store, clock):
        """Eviction cancels the debounce timer and runs teardown callbacks once"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        torn_down = []
        store.add_teardown(MINT_A, lambda: torn_down.append(MINT_A))
        handle = asyncio.get_running_loop().call_later(60, lambda: None)
        store.set_debounce(MINT_A, handle)

        assert store.evict(MINT_A) is True
        assert handle.cancelled()
        assert torn_down == [MINT_A]
        assert MINT_A not in store

    async def test_evict_is_idempotent(self, store, clock):
        """A second evict is a silent no-op"""
        await store.seed(MINT_A, DirectFill(1.0, 1000, clock.now()))
        torn_down = []
        store.add_teardown(MINT_A, lambda: torn_down.append(1))
        store.evict(MINT_A)
        assert store.evict(MINT_A) is False
        assert torn_down == [1]
        assert store.get(MINT_A) is None

    async def test_teardown_for_untracked_runs_immediately(self, store):
        """Registering teardown after eviction runs it straight away"""
        called = []
        store.add_teardown(MINT_B, lambda: called.append(True))
        assert called == [True]
