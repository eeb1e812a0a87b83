"""
Tests for PositionMonitor

Single-flight under overlapping triggers, cooldowns, the global sell bound,
claim auto-release, event debounce, retirement and operator commands.
"""
import asyncio
from dataclasses import replace

import pytest

from pump_sniper.config import Settings
from pump_sniper.constants import SELL_ALL_TIP_SOL
from pump_sniper.core.models import DirectFill, LedgerLookup, Side, SellStep, SellStopLoss
from pump_sniper.core.position_monitor import PositionMonitor
from pump_sniper.exceptions import DuplicateClaim, InvalidPositionState, NoPositionFound

from .conftest import MINT_A, MINT_B, MINT_C, buy_entry, sell_entry


async def seed(store, oracle, clock, mint=MINT_A, price=1.0, amount=1000):
    oracle.prices[mint] = price
    return await store.seed(mint, DirectFill(price, amount, clock.now()))


async def settle(delay: float = 0.01):
    await asyncio.sleep(delay)


class TestEvaluation:
    """One evaluation pass"""

    async def test_no_action_below_thresholds(self, monitor, store, oracle, executor, clock):
        """Flat price does nothing"""
        await seed(store, oracle, clock)
        assert await monitor.evaluate(MINT_A) is None
        assert executor.requests == []

    async def test_staged_sell_updates_position(self, monitor, store, oracle, executor, ledger, clock):
        """A crossed rule sells, books the ledger row and sets a cooldown"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06

        action = await monitor.evaluate(MINT_A)

        assert action == SellStep(0, 100)
        request = executor.requests[0]
        assert request.side == Side.SELL
        assert request.amount_raw == 100
        assert request.slippage_pct == 100.0
        assert request.tip_sol == pytest.approx(0.0001)
        assert not request.sell_all
        position = store.get(MINT_A)
        assert position.selling_step == 1
        assert position.current_amount_raw == 900
        assert ledger.entries[-1].swap == Side.SELL
        assert store.in_cooldown(MINT_A, clock.now())

    async def test_cooldown_blocks_then_expires(self, monitor, store, oracle, executor, clock):
        """After a sell the token waits SELL_COOLDOWN_SEC before the next step"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        await monitor.evaluate(MINT_A)

        oracle.prices[MINT_A] = 1.12
        assert await monitor.evaluate(MINT_A) is None
        assert len(executor.requests) == 1

        clock.advance(6)
        assert await monitor.evaluate(MINT_A) == SellStep(1, 200)

    async def test_stop_loss_retires(self, monitor, store, oracle, executor, ledger, clock):
        """A terminal exit sells everything and retires the token"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 0.5
        executor.price = 0.5

        action = await monitor.evaluate(MINT_A)

        assert action == SellStopLoss(1000)
        assert executor.requests[0].sell_all
        assert MINT_A not in store
        assert MINT_A in oracle.forgotten
        assert ledger.entries[-1].swap_profit_usd < 0

    async def test_zero_wallet_balance_retires(self, monitor, store, oracle, executor, wallet_cache, clock):
        """A known empty wallet balance retires without selling"""
        await seed(store, oracle, clock)
        wallet_cache.balances = {MINT_A: 0}
        await monitor.evaluate(MINT_A)
        assert MINT_A not in store
        assert executor.requests == []

    async def test_wallet_balance_is_synced(self, monitor, store, oracle, wallet_cache, clock):
        """A different wallet balance replaces the tracked amount"""
        await seed(store, oracle, clock)
        wallet_cache.balances = {MINT_A: 400}
        await monitor.evaluate(MINT_A)
        assert store.get(MINT_A).current_amount_raw == 400

    async def test_missing_price_skips(self, monitor, store, oracle, executor, clock):
        """A failed price lookup is retried on the next trigger"""
        await seed(store, oracle, clock)
        del oracle.prices[MINT_A]
        assert await monitor.evaluate(MINT_A) is None
        assert MINT_A in store
        assert not store.in_cooldown(MINT_A, clock.now())

    async def test_failed_sell_cools_down(self, monitor, store, oracle, executor, clock):
        """Executor failure keeps the position, marks it failed and cools it down"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.fail = True

        assert await monitor.evaluate(MINT_A) is None
        assert await monitor.evaluate(MINT_A) is None

        assert len(executor.requests) == 1
        position = store.get(MINT_A)
        assert position.selling_step == 0
        assert position.current_amount_raw == 1000
        assert store.has_pending(MINT_A, clock.now())

    async def test_executor_exception_cools_down(self, monitor, store, oracle, executor, clock):
        """An executor that raises is treated as a failed sell, not a crash"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.error = RuntimeError("rpc node reset the connection")

        assert await monitor.evaluate(MINT_A) is None

        position = store.get(MINT_A)
        assert position.selling_step == 0
        assert position.current_amount_raw == 1000
        assert store.in_cooldown(MINT_A, clock.now())
        assert store.has_pending(MINT_A, clock.now())
        assert not store.has_in_flight(MINT_A, clock.now())
        assert not store.is_claimed(MINT_A)
        assert monitor.active_sells == 0

    async def test_ledger_failure_still_books_position(self, monitor, store, oracle, ledger, clock):
        """A sell that filled is applied even when the ledger write fails"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        ledger.fail = True
        await monitor.evaluate(MINT_A)
        assert store.get(MINT_A).current_amount_raw == 900

    async def test_exhausted_position_is_retired(self, monitor, store, oracle, ledger, wallet_cache):
        """Step 4 with a leftover balance retires and is not picked up by wallet sync"""
        await ledger.append(buy_entry(MINT_A, 1.0, 1000.0, 1.0))
        for i in range(4):
            await ledger.append(sell_entry(MINT_A, 1.1, 100.0, 2.0 + i))
        oracle.prices[MINT_A] = 1.0
        wallet_cache.balances = {MINT_A: 50}

        await monitor.watch(MINT_A, LedgerLookup())
        assert MINT_A not in store
        assert await monitor.sync_wallet_tokens() == []


class TestConcurrency:
    """Single-flight, global bound and auto-release"""

    async def test_single_flight(self, monitor, store, oracle, executor, clock):
        """Two overlapping triggers reach the executor once"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.gate = asyncio.Event()

        first = asyncio.create_task(monitor.evaluate(MINT_A, "sweep"))
        second = asyncio.create_task(monitor.evaluate(MINT_A, "event"))
        await settle()
        executor.gate.set()
        results = await asyncio.gather(first, second)

        assert len(executor.requests) == 1
        assert results.count(None) == 1

    async def test_global_sell_bound(self, settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock):
        """At most MAX_CONCURRENT_SELLS swaps run at once"""
        settings.MAX_CONCURRENT_SELLS = 2
        monitor = PositionMonitor(settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock)
        for mint in (MINT_A, MINT_B, MINT_C):
            await seed(store, oracle, clock, mint)
            oracle.prices[mint] = 1.06
        executor.gate = asyncio.Event()

        tasks = [asyncio.create_task(monitor.evaluate(m)) for m in (MINT_A, MINT_B, MINT_C)]
        await settle()
        assert executor.in_flight == 2
        assert monitor.active_sells == 2

        executor.gate.set()
        await asyncio.gather(*tasks)
        assert executor.max_in_flight == 2
        assert monitor.active_sells == 0
        # The token that found no slot is unclaimed and sells on a later pass
        waiting = [m for m in (MINT_A, MINT_B, MINT_C) if store.get(m).selling_step == 0]
        assert len(waiting) == 1
        assert not store.is_claimed(waiting[0])

    async def test_claim_auto_release(self, store, oracle, executor, ledger, wallet_cache, settings_manager, clock):
        """A claim stuck past CLAIM_TIMEOUT_SEC is released along with its slot"""
        settings = Settings(CLAIM_TIMEOUT_SEC=0.05, MAX_CONCURRENT_SELLS=1)
        monitor = PositionMonitor(settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock)
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.gate = asyncio.Event()

        task = asyncio.create_task(monitor.evaluate(MINT_A))
        await settle()
        assert store.is_claimed(MINT_A)
        assert monitor.active_sells == 1

        await settle(0.1)
        assert not store.is_claimed(MINT_A)
        assert monitor.active_sells == 0

        executor.gate.set()
        await task
        assert monitor.active_sells == 0

    async def test_slow_sell_does_not_stall_sweep(self, monitor, store, oracle, executor, settings_manager, clock):
        """While one token's swap hangs, later ticks still evaluate the others"""
        main = settings_manager.get().main
        settings_manager.replace_main(replace(main, sell_interval_time=0.1))
        await seed(store, oracle, clock, MINT_A)
        await seed(store, oracle, clock, MINT_B)
        oracle.prices[MINT_A] = 1.06
        executor.gate = asyncio.Event()

        monitor.sweep_ticker.start()
        try:
            await settle(0.05)
            assert [r.token_id for r in executor.requests] == [MINT_A]

            oracle.prices[MINT_B] = 0.5
            await settle(0.35)
            assert MINT_B in [r.token_id for r in executor.requests]
            assert executor.in_flight == 2
        finally:
            executor.gate.set()
            await monitor.sweep_ticker.stop()
            await monitor.drain()

        assert MINT_B not in store
        assert store.get(MINT_A).selling_step == 1


class TestTriggers:
    """Handoff and debounced events"""

    async def test_handoff_evaluates_immediately(self, monitor, oracle, executor, clock):
        """watch() sells straight away when the seed price already crossed a rule"""
        oracle.prices[MINT_A] = 1.06
        position = await monitor.watch(MINT_A, DirectFill(1.0, 1000, clock.now()))
        assert position.token_id == MINT_A
        assert len(executor.requests) == 1

    async def test_handoff_rejects_tracked_token(self, monitor, oracle, clock):
        """A second handoff for a tracked token raises"""
        oracle.prices[MINT_A] = 1.0
        await monitor.watch(MINT_A, DirectFill(1.0, 1000, clock.now()))
        with pytest.raises(InvalidPositionState):
            await monitor.watch(MINT_A, DirectFill(1.0, 1000, clock.now()))

    async def test_event_burst_is_debounced(self, monitor, store, oracle, clock):
        """Three events in a burst produce a single evaluation"""
        await seed(store, oracle, clock)
        baseline = len(oracle.calls)

        for _ in range(3):
            monitor.notify_event(MINT_A)
        await settle(0.15)

        assert len(oracle.calls) == baseline + 1

    async def test_event_for_untracked_token_is_ignored(self, monitor, oracle):
        """Events for unknown tokens schedule nothing"""
        monitor.notify_event(MINT_B)
        await settle(0.1)
        assert oracle.calls == []

    async def test_sweep_evaluates_every_position(self, monitor, store, oracle, executor, clock):
        """A sweep evaluates each tracked token"""
        for mint in (MINT_A, MINT_B):
            await seed(store, oracle, clock, mint)
            oracle.prices[mint] = 1.06
        await monitor.sweep()
        await monitor.drain()
        assert {r.token_id for r in executor.requests} == {MINT_A, MINT_B}


class TestOperatorCommands:
    """Force sells and wallet sync"""

    async def test_force_sell(self, monitor, store, oracle, executor, clock):
        """Force sell liquidates the balance with the sell-all tip and retires"""
        await seed(store, oracle, clock)
        fill = await monitor.force_sell(MINT_A)
        assert fill.success
        request = executor.requests[0]
        assert request.amount_raw == 1000
        assert request.tip_sol == SELL_ALL_TIP_SOL
        assert request.sell_all
        assert MINT_A not in store

    async def test_force_sell_untracked(self, monitor):
        """Force selling an unknown token raises NoPositionFound"""
        with pytest.raises(NoPositionFound):
            await monitor.force_sell(MINT_B)

    async def test_force_sell_busy(self, monitor, store, oracle, clock):
        """Force selling a claimed token raises DuplicateClaim"""
        await seed(store, oracle, clock)
        claim = store.try_claim(MINT_A, clock.now())
        with pytest.raises(DuplicateClaim):
            await monitor.force_sell(MINT_A)
        store.release_claim(claim)

    async def test_force_sell_refuses_while_swap_in_flight(self, store, oracle, executor, ledger, wallet_cache,
                                                          settings_manager, clock):
        """A swap that outlived its claim still blocks a second sell of the same balance"""
        settings = Settings(CLAIM_TIMEOUT_SEC=0.05)
        monitor = PositionMonitor(settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock)
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.gate = asyncio.Event()

        task = asyncio.create_task(monitor.evaluate(MINT_A))
        await settle(0.1)
        assert not store.is_claimed(MINT_A)

        with pytest.raises(DuplicateClaim):
            await monitor.force_sell(MINT_A)
        assert len(executor.requests) == 1
        assert not store.is_claimed(MINT_A)

        executor.gate.set()
        await task

    async def test_force_sell_after_failed_sell(self, monitor, store, oracle, executor, clock):
        """A failed sell does not lock the operator out"""
        await seed(store, oracle, clock)
        oracle.prices[MINT_A] = 1.06
        executor.fail = True
        await monitor.evaluate(MINT_A)

        executor.fail = False
        fill = await monitor.force_sell(MINT_A)
        assert fill.success
        assert MINT_A not in store

    async def test_force_sell_known_zero_balance(self, monitor, store, oracle, executor, wallet_cache, clock):
        """An empty wallet balance retires the position without a swap"""
        await seed(store, oracle, clock)
        wallet_cache.balances = {MINT_A: 0}
        fill = await monitor.force_sell(MINT_A)
        assert not fill.success
        assert executor.requests == []
        assert MINT_A not in store

    async def test_force_sell_all(self, monitor, store, oracle, clock):
        """Every tracked position is sold"""
        for mint in (MINT_A, MINT_B):
            await seed(store, oracle, clock, mint)
        results = await monitor.force_sell_all()
        assert results == {MINT_A: True, MINT_B: True}
        assert len(store) == 0

    async def test_wallet_sync(self, monitor, store, oracle, ledger, wallet_cache):
        """Wallet tokens with a buy record are rebuilt; unknown ones are remembered"""
        await ledger.append(buy_entry(MINT_A, 1.0, 0.001, 1.0))
        oracle.prices[MINT_A] = 1.0
        wallet_cache.balances = {MINT_A: 1000, MINT_B: 500}

        assert await monitor.sync_wallet_tokens() == [MINT_A]
        assert MINT_A in store
        assert MINT_B not in store
        assert await monitor.sync_wallet_tokens() == []

    async def test_stop_clears_everything(self, monitor, store, oracle, clock):
        """stop() evicts every position"""
        await seed(store, oracle, clock)
        monitor.start()
        await monitor.stop()
        assert len(store) == 0
        assert not monitor.sweep_ticker.running
