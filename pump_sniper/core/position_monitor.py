"""Position monitor: evaluates tracked positions and executes sells.

Three triggers feed one evaluation path:
    * the sweep ticker (every sell_interval_time seconds)
    * PumpPortal trade events, debounced per token
    * the direct handoff from a confirmed buy

Every evaluation takes the token's single-flight claim before touching the
network. Sells additionally need one of MAX_CONCURRENT_SELLS global slots.
A claim that is still held after CLAIM_TIMEOUT_SEC is force-released.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from pump_sniper.config import Settings
from pump_sniper.constants import (
    FAILED_PENDING_EXPIRY_SEC,
    MAX_SELLING_STEP,
    PENDING_EXPIRY_SEC,
    SELL_ALL_TIP_SOL,
    SOL_MINT,
)
from pump_sniper.core.models import (
    Action,
    Fill,
    LedgerLookup,
    Position,
    SeedSource,
    SellManual,
    SellStep,
    Side,
    SingleFlightClaim,
    SwapRequest,
)
from pump_sniper.core.sell_decision import decide
from pump_sniper.core.triggers import IntervalTicker
from pump_sniper.db.ledger import build_sell_entry
from pump_sniper.exceptions import (
    DuplicateClaim,
    InvalidPositionState,
    NoPositionFound,
    TransientLookupFailure,
)
from pump_sniper.utils.helpers import format_elapsed, short_mint

if TYPE_CHECKING:
    from pump_sniper.config.bot_settings import BotSettingsManager
    from pump_sniper.core.clock import SystemClock
    from pump_sniper.core.position_store import PositionStore
    from pump_sniper.core.price_oracle import PriceOracle
    from pump_sniper.core.swap_executor import SwapExecutor
    from pump_sniper.core.triggers import VenueEventAdapter
    from pump_sniper.core.wallet import WalletBalanceCache
    from pump_sniper.db.ledger import TransactionLedger
    from pump_sniper.logger import TradeLogger


class PositionMonitor:
    def __init__(
        self,
        settings: Settings,
        store: "PositionStore",
        oracle: "PriceOracle",
        executor: "SwapExecutor",
        ledger: "TransactionLedger",
        wallet_cache: "WalletBalanceCache",
        settings_manager: "BotSettingsManager",
        clock: "SystemClock",
        event_source: "VenueEventAdapter | None" = None,
        trade_logger: "TradeLogger | None" = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.oracle = oracle
        self.executor = executor
        self.ledger = ledger
        self.wallet_cache = wallet_cache
        self.settings_manager = settings_manager
        self.clock = clock
        self.event_source = event_source
        self.trade_logger = trade_logger
        self.logger = logging.getLogger("pump_sniper.monitor")

        self.max_concurrent_sells = max(1, settings.MAX_CONCURRENT_SELLS)
        self._active_sells = 0
        self._release_timers: dict[int, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        # Tokens retired with a leftover balance, or held but never bought by the bot
        self._exhausted: set[str] = set()
        self._unknown: set[str] = set()

        self.sweep_ticker = IntervalTicker(
            lambda: self.settings_manager.get().main.sell_interval_time, self.sweep, "sell-sweep"
        )
        self.wallet_ticker = IntervalTicker(
            settings.WALLET_SYNC_INTERVAL_SEC, self.sync_wallet_tokens, "wallet-sync"
        )
        self.status_ticker = IntervalTicker(
            settings.STATUS_LOG_INTERVAL_SEC, self.log_status, "status-log"
        )

    @property
    def active_sells(self) -> int:
        return self._active_sells

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.sweep_ticker.start()
        self.wallet_ticker.start()
        self.status_ticker.start()
        self.logger.info("👀 Position monitor started (%d tracked)", len(self.store))

    async def stop(self) -> None:
        await self.sweep_ticker.stop()
        await self.wallet_ticker.stop()
        await self.status_ticker.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for handle in self._release_timers.values():
            handle.cancel()
        self._release_timers.clear()
        self.store.clear()
        self.logger.info("Position monitor stopped")

    async def watch(self, token_id: str, source: SeedSource) -> Position:
        """Seed a position, subscribe it to venue events and evaluate it now."""
        position = await self.store.seed(token_id, source)
        self._exhausted.discard(token_id)
        self._unknown.discard(token_id)

        if self.event_source is not None:
            try:
                teardown = await self.event_source.attach(token_id, self.notify_event)
            except Exception as e:
                self.logger.warning("Trade subscription for %s failed: %s", short_mint(token_id), e)
            else:
                self.store.add_teardown(token_id, teardown)

        await self.evaluate(token_id, "handoff")
        return position

    def retire(self, token_id: str, reason: str) -> None:
        if self.store.evict(token_id):
            self.oracle.forget(token_id)
            self.logger.info("🏁 Retired %s: %s", short_mint(token_id), reason)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def notify_event(self, token_id: str) -> None:
        """Venue activity for a token. Bursts collapse into one evaluation
        EVENT_DEBOUNCE_SEC after the last event."""
        if token_id not in self.store:
            return
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.settings.EVENT_DEBOUNCE_SEC, self._fire_event, token_id)
        self.store.set_debounce(token_id, handle)

    def _fire_event(self, token_id: str) -> None:
        self.store.clear_debounce(token_id)
        if token_id not in self.store:
            return
        if self.store.is_claimed(token_id):
            self.notify_event(token_id)
            return
        self._spawn(self.evaluate(token_id, "event"))

    async def sweep(self) -> None:
        """Start an evaluation for every unclaimed token and return at once.

        A sell in flight on one token must not hold up the next tick for the rest.
        """
        for token_id in self.store.token_ids():
            if not self.store.is_claimed(token_id):
                self._spawn(self.evaluate(token_id, "sweep"))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for evaluations started by sweeps and events."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, token_id: str, trigger: str = "sweep") -> Action | None:
        """One evaluation pass. Returns the sell action that filled, else None.

        Never raises: per-token failures are logged and put the token in cooldown.
        """
        now = self.clock.now()
        if token_id not in self.store:
            return None
        claim = self.store.try_claim(token_id, now)
        if claim is None:
            self.logger.debug("%s busy, %s trigger dropped", short_mint(token_id), trigger)
            return None

        self._arm_auto_release(claim)
        try:
            if self.store.in_cooldown(token_id, now) or self.store.has_pending(token_id, now):
                return None
            return await self._evaluate_claimed(token_id, claim)
        except InvalidPositionState as e:
            self.logger.warning("Skipping %s: %s", short_mint(token_id), e)
            return None
        except Exception as e:
            self.logger.error("Evaluation of %s failed: %s", short_mint(token_id), e, exc_info=True)
            self.store.set_cooldown(token_id, self.clock.now() + self.settings.FAILED_SELL_COOLDOWN_SEC)
            return None
        finally:
            self._release(claim)

    async def _evaluate_claimed(self, token_id: str, claim: SingleFlightClaim) -> Action | None:
        position = self.store.get(token_id)
        if position is None:
            return None

        balance = self.wallet_cache.get_current_balance(token_id)
        if balance is not None:
            if balance <= 0:
                self.retire(token_id, "wallet balance is zero")
                return None
            self.store.sync_balance(token_id, balance)
        if position.current_amount_raw <= 0:
            self.retire(token_id, "position balance is zero")
            return None
        if position.selling_step >= MAX_SELLING_STEP:
            self._exhausted.add(token_id)
            self.retire(token_id, "all sell steps completed")
            return None

        try:
            quote = await self.oracle.get_price(token_id)
        except TransientLookupFailure as e:
            self.logger.debug("No price for %s: %s", short_mint(token_id), e)
            return None
        if quote.price_usd <= 0 or claim.released:
            return None

        now = self.clock.now()
        decision = decide(position, quote.price_usd, self.settings_manager.get().sell, now)
        if decision.window is not None:
            self.store.replace_window(token_id, decision.window)

        action = decision.action
        if not action.is_sell:
            return None

        if not self._acquire_slot(claim):
            self.logger.debug(
                "Sell slots full (%d/%d), %s waits", self._active_sells, self.max_concurrent_sells,
                short_mint(token_id),
            )
            return None

        self.logger.info(
            "💰 SELL-SIGNAL %s %s | price=$%.10f growth=%+.2f%% step=%d amount=%d",
            action.kind.value, short_mint(token_id), quote.price_usd,
            position.growth_percent(quote.price_usd), position.selling_step, action.amount_raw,
        )
        request = self._sell_request(position, action, quote.venue)
        fill = await self._execute(token_id, action, request)
        if fill.success:
            await self._record_sell(position, action, fill)
            return action
        return None

    def _sell_request(self, position: Position, action: Action, venue) -> SwapRequest:
        buy = self.settings_manager.get().buy
        sell_all = action.terminal or action.amount_raw >= position.current_amount_raw
        return SwapRequest(
            token_id=position.token_id,
            side=Side.SELL,
            amount_raw=action.amount_raw,
            slippage_pct=buy.slippage,
            tip_sol=SELL_ALL_TIP_SOL if isinstance(action, SellManual) else buy.jito_tip_amount,
            priority_fee_sol=buy.max_gas_price,
            venue_hint=venue,
            sell_all=sell_all,
        )

    async def _execute(self, token_id: str, action: Action, request: SwapRequest) -> Fill:
        now = self.clock.now()
        step_index = action.step_index if isinstance(action, SellStep) else None
        marker = self.store.add_pending(token_id, action.kind, now, PENDING_EXPIRY_SEC, step_index)
        try:
            fill = await self.executor.execute(request)
        except Exception as e:
            self.logger.error("Executor raised for %s: %s", short_mint(token_id), e, exc_info=True)
            fill = Fill(token_id, Side.SELL, success=False, reason=str(e), timestamp=now)
        finally:
            if marker is not None:
                self.store.remove_pending(marker)

        if not fill.success:
            failed_at = self.clock.now()
            self.logger.error("❌ %s sell failed for %s: %s", action.kind.value, short_mint(token_id), fill.reason)
            self.store.add_pending(
                token_id, action.kind, failed_at, FAILED_PENDING_EXPIRY_SEC, step_index, failed=True
            )
            self.store.set_cooldown(token_id, failed_at + self.settings.FAILED_SELL_COOLDOWN_SEC)
        return fill

    async def _record_sell(self, position: Position, action: Action, fill: Fill) -> None:
        token_id = position.token_id
        entry = build_sell_entry(fill, position)
        try:
            await self.ledger.append(entry)
        except Exception as e:
            self.logger.error("Ledger append failed for %s (%s): %s", short_mint(token_id), fill.tx_hash, e)

        step_index = action.step_index if isinstance(action, SellStep) else None
        updated = self.store.apply_sell_fill(token_id, fill.amount_raw, entry.swap_profit_usd, step_index)
        self.store.add_fee(token_id, fill.fee_usd)
        self.wallet_cache.record_sell(token_id, fill.amount_raw)

        now = self.clock.now()
        if self.trade_logger:
            self.trade_logger.log_sell(
                mint=token_id,
                token_amount=fill.amount_raw,
                signature=fill.tx_hash,
                reason=action.kind.value,
                price_usd=fill.price_usd,
                pnl_usd=entry.swap_profit_usd,
                pnl_pct=entry.swap_profit_percent_usd,
                hold_time_seconds=now - position.created_at,
                dex=fill.venue.value,
            )
        self.logger.info(
            "✅ SOLD %s %s | amount=%.4f price=$%.10f pnl=$%.4f (%+.2f%%)",
            action.kind.value, short_mint(token_id), entry.swap_amount, fill.price_usd,
            entry.swap_profit_usd, entry.swap_profit_percent_usd,
        )

        if updated is None:
            return
        if action.terminal:
            self.retire(token_id, f"{action.kind.value} exit filled")
        elif updated.current_amount_raw <= 0:
            self.retire(token_id, "position fully sold")
        elif updated.selling_step >= MAX_SELLING_STEP:
            self._exhausted.add(token_id)
            self.retire(token_id, "all sell steps completed")
        else:
            self.store.set_cooldown(token_id, now + self.settings.SELL_COOLDOWN_SEC)

    # ------------------------------------------------------------------
    # Claims and global slots
    # ------------------------------------------------------------------

    def _acquire_slot(self, claim: SingleFlightClaim) -> bool:
        if claim.released:
            return False
        if claim.holds_slot:
            return True
        if self._active_sells >= self.max_concurrent_sells:
            return False
        self._active_sells += 1
        claim.holds_slot = True
        return True

    def _arm_auto_release(self, claim: SingleFlightClaim) -> None:
        loop = asyncio.get_running_loop()
        self._release_timers[claim.claim_id] = loop.call_later(
            self.settings.CLAIM_TIMEOUT_SEC, self._auto_release, claim
        )

    def _auto_release(self, claim: SingleFlightClaim) -> None:
        if not claim.released:
            self.logger.warning(
                "⏰ Claim on %s held for %.0fs, force-releasing", short_mint(claim.token_id),
                self.settings.CLAIM_TIMEOUT_SEC,
            )
        self._release(claim)

    def _release(self, claim: SingleFlightClaim) -> None:
        handle = self._release_timers.pop(claim.claim_id, None)
        if handle is not None:
            handle.cancel()
        if self.store.release_claim(claim) and claim.holds_slot:
            self._active_sells = max(self._active_sells - 1, 0)

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    async def force_sell(self, token_id: str) -> Fill:
        """Sell the whole balance of one position now.

        Raises NoPositionFound for an untracked token and DuplicateClaim when an
        evaluation already holds the token or a swap for it is still in flight.
        """
        position = self.store.get(token_id)
        if position is None:
            raise NoPositionFound("position not tracked", token=token_id)
        now = self.clock.now()
        claim = self.store.try_claim(token_id, now)
        if claim is None:
            raise DuplicateClaim("token is being evaluated", token=token_id)

        self._arm_auto_release(claim)
        try:
            if self.store.has_in_flight(token_id, now):
                raise DuplicateClaim("a sell for this token is still in flight", token=token_id)
            balance = self.wallet_cache.get_current_balance(token_id)
            amount = position.current_amount_raw if balance is None else balance
            if amount <= 0:
                self.retire(token_id, "wallet balance is zero")
                return Fill(token_id, Side.SELL, success=False, reason="nothing to sell", timestamp=now)
            action = SellManual(amount)
            self.logger.info("🧹 Force sell %s amount=%d", short_mint(token_id), amount)
            fill = await self._execute(token_id, action, self._sell_request(position, action, position.venue))
            if fill.success:
                await self._record_sell(position, action, fill)
            return fill
        finally:
            self._release(claim)

    async def force_sell_all(self) -> dict[str, bool]:
        results: dict[str, bool] = {}
        for token_id in self.store.token_ids():
            try:
                fill = await self.force_sell(token_id)
                results[token_id] = fill.success
            except (NoPositionFound, DuplicateClaim) as e:
                self.logger.warning("Force sell skipped %s: %s", short_mint(token_id), e)
                results[token_id] = False
        return results

    # ------------------------------------------------------------------
    # Periodic housekeeping
    # ------------------------------------------------------------------

    async def sync_wallet_tokens(self) -> list[str]:
        """Start watching wallet tokens with a balance that nothing tracks yet."""
        added: list[str] = []
        for mint in self.wallet_cache.tokens_with_balance():
            if mint == SOL_MINT or mint in self.store or mint in self._exhausted or mint in self._unknown:
                continue
            try:
                await self.watch(mint, LedgerLookup())
                added.append(mint)
            except NoPositionFound:
                self.logger.info("Wallet holds %s without a buy record, ignoring", short_mint(mint))
                self._unknown.add(mint)
            except InvalidPositionState as e:
                self.logger.warning("Cannot rebuild %s: %s", short_mint(mint), e)
        if added:
            self.logger.info("🆕 Monitoring %d wallet tokens", len(added))
        return added

    async def log_status(self) -> None:
        now = self.clock.now()
        for position in self.store.positions():
            price = self.oracle.cached_price(position.token_id)
            window = position.stagnation_window
            self.logger.info(
                "📈 STATUS %s | age=%s price=$%.10f (%+.2f%%) step=%d/%d amount=%.4f window=%s ref=$%.10f",
                short_mint(position.token_id),
                format_elapsed(now - position.created_at),
                price,
                position.growth_percent(price) if price > 0 else 0.0,
                position.selling_step,
                MAX_SELLING_STEP,
                position.current_amount_ui,
                format_elapsed(window.elapsed(now)),
                window.reference_price,
            )
