"""Acquisition scanner: turns PumpPortal create events into buys.

Each accepted candidate gets a watch loop polling every buy_interval_time
seconds until the token is bought, fails a buy criterion, or ages out.
A successful buy is handed straight to the position monitor; the ledger
write happens in the background.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING

from solders.pubkey import Pubkey  # type: ignore

from pump_sniper.config import BuyPolicy, Settings
from pump_sniper.constants import (
    DEFAULT_MAX_AGE_SEC,
    DUPLICATE_WINDOW_SEC,
    MIN_WALLET_BALANCE_SOL,
    PUMPFUN_IMAGE_URL,
    TOTAL_SUPPLY,
)
from pump_sniper.core.models import (
    DirectFill,
    Fill,
    Side,
    SwapRequest,
    TokenCandidate,
    ValidationResult,
    to_ui_amount,
)
from pump_sniper.db.ledger import build_buy_entry
from pump_sniper.exceptions import InvalidPositionState, PolicyViolation, TransientLookupFailure
from pump_sniper.utils.helpers import short_mint

if TYPE_CHECKING:
    from pump_sniper.config.bot_settings import BotSettingsManager
    from pump_sniper.core.alerts import AlertSink
    from pump_sniper.core.clock import SystemClock
    from pump_sniper.core.dexscreener_client import DexScreenerClient
    from pump_sniper.core.position_monitor import PositionMonitor
    from pump_sniper.core.price_oracle import PriceOracle
    from pump_sniper.core.pumpfun_client import PumpFunClient
    from pump_sniper.core.swap_executor import SwapExecutor
    from pump_sniper.core.telegram_notifier import TelegramNotifier
    from pump_sniper.core.wallet import WalletBalanceCache, WalletManager
    from pump_sniper.db.database import DatabaseManager
    from pump_sniper.db.ledger import TransactionLedger
    from pump_sniper.logger import TradeLogger

LOW_BALANCE_TITLE = "Insufficient Wallet Balance"


class AcquisitionScanner:
    def __init__(
        self,
        settings: Settings,
        settings_manager: "BotSettingsManager",
        monitor: "PositionMonitor",
        executor: "SwapExecutor",
        oracle: "PriceOracle",
        ledger: "TransactionLedger",
        db: "DatabaseManager",
        wallet: "WalletManager",
        wallet_cache: "WalletBalanceCache",
        dexscreener: "DexScreenerClient",
        pumpfun: "PumpFunClient",
        alerts: "AlertSink",
        clock: "SystemClock",
        trade_logger: "TradeLogger | None" = None,
        notifier: "TelegramNotifier | None" = None,
    ) -> None:
        self.settings = settings
        self.settings_manager = settings_manager
        self.monitor = monitor
        self.executor = executor
        self.oracle = oracle
        self.ledger = ledger
        self.db = db
        self.wallet = wallet
        self.wallet_cache = wallet_cache
        self.dexscreener = dexscreener
        self.pumpfun = pumpfun
        self.alerts = alerts
        self.clock = clock
        self.trade_logger = trade_logger
        self.notifier = notifier
        self.logger = logging.getLogger("pump_sniper.scanner")

        self._paused = False
        self._watching: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        self._paused = True
        self.logger.info("⏸️ Scanner paused")

    def resume(self) -> None:
        self._paused = False
        self.logger.info("▶️ Scanner resumed")

    def watching(self) -> list[str]:
        return list(self._watching)

    async def stop(self) -> None:
        tasks = list(self._watching.values()) + list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._watching.clear()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def on_new_token(self, candidate: TokenCandidate) -> bool:
        """Admit a candidate into a watch loop. Returns False when rejected."""
        mint = candidate.mint
        if self._paused:
            self.logger.debug("Scanner paused, ignoring %s", short_mint(mint))
            return False

        policy = self.settings_manager.get().buy
        if policy.max_dev_buy_amount.enabled and candidate.dev_buy_sol > policy.max_dev_buy_amount.value:
            self.logger.info(
                "❌ %s dev bought %.3f SOL (max %.3f)", short_mint(mint), candidate.dev_buy_sol,
                policy.max_dev_buy_amount.value,
            )
            return False

        if policy.duplicates.enabled and await self.is_duplicate(candidate):
            self.logger.info("❌ %s duplicate symbol %s", short_mint(mint), candidate.symbol)
            return False

        if not self.settings_manager.can_buy():
            self.logger.debug("Bot stopped or outside working hours, skipping %s", short_mint(mint))
            return False

        if mint in self.monitor.store or mint in self._watching:
            self.logger.info("❌ %s already tracked", short_mint(mint))
            return False

        task = asyncio.get_running_loop().create_task(self._watch(candidate))
        self._watching[mint] = task
        return True

    async def is_duplicate(self, candidate: TokenCandidate) -> bool:
        """True when the symbol was seen within the duplicate window.

        The candidate is always recorded. Any lookup failure counts as a duplicate.
        """
        symbol, name, image = candidate.symbol, candidate.name, ""
        if not symbol:
            try:
                meta = await self.pumpfun.get_metadata(candidate.mint)
            except TransientLookupFailure as e:
                self.logger.warning("No symbol for %s, treating as duplicate: %s", short_mint(candidate.mint), e)
                return True
            symbol, name, image = meta.symbol, meta.name or name, meta.image

        now = self.clock.now()
        try:
            existing = await asyncio.to_thread(self.db.find_token_by_symbol, symbol)
            duplicate = False
            if existing is not None and existing["mint"] != candidate.mint:
                if now - float(existing["saved_at"]) <= DUPLICATE_WINDOW_SEC:
                    duplicate = True
                else:
                    await asyncio.to_thread(self.db.touch_token, existing["mint"], now)
            await asyncio.to_thread(self.db.save_token, candidate.mint, symbol, now, name, image)
        except sqlite3.Error as e:
            self.logger.error("Token registry failed for %s: %s", short_mint(candidate.mint), e)
            return True
        return duplicate

    # ------------------------------------------------------------------
    # Watch loop
    # ------------------------------------------------------------------

    async def _watch(self, candidate: TokenCandidate) -> None:
        try:
            while await self.poll(candidate):
                await asyncio.sleep(self.settings_manager.get().main.buy_interval_time)
        except Exception as e:
            self.logger.error("Watch loop for %s crashed: %s", short_mint(candidate.mint), e, exc_info=True)
        finally:
            self._watching.pop(candidate.mint, None)

    async def poll(self, candidate: TokenCandidate) -> bool:
        """One pass over a candidate. Returns True to keep watching."""
        mint = candidate.mint
        policy = self.settings_manager.get().buy
        start, end = (policy.age.min, policy.age.max) if policy.age.enabled else (0, DEFAULT_MAX_AGE_SEC)
        age = candidate.age(self.clock.now())

        if age < start:
            self.logger.debug("⏳ %s too young (%.1fs < %ss)", short_mint(mint), age, start)
            return True
        if age >= end:
            self.logger.info("⌛ %s too old (%.1fs >= %ss), abandoning", short_mint(mint), age, end)
            return False
        if self._paused:
            return False
        if not self.settings_manager.can_buy():
            return True
        if mint in self.monitor.store:
            return False

        try:
            result = await self.validate(candidate, policy)
        except PolicyViolation as e:
            self.logger.info("❌ %s rejected: %s", short_mint(mint), e)
            return False
        if result.lookup_failed:
            return True

        sol_balance = self.wallet_cache.get_sol_balance()
        if sol_balance is None:
            self.logger.debug("SOL balance unknown, delaying %s", short_mint(mint))
            return True
        if sol_balance < MIN_WALLET_BALANCE_SOL:
            self.engage_kill_switch(sol_balance)
            return False

        bought = await self.buy(candidate)
        return not bought

    async def validate(self, candidate: TokenCandidate, policy: BuyPolicy) -> ValidationResult:
        """Run the enabled buy criteria concurrently.

        Raises PolicyViolation when a criterion fails. A lookup that could not
        complete marks the result lookup_failed so the next poll retries.
        """
        mint = candidate.mint
        checks = [self._check_market_cap(mint, policy)]
        if policy.max_dev_holding_amount.enabled and candidate.creator:
            checks.append(self._check_dev_holding(mint, candidate.creator, policy))
        if policy.holders.enabled:
            checks.append(self._check_holders(mint, policy))
        if policy.last_hour_volume.enabled or policy.last_minute_txns.enabled:
            checks.append(self._check_activity(mint, policy))

        outcomes = await asyncio.gather(*checks, return_exceptions=True)

        market_cap = 0.0
        reasons: list[str] = []
        lookup_failed = False
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, PolicyViolation):
                reasons.append(outcome.message)
            elif isinstance(outcome, TransientLookupFailure):
                self.logger.debug("Lookup failed for %s: %s", short_mint(mint), outcome)
                lookup_failed = True
            elif isinstance(outcome, BaseException):
                self.logger.warning("Check failed for %s: %s", short_mint(mint), outcome)
                lookup_failed = True
            elif index == 0:
                market_cap = outcome

        if reasons:
            raise PolicyViolation("; ".join(reasons), mint=short_mint(mint))
        if not lookup_failed:
            self.logger.info("✅ %s passed validation (mc=$%.0f)", short_mint(mint), market_cap)
        return ValidationResult(not lookup_failed, [], market_cap, lookup_failed)

    async def _check_market_cap(self, mint: str, policy: BuyPolicy) -> float:
        curve = await self.oracle.get_bonding_curve(mint)
        if curve is None or not curve.is_priceable:
            raise TransientLookupFailure("bonding curve not readable yet", mint=short_mint(mint))
        if curve.complete:
            raise PolicyViolation("token already left the bonding curve")
        market_cap = curve.market_cap_usd(await self.oracle.get_sol_price())
        bounds = policy.market_cap
        if bounds.enabled and not (bounds.min <= market_cap <= bounds.max):
            raise PolicyViolation(f"market cap ${market_cap:,.0f} outside ${bounds.min:,.0f}-${bounds.max:,.0f}")
        return market_cap

    async def _check_dev_holding(self, mint: str, creator: str, policy: BuyPolicy) -> None:
        held_raw = await self.wallet.get_token_balance(mint, owner=Pubkey.from_string(creator))
        limit = TOTAL_SUPPLY / 100 * policy.max_dev_holding_amount.value
        held = to_ui_amount(held_raw)
        if held > limit:
            raise PolicyViolation(f"dev holds {held:,.0f} tokens (max {limit:,.0f})")

    async def _check_holders(self, mint: str, policy: BuyPolicy) -> None:
        holders = await self.wallet.count_holders(mint)
        if holders < policy.holders.value:
            raise PolicyViolation(f"{holders} holders (min {policy.holders.value:g})")

    async def _check_activity(self, mint: str, policy: BuyPolicy) -> None:
        activity = await self.dexscreener.get_market_activity(mint)
        if policy.last_hour_volume.enabled and activity.volume_h1 < policy.last_hour_volume.value:
            raise PolicyViolation(
                f"hour volume ${activity.volume_h1:,.0f} (min ${policy.last_hour_volume.value:,.0f})"
            )
        if policy.last_minute_txns.enabled and activity.txns_h1 < policy.last_minute_txns.value:
            raise PolicyViolation(f"{activity.txns_h1} txns (min {policy.last_minute_txns.value:g})")

    def engage_kill_switch(self, sol_balance: float) -> None:
        self.logger.error(
            "❌ Wallet balance %.4f SOL below %.2f SOL, stopping the bot", sol_balance, MIN_WALLET_BALANCE_SOL
        )
        self.alerts.raise_alert(
            LOW_BALANCE_TITLE,
            f"🚨 Your wallet needs more SOL to continue trading! Current balance: {sol_balance:.4f} SOL. "
            "Bot operations paused for safety. Please top up your wallet to resume.",
            link=str(self.wallet.pubkey),
            image_url=PUMPFUN_IMAGE_URL,
        )
        self.settings_manager.set_running(False)

    # ------------------------------------------------------------------
    # Buy
    # ------------------------------------------------------------------

    async def buy(self, candidate: TokenCandidate) -> bool:
        mint = candidate.mint
        if not self.settings_manager.can_buy():
            self.logger.info("🛑 %s buy blocked: bot stopped or outside working hours", short_mint(mint))
            return False
        if mint in self.monitor.store:
            return True

        policy = self.settings_manager.get().buy
        request = SwapRequest(
            token_id=mint,
            side=Side.BUY,
            amount_sol=policy.investment_per_token,
            slippage_pct=policy.slippage,
            tip_sol=policy.jito_tip_amount,
            priority_fee_sol=policy.max_gas_price,
        )
        self.logger.info(
            "💰 BUY %s (%s) %.6f SOL slippage=%s%%", short_mint(mint), candidate.symbol,
            policy.investment_per_token, policy.slippage,
        )
        fill = await self.executor.execute(request)
        if not fill.success:
            self.logger.warning("Buy of %s failed (%s), retrying next poll", short_mint(mint), fill.reason)
            return False

        if not fill.timestamp:
            fill.timestamp = self.clock.now()
        self.wallet_cache.record_buy(mint, fill.amount_raw, policy.investment_per_token)
        if self.trade_logger:
            self.trade_logger.log_buy(
                mint=mint,
                amount_sol=policy.investment_per_token,
                signature=fill.tx_hash,
                price_usd=fill.price_usd,
                dex=fill.venue.value,
                token_amount=fill.amount_raw,
            )
        self._spawn(self._record_buy(fill, candidate))

        try:
            await self.monitor.watch(mint, DirectFill(
                price_usd=fill.price_usd,
                amount_raw=fill.amount_raw,
                timestamp=fill.timestamp,
                token_name=candidate.name,
                token_symbol=candidate.symbol,
                venue=fill.venue,
                fee_usd=fill.fee_usd,
            ))
        except InvalidPositionState as e:
            self.logger.warning("Handoff of %s skipped: %s", short_mint(mint), e)
        return True

    async def _record_buy(self, fill: Fill, candidate: TokenCandidate) -> None:
        try:
            await self.ledger.append(build_buy_entry(fill, candidate.name, candidate.symbol))
        except Exception as e:
            self.logger.error("Failed to record buy of %s (%s): %s", short_mint(fill.token_id), fill.tx_hash, e)
        if self.notifier is not None:
            await self.notifier.send_fill(fill, candidate.symbol)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for background ledger writes."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
