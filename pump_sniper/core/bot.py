"""
Sniper bot orchestrator.

Architecture:
- PumpPortalClient: new-token and trade stream
- AcquisitionScanner: validates candidates and buys
- PositionMonitor: watches held tokens and sells (sweep + trade events)
- SwapExecutor: PumpPortal local trade, Jupiter fallback, dust burn
- Portfolio / AlertSink: operator reporting served by the management API
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from solana.rpc.async_api import AsyncClient

from pump_sniper.config import (
    BotSettingsManager,
    BuyPolicy,
    MainConfig,
    SellPolicy,
    Settings,
    SettingsStore,
)
from pump_sniper.core.acquisition_scanner import AcquisitionScanner
from pump_sniper.core.alerts import AlertSink
from pump_sniper.core.clock import SystemClock
from pump_sniper.core.dexscreener_client import DexScreenerClient
from pump_sniper.core.models import Fill
from pump_sniper.core.portfolio import Portfolio
from pump_sniper.core.position_monitor import PositionMonitor
from pump_sniper.core.position_store import PositionStore
from pump_sniper.core.price_oracle import PriceOracle
from pump_sniper.core.pumpfun_client import PumpFunClient
from pump_sniper.core.pumpportal_client import PumpPortalClient
from pump_sniper.core.swap_executor import SwapExecutor
from pump_sniper.core.telegram_notifier import TelegramNotifier
from pump_sniper.core.triggers import VenueEventAdapter
from pump_sniper.core.venues import JupiterVenue, PumpPortalVenue, TokenBurner, TransactionSender
from pump_sniper.core.wallet import WalletBalanceCache, WalletManager
from pump_sniper.db.database import DatabaseManager
from pump_sniper.db.ledger import TransactionLedger
from pump_sniper.exceptions import ConfigurationError
from pump_sniper.logger import TradeLogger, clear_logs as clear_log_files, read_logs

logger = logging.getLogger("pump_sniper.bot")

SECTIONS = {
    "main": (MainConfig, "replace_main"),
    "buy": (BuyPolicy, "replace_buy"),
    "sell": (SellPolicy, "replace_sell"),
}


def merge_section(current: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    """Overlay a partial settings document; nested criteria merge key by key."""
    merged = dict(current)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_section(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class BotComponents:
    settings_manager: BotSettingsManager
    db: DatabaseManager
    ledger: TransactionLedger
    store: PositionStore
    oracle: PriceOracle
    monitor: PositionMonitor
    scanner: AcquisitionScanner
    portfolio: Portfolio
    alerts: AlertSink
    wallet_cache: WalletBalanceCache
    stream: PumpPortalClient | None = None
    closers: list[Callable[[], Awaitable[Any]]] = field(default_factory=list)


class SniperBot:
    """
    Pump.fun sniper.

    Owns every component, starts and stops them in order and exposes the
    queries and commands served by the management API.
    """

    def __init__(self, settings: Settings, components: BotComponents):
        self.settings = settings
        self.settings_manager = components.settings_manager
        self.db = components.db
        self.ledger = components.ledger
        self.store = components.store
        self.oracle = components.oracle
        self.monitor = components.monitor
        self.scanner = components.scanner
        self.portfolio = components.portfolio
        self.alerts = components.alerts
        self.wallet_cache = components.wallet_cache
        self.stream = components.stream
        self._closers = components.closers
        self._stream_task: asyncio.Task | None = None
        self.started = False

    @classmethod
    def create(cls, settings: Settings) -> "SniperBot":
        """Wire the live components. Raises WalletError without a usable key."""
        rpc = AsyncClient(settings.RPC_URL)
        http = httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)

        settings_manager = BotSettingsManager(SettingsStore(settings.BOT_SETTINGS_PATH))
        db = DatabaseManager(settings.DB_PATH)
        ledger = TransactionLedger(db)
        clock = SystemClock()

        wallet = WalletManager(rpc, settings.SOLANA_PRIVATE_KEY)
        wallet_cache = WalletBalanceCache(wallet, settings.BALANCE_REFRESH_SEC)
        dexscreener = DexScreenerClient(settings, http)
        oracle = PriceOracle(settings, rpc, dexscreener, http)

        sender = TransactionSender(settings, wallet, rpc, http)
        executor = SwapExecutor(
            primary=PumpPortalVenue(settings, sender, oracle, http),
            secondary=JupiterVenue(settings, sender, oracle, http),
            burner=TokenBurner(rpc, sender, oracle),
        )

        notifier = TelegramNotifier(settings, http)
        alerts = AlertSink(db, notifier)
        trade_logger = TradeLogger()
        stream = PumpPortalClient(settings)

        store = PositionStore(ledger, oracle, settings_manager, clock)
        monitor = PositionMonitor(
            settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock,
            event_source=VenueEventAdapter(stream),
            trade_logger=trade_logger,
        )
        scanner = AcquisitionScanner(
            settings, settings_manager, monitor, executor, oracle, ledger, db, wallet, wallet_cache,
            dexscreener, PumpFunClient(settings, http), alerts, clock,
            trade_logger=trade_logger,
            notifier=notifier,
        )
        portfolio = Portfolio(ledger, store, oracle, wallet_cache)

        return cls(settings, BotComponents(
            settings_manager=settings_manager,
            db=db,
            ledger=ledger,
            store=store,
            oracle=oracle,
            monitor=monitor,
            scanner=scanner,
            portfolio=portfolio,
            alerts=alerts,
            wallet_cache=wallet_cache,
            stream=stream,
            closers=[http.aclose, rpc.close],
        ))

    # ============================================
    # LIFECYCLE
    # ============================================

    async def start(self) -> None:
        logger.info("🤖 Pump.fun sniper starting...")
        await self.wallet_cache.start()
        sol_balance = self.wallet_cache.get_sol_balance()
        if sol_balance is not None:
            logger.info("💰 Wallet balance: %.4f SOL", sol_balance)

        restored = await self.monitor.sync_wallet_tokens()
        logger.info("📂 Restored %d positions from the ledger", len(restored))
        self.monitor.start()

        if self.stream is not None:
            self.stream.set_token_callback(self.scanner.on_new_token)
            self._stream_task = asyncio.create_task(self.stream.start())

        main = self.settings_manager.get().main
        hours = main.working_hours
        logger.info(
            "🚀 Bot started | running=%s hours=%s-%s UTC (%s)",
            main.is_running, hours.start, hours.end, "on" if hours.enabled else "off",
        )
        self.started = True

    async def stop(self) -> None:
        logger.info("Initiating graceful shutdown...")
        await self.scanner.stop()
        if self.stream is not None:
            await self.stream.stop()
        if self._stream_task is not None:
            self._stream_task.cancel()
            await asyncio.gather(self._stream_task, return_exceptions=True)
            self._stream_task = None
        await self.monitor.stop()
        await self.wallet_cache.stop()
        await self.scanner.drain()
        await self.alerts.drain()
        for close in self._closers:
            try:
                await close()
            except Exception as e:
                logger.warning("Close failed: %s", e)
        self.started = False
        logger.info("Shutdown complete")

    # ============================================
    # QUERIES
    # ============================================

    def status(self) -> dict[str, Any]:
        main = self.settings_manager.get().main
        return {
            "is_running": main.is_running,
            "working_hours": {
                "start": main.working_hours.start,
                "end": main.working_hours.end,
                "enabled": main.working_hours.enabled,
            },
            "is_working_time": self.settings_manager.is_working_time(),
            "scanner_paused": self.scanner.paused,
            "watching": len(self.scanner.watching()),
            "tracked_positions": len(self.store),
            "active_sells": self.monitor.active_sells,
            "sol_balance": self.wallet_cache.get_sol_balance(),
            "sol_price_usd": self.oracle.sol_price_usd,
            "stream_connected": bool(self.stream and self.stream.connected),
        }

    def get_settings(self, section: str) -> dict[str, Any]:
        if section not in SECTIONS:
            raise ConfigurationError("Unknown settings section", section=section)
        return self.settings_manager.get().to_dict()[section]

    def update_settings(self, section: str, data: dict[str, Any]) -> dict[str, Any]:
        """Apply a (partial) section document. Raises ConfigurationError when invalid."""
        if section not in SECTIONS:
            raise ConfigurationError("Unknown settings section", section=section)
        if not isinstance(data, dict):
            raise ConfigurationError("Settings body must be an object", section=section)
        policy_cls, replace_name = SECTIONS[section]
        merged = merge_section(self.get_settings(section), data)
        try:
            policy = policy_cls.from_dict(merged)
        except (TypeError, ValueError) as e:
            raise ConfigurationError("Malformed settings", section=section, error=str(e))
        getattr(self.settings_manager, replace_name)(policy)
        logger.info("🔧 %s settings replaced", section)
        return self.get_settings(section)

    def positions(self) -> list[dict[str, Any]]:
        snapshot = []
        for position in self.store.positions():
            data = position.to_dict()
            price = self.oracle.cached_price(position.token_id)
            data["current_price_usd"] = price
            data["growth_percent"] = position.growth_percent(price) if price > 0 else 0.0
            snapshot.append(data)
        return snapshot

    async def assets(self, **query: Any) -> dict[str, Any]:
        return await self.portfolio.query(**query)

    async def asset(self, mint: str) -> dict[str, Any] | None:
        report = await self.portfolio.token_report(mint)
        if report is None:
            return None
        fills = await self.ledger.find_by_token(mint)
        fills.sort(key=lambda f: f.tx_time, reverse=True)
        return {"token": report.to_dict(), "transactions": [f.to_dict() for f in fills]}

    async def transactions(self, mint: str | None = None, limit: int = 500, offset: int = 0) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in await self.ledger.recent(mint, limit, offset)]

    async def tokens(
        self,
        search: str = "",
        start: float | None = None,
        end: float | None = None,
        sort_field: str = "",
        sort_order: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Tokens the scanner has registered, newest first by default."""
        total, rows = await asyncio.to_thread(
            self.db.list_tokens, search, start, end, sort_field, sort_order, limit, offset
        )
        return {
            "total": total,
            "offset": offset,
            "limit": limit,
            "sort_field": sort_field,
            "sort_order": sort_order,
            "data": rows,
        }

    async def logs(self, limit: int = 500) -> list[dict[str, Any]]:
        return await asyncio.to_thread(read_logs, self.settings.LOG_DIR, limit)

    async def clear_logs(self) -> int:
        cleared = await asyncio.to_thread(clear_log_files, self.settings.LOG_DIR)
        logger.info("🧽 Cleared %d log files", cleared)
        return cleared

    # ============================================
    # COMMANDS
    # ============================================

    def pause_scanner(self) -> None:
        self.scanner.pause()

    def resume_scanner(self) -> None:
        self.scanner.resume()

    async def force_sell(self, mint: str) -> Fill:
        return await self.monitor.force_sell(mint)

    async def force_sell_all(self) -> dict[str, bool]:
        logger.info("🧹 Force selling %d positions", len(self.store))
        return await self.monitor.force_sell_all()
