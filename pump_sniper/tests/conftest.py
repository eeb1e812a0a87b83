"""Shared fakes and fixtures. No test touches the network."""
from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from pump_sniper.config import BotSettingsManager, Settings, SettingsStore
from pump_sniper.constants import TOKEN_UNIT
from pump_sniper.core.acquisition_scanner import AcquisitionScanner
from pump_sniper.core.alerts import AlertSink
from pump_sniper.core.clock import ManualClock
from pump_sniper.core.dexscreener_client import MarketActivity
from pump_sniper.core.models import (
    BondingCurveState,
    Fill,
    LedgerEntry,
    PriceQuote,
    Side,
    SwapRequest,
    Venue,
)
from pump_sniper.core.position_monitor import PositionMonitor
from pump_sniper.core.position_store import PositionStore
from pump_sniper.core.pumpfun_client import TokenMetadata
from pump_sniper.db.database import DatabaseManager
from pump_sniper.exceptions import TransientLookupFailure

MINT_A = "MintAaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaapump"
MINT_B = "MintBbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbpump"
MINT_C = "MintCccccccccccccccccccccccccccccccccccpump"


class FakeOracle:
    def __init__(self, prices: dict[str, float] | None = None, sol_price: float = 160.0):
        self.prices = dict(prices or {})
        self.curves: dict[str, BondingCurveState | None] = {}
        self.sol_price_usd = sol_price
        self.calls: list[str] = []
        self.forgotten: list[str] = []

    async def get_price(self, mint: str) -> PriceQuote:
        self.calls.append(mint)
        price = self.prices.get(mint)
        if price is None:
            raise TransientLookupFailure("no price", mint=mint)
        return PriceQuote(price, Venue.PUMPFUN)

    async def get_sol_price(self) -> float:
        return self.sol_price_usd

    async def get_bonding_curve(self, mint: str) -> BondingCurveState | None:
        return self.curves.get(mint)

    def cached_price(self, mint: str) -> float:
        return self.prices.get(mint, 0.0)

    def forget(self, mint: str) -> None:
        self.forgotten.append(mint)


class FakeExecutor:
    """Records requests. Fills succeed at `price` unless `fail` is set; `gate`
    holds every swap until it is set; `error` is raised from every call."""

    def __init__(self, price: float = 1.0):
        self.price = price
        self.fail = False
        self.requests: list[SwapRequest] = []
        self.gate: asyncio.Event | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self.error: Exception | None = None

    async def execute(self, request: SwapRequest) -> Fill:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.error is not None:
                raise self.error
            if self.fail:
                return Fill(request.token_id, request.side, success=False, reason="venue down")
            amount = request.amount_raw if request.side == Side.SELL else int(request.amount_sol / self.price * TOKEN_UNIT)
            return Fill(
                token_id=request.token_id,
                side=request.side,
                price_usd=self.price,
                amount_raw=amount,
                out_amount=0.5,
                tx_hash=f"tx{len(self.requests)}",
                venue=Venue.PUMPFUN,
                fee_usd=0.01,
                timestamp=1_700_000_000.0,
            )
        finally:
            self.in_flight -= 1


class FakeLedger:
    def __init__(self):
        self.entries: list[LedgerEntry] = []
        self.fail = False

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        if self.fail:
            raise OSError("disk full")
        entry.id = len(self.entries) + 1
        self.entries.append(entry)
        return entry

    async def find_by_token(self, token_id: str) -> list[LedgerEntry]:
        return sorted((e for e in self.entries if e.mint == token_id), key=lambda e: e.tx_time)

    async def find_latest_buy(self, token_id: str) -> LedgerEntry | None:
        buys = [e for e in await self.find_by_token(token_id) if e.swap == Side.BUY]
        return buys[-1] if buys else None

    async def all_fills(self) -> list[LedgerEntry]:
        return sorted(self.entries, key=lambda e: e.tx_time)

    async def recent(self, token_id: str | None = None, limit: int = 500, offset: int = 0) -> list[LedgerEntry]:
        rows = [e for e in self.entries if token_id is None or e.mint == token_id]
        rows.sort(key=lambda e: e.tx_time, reverse=True)
        return rows[offset:offset + limit]


class FakeWalletCache:
    def __init__(self, balances: dict[str, int] | None = None, sol_balance: float | None = 1.0):
        self.balances = balances
        self.sol_balance = sol_balance
        self.bought: list[tuple[str, int]] = []
        self.sold: list[tuple[str, int]] = []

    def get_current_balance(self, mint: str) -> int | None:
        if self.balances is None:
            return None
        return self.balances.get(mint, 0)

    def get_sol_balance(self) -> float | None:
        return self.sol_balance

    def tokens_with_balance(self) -> dict[str, int]:
        return {m: a for m, a in (self.balances or {}).items() if a > 0}

    def record_buy(self, mint: str, amount_raw: int, sol_spent: float) -> None:
        self.bought.append((mint, amount_raw))
        if self.balances is not None:
            self.balances[mint] = self.balances.get(mint, 0) + amount_raw

    def record_sell(self, mint: str, amount_raw: int) -> None:
        self.sold.append((mint, amount_raw))
        if self.balances is not None:
            self.balances[mint] = max(self.balances.get(mint, 0) - amount_raw, 0)


class FakeWallet:
    pubkey = "WalletPubkey1111111111111111111111111111111"

    def __init__(self):
        self.dev_balance = 0
        self.holders = 50

    async def get_token_balance(self, mint, owner=None):
        return self.dev_balance

    async def count_holders(self, mint):
        return self.holders


class FakeDexScreener:
    def __init__(self):
        self.activity = MarketActivity(price_usd=0.00001, liquidity_usd=5000, volume_h1=2000, txns_m5=5, txns_h1=40)
        self.fail = False

    async def get_market_activity(self, mint):
        if self.fail:
            raise TransientLookupFailure("dexscreener down")
        return self.activity


class FakePumpFun:
    def __init__(self):
        self.metadata: dict[str, TokenMetadata] = {}

    async def get_metadata(self, mint):
        if mint not in self.metadata:
            raise TransientLookupFailure("not indexed yet", mint=mint)
        return self.metadata[mint]


def buy_entry(mint: str, price: float, amount_ui: float, tx_time: float, **kwargs) -> LedgerEntry:
    return LedgerEntry(
        tx_hash=kwargs.pop("tx_hash", f"buy-{mint[:5]}"),
        mint=mint,
        tx_time=tx_time,
        swap=Side.BUY,
        swap_price_usd=price,
        swap_amount=amount_ui,
        **kwargs,
    )


def sell_entry(mint: str, price: float, amount_ui: float, tx_time: float, profit: float = 0.0, **kwargs) -> LedgerEntry:
    return LedgerEntry(
        tx_hash=kwargs.pop("tx_hash", f"sell-{mint[:5]}-{tx_time}"),
        mint=mint,
        tx_time=tx_time,
        swap=Side.SELL,
        swap_price_usd=price,
        swap_amount=amount_ui,
        swap_profit_usd=profit,
        **kwargs,
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def settings():
    return Settings(EVENT_DEBOUNCE_SEC=0.05, CLAIM_TIMEOUT_SEC=5.0, MAX_CONCURRENT_SELLS=3)


@pytest.fixture
def settings_manager(tmp_path):
    manager = BotSettingsManager(SettingsStore(tmp_path / "bot_settings.yaml"))
    main = manager.get().main
    manager.replace_main(replace(main, is_running=True, working_hours=replace(main.working_hours, enabled=False)))
    return manager


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def wallet_cache():
    return FakeWalletCache()


@pytest.fixture
def store(ledger, oracle, settings_manager, clock):
    return PositionStore(ledger, oracle, settings_manager, clock)


@pytest.fixture
def monitor(settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock):
    return PositionMonitor(settings, store, oracle, executor, ledger, wallet_cache, settings_manager, clock)


@pytest.fixture
def db(tmp_path):
    return DatabaseManager(str(tmp_path / "sniper.db"))


@pytest.fixture
def alerts(db):
    return AlertSink(db)


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def dexscreener():
    return FakeDexScreener()


@pytest.fixture
def pumpfun():
    return FakePumpFun()


@pytest.fixture
def scanner(settings, settings_manager, monitor, executor, oracle, ledger, db, wallet, wallet_cache,
            dexscreener, pumpfun, alerts, clock):
    buy = settings_manager.get().buy
    settings_manager.replace_buy(replace(buy, investment_per_token=0.01))
    return AcquisitionScanner(
        settings, settings_manager, monitor, executor, oracle, ledger, db, wallet, wallet_cache,
        dexscreener, pumpfun, alerts, clock,
    )
