from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Union

from pump_sniper.constants import (
    LAMPORTS_PER_SOL,
    MIN_REFERENCE_PRICE,
    TOKEN_UNIT,
    TOTAL_SUPPLY,
)


class Venue(str, Enum):
    PUMPFUN = "Pumpfun"
    RAYDIUM = "Raydium"
    BURN = "Burn"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class SellKind(str, Enum):
    STEP = "step"
    STAGNATION = "stagnation"
    STOP_LOSS = "stoploss"
    LOW_MC_FORCE_EXIT = "lowMcForceExit"
    AGE_LIMIT = "ageLimit"
    MANUAL = "manual"


class ForceExitReason(str, Enum):
    LOW_MARKET_CAP = "lowMarketCap"
    AGE_LIMIT = "ageLimit"


def to_ui_amount(amount_raw: int) -> float:
    return amount_raw / TOKEN_UNIT


def to_raw_amount(amount_ui: float) -> int:
    return int(round(amount_ui * TOKEN_UNIT))


@dataclass(frozen=True)
class StagnationWindow:
    """Rolling growth requirement: price must beat reference by threshold within duration."""
    reference_price: float
    threshold_fraction: float
    duration_sec: float
    started_at: float

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def is_due(self, now: float) -> bool:
        return self.elapsed(now) >= self.duration_sec

    def reset(self, price: float, now: float) -> "StagnationWindow":
        return replace(self, reference_price=max(MIN_REFERENCE_PRICE, price), started_at=now)


@dataclass
class Position:
    token_id: str
    invested_price_usd: float
    invested_amount_raw: int
    invested_usd: float
    current_amount_raw: int
    created_at: float
    stagnation_window: StagnationWindow
    selling_step: int = 0
    realized_profit_usd: float = 0.0
    token_name: str = ""
    token_symbol: str = ""
    venue: Venue = Venue.PUMPFUN
    fee_paid_usd: float = 0.0

    @property
    def current_amount_ui(self) -> float:
        return to_ui_amount(self.current_amount_raw)

    def growth_percent(self, price_usd: float) -> float:
        if self.invested_price_usd <= 0:
            return 0.0
        return (price_usd / self.invested_price_usd - 1) * 100

    def to_dict(self) -> dict:
        return {
            "mint": self.token_id,
            "name": self.token_name,
            "symbol": self.token_symbol,
            "invested_price_usd": self.invested_price_usd,
            "invested_amount": to_ui_amount(self.invested_amount_raw),
            "invested_usd": self.invested_usd,
            "current_amount": self.current_amount_ui,
            "selling_step": self.selling_step,
            "created_at": self.created_at,
            "realized_profit_usd": self.realized_profit_usd,
            "venue": self.venue.value,
            "stagnation_reference_price": self.stagnation_window.reference_price,
            "stagnation_started_at": self.stagnation_window.started_at,
        }


@dataclass(frozen=True)
class DirectFill:
    """Seed a position straight from a buy fill, no ledger round-trip."""
    price_usd: float
    amount_raw: int
    timestamp: float
    invested_usd: float = 0.0
    token_name: str = ""
    token_symbol: str = ""
    venue: Venue = Venue.PUMPFUN
    fee_usd: float = 0.0


@dataclass(frozen=True)
class LedgerLookup:
    """Seed a position by replaying the ledger fills for the token."""


SeedSource = Union[DirectFill, LedgerLookup]


@dataclass
class PendingExecution:
    token_id: str
    kind: SellKind
    submitted_at: float
    expires_at: float
    step_index: int | None = None
    failed: bool = False


@dataclass
class SingleFlightClaim:
    token_id: str
    claim_id: int
    acquired_at: float
    holds_slot: bool = False
    released: bool = False


# ============================================
# SELL ACTIONS
# ============================================

@dataclass(frozen=True)
class NoAction:
    reason: str = ""

    is_sell = False


@dataclass(frozen=True)
class SellStagnation:
    amount_raw: int

    is_sell = True
    kind = SellKind.STAGNATION
    terminal = True


@dataclass(frozen=True)
class SellForceExit:
    amount_raw: int
    reason: ForceExitReason = ForceExitReason.LOW_MARKET_CAP

    is_sell = True
    terminal = True

    @property
    def kind(self) -> SellKind:
        if self.reason == ForceExitReason.AGE_LIMIT:
            return SellKind.AGE_LIMIT
        return SellKind.LOW_MC_FORCE_EXIT


@dataclass(frozen=True)
class SellStopLoss:
    amount_raw: int

    is_sell = True
    kind = SellKind.STOP_LOSS
    terminal = True


@dataclass(frozen=True)
class SellStep:
    step_index: int
    amount_raw: int

    is_sell = True
    kind = SellKind.STEP
    terminal = False


@dataclass(frozen=True)
class SellManual:
    amount_raw: int

    is_sell = True
    kind = SellKind.MANUAL
    terminal = True


Action = Union[NoAction, SellStagnation, SellForceExit, SellStopLoss, SellStep, SellManual]


@dataclass(frozen=True)
class Decision:
    """Outcome of one decide() pass: the action plus the window to store (None = unchanged)."""
    action: Action
    window: StagnationWindow | None = None


# ============================================
# MARKET DATA
# ============================================

@dataclass(frozen=True)
class BondingCurveState:
    virtual_token_reserves: int
    virtual_sol_reserves: int
    real_token_reserves: int
    real_sol_reserves: int
    token_total_supply: int
    complete: bool = False

    @property
    def is_priceable(self) -> bool:
        return self.virtual_token_reserves > 0 and self.virtual_sol_reserves > 0

    @property
    def price_sol(self) -> float:
        """SOL per UI token."""
        if not self.is_priceable:
            return 0.0
        return (self.virtual_sol_reserves / LAMPORTS_PER_SOL) / (self.virtual_token_reserves / TOKEN_UNIT)

    def price_usd(self, sol_price_usd: float) -> float:
        return self.price_sol * sol_price_usd

    def market_cap_usd(self, sol_price_usd: float) -> float:
        supply = self.token_total_supply / TOKEN_UNIT if self.token_total_supply else TOTAL_SUPPLY
        return self.price_usd(sol_price_usd) * supply

    def buy_quote(self, sol_in_lamports: int) -> int:
        """Raw tokens received for a SOL input on the constant-product curve."""
        if not self.is_priceable or sol_in_lamports <= 0:
            return 0
        k = self.virtual_sol_reserves * self.virtual_token_reserves
        new_sol = self.virtual_sol_reserves + sol_in_lamports
        tokens_out = self.virtual_token_reserves - k // new_sol
        return max(min(tokens_out, self.real_token_reserves or tokens_out), 0)

    def sell_quote(self, tokens_in_raw: int) -> int:
        """Lamports received for selling raw tokens on the curve."""
        if not self.is_priceable or tokens_in_raw <= 0:
            return 0
        k = self.virtual_sol_reserves * self.virtual_token_reserves
        new_tokens = self.virtual_token_reserves + tokens_in_raw
        return max(self.virtual_sol_reserves - k // new_tokens, 0)


@dataclass(frozen=True)
class PriceQuote:
    price_usd: float
    venue: Venue
    stale: bool = False
    curve: BondingCurveState | None = None


@dataclass
class TokenCandidate:
    """New token announced by the launch platform."""
    mint: str
    name: str
    symbol: str
    creator: str
    bonding_curve: str
    created_at: float
    uri: str = ""
    dev_buy_sol: float = 0.0
    dev_buy_tokens: float = 0.0
    v_sol_in_bonding_curve: float = 0.0
    v_tokens_in_bonding_curve: float = 0.0
    market_cap_sol: float = 0.0

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class ValidationResult:
    is_valid: bool
    reasons: list[str] = field(default_factory=list)
    market_cap_usd: float = 0.0
    lookup_failed: bool = False


# ============================================
# EXECUTION
# ============================================

@dataclass(frozen=True)
class SwapRequest:
    token_id: str
    side: Side
    amount_raw: int = 0           # tokens to sell
    amount_sol: float = 0.0       # SOL to spend on a buy
    slippage_pct: float = 10.0
    tip_sol: float = 0.0
    priority_fee_sol: float = 0.0
    venue_hint: Venue = Venue.PUMPFUN
    sell_all: bool = False

    @property
    def amount_ui(self) -> float:
        return to_ui_amount(self.amount_raw)


@dataclass
class Fill:
    token_id: str
    side: Side
    success: bool = True
    price_usd: float = 0.0
    amount_raw: int = 0           # tokens bought or sold
    out_amount: float = 0.0       # tokens for a buy, SOL for a sell, 0 for a burn
    tx_hash: str = ""
    venue: Venue = Venue.PUMPFUN
    fee_usd: float = 0.0
    burned: bool = False
    reason: str = ""
    timestamp: float = 0.0


@dataclass
class LedgerEntry:
    """One row of the sniper_txns ledger. Amounts in UI units."""
    tx_hash: str
    mint: str
    tx_time: float
    swap: Side
    swap_price_usd: float
    swap_amount: float
    token_name: str = ""
    token_symbol: str = ""
    swap_fee_usd: float = 0.0
    swap_mc_usd: float = 0.0
    swap_profit_usd: float = 0.0
    swap_profit_percent_usd: float = 0.0
    buy_mc_usd: float = 0.0
    dex: str = Venue.PUMPFUN.value
    id: int | None = None

    @property
    def amount_raw(self) -> int:
        return to_raw_amount(self.swap_amount)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tx_hash": self.tx_hash,
            "mint": self.mint,
            "tx_time": self.tx_time,
            "token_name": self.token_name,
            "token_symbol": self.token_symbol,
            "swap": self.swap.value,
            "swap_price_usd": self.swap_price_usd,
            "swap_amount": self.swap_amount,
            "swap_fee_usd": self.swap_fee_usd,
            "swap_mc_usd": self.swap_mc_usd,
            "swap_profit_usd": self.swap_profit_usd,
            "swap_profit_percent_usd": self.swap_profit_percent_usd,
            "buy_mc_usd": self.buy_mc_usd,
            "dex": self.dex,
        }


@dataclass
class Alert:
    title: str
    content: str
    link: str = ""
    image_url: str = ""
    created_at: float = 0.0
    is_read: bool = False
    id: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "link": self.link,
            "image_url": self.image_url,
            "created_at": self.created_at,
            "is_read": self.is_read,
        }
