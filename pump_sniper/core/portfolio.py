"""
Asset reporting built from the fill ledger.

One TokenReport per traded mint (invested vs current value, realized and
unrealized profit, fees, selling step) plus aggregate PortfolioStats. The
management API serves both, with search, sorting and pagination.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from pump_sniper.constants import TOTAL_SUPPLY
from pump_sniper.core.models import LedgerEntry, Side, Venue, to_ui_amount
from pump_sniper.exceptions import TransientLookupFailure

if TYPE_CHECKING:
    from pump_sniper.core.position_store import PositionStore
    from pump_sniper.core.price_oracle import PriceOracle
    from pump_sniper.core.wallet import WalletBalanceCache
    from pump_sniper.db.ledger import TransactionLedger


@dataclass
class TokenReport:
    mint: str
    token_name: str
    token_symbol: str
    created_at: float
    invested_amount: float
    invested_price_usd: float
    invested_usd: float
    invested_mc_usd: float
    current_amount: float
    current_price_usd: float
    current_mc_usd: float
    holding_value_usd: float
    realized_profit_usd: float
    unrealized_profit_usd: float
    pnl_usd: float
    pnl_percent: float
    total_fee_usd: float
    selling_step: int
    dex: str

    @property
    def revenue_usd(self) -> float:
        return self.realized_profit_usd + self.unrealized_profit_usd

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["revenue_usd"] = self.revenue_usd
        return data


@dataclass
class PortfolioStats:
    total_profit_usd: float = 0.0
    realized_profit_usd: float = 0.0
    unrealized_profit_usd: float = 0.0
    total_invested_usd: float = 0.0
    total_tickers: int = 0
    successful_tickers: int = 0
    total_fee_usd: float = 0.0
    current_percent: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


SORT_KEYS = {
    "age": lambda r: r.created_at,
    "marketCap": lambda r: r.current_mc_usd,
    "price": lambda r: r.current_price_usd,
    "total_invested": lambda r: r.invested_usd,
    "pnl": lambda r: r.pnl_percent,
    "holding": lambda r: r.current_amount,
    "selling_step": lambda r: r.selling_step,
    "real_profit": lambda r: r.realized_profit_usd,
}


def summarize(reports: list[TokenReport]) -> PortfolioStats:
    stats = PortfolioStats(total_tickers=len(reports))
    current_value = 0.0
    invested_value = 0.0
    for report in reports:
        stats.realized_profit_usd += report.realized_profit_usd
        stats.unrealized_profit_usd += report.unrealized_profit_usd
        stats.total_invested_usd += report.invested_usd
        stats.total_fee_usd += report.total_fee_usd
        if report.realized_profit_usd > 0:
            stats.successful_tickers += 1
        current_value += report.current_price_usd * report.current_amount
        invested_value += report.invested_price_usd * report.current_amount
    stats.total_profit_usd = stats.realized_profit_usd + stats.unrealized_profit_usd
    if invested_value > 0:
        stats.current_percent = (current_value / invested_value - 1) * 100
    return stats


class Portfolio:
    def __init__(
        self,
        ledger: "TransactionLedger",
        store: "PositionStore",
        oracle: "PriceOracle",
        wallet_cache: "WalletBalanceCache | None" = None,
    ) -> None:
        self.ledger = ledger
        self.store = store
        self.oracle = oracle
        self.wallet_cache = wallet_cache
        self.logger = logging.getLogger("pump_sniper.portfolio")

    async def token_report(self, mint: str) -> TokenReport | None:
        fills = await self.ledger.find_by_token(mint)
        if not fills:
            return None
        return await self._build(mint, fills)

    async def reports(self) -> list[TokenReport]:
        by_mint: dict[str, list[LedgerEntry]] = {}
        for entry in await self.ledger.all_fills():
            by_mint.setdefault(entry.mint, []).append(entry)

        results = await asyncio.gather(
            *(self._build(mint, fills) for mint, fills in by_mint.items()),
            return_exceptions=True,
        )
        reports = []
        for mint, result in zip(by_mint, results):
            if isinstance(result, BaseException):
                self.logger.error("Asset report for %s failed: %s", mint[:12], result)
            elif result is not None:
                reports.append(result)
        return reports

    async def query(
        self,
        search: str = "",
        sort_field: str = "",
        sort_order: str = "desc",
        limit: int = 50,
        offset: int = 0,
        hide_zero: bool = False,
    ) -> dict[str, Any]:
        """Filtered, sorted page of reports; stats cover every traded token."""
        reports = await self.reports()
        visible = [r for r in reports if r.current_amount > 0] if hide_zero else reports

        if search:
            needle = search.lower()
            visible = [
                r for r in visible
                if needle in r.token_name.lower() or needle in r.token_symbol.lower() or needle in r.mint.lower()
            ]

        key = SORT_KEYS.get(sort_field)
        if key is None:
            visible = sorted(visible, key=SORT_KEYS["age"], reverse=True)
        else:
            visible = sorted(visible, key=key, reverse=sort_order != "asc")

        page = visible[offset:offset + limit]
        return {
            "stats": summarize(reports).to_dict(),
            "data": [r.to_dict() for r in page],
            "total": len(visible),
            "offset": offset,
            "limit": limit,
        }

    # ------------------------------------------------------------------

    async def _build(self, mint: str, fills: list[LedgerEntry]) -> TokenReport | None:
        fills = sorted(fills, key=lambda f: f.tx_time)
        buy = next((f for f in fills if f.swap == Side.BUY), None)
        if buy is None:
            return None
        sells = [f for f in fills if f.swap == Side.SELL]

        invested_amount = buy.swap_amount
        invested_price = buy.swap_price_usd
        invested_usd = invested_price * invested_amount
        current_amount = self._current_amount(mint, invested_amount, sells)

        current_price, dex = await self._current_price(mint, current_amount, sells, buy)

        realized = sum(f.swap_profit_usd for f in sells)
        unrealized = (current_price - (invested_price or current_price)) * current_amount
        holding_value = current_amount * current_price
        sell_proceeds = sum(f.swap_price_usd * f.swap_amount for f in sells)
        pnl_percent = (current_price / invested_price - 1) * 100 if invested_price > 0 else 0.0

        return TokenReport(
            mint=mint,
            token_name=buy.token_name,
            token_symbol=buy.token_symbol,
            created_at=buy.tx_time,
            invested_amount=invested_amount,
            invested_price_usd=invested_price,
            invested_usd=invested_usd,
            invested_mc_usd=buy.buy_mc_usd or invested_price * TOTAL_SUPPLY,
            current_amount=current_amount,
            current_price_usd=current_price,
            current_mc_usd=current_price * TOTAL_SUPPLY,
            holding_value_usd=holding_value,
            realized_profit_usd=realized,
            unrealized_profit_usd=unrealized,
            pnl_usd=sell_proceeds + holding_value - invested_usd,
            pnl_percent=pnl_percent,
            total_fee_usd=sum(f.swap_fee_usd for f in fills),
            selling_step=max(len(fills) - 1, 0),
            dex=dex,
        )

    def _current_amount(self, mint: str, invested_amount: float, sells: list[LedgerEntry]) -> float:
        position = self.store.get(mint)
        if position is not None:
            return position.current_amount_ui
        if self.wallet_cache is not None:
            balance = self.wallet_cache.get_current_balance(mint)
            if balance is not None:
                return to_ui_amount(balance)
        return max(invested_amount - sum(f.swap_amount for f in sells), 0.0)

    async def _current_price(
        self, mint: str, current_amount: float, sells: list[LedgerEntry], buy: LedgerEntry
    ) -> tuple[float, str]:
        # Sold out: report the last sell price and venue
        if current_amount <= 0 and sells:
            last = sells[-1]
            return last.swap_price_usd, last.dex or Venue.PUMPFUN.value

        try:
            quote = await self.oracle.get_price(mint)
        except TransientLookupFailure as e:
            self.logger.debug("No live price for %s: %s", mint[:12], e)
            cached = self.oracle.cached_price(mint)
            return cached, buy.dex or Venue.PUMPFUN.value
        return quote.price_usd, quote.venue.value
