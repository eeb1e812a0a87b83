"""Async view of the fill ledger used by the trading core."""
from __future__ import annotations

import asyncio
import logging

from pump_sniper.constants import TOTAL_SUPPLY
from pump_sniper.core.models import Fill, LedgerEntry, Position, Side, to_ui_amount
from pump_sniper.db.database import DatabaseManager


class TransactionLedger:
    """Append-only record of buy and sell fills.

    sqlite work runs in a worker thread so a slow disk never stalls the
    event loop that is watching prices.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db
        self.logger = logging.getLogger("pump_sniper.ledger")

    async def append(self, entry: LedgerEntry) -> LedgerEntry:
        entry.id = await asyncio.to_thread(self.db.append_txn, entry)
        return entry

    async def find_by_token(self, token_id: str) -> list[LedgerEntry]:
        return await asyncio.to_thread(self.db.get_txns_by_mint, token_id)

    async def find_latest_buy(self, token_id: str) -> LedgerEntry | None:
        return await asyncio.to_thread(self.db.get_latest_buy, token_id)

    async def all_fills(self) -> list[LedgerEntry]:
        return await asyncio.to_thread(self.db.get_all_txns)

    async def recent(self, token_id: str | None = None, limit: int = 500, offset: int = 0) -> list[LedgerEntry]:
        return await asyncio.to_thread(self.db.get_txns, token_id, limit, offset)


def build_buy_entry(fill: Fill, token_name: str = "", token_symbol: str = "") -> LedgerEntry:
    market_cap = fill.price_usd * TOTAL_SUPPLY
    return LedgerEntry(
        tx_hash=fill.tx_hash,
        mint=fill.token_id,
        tx_time=fill.timestamp,
        token_name=token_name,
        token_symbol=token_symbol,
        swap=Side.BUY,
        swap_price_usd=fill.price_usd,
        swap_amount=to_ui_amount(fill.amount_raw),
        swap_fee_usd=fill.fee_usd,
        swap_mc_usd=market_cap,
        buy_mc_usd=market_cap,
        dex=fill.venue.value,
    )


def build_sell_entry(fill: Fill, position: Position) -> LedgerEntry:
    """Sell row; profit is measured against the position's invested price."""
    amount_ui = to_ui_amount(fill.amount_raw)
    invested = position.invested_price_usd
    if invested > 0:
        profit_usd = (fill.price_usd - invested) * amount_ui
        profit_pct = (fill.price_usd / invested - 1) * 100
    else:
        profit_usd = 0.0
        profit_pct = 0.0
    return LedgerEntry(
        tx_hash=fill.tx_hash,
        mint=fill.token_id,
        tx_time=fill.timestamp,
        token_name=position.token_name,
        token_symbol=position.token_symbol,
        swap=Side.SELL,
        swap_price_usd=fill.price_usd,
        swap_amount=amount_ui,
        swap_fee_usd=fill.fee_usd,
        swap_mc_usd=fill.price_usd * TOTAL_SUPPLY,
        swap_profit_usd=profit_usd,
        swap_profit_percent_usd=profit_pct,
        buy_mc_usd=invested * TOTAL_SUPPLY,
        dex=fill.venue.value,
    )
