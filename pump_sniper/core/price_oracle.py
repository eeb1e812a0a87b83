"""Token pricing.

Tokens still on the pump.fun bonding curve are priced straight from the
curve account reserves. Once the curve is complete (or the account is gone)
the token trades in a pool and is priced through Jupiter, then DexScreener.
The last good quote per token is cached and served, flagged stale, when
every live source fails.
"""
from __future__ import annotations

import logging
import struct
import time

import httpx
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solders.pubkey import Pubkey

from pump_sniper.config import Settings
from pump_sniper.constants import (
    BONDING_CURVE_COMPLETE_OFFSET,
    BONDING_CURVE_REAL_SOL_OFFSET,
    BONDING_CURVE_REAL_TOKEN_OFFSET,
    BONDING_CURVE_SEED,
    BONDING_CURVE_SUPPLY_OFFSET,
    BONDING_CURVE_VIRT_SOL_OFFSET,
    BONDING_CURVE_VIRT_TOKEN_OFFSET,
    DEFAULT_SOL_PRICE_USD,
    PUMP_PROGRAM,
    SOL_MINT,
)
from pump_sniper.core.dexscreener_client import DexScreenerClient
from pump_sniper.core.models import BondingCurveState, PriceQuote, Venue
from pump_sniper.exceptions import TransientLookupFailure
from pump_sniper.utils.helpers import sane_reserves


def bonding_curve_address(mint: str) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [BONDING_CURVE_SEED, bytes(Pubkey.from_string(mint))], PUMP_PROGRAM
    )
    return pda


def decode_bonding_curve(data: bytes) -> BondingCurveState | None:
    """Decode the curve account. None when the data is too short to be one."""
    if len(data) < BONDING_CURVE_COMPLETE_OFFSET + 1:
        return None

    def u64(offset: int) -> int:
        return struct.unpack_from("<Q", data, offset)[0]

    return BondingCurveState(
        virtual_token_reserves=u64(BONDING_CURVE_VIRT_TOKEN_OFFSET),
        virtual_sol_reserves=u64(BONDING_CURVE_VIRT_SOL_OFFSET),
        real_token_reserves=u64(BONDING_CURVE_REAL_TOKEN_OFFSET),
        real_sol_reserves=u64(BONDING_CURVE_REAL_SOL_OFFSET),
        token_total_supply=u64(BONDING_CURVE_SUPPLY_OFFSET),
        complete=bool(data[BONDING_CURVE_COMPLETE_OFFSET]),
    )


class PriceOracle:
    def __init__(
        self,
        settings: Settings,
        rpc: AsyncClient,
        dexscreener: DexScreenerClient,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self.rpc = rpc
        self.dexscreener = dexscreener
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("pump_sniper.price")
        self._quotes: dict[str, PriceQuote] = {}
        self._sol_price_usd = DEFAULT_SOL_PRICE_USD
        self._sol_price_ts = 0.0
        price_base = settings.JUPITER_PRICE_API_BASE.rstrip("/")
        self._jupiter_price_url = price_base

    async def close(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # SOL price
    # ------------------------------------------------------------------

    @property
    def sol_price_usd(self) -> float:
        """Last known SOL price, never blocks."""
        return self._sol_price_usd

    async def get_sol_price(self) -> float:
        """SOL/USD, refreshed at most once per SOL_PRICE_REFRESH_SEC."""
        now = time.time()
        if now - self._sol_price_ts < self.settings.SOL_PRICE_REFRESH_SEC:
            return self._sol_price_usd

        price = await self._jupiter_prices([SOL_MINT])
        sol_price = price.get(SOL_MINT, 0.0)
        if sol_price > 0:
            self._sol_price_usd = sol_price
            self._sol_price_ts = now
        else:
            self.logger.debug("SOL price refresh failed, keeping $%.2f", self._sol_price_usd)
        return self._sol_price_usd

    # ------------------------------------------------------------------
    # Token price
    # ------------------------------------------------------------------

    async def get_bonding_curve(self, mint: str) -> BondingCurveState | None:
        """Curve state, None when the account does not exist or cannot be decoded.

        Raises TransientLookupFailure when the RPC call itself fails.
        """
        try:
            resp = await self.rpc.get_account_info(bonding_curve_address(mint), commitment=Confirmed)
        except Exception as e:
            raise TransientLookupFailure("bonding curve read failed", mint=mint[:12], error=str(e))
        if resp.value is None:
            return None
        return decode_bonding_curve(bytes(resp.value.data))

    async def get_price(self, mint: str) -> PriceQuote:
        """Current USD price and the venue pricing it.

        Falls back to the cached quote (stale=True) when live sources fail and
        raises TransientLookupFailure only when nothing is cached.
        """
        sol_price = await self.get_sol_price()

        try:
            curve = await self.get_bonding_curve(mint)
        except TransientLookupFailure as e:
            self.logger.debug("%s", e)
            curve = None

        if curve is not None and not curve.complete and sane_reserves(
            curve.virtual_token_reserves, curve.virtual_sol_reserves
        ):
            price = curve.price_usd(sol_price)
            if price > 0:
                return self._remember(mint, PriceQuote(price, Venue.PUMPFUN, curve=curve))

        pool_price = await self._pool_price(mint)
        if pool_price > 0:
            return self._remember(mint, PriceQuote(pool_price, Venue.RAYDIUM))

        cached = self._quotes.get(mint)
        if cached is not None:
            self.logger.debug("Using cached price for %s: $%.10f", mint[:12], cached.price_usd)
            return PriceQuote(cached.price_usd, cached.venue, stale=True, curve=cached.curve)

        raise TransientLookupFailure("no price source available", mint=mint[:12])

    def cached_price(self, mint: str) -> float:
        quote = self._quotes.get(mint)
        return quote.price_usd if quote else 0.0

    def forget(self, mint: str) -> None:
        self._quotes.pop(mint, None)

    def _remember(self, mint: str, quote: PriceQuote) -> PriceQuote:
        self._quotes[mint] = quote
        return quote

    async def _pool_price(self, mint: str) -> float:
        prices = await self._jupiter_prices([mint])
        if prices.get(mint, 0.0) > 0:
            return prices[mint]

        pairs = await self.dexscreener.get_token_pairs(mint)
        if pairs:
            best = max(pairs, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0))
            try:
                return float(best.get("priceUsd") or 0)
            except (TypeError, ValueError):
                return 0.0
        return 0.0

    async def _jupiter_prices(self, mints: list[str]) -> dict[str, float]:
        headers = {"x-api-key": self.settings.JUPITER_API_KEY} if self.settings.JUPITER_API_KEY else None
        try:
            response = await self.client.get(
                self._jupiter_price_url, params={"ids": ",".join(mints)}, headers=headers
            )
            response.raise_for_status()
            payload = response.json() or {}
        except (httpx.HTTPError, ValueError) as e:
            self.logger.debug("Jupiter price failed: %s", e)
            return {}

        # v3 returns {mint: {usdPrice}}, older versions {data: {mint: {price}}}
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        prices: dict[str, float] = {}
        for mint, entry in (data or {}).items():
            if not isinstance(entry, dict):
                continue
            try:
                prices[mint] = float(entry.get("usdPrice") or entry.get("price") or 0)
            except (TypeError, ValueError):
                continue
        return prices
