from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from pump_sniper.config import Settings
from pump_sniper.exceptions import TransientLookupFailure


@dataclass(frozen=True)
class MarketActivity:
    price_usd: float
    liquidity_usd: float
    volume_h1: float
    txns_m5: int
    txns_h1: int
    dex_id: str = ""


class DexScreenerClient:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.base_url = settings.DEXSCREENER_API_BASE.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("pump_sniper.dexscreener")

    async def close(self) -> None:
        await self.client.aclose()

    async def get_token_pairs(self, token_address: str) -> list[dict[str, Any]] | None:
        """Pairs for a Solana token, None when the API could not be reached."""
        url = f"{self.base_url}/token-pairs/v1/solana/{token_address}"
        payload = await self._request(url, log_level="debug")
        if payload is None:
            return None
        if isinstance(payload, list):
            return payload
        pairs = payload.get("pairs") if isinstance(payload, dict) else None
        return pairs or []

    async def get_market_activity(self, token_address: str) -> MarketActivity:
        """Volume and tx counts of the most liquid pair.

        Raises TransientLookupFailure when the API is unreachable or knows no pair.
        """
        pairs = await self.get_token_pairs(token_address)
        if pairs is None:
            raise TransientLookupFailure("DexScreener unavailable", mint=token_address[:12])
        if not pairs:
            raise TransientLookupFailure("DexScreener has no pairs yet", mint=token_address[:12])

        pair = max(pairs, key=lambda p: float((p.get("liquidity") or {}).get("usd") or 0))
        txns = pair.get("txns") or {}
        m5 = txns.get("m5") or {}
        h1 = txns.get("h1") or {}
        return MarketActivity(
            price_usd=float(pair.get("priceUsd") or 0),
            liquidity_usd=float((pair.get("liquidity") or {}).get("usd") or 0),
            volume_h1=float((pair.get("volume") or {}).get("h1") or 0),
            txns_m5=int(m5.get("buys", 0)) + int(m5.get("sells", 0)),
            txns_h1=int(h1.get("buys", 0)) + int(h1.get("sells", 0)),
            dex_id=str(pair.get("dexId", "")),
        )

    async def _request(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        log_level: str = "warning",
    ) -> dict[str, Any] | list | None:
        max_retries = max(1, self.settings.DEXSCREENER_MAX_RETRIES)
        backoff = max(0.5, self.settings.DEXSCREENER_RETRY_BACKOFF_SEC)
        for attempt in range(max_retries):
            try:
                response = await self.client.get(url, params=params)
                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    delay = float(retry_after) if retry_after else backoff * (attempt + 1)
                    self.logger.warning("DexScreener rate limited, retrying in %.1fs", delay)
                    await asyncio.sleep(delay)
                    continue
                response.raise_for_status()
                return response.json()
            except httpx.HTTPError as exc:
                if attempt < max_retries - 1:
                    await asyncio.sleep(backoff)
                    continue
                getattr(self.logger, log_level)(
                    "DexScreener request failed for %s: %s", url, exc
                )
                return None
        return None
