from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from pump_sniper.config import Settings
from pump_sniper.exceptions import TransientLookupFailure
from pump_sniper.utils.retry import async_retry


@dataclass(frozen=True)
class TokenMetadata:
    mint: str
    name: str
    symbol: str
    image: str = ""
    creator: str = ""


class PumpFunClient:
    """Token metadata from the pump.fun frontend API."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.base_url = settings.PUMPFUN_API_BASE.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("pump_sniper.pumpfun")

    async def close(self) -> None:
        await self.client.aclose()

    async def get_metadata(self, mint: str) -> TokenMetadata:
        """Raises TransientLookupFailure when the API cannot be reached or has no symbol."""
        try:
            data = await self._fetch_coin(mint)
        except (httpx.HTTPError, ValueError) as e:
            raise TransientLookupFailure("pump.fun metadata unavailable", mint=mint[:12], error=str(e))

        symbol = str(data.get("symbol") or "")
        if not symbol:
            raise TransientLookupFailure("pump.fun metadata has no symbol", mint=mint[:12])
        return TokenMetadata(
            mint=mint,
            name=str(data.get("name") or ""),
            symbol=symbol,
            image=str(data.get("image_uri") or data.get("image") or ""),
            creator=str(data.get("creator") or ""),
        )

    @async_retry(max_attempts=2, delay=0.5, exceptions=(httpx.HTTPError,))
    async def _fetch_coin(self, mint: str) -> dict:
        response = await self.client.get(f"{self.base_url}/coins/{mint}")
        response.raise_for_status()
        payload = response.json()
        return payload if isinstance(payload, dict) else {}
