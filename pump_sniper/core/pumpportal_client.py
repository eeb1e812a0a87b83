"""PumpPortal WebSocket client for real-time Pump.fun token and trade events."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed

from pump_sniper.config import Settings
from pump_sniper.core.models import TokenCandidate

TokenCallback = Callable[[TokenCandidate], Awaitable[None]]
TradeCallback = Callable[[str, dict], None]


class PumpPortalClient:
    """WebSocket client for PumpPortal.fun real-time data.

    One connection carries both the new-token stream and the per-mint trade
    subscriptions. Trade subscriptions survive reconnects.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.ws_url = settings.PUMPPORTAL_WS_URL
        self.logger = logging.getLogger("pump_sniper.pumpportal")
        self._running = False
        self._ws = None
        self._reconnect_delay = 1.0
        self._on_token: TokenCallback | None = None
        self._trade_callbacks: dict[str, TradeCallback] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def set_token_callback(self, callback: TokenCallback | None) -> None:
        self._on_token = callback

    async def start(self) -> None:
        """Listen until stop() is called, reconnecting with backoff."""
        self._running = True
        self.logger.info("PumpPortal WebSocket starting...")

        while self._running:
            try:
                async with websockets.connect(self.ws_url) as ws:
                    self._ws = ws
                    self._reconnect_delay = 1.0
                    self.logger.info("PumpPortal WebSocket connected")

                    if self._trade_callbacks:
                        mints = list(self._trade_callbacks)
                        await ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": mints}))
                        self.logger.info("Resubscribed to trades for %d tokens", len(mints))

                    await ws.send(json.dumps({"method": "subscribeNewToken"}))
                    self.logger.info("✅ PumpPortal: Subscribed to new tokens stream")

                    async for message in ws:
                        await self.handle_message(message)

            except ConnectionClosed as e:
                self.logger.warning("PumpPortal WebSocket closed: %s", e)
            except OSError as e:
                self.logger.error("PumpPortal connection error: %s", e)
            finally:
                self._ws = None

            if self._running:
                self.logger.info("PumpPortal reconnecting in %.1fs...", self._reconnect_delay)
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, 30.0)

    async def handle_message(self, message: str | bytes) -> None:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return
        if not isinstance(data, dict):
            return

        tx_type = data.get("txType")
        if tx_type == "create":
            candidate = self.parse_new_token(data)
            if candidate is None:
                return
            self.logger.info(
                "🆕 PUMPPORTAL NEW: %s (%s) mint=%s", candidate.symbol, candidate.name, candidate.mint[:12]
            )
            if self._on_token:
                try:
                    await self._on_token(candidate)
                except Exception as e:
                    self.logger.error("New token handler failed for %s: %s", candidate.mint[:12], e)
        elif tx_type in ("buy", "sell", "trade"):
            mint = data.get("mint")
            callback = self._trade_callbacks.get(mint) if mint else None
            if callback is not None:
                try:
                    callback(mint, data)
                except Exception as e:
                    self.logger.error("Trade callback error for %s: %s", str(mint)[:12], e)

    @staticmethod
    def parse_new_token(data: dict) -> TokenCandidate | None:
        mint = data.get("mint")
        if not mint:
            return None

        def num(key: str) -> float:
            try:
                return float(data.get(key) or 0)
            except (TypeError, ValueError):
                return 0.0

        return TokenCandidate(
            mint=str(mint),
            name=str(data.get("name", "")),
            symbol=str(data.get("symbol", "")),
            creator=str(data.get("traderPublicKey", "")),
            bonding_curve=str(data.get("bondingCurveKey", "")),
            created_at=time.time(),
            uri=str(data.get("uri", "")),
            dev_buy_sol=num("solAmount"),
            dev_buy_tokens=num("initialBuy"),
            v_sol_in_bonding_curve=num("vSolInBondingCurve"),
            v_tokens_in_bonding_curve=num("vTokensInBondingCurve"),
            market_cap_sol=num("marketCapSol"),
        )

    async def subscribe_trades(self, mint: str, callback: TradeCallback) -> None:
        """Route trade events for the mint to callback."""
        already = mint in self._trade_callbacks
        self._trade_callbacks[mint] = callback
        if already:
            return
        if self._ws is None:
            self.logger.debug("PumpPortal not connected, %s subscribes on reconnect", mint[:12])
            return
        try:
            await self._ws.send(json.dumps({"method": "subscribeTokenTrade", "keys": [mint]}))
            self.logger.info("✅ PumpPortal: Subscribed to trades for %s", mint[:12])
        except ConnectionClosed as e:
            self.logger.warning("Trade subscribe for %s deferred: %s", mint[:12], e)

    async def unsubscribe_trades(self, mint: str) -> None:
        if self._trade_callbacks.pop(mint, None) is None:
            return
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps({"method": "unsubscribeTokenTrade", "keys": [mint]}))
            self.logger.debug("PumpPortal: Unsubscribed trades for %s", mint[:12])
        except ConnectionClosed as e:
            self.logger.debug("Trade unsubscribe for %s skipped: %s", mint[:12], e)

    def is_subscribed(self, mint: str) -> bool:
        return mint in self._trade_callbacks

    async def stop(self) -> None:
        """Stop the WebSocket connection."""
        self._running = False
        self._trade_callbacks.clear()
        if self._ws:
            await self._ws.close()
            self._ws = None
        self.logger.info("PumpPortal WebSocket stopped")
