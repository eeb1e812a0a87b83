from __future__ import annotations

import logging
from html import escape
from typing import Any

import httpx

from pump_sniper.config import Settings
from pump_sniper.constants import SOLSCAN_TX_URL
from pump_sniper.core.models import Alert, Fill, Side
from pump_sniper.utils.helpers import short_mint


class TelegramNotifier:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self.token = settings.TELEGRAM_BOT_TOKEN
        self.chat_id = settings.TELEGRAM_CHAT_ID
        self.enabled = settings.TELEGRAM_ENABLED and bool(self.token and self.chat_id)
        self.client = client or httpx.AsyncClient(timeout=settings.API_TIMEOUT_SEC)
        self.logger = logging.getLogger("pump_sniper.telegram")

    async def close(self) -> None:
        await self.client.aclose()

    async def send_message(self, text: str, buttons: list[list[dict[str, Any]]] | None = None) -> None:
        if not self.enabled:
            return
        payload: dict[str, Any] = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        if buttons:
            payload["reply_markup"] = {"inline_keyboard": buttons}
        await self._post("sendMessage", payload)

    async def send_alert(self, alert: Alert) -> None:
        if not self.enabled:
            return
        await self.send_message(build_alert_message(alert))

    async def send_fill(self, fill: Fill, symbol: str = "", reason: str = "") -> None:
        if not self.enabled or not fill.success:
            return
        await self.send_message(build_fill_message(fill, symbol, reason))

    async def _post(self, method: str, payload: dict[str, Any]) -> Any:
        url = f"https://api.telegram.org/bot{self.token}/{method}"
        try:
            response = await self.client.post(url, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            self.logger.warning("Telegram %s failed: %s", method, exc)
            return {}


def build_alert_message(alert: Alert) -> str:
    lines = [f"🚨 <b>{escape(alert.title)}</b>", escape(alert.content.strip())]
    if alert.link:
        lines.append(f"<code>{escape(alert.link)}</code>")
    return "\n".join(lines)


def build_fill_message(fill: Fill, symbol: str = "", reason: str = "") -> str:
    icon = "🟢" if fill.side == Side.BUY else "🔴"
    label = escape(symbol) if symbol else short_mint(fill.token_id)
    lines = [
        f"{icon} <b>{fill.side.value} {label}</b> on {fill.venue.value}",
        f"Price: ${fill.price_usd:.10f}",
    ]
    if fill.side == Side.BUY:
        lines.append(f"Tokens: {fill.out_amount:,.2f}")
    else:
        lines.append(f"Received: {fill.out_amount:.6f} SOL")
    if reason:
        lines.append(f"Reason: {escape(reason)}")
    lines.append(f'<a href="{SOLSCAN_TX_URL.format(signature=fill.tx_hash)}">Transaction</a>')
    return "\n".join(lines)
