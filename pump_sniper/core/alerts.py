from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from pump_sniper.core.models import Alert

if TYPE_CHECKING:
    from pump_sniper.core.telegram_notifier import TelegramNotifier
    from pump_sniper.db.database import DatabaseManager


class AlertSink:
    """Operator alerts: stored in the alerts table and pushed to Telegram.

    raise_alert is fire-and-forget for callers on the trading path; the
    returned task can be awaited when the caller needs the stored row.
    """

    def __init__(self, db: "DatabaseManager", notifier: "TelegramNotifier | None" = None) -> None:
        self.db = db
        self.notifier = notifier
        self.logger = logging.getLogger("pump_sniper.alerts")
        self._tasks: set[asyncio.Task] = set()

    def raise_alert(self, title: str, content: str, link: str = "", image_url: str = "") -> asyncio.Task:
        alert = Alert(
            title=title,
            content=content,
            link=link,
            image_url=image_url,
            created_at=time.time(),
        )
        self.logger.warning("🔔 ALERT %s: %s", title, content)
        task = asyncio.get_running_loop().create_task(self._deliver(alert))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, alert: Alert) -> Alert:
        try:
            alert.id = await asyncio.to_thread(self.db.create_alert, alert)
        except Exception as e:
            self.logger.error("Failed to store alert %r: %s", alert.title, e)
        if self.notifier is not None:
            await self.notifier.send_alert(alert)
        return alert

    async def drain(self) -> None:
        """Wait for alerts still being delivered."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def list(self, unread_only: bool = False, limit: int = 100) -> list[Alert]:
        return await asyncio.to_thread(self.db.get_alerts, unread_only, limit)

    async def unread_count(self) -> int:
        return await asyncio.to_thread(self.db.count_unread_alerts)

    async def mark_read(self, alert_id: int) -> bool:
        return await asyncio.to_thread(self.db.mark_alert_read, alert_id)

    async def mark_all_read(self) -> int:
        return await asyncio.to_thread(self.db.mark_all_alerts_read)

    async def delete(self, alert_id: int) -> bool:
        return await asyncio.to_thread(self.db.delete_alert, alert_id)
