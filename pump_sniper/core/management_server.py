"""
Management HTTP API (aiohttp).

Settings, scanner control, positions, asset reports, transactions, the token
registry, log files and alerts.
Every route except /health requires `Authorization: Bearer <token>` when
MANAGEMENT_AUTH_TOKEN is set.
"""
from __future__ import annotations

import hmac
import json
import logging
from typing import TYPE_CHECKING

from aiohttp import web

from pump_sniper.exceptions import ConfigurationError, DuplicateClaim, NoPositionFound

if TYPE_CHECKING:
    from pump_sniper.core.bot import SniperBot

logger = logging.getLogger("pump_sniper.api")

BOT_KEY = web.AppKey("bot", object)
PUBLIC_PATHS = {"/health"}


def _int_param(request: web.Request, name: str, default: int) -> int:
    try:
        return max(int(request.query.get(name, default)), 0)
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{name} must be an integer"}), content_type="application/json"
        )


def _float_param(request: web.Request, name: str) -> float | None:
    raw = request.query.get(name)
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": f"{name} must be a unix timestamp"}), content_type="application/json"
        )


def _bot(request: web.Request) -> "SniperBot":
    return request.app[BOT_KEY]


def build_auth_middleware(token: str):
    @web.middleware
    async def auth_middleware(request: web.Request, handler):
        if token and request.path not in PUBLIC_PATHS:
            header = request.headers.get("Authorization", "")
            if not hmac.compare_digest(header, f"Bearer {token}"):
                logger.warning("Unauthorized request %s %s", request.method, request.path)
                return web.json_response({"error": "unauthorized"}, status=401)
        return await handler(request)

    return auth_middleware


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ConfigurationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except Exception as e:
        logger.error("%s %s failed: %s", request.method, request.path, e, exc_info=True)
        return web.json_response({"error": "internal error"}, status=500)


# ============================================
# HANDLERS
# ============================================

async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


async def get_status(request: web.Request) -> web.Response:
    return web.json_response(_bot(request).status())


async def get_settings(request: web.Request) -> web.Response:
    section = request.match_info["section"]
    return web.json_response(_bot(request).get_settings(section))


async def update_settings(request: web.Request) -> web.Response:
    section = request.match_info["section"]
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "invalid JSON"}, status=400)
    return web.json_response(_bot(request).update_settings(section, body))


async def pause_scanner(request: web.Request) -> web.Response:
    _bot(request).pause_scanner()
    return web.json_response({"paused": True})


async def resume_scanner(request: web.Request) -> web.Response:
    _bot(request).resume_scanner()
    return web.json_response({"paused": False})


async def list_positions(request: web.Request) -> web.Response:
    return web.json_response({"data": _bot(request).positions()})


async def sell_position(request: web.Request) -> web.Response:
    mint = request.match_info["mint"]
    logger.info("Manual sell requested for %s", mint)
    try:
        fill = await _bot(request).force_sell(mint)
    except NoPositionFound:
        return web.json_response({"error": "position not tracked"}, status=404)
    except DuplicateClaim:
        return web.json_response({"error": "position is busy, retry shortly"}, status=409)
    if not fill.success:
        return web.json_response({"error": "sell failed", "reason": fill.reason}, status=400)
    return web.json_response({"status": "sold", "tx_hash": fill.tx_hash, "burned": fill.burned})


async def sell_all(request: web.Request) -> web.Response:
    results = await _bot(request).force_sell_all()
    status = 200 if all(results.values()) else 400
    return web.json_response({"results": results}, status=status)


async def list_assets(request: web.Request) -> web.Response:
    query = request.query
    result = await _bot(request).assets(
        search=query.get("search", ""),
        sort_field=query.get("sort_field", ""),
        sort_order=query.get("sort_order", "desc"),
        limit=_int_param(request, "limit", 50),
        offset=_int_param(request, "offset", 0),
        hide_zero=query.get("hide_zero", "false").lower() == "true",
    )
    return web.json_response(result)


async def get_asset(request: web.Request) -> web.Response:
    data = await _bot(request).asset(request.match_info["mint"])
    if data is None:
        return web.json_response({"error": "no token data"}, status=404)
    return web.json_response(data)


async def list_transactions(request: web.Request) -> web.Response:
    rows = await _bot(request).transactions(
        mint=request.query.get("mint") or None,
        limit=_int_param(request, "limit", 500),
        offset=_int_param(request, "offset", 0),
    )
    return web.json_response({"data": rows})


async def list_tokens(request: web.Request) -> web.Response:
    query = request.query
    start = _float_param(request, "start_date")
    end = _float_param(request, "end_date")
    if (start is None) != (end is None):
        return web.json_response({"error": "start_date and end_date go together"}, status=400)
    result = await _bot(request).tokens(
        search=query.get("search", ""),
        start=start,
        end=end,
        sort_field=query.get("sort_field", ""),
        sort_order=query.get("sort_order", "desc"),
        limit=_int_param(request, "limit", 50),
        offset=_int_param(request, "offset", 0),
    )
    return web.json_response(result)


async def get_logs(request: web.Request) -> web.Response:
    records = await _bot(request).logs(limit=_int_param(request, "limit", 500))
    return web.json_response({"data": records})


async def clear_logs(request: web.Request) -> web.Response:
    cleared = await _bot(request).clear_logs()
    return web.json_response({"status": "ok", "cleared": cleared})


async def list_alerts(request: web.Request) -> web.Response:
    alerts = _bot(request).alerts
    items = await alerts.list(unread_only=False, limit=_int_param(request, "limit", 100))
    return web.json_response({
        "data": [a.to_dict() for a in items],
        "unread": await alerts.unread_count(),
    })


async def list_unread_alerts(request: web.Request) -> web.Response:
    alerts = _bot(request).alerts
    items = await alerts.list(unread_only=True, limit=_int_param(request, "limit", 100))
    return web.json_response({"data": [a.to_dict() for a in items], "unread": len(items)})


def _alert_id(request: web.Request) -> int:
    try:
        return int(request.match_info["alert_id"])
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "alert id must be an integer"}), content_type="application/json"
        )


async def mark_alert_read(request: web.Request) -> web.Response:
    if not await _bot(request).alerts.mark_read(_alert_id(request)):
        return web.json_response({"error": "alert not found"}, status=404)
    return web.json_response({"status": "ok"})


async def mark_all_alerts_read(request: web.Request) -> web.Response:
    count = await _bot(request).alerts.mark_all_read()
    return web.json_response({"status": "ok", "updated": count})


async def delete_alert(request: web.Request) -> web.Response:
    if not await _bot(request).alerts.delete(_alert_id(request)):
        return web.json_response({"error": "alert not found"}, status=404)
    return web.json_response({"status": "ok"})


def create_app(bot: "SniperBot", auth_token: str = "") -> web.Application:
    app = web.Application(middlewares=[build_auth_middleware(auth_token), error_middleware])
    app[BOT_KEY] = bot
    app.router.add_get("/health", health)
    app.router.add_get("/api/status", get_status)
    app.router.add_get(r"/api/settings/{section:main|buy|sell}", get_settings)
    app.router.add_post(r"/api/settings/{section:main|buy|sell}", update_settings)
    app.router.add_post("/api/scanner/pause", pause_scanner)
    app.router.add_post("/api/scanner/resume", resume_scanner)
    app.router.add_get("/api/positions", list_positions)
    app.router.add_post("/api/positions/sell-all", sell_all)
    app.router.add_post("/api/positions/{mint}/sell", sell_position)
    app.router.add_get("/api/assets", list_assets)
    app.router.add_get("/api/assets/{mint}", get_asset)
    app.router.add_get("/api/transactions", list_transactions)
    app.router.add_get("/api/tokens", list_tokens)
    app.router.add_get("/api/logs", get_logs)
    app.router.add_post("/api/logs/clear", clear_logs)
    app.router.add_get("/api/alerts", list_alerts)
    app.router.add_get("/api/alerts/unread", list_unread_alerts)
    app.router.add_post("/api/alerts/read-all", mark_all_alerts_read)
    app.router.add_post(r"/api/alerts/{alert_id:\d+}/read", mark_alert_read)
    app.router.add_delete(r"/api/alerts/{alert_id:\d+}", delete_alert)
    return app


class ManagementServer:
    """Runs the management API next to the bot on the same event loop."""

    def __init__(self, bot: "SniperBot", host: str = "0.0.0.0", port: int = 8088, auth_token: str = ""):
        self.host = host
        self.port = port
        self.app = create_app(bot, auth_token)
        self.runner: web.AppRunner | None = None
        if not auth_token:
            logger.warning("⚠️ Management API has no auth token, every route is open")

    async def start(self) -> None:
        self.runner = web.AppRunner(self.app, access_log=None)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("✅ Management API listening on http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("🛑 Management API stopped")
