import asyncio
import logging
import platform
import signal
import sys

from pump_sniper.config import Settings
from pump_sniper.core.bot import SniperBot
from pump_sniper.core.management_server import ManagementServer
from pump_sniper.logger import setup_logging

logger = logging.getLogger("pump_sniper.main")


async def main(settings: Settings | None = None):
    settings = settings or Settings.from_env()
    setup_logging(level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_shutdown(sig):
        logger.info("🛑 [SHUTDOWN] Received signal %s...", sig)
        shutdown_event.set()

    # add_signal_handler is not available on Windows
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))

    bot = SniperBot.create(settings)
    server = None
    if settings.MANAGEMENT_ENABLED:
        server = ManagementServer(
            bot,
            host=settings.MANAGEMENT_HOST,
            port=settings.MANAGEMENT_PORT,
            auth_token=settings.MANAGEMENT_AUTH_TOKEN,
        )

    try:
        await bot.start()
        if server:
            await server.start()
        await shutdown_event.wait()
    finally:
        if server:
            await server.stop()
        await bot.stop()


def run():
    if platform.system() == "Windows":
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("👋 Bot stopped by user.")


if __name__ == "__main__":
    run()
