#!/usr/bin/env python3
"""
Mandarake 庫存監看 Bot 主程式

啟動 Telegram 指令處理，並在同一個 event loop 內依排程執行庫存輪詢。
"""
import logging
import sys

from telegram.ext import Application

from core.config import BotConfig, load_config
from core.logging_setup import setup_logging
from core.notifier import TelegramNotifier
from core.poller import PollingEngine
from core.scheduler import PollScheduler
from core.storage import PersistenceError, WatchStorage
from core.telegram_commands import WatchBot
from core.watchlist import WatchlistService
from scrapers.mandarake.scraper import MandarakeScraper

logger = logging.getLogger("main")


def build_application(config: BotConfig) -> Application:
    """
    組合所有元件並建立 Telegram Application

    排程在 post_init 啟動（此時 event loop 已在執行），
    在 post_shutdown 停止並把快照寫回檔案。
    """
    storage = WatchStorage(config.data_file)
    service = WatchlistService(storage)
    checker = MandarakeScraper(headless=True)
    notifier = TelegramNotifier(config.bot_token)
    engine = PollingEngine(service, checker, notifier, config)
    scheduler = PollScheduler(engine, config)

    async def post_init(application: Application) -> None:
        scheduler.start()

    async def post_shutdown(application: Application) -> None:
        scheduler.shutdown()
        try:
            await service.flush()
        except PersistenceError:
            logger.exception("Final state flush failed")

    application = (
        Application.builder()
        .token(config.bot_token)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )
    WatchBot(service, checker, config).register(application)
    return application


def main() -> int:
    """主程式"""
    try:
        config = load_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_file)

    if not config.has_valid_token:
        logger.error("Set a real TELEGRAM_BOT_TOKEN in .env or config/bot.json")
        return 1

    application = build_application(config)
    logger.info(
        "Bot started, polling every %d sec between %02d:00 and %02d:00 (%s)",
        config.poll_interval_sec,
        config.working_hours_start,
        config.working_hours_end,
        config.timezone,
    )
    application.run_polling(close_loop=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
