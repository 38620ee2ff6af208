#!/usr/bin/env python3
"""
單次輪詢執行腳本

不啟動 Telegram 指令處理，只對目前的監看清單執行一輪檢查後結束。
用於外部排程（cron）或手動除錯。
"""
import argparse
import asyncio
import logging
import sys

from core.base_scraper import CheckResult
from core.config import DEFAULT_CONFIG_PATH, load_config
from core.logging_setup import setup_logging
from core.notifier import TelegramNotifier, format_back_in_stock
from core.poller import PollingEngine
from core.scheduler import PollScheduler
from core.storage import PersistenceError, WatchStorage
from core.watchlist import WatchlistService
from scrapers.mandarake.scraper import MandarakeScraper

logger = logging.getLogger("run_once")


class DryRunNotifier:
    """只把通知內容寫入日誌，不發送"""

    def notify_back_in_stock(self, chat_id: str, item_name: str, url: str, result: CheckResult) -> bool:
        logger.info("[dry-run] would notify %s:\n%s", chat_id, format_back_in_stock(item_name, url, result))
        return True

    def notify_persistence_failure(self, chat_id: str, error: Exception) -> bool:
        logger.info("[dry-run] would alert %s: %s", chat_id, error)
        return True


async def run_once(config_path: str, ignore_hours: bool = False, dry_run: bool = False) -> int:
    """
    執行一輪檢查

    Args:
        config_path: 設定檔路徑
        ignore_hours: 是否忽略工作時段限制
        dry_run: 是否為測試模式（不發送通知）

    Returns:
        結束代碼：0 成功，1 狀態檔寫入失敗
    """
    config = load_config(config_path)
    setup_logging(config.log_level, config.log_file)

    if dry_run:
        notifier = DryRunNotifier()
    elif config.has_valid_token:
        notifier = TelegramNotifier(config.bot_token)
    else:
        logger.warning("Telegram notifier not configured, falling back to dry run")
        notifier = DryRunNotifier()

    service = WatchlistService(WatchStorage(config.data_file))
    checker = MandarakeScraper(headless=True)
    engine = PollingEngine(service, checker, notifier, config)

    if not ignore_hours and not PollScheduler(engine, config).is_open():
        logger.info(
            "Outside working hours (%02d:00-%02d:00 %s), nothing to do",
            config.working_hours_start,
            config.working_hours_end,
            config.timezone,
        )
        return 0

    try:
        report = await engine.run_tick()
    except PersistenceError:
        logger.exception("State file could not be written")
        return 1

    logger.info(
        "Done: %d item(s), %d checked, %d failed, %d notified",
        report.total, report.checked, report.failed, report.notified,
    )
    return 0


def main():
    """主程式"""
    parser = argparse.ArgumentParser(
        description="執行一輪 Mandarake 庫存檢查",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
範例:
  %(prog)s                      # 依工作時段執行一輪檢查
  %(prog)s --ignore-hours       # 忽略工作時段
  %(prog)s --dry-run            # 測試模式（不發送通知）
        """
    )
    parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_PATH,
        help="設定檔路徑"
    )
    parser.add_argument(
        "--ignore-hours",
        action="store_true",
        help="忽略工作時段限制"
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="測試模式，不發送通知"
    )

    args = parser.parse_args()

    try:
        return asyncio.run(run_once(args.config, args.ignore_hours, args.dry_run))
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
