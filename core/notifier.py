"""
通知服務模組

提供 Telegram 通知功能：補貨通知、檢查結果與監看清單的訊息格式化。
"""

import html
import logging
import os
from datetime import datetime
from typing import List, Optional

import requests

from .base_scraper import CheckResult
from .models import WatchedItem, iso_to_dt
from .transition import StockStatus

logger = logging.getLogger(__name__)


def format_timestamp(iso_timestamp: Optional[str]) -> str:
    """
    將 ISO 時間轉為易讀格式

    Args:
        iso_timestamp: ISO-8601 時間字串（UTC）

    Returns:
        例如 "19 Oct 2026, 14:05:09"（伺服器本地時間），None 時返回 "-"
    """
    if not iso_timestamp:
        return "-"
    dt: datetime = iso_to_dt(iso_timestamp).astimezone()
    return dt.strftime("%d %b %Y, %H:%M:%S")


def _status_label(status: StockStatus) -> str:
    return {
        StockStatus.IN: "✅ in",
        StockStatus.OUT: "❌ out",
    }.get(status, "❔ unknown")


def format_back_in_stock(item_name: str, url: str, result: CheckResult) -> str:
    """
    組合補貨通知訊息

    Args:
        item_name: 使用者設定的商品名稱
        url: 商品網址
        result: 本次檢查結果

    Returns:
        HTML 格式訊息
    """
    lines = [
        "<b>🔥 Item now IN STOCK</b>",
        "",
        f"<b>{html.escape(item_name)}</b>",
    ]
    if result.item_name and result.item_name != item_name:
        lines.append(html.escape(result.item_name))
    lines.append(html.escape(url))

    if result.is_in_main_in_stock:
        lines.append(f"Available in {html.escape(result.parent_shop_name or 'main store')}")

    stores = result.available_stores()
    if stores:
        shops = ", ".join(
            f"{html.escape(s.shop)} ({html.escape(s.price or 'No price')})" for s in stores
        )
        lines.extend(["", "Other Store(s):", shops])
    return "\n".join(lines)


def format_check_result(label: str, result: CheckResult) -> str:
    """組合 /check 指令的回覆（純文字）"""
    lines = [
        f"Result for {label}:",
        result.item_name or "-",
        f"In stock: {'✅' if result.is_in_stock else '❌'}",
        f"Store: {result.parent_shop_name or '-'}",
    ]
    if result.same_item_in_other_stores:
        lines.extend(["", "Other stores:"])
        for s in result.same_item_in_other_stores:
            line = f"{s.shop} - {'✅' if s.is_available else '❌'} - {s.price}"
            if s.is_defective:
                line += " (defective item)"
            lines.append(line)
    return "\n".join(lines)


def format_item_list(items: List[WatchedItem]) -> str:
    """組合 /list 指令的回覆（純文字）"""
    if not items:
        return "Your watch list is empty. Use /add"
    blocks = ["Your items:"]
    for item in items:
        blocks.append(
            "\n".join([
                f"{item.name}",
                f"[{item.id}]",
                item.url,
                f"Enabled: {'yes' if item.enabled else 'no'}",
                f"Last status: {_status_label(item.last_status)}",
                f"Last checked: {format_timestamp(item.last_checked)}",
            ])
        )
    return "\n\n".join(blocks)


class TelegramNotifier:
    """Telegram 通知服務"""

    API_BASE = "https://api.telegram.org"
    SEND_TIMEOUT = 10  # 秒

    def __init__(self, bot_token: str = None):
        self.bot_token = bot_token or os.getenv("TELEGRAM_BOT_TOKEN")
        if not self.bot_token:
            raise ValueError("TELEGRAM_BOT_TOKEN must be set")

    def send_message(self, chat_id: str, text: str) -> bool:
        """
        發送 Telegram 訊息

        失敗時只記錄日誌並返回 False，不重試。

        Returns:
            是否發送成功
        """
        url = f"{self.API_BASE}/bot{self.bot_token}/sendMessage"
        data = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            response = requests.post(url, json=data, timeout=self.SEND_TIMEOUT)
            response.raise_for_status()
            return True
        except Exception as e:
            logger.error("Failed to send Telegram message to %s: %s", chat_id, e)
            return False

    def notify_back_in_stock(
        self,
        chat_id: str,
        item_name: str,
        url: str,
        result: CheckResult,
    ) -> bool:
        """
        通知商品補貨

        Args:
            chat_id: 接收的聊天室
            item_name: 使用者設定的商品名稱
            url: 商品網址
            result: 本次檢查結果

        Returns:
            是否發送成功
        """
        return self.send_message(chat_id, format_back_in_stock(item_name, url, result))

    def notify_persistence_failure(self, chat_id: str, error: Exception) -> bool:
        """通知管理員狀態檔寫入失敗"""
        message = (
            "<b>⚠️ State file write failed</b>\n\n"
            f"{html.escape(str(error))}\n"
            "Polling continues but changes may be lost."
        )
        return self.send_message(chat_id, message)
