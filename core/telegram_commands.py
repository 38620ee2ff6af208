"""
Telegram 指令處理

文字指令與 /list 的 inline 按鈕都呼叫相同的 handle_* 方法，
handle_* 只回傳要回覆的文字，不直接接觸 Telegram API。
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions, Update
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, ContextTypes

from .base_scraper import BaseScraper
from .config import BotConfig
from .models import WatchedItem
from .notifier import format_check_result, format_item_list
from .storage import PersistenceError
from .watchlist import InvalidUrlError, ItemNotFoundError, WatchlistService, validate_url

logger = logging.getLogger(__name__)

HELP_TEXT = "\n".join([
    "Mandarake Watch Bot commands:",
    "/add <name> <url> - add new watch item (name can include spaces)",
    "/remove <id_or_name> - remove item",
    "/list - show your watch list",
    "/start - enable alerts for all your items",
    "/stop - disable alerts for all your items",
    "/start <id_or_name> - enable single item",
    "/stop <id_or_name> - disable single item",
    "/check <id_or_name_or_url> - force check item now",
    "/help - show this help",
])

ADD_USAGE = "Usage: /add <name> <url>"
NOT_FOUND = "Item not found"
SAVE_FAILED = "Could not save your change, please try again later."
NO_PREVIEW = LinkPreviewOptions(is_disabled=True)

# callback_data 格式："<action>:<item_id>"
CALLBACK_CHECK = "check"
CALLBACK_TOGGLE = "toggle"
CALLBACK_REMOVE = "remove"


def split_add_payload(payload: str) -> Tuple[str, str]:
    """
    拆解 /add 參數：最後一個 token 是網址，其餘是名稱

    Returns:
        (name, url)，缺少時為空字串
    """
    tokens = (payload or "").split()
    if not tokens:
        return "", ""
    return " ".join(tokens[:-1]), tokens[-1]


def build_list_keyboard(items: List[WatchedItem]) -> InlineKeyboardMarkup:
    """每個商品一列按鈕：檢查 / 啟用切換 / 移除"""
    rows = []
    for item in items:
        label = item.name if len(item.name) <= 24 else item.name[:23] + "…"
        rows.append([
            InlineKeyboardButton(f"🔍 {label}", callback_data=f"{CALLBACK_CHECK}:{item.id}"),
            InlineKeyboardButton(
                "⏸ Disable" if item.enabled else "▶️ Enable",
                callback_data=f"{CALLBACK_TOGGLE}:{item.id}",
            ),
            InlineKeyboardButton("🗑 Remove", callback_data=f"{CALLBACK_REMOVE}:{item.id}"),
        ])
    return InlineKeyboardMarkup(rows)


class WatchBot:
    """Telegram 指令介面"""

    def __init__(self, service: WatchlistService, checker: BaseScraper, config: BotConfig):
        self.service = service
        self.checker = checker
        self.config = config

    def register(self, application: Application) -> None:
        """註冊所有指令與按鈕處理器"""
        application.add_handler(CommandHandler("help", self.cmd_help))
        application.add_handler(CommandHandler("add", self.cmd_add))
        application.add_handler(CommandHandler("remove", self.cmd_remove))
        application.add_handler(CommandHandler("list", self.cmd_list))
        application.add_handler(CommandHandler("start", self.cmd_start))
        application.add_handler(CommandHandler("stop", self.cmd_stop))
        application.add_handler(CommandHandler("check", self.cmd_check))
        application.add_handler(CallbackQueryHandler(self.on_button))
        application.add_error_handler(self.on_error)

    # ---- 指令邏輯（回傳回覆文字） -------------------------------------------

    async def handle_add(self, chat_id: str, payload: str) -> str:
        name, url = split_add_payload(payload)
        if not name or not url:
            return ADD_USAGE
        try:
            item = await self.service.add_item(chat_id, name, url)
        except InvalidUrlError:
            return ADD_USAGE
        except PersistenceError:
            logger.exception("Could not save new item for %s", chat_id)
            return SAVE_FAILED
        return f"Added item:\n[{item.id}] {item.name}\n{item.url}"

    async def handle_remove(self, chat_id: str, query: str) -> str:
        if not query.strip():
            return "Usage: /remove <id_or_name>"
        try:
            item = await self.service.remove_item(chat_id, query)
        except ItemNotFoundError:
            return NOT_FOUND
        except PersistenceError:
            logger.exception("Could not save removal for %s", chat_id)
            return SAVE_FAILED
        return f"Removed {item.name}"

    async def handle_list(self, chat_id: str) -> Tuple[str, Optional[InlineKeyboardMarkup]]:
        items = await self.service.list_items(chat_id)
        keyboard = build_list_keyboard(items) if items else None
        return format_item_list(items), keyboard

    async def handle_start(self, chat_id: str, arg: str = "") -> str:
        return await self._set_enabled(chat_id, arg, True)

    async def handle_stop(self, chat_id: str, arg: str = "") -> str:
        return await self._set_enabled(chat_id, arg, False)

    async def _set_enabled(self, chat_id: str, arg: str, enabled: bool) -> str:
        word = "enabled" if enabled else "disabled"
        try:
            if not arg.strip():
                await self.service.set_user_enabled(chat_id, enabled)
                return f"Alerts {word} for all items."
            item = await self.service.set_item_enabled(chat_id, arg, enabled)
        except ItemNotFoundError:
            return NOT_FOUND
        except PersistenceError:
            logger.exception("Could not save alert switch for %s", chat_id)
            return SAVE_FAILED
        return f"{'Enabled' if enabled else 'Disabled'} alerts for {item.name}"

    async def resolve_check_target(self, chat_id: str, arg: str) -> Optional[Tuple[str, str]]:
        """
        解析 /check 的對象：商品 id、名稱或直接貼上的網址

        Returns:
            (顯示名稱, 網址)；無法解析時返回 None
        """
        arg = arg.strip()
        if not arg:
            return None
        item = await self.service.find_item(chat_id, arg)
        if item is not None:
            return item.name, item.url
        try:
            url = validate_url(arg)
        except InvalidUrlError:
            return None
        return url, url

    async def run_check(self, label: str, url: str) -> str:
        """立即檢查一個網址（不更新狀態）"""
        try:
            result = await asyncio.wait_for(
                self.checker.check(
                    url,
                    timeout=self.config.request_timeout_ms,
                    user_agent=self.config.user_agent or None,
                ),
                timeout=self.config.check_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.error("check error %s: timed out", url)
            return f"Error checking URL: timed out after {self.config.check_timeout_sec:.0f}s"
        except Exception as e:
            logger.error("check error %s: %s", url, e)
            return f"Error checking URL: {e}"
        return format_check_result(label, result)

    async def handle_check(self, chat_id: str, arg: str) -> str:
        target = await self.resolve_check_target(chat_id, arg)
        if target is None:
            return "Provide a valid URL or item id/name"
        return await self.run_check(*target)

    async def handle_callback(self, chat_id: str, data: str) -> str:
        """處理 /list 按鈕"""
        action, _, item_id = (data or "").partition(":")
        if action == CALLBACK_CHECK:
            return await self.handle_check(chat_id, item_id)
        if action == CALLBACK_REMOVE:
            return await self.handle_remove(chat_id, item_id)
        if action == CALLBACK_TOGGLE:
            item = await self.service.find_item(chat_id, item_id)
            if item is None:
                return NOT_FOUND
            if item.enabled:
                return await self.handle_stop(chat_id, item_id)
            return await self.handle_start(chat_id, item_id)
        return "Unknown action"

    # ---- Telegram 包裝 --------------------------------------------------------

    @staticmethod
    def _chat_id(update: Update) -> str:
        return str(update.effective_chat.id)

    @staticmethod
    def _args(context: ContextTypes.DEFAULT_TYPE) -> str:
        return " ".join(context.args or [])

    async def cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.effective_message.reply_text(HELP_TEXT)

    async def cmd_add(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        reply = await self.handle_add(self._chat_id(update), self._args(context))
        await update.effective_message.reply_text(reply, link_preview_options=NO_PREVIEW)

    async def cmd_remove(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        reply = await self.handle_remove(self._chat_id(update), self._args(context))
        await update.effective_message.reply_text(reply)

    async def cmd_list(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        text, keyboard = await self.handle_list(self._chat_id(update))
        await update.effective_message.reply_text(
            text, reply_markup=keyboard, link_preview_options=NO_PREVIEW
        )

    async def cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        reply = await self.handle_start(self._chat_id(update), self._args(context))
        await update.effective_message.reply_text(reply)

    async def cmd_stop(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        reply = await self.handle_stop(self._chat_id(update), self._args(context))
        await update.effective_message.reply_text(reply)

    async def cmd_check(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        chat_id = self._chat_id(update)
        target = await self.resolve_check_target(chat_id, self._args(context))
        if target is None:
            await update.effective_message.reply_text("Provide a valid URL or item id/name")
            return
        await update.effective_message.reply_text(
            f"Checking: {target[1]} ...", link_preview_options=NO_PREVIEW
        )
        reply = await self.run_check(*target)
        await update.effective_message.reply_text(reply, link_preview_options=NO_PREVIEW)

    async def on_button(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        await query.answer()
        reply = await self.handle_callback(self._chat_id(update), query.data)
        await query.message.reply_text(reply, link_preview_options=NO_PREVIEW)

    async def on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE):
        logger.error("Telegram handler error: %s", context.error, exc_info=context.error)
