"""
監看清單服務

記憶體中快照的唯一擁有者。排程輪詢與 Telegram 指令都透過此服務讀寫，
所有操作共用同一把 asyncio.Lock，每次變更都會立即寫入檔案，
寫入失敗時還原該次變更後再拋出 PersistenceError。
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import urlparse

from .models import CheckUnit, Snapshot, WatchedItem, dt_to_iso, utc_now
from .storage import PersistenceError, WatchStorage
from .transition import StockStatus

logger = logging.getLogger(__name__)


class InvalidUrlError(ValueError):
    """新增商品時網址或名稱不合法"""
    pass


class ItemNotFoundError(LookupError):
    """找不到指定的商品"""
    pass


def validate_url(url: str) -> str:
    """
    驗證商品網址

    Args:
        url: 使用者輸入的網址

    Returns:
        去除空白後的網址

    Raises:
        InvalidUrlError: 非 http/https 或缺少主機名稱時
    """
    url = (url or "").strip()
    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise InvalidUrlError(f"Invalid URL: {url}") from e
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidUrlError(f"Invalid URL: {url}")
    return url


def find_in_user_items(items: List[WatchedItem], query: str) -> Optional[WatchedItem]:
    """先以 id 比對，再以名稱（不分大小寫）比對"""
    query = (query or "").strip()
    for item in items:
        if item.id == query:
            return item
    lowered = query.lower()
    for item in items:
        if item.name.lower() == lowered:
            return item
    return None


class WatchlistService:
    """監看清單服務"""

    def __init__(self, storage: WatchStorage, snapshot: Optional[Snapshot] = None):
        self.storage = storage
        self._snapshot = snapshot if snapshot is not None else storage.load()
        self._lock = asyncio.Lock()

    async def _persist(self, rollback: Optional[Callable[[], None]] = None) -> None:
        """
        寫入快照（呼叫端須持有 _lock）

        寫入失敗時先以 rollback 還原記憶體中的變更，讓記憶體與檔案保持一致，
        再拋出 PersistenceError。
        """
        try:
            await self.storage.save_async(self._snapshot)
        except PersistenceError:
            if rollback is not None:
                rollback()
            raise

    def _new_item_id(self, items: List[WatchedItem]) -> str:
        existing = {item.id for item in items}
        while True:
            item_id = uuid.uuid4().hex[:8]
            if item_id not in existing:
                return item_id

    def _drop_if_created(self, chat_id: str, created: bool) -> None:
        if created:
            self._snapshot.users.pop(str(chat_id), None)

    async def add_item(self, chat_id: str, name: str, url: str) -> WatchedItem:
        name = (name or "").strip()
        if not name:
            raise InvalidUrlError("Item name is required")
        url = validate_url(url)

        async with self._lock:
            created = str(chat_id) not in self._snapshot.users
            user = self._snapshot.ensure_user(chat_id)
            item = WatchedItem(id=self._new_item_id(user.items), name=name, url=url)
            user.items.append(item)

            def rollback():
                user.items.remove(item)
                self._drop_if_created(chat_id, created)

            await self._persist(rollback)
            logger.info("User %s added item %s (%s)", chat_id, item.id, url)
            return copy.copy(item)

    async def remove_item(self, chat_id: str, query: str) -> WatchedItem:
        async with self._lock:
            user = self._snapshot.users.get(str(chat_id))
            item = find_in_user_items(user.items, query) if user else None
            if item is None:
                raise ItemNotFoundError(query)
            index = user.items.index(item)
            del user.items[index]
            await self._persist(lambda: user.items.insert(index, item))
            logger.info("User %s removed item %s", chat_id, item.id)
            return item

    async def list_items(self, chat_id: str) -> List[WatchedItem]:
        async with self._lock:
            user = self._snapshot.users.get(str(chat_id))
            if user is None:
                return []
            return [copy.copy(item) for item in user.items]

    async def find_item(self, chat_id: str, query: str) -> Optional[WatchedItem]:
        async with self._lock:
            user = self._snapshot.users.get(str(chat_id))
            if user is None:
                return None
            item = find_in_user_items(user.items, query)
            return copy.copy(item) if item else None

    async def is_user_enabled(self, chat_id: str) -> bool:
        async with self._lock:
            user = self._snapshot.users.get(str(chat_id))
            return user is None or user.enabled

    async def set_user_enabled(self, chat_id: str, enabled: bool) -> None:
        """
        開啟或關閉使用者的所有通知

        開啟時會一併開啟所有商品；關閉時只關閉使用者總開關，
        各商品的個別設定保留。
        """
        async with self._lock:
            created = str(chat_id) not in self._snapshot.users
            user = self._snapshot.ensure_user(chat_id)
            previous_user = user.enabled
            previous_items = [(item, item.enabled) for item in user.items]
            user.enabled = enabled
            if enabled:
                for item in user.items:
                    item.enabled = True

            def rollback():
                user.enabled = previous_user
                for item, was_enabled in previous_items:
                    item.enabled = was_enabled
                self._drop_if_created(chat_id, created)

            await self._persist(rollback)

    async def set_item_enabled(self, chat_id: str, query: str, enabled: bool) -> WatchedItem:
        async with self._lock:
            user = self._snapshot.users.get(str(chat_id))
            item = find_in_user_items(user.items, query) if user else None
            if item is None:
                raise ItemNotFoundError(query)
            previous = item.enabled
            item.enabled = enabled
            await self._persist(lambda: setattr(item, "enabled", previous))
            return copy.copy(item)

    async def eligible_units(self) -> List[CheckUnit]:
        """取得本輪需要檢查的商品（使用者與商品皆為啟用）"""
        async with self._lock:
            return [
                CheckUnit(chat_id=chat_id, item_id=item.id, name=item.name, url=item.url)
                for chat_id, user in self._snapshot.users.items()
                if user.enabled
                for item in user.items
                if item.enabled
            ]

    async def record_check_result(
        self,
        chat_id: str,
        item_id: str,
        now_status: StockStatus,
        checked_at: Optional[datetime] = None,
    ) -> Optional[StockStatus]:
        """
        記錄一次成功的檢查

        Args:
            chat_id: 使用者 id
            item_id: 商品 id
            now_status: 本次檢查狀態
            checked_at: 檢查時間，預設為現在

        Returns:
            更新前的狀態；若商品在檢查期間被移除或停用則返回 None

        Raises:
            PersistenceError: 寫入失敗，記憶體中的狀態維持更新前的值
        """
        async with self._lock:
            item = self._live_item(chat_id, item_id)
            if item is None:
                return None
            previous = item.last_status
            previous_checked = item.last_checked
            item.last_status = StockStatus(now_status)
            item.last_checked = dt_to_iso(checked_at or utc_now())

            def rollback():
                item.last_status = previous
                item.last_checked = previous_checked

            await self._persist(rollback)
            return previous

    async def record_check_failure(
        self,
        chat_id: str,
        item_id: str,
        checked_at: Optional[datetime] = None,
    ) -> bool:
        """記錄一次失敗的檢查：只更新 last_checked，狀態不變"""
        async with self._lock:
            item = self._live_item(chat_id, item_id)
            if item is None:
                return False
            previous_checked = item.last_checked
            item.last_checked = dt_to_iso(checked_at or utc_now())
            await self._persist(lambda: setattr(item, "last_checked", previous_checked))
            return True

    async def flush(self) -> None:
        async with self._lock:
            await self._persist()

    def _live_item(self, chat_id: str, item_id: str) -> Optional[WatchedItem]:
        user = self._snapshot.users.get(str(chat_id))
        if user is None or not user.enabled:
            return None
        item = user.get_item(item_id)
        if item is None or not item.enabled:
            return None
        return item
