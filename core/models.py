"""
監看清單資料模型

Snapshot -> UserRecord -> WatchedItem 三層結構，對應持久化的 JSON 檔案：

    {"users": {"<chat_id>": {"enabled": true, "items": [...]}}, "settings": {}}

舊版 bot 寫出的檔案使用 camelCase 欄位（lastStatus / lastChecked），
讀取時一併支援。
"""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .transition import StockStatus

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def dt_to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def iso_to_dt(s: str) -> datetime:
    # expects ISO with Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s).astimezone(timezone.utc)


@dataclass
class WatchedItem:
    """使用者追蹤的單一商品"""
    id: str
    name: str
    url: str
    enabled: bool = True
    last_status: StockStatus = StockStatus.UNKNOWN
    last_checked: Optional[str] = None

    def __post_init__(self):
        # 舊資料可能是 None 或空字串；無法辨識的狀態只影響這個商品
        try:
            self.last_status = StockStatus(self.last_status or StockStatus.UNKNOWN)
        except ValueError:
            logger.warning(
                "Item %s has unrecognised status %r, treating it as unknown", self.id, self.last_status
            )
            self.last_status = StockStatus.UNKNOWN

    @property
    def last_checked_at(self) -> Optional[datetime]:
        return iso_to_dt(self.last_checked) if self.last_checked else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "enabled": self.enabled,
            "last_status": self.last_status.value,
            "last_checked": self.last_checked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WatchedItem":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            url=str(data["url"]),
            enabled=bool(data.get("enabled", True)),
            last_status=data.get("last_status", data.get("lastStatus")),
            last_checked=data.get("last_checked", data.get("lastChecked")),
        )


@dataclass
class UserRecord:
    """單一聊天室（使用者）的追蹤設定"""
    enabled: bool = True
    items: List[WatchedItem] = field(default_factory=list)

    def get_item(self, item_id: str) -> Optional[WatchedItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRecord":
        return cls(
            enabled=data.get("enabled", True) is not False,
            items=[WatchedItem.from_dict(i) for i in data.get("items") or []],
        )


@dataclass
class Snapshot:
    """完整的持久化狀態"""
    users: Dict[str, UserRecord] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    def ensure_user(self, chat_id: str) -> UserRecord:
        """取得使用者記錄，不存在時建立"""
        chat_id = str(chat_id)
        if chat_id not in self.users:
            self.users[chat_id] = UserRecord()
        return self.users[chat_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "users": {chat_id: user.to_dict() for chat_id, user in self.users.items()},
            "settings": copy.deepcopy(self.settings),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        if not isinstance(data, dict):
            raise ValueError("snapshot must be a JSON object")
        users = data.get("users") or {}
        if not isinstance(users, dict):
            raise ValueError("'users' must be a JSON object")
        return cls(
            users={str(k): UserRecord.from_dict(v) for k, v in users.items() if v},
            settings=dict(data.get("settings") or {}),
        )


@dataclass(frozen=True)
class CheckUnit:
    """一次檢查的工作單位（商品的快照副本，不持有可變參照）"""
    chat_id: str
    item_id: str
    name: str
    url: str
