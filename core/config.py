"""
設定檔載入模組

讀取 JSON 設定檔並以預設值填充，再套用環境變數（支援 .env）覆寫。
舊版 config.json 的 camelCase 欄位（botToken、workingHours 等）同樣支援。
"""

import json
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv


# 同時進行中的檢查上限（全域，所有使用者共用），不開放設定
MAX_CONCURRENT_CHECKS = 2

DEFAULT_CONFIG_PATH = "config/bot.json"

# 預設值定義
DEFAULT_CONFIG: Dict[str, Any] = {
    "bot_token": None,
    "admin_chat_id": None,
    "poll_interval_sec": 300,
    "working_hours_start": 5,
    "working_hours_end": 23,
    "timezone": "Asia/Tokyo",
    "check_timeout_sec": 20.0,
    "request_timeout_ms": 30000,
    "user_agent": None,  # None 時每次檢查從預設列表隨機選擇
    "data_file": "data/data.json",
    "log_file": "logs/bot.log",
    "log_level": "INFO",
}

# 環境變數到設定欄位的映射
ENV_OVERRIDES = {
    "TELEGRAM_BOT_TOKEN": "bot_token",
    "ADMIN_CHAT_ID": "admin_chat_id",
    "POLL_INTERVAL_SEC": "poll_interval_sec",
    "WORKING_HOURS_START": "working_hours_start",
    "WORKING_HOURS_END": "working_hours_end",
    "WATCH_TIMEZONE": "timezone",
    "CHECK_TIMEOUT_SEC": "check_timeout_sec",
    "REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "USER_AGENT": "user_agent",
    "DATA_FILE": "data_file",
    "LOG_FILE": "log_file",
    "LOG_LEVEL": "log_level",
}

# 舊版 config.json 欄位
LEGACY_KEYS = {
    "botToken": "bot_token",
    "checkIntervalSec": "poll_interval_sec",
    "requestTimeoutMs": "request_timeout_ms",
    "userAgent": "user_agent",
}

_INT_FIELDS = {"poll_interval_sec", "working_hours_start", "working_hours_end", "request_timeout_ms"}
_FLOAT_FIELDS = {"check_timeout_sec"}


@dataclass
class BotConfig:
    """Bot 與輪詢設定"""
    bot_token: Optional[str]
    admin_chat_id: Optional[str]
    poll_interval_sec: int
    working_hours_start: int
    working_hours_end: int
    timezone: str
    check_timeout_sec: float
    request_timeout_ms: int
    user_agent: Optional[str]
    data_file: str
    log_file: str
    log_level: str

    def __post_init__(self):
        for name in _INT_FIELDS:
            setattr(self, name, int(getattr(self, name)))
        for name in _FLOAT_FIELDS:
            setattr(self, name, float(getattr(self, name)))
        if self.admin_chat_id is not None:
            self.admin_chat_id = str(self.admin_chat_id)
        self.user_agent = self.user_agent or None
        self.validate()

    @property
    def max_concurrent_checks(self) -> int:
        return MAX_CONCURRENT_CHECKS

    @property
    def has_valid_token(self) -> bool:
        """token 未設定或仍是範例值（含 1234）時視為無效"""
        return bool(self.bot_token) and "1234" not in self.bot_token

    def validate(self) -> None:
        """
        檢查設定值範圍

        Raises:
            ValueError: 工作時段不在 0-23，或間隔、逾時不是正數
        """
        for name in ("working_hours_start", "working_hours_end"):
            value = getattr(self, name)
            if not 0 <= value <= 23:
                raise ValueError(f"{name} must be between 0 and 23, got {value}")
        for name in ("poll_interval_sec", "check_timeout_sec", "request_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


def _normalize_file_config(data: Dict[str, Any]) -> Dict[str, Any]:
    """將舊版欄位轉為目前的欄位名稱，並忽略未知欄位"""
    result = {}
    for key, value in data.items():
        if key == "workingHours" and isinstance(value, dict):
            if "start" in value:
                result["working_hours_start"] = value["start"]
            if "end" in value:
                result["working_hours_end"] = value["end"]
            continue
        key = LEGACY_KEYS.get(key, key)
        if key in DEFAULT_CONFIG:
            result[key] = value
    return result


def load_config(config_path: str = DEFAULT_CONFIG_PATH, use_dotenv: bool = True) -> BotConfig:
    """
    載入設定

    優先順序：環境變數 > 設定檔 > 預設值

    Args:
        config_path: JSON 設定檔路徑（不存在時只使用預設值）
        use_dotenv: 是否先載入 .env 檔案

    Returns:
        BotConfig: 設定物件

    Raises:
        ValueError: 設定值不合法時
    """
    if use_dotenv:
        load_dotenv()

    config_data: Dict[str, Any] = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = json.load(f)

    merged = {**DEFAULT_CONFIG, **_normalize_file_config(config_data)}

    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value not in (None, ""):
            merged[field_name] = value

    known = {f.name for f in fields(BotConfig)}
    return BotConfig(**{k: v for k, v in merged.items() if k in known})
