"""
Storage service for the watch list.

Keeps the whole snapshot in a single JSON file:
- load() never fails: a missing or unreadable file yields an empty snapshot
- save() is atomic: write to a temp file, then os.replace() onto the target
- transient write errors are retried a bounded number of times
- save_async() does the same without blocking the event loop
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict

from tenacity import (AsyncRetrying, Retrying, after_log, retry_if_exception_type,
                      stop_after_attempt, wait_fixed)

from .models import Snapshot

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """寫入持久化檔案失敗（重試後仍失敗）"""
    pass


class WatchStorage:
    """監看清單儲存服務"""

    DEFAULT_MAX_ATTEMPTS = 3
    DEFAULT_RETRY_WAIT = 0.5  # 秒

    def __init__(
        self,
        path: str = "data/data.json",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_wait: float = DEFAULT_RETRY_WAIT,
    ):
        self.path = path
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait

    @property
    def tmp_path(self) -> str:
        return self.path + ".tmp"

    def load(self) -> Snapshot:
        """
        載入快照

        Returns:
            Snapshot: 檔案不存在或內容損毀時返回空快照
        """
        if not os.path.exists(self.path):
            return Snapshot()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Snapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load %s: %s", self.path, e)
            return Snapshot()

    def _retry_policy(self) -> Dict[str, Any]:
        return dict(
            reraise=True,
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.retry_wait),
            retry=retry_if_exception_type(OSError),
            after=after_log(logger, logging.WARNING),
        )

    def save(self, snapshot: Snapshot) -> None:
        """
        原子化寫入快照（同步版本，供事件迴圈外使用）

        Args:
            snapshot: 要寫入的完整快照

        Raises:
            PersistenceError: 重試 max_attempts 次後仍無法寫入
        """
        data = snapshot.to_dict()
        try:
            for attempt in Retrying(**self._retry_policy()):
                with attempt:
                    self._write_atomic(data)
        except OSError as e:
            self._discard_tmp()
            raise PersistenceError(f"Could not save {self.path}: {e}") from e

    async def save_async(self, snapshot: Snapshot) -> None:
        """
        原子化寫入快照，不阻塞事件迴圈

        快照在呼叫時序列化；檔案寫入在背景執行緒進行，重試間隔以 asyncio.sleep 等待。

        Raises:
            PersistenceError: 重試 max_attempts 次後仍無法寫入
        """
        data = snapshot.to_dict()
        try:
            async for attempt in AsyncRetrying(**self._retry_policy()):
                with attempt:
                    await asyncio.to_thread(self._write_atomic, data)
        except OSError as e:
            await asyncio.to_thread(self._discard_tmp)
            raise PersistenceError(f"Could not save {self.path}: {e}") from e

    def _write_atomic(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(self.tmp_path, self.path)

    def _discard_tmp(self) -> None:
        try:
            os.remove(self.tmp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove %s: %s", self.tmp_path, e)
