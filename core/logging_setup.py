"""
日誌設定

同時輸出到終端機與輪替的日誌檔（預設 logs/bot.log，5 MB x 3 份）。
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_MAX_BYTES = 5_000_000
LOG_BACKUP_COUNT = 3


def setup_logging(level: str = "INFO", log_file: Optional[str] = "logs/bot.log") -> None:
    """
    設定 root logger

    Args:
        level: 日誌等級名稱（DEBUG, INFO, WARNING, ERROR）
        log_file: 日誌檔路徑，None 時只輸出到終端機
    """
    handlers = [logging.StreamHandler()]
    if log_file:
        directory = os.path.dirname(log_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # httpx 每次 getUpdates 都會記錄一筆 INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
