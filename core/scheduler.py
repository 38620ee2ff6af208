"""
排程模組

以固定間隔觸發輪詢引擎（啟動時立即執行一次），並限制只在
目標網站所在時區的工作時段內檢查。前一輪尚未結束時，新的觸發直接丟棄。
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import BotConfig
from .poller import PollingEngine, TickReport
from .storage import PersistenceError

logger = logging.getLogger(__name__)

POLL_JOB_ID = "stock_poll"


def get_local_hour(tz_name: str = "Asia/Tokyo", current_time: Optional[datetime] = None) -> int:
    """
    取得指定時區的目前小時

    Args:
        tz_name: IANA 時區名稱
        current_time: 當前時間，預設為現在；naive datetime 視為 UTC

    Returns:
        0-23
    """
    if current_time is None:
        current_time = datetime.now(timezone.utc)
    elif current_time.tzinfo is None:
        current_time = current_time.replace(tzinfo=timezone.utc)
    return current_time.astimezone(ZoneInfo(tz_name)).hour


def is_within_working_hours(
    start_hour: int = 5,
    end_hour: int = 23,
    tz_name: str = "Asia/Tokyo",
    current_time: Optional[datetime] = None,
) -> bool:
    """
    檢查目前是否在工作時段內

    時段包含 start_hour、不包含 end_hour。start_hour > end_hour 時跨越午夜
    （例如 22 → 6）；start_hour == end_hour 表示全天。

    Args:
        start_hour: 開始小時 (0-23)
        end_hour: 結束小時 (0-23)
        tz_name: 判斷用的時區
        current_time: 當前時間，預設為現在

    Returns:
        bool: 是否允許檢查
    """
    hour = get_local_hour(tz_name, current_time)
    if start_hour == end_hour:
        return True
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


class PollScheduler:
    """輪詢排程器"""

    def __init__(self, engine: PollingEngine, config: BotConfig):
        self.engine = engine
        self.config = config
        self._scheduler: Optional[AsyncIOScheduler] = None

    def is_open(self, current_time: Optional[datetime] = None) -> bool:
        return is_within_working_hours(
            self.config.working_hours_start,
            self.config.working_hours_end,
            self.config.timezone,
            current_time,
        )

    async def fire(self, current_time: Optional[datetime] = None) -> Optional[TickReport]:
        """
        單次排程觸發

        Returns:
            TickReport；時段外、前一輪尚未結束或寫入失敗時返回 None
        """
        if not self.is_open(current_time):
            logger.info(
                "Outside working hours (%02d:00-%02d:00 %s), skipping checks",
                self.config.working_hours_start,
                self.config.working_hours_end,
                self.config.timezone,
            )
            return None

        if self.engine.is_running:
            logger.info("Previous tick still running, dropping this firing")
            return None

        try:
            return await self.engine.run_tick()
        except PersistenceError:
            logger.exception("Tick aborted because the state file could not be written")
            return None

    def start(self) -> None:
        """
        啟動排程（需在執行中的 event loop 內呼叫）

        max_instances=1 與 coalesce=True：上一輪未結束時的觸發會被丟棄而不是排隊。
        """
        if self._scheduler is not None:
            return
        tz = ZoneInfo(self.config.timezone)
        self._scheduler = AsyncIOScheduler(timezone=tz)
        self._scheduler.add_job(
            self.fire,
            "interval",
            seconds=self.config.poll_interval_sec,
            id=POLL_JOB_ID,
            next_run_time=datetime.now(tz),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Starting poll every %d sec", self.config.poll_interval_sec)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("Scheduler stopped")
