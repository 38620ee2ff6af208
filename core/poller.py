"""
輪詢引擎

一次 tick：取出所有啟用中的商品，在全域並行上限下檢查庫存，
比對上次狀態並在「缺貨 → 有貨」時通知商品的擁有者。

- 同一時間最多只有一個 tick 在執行
- 單一商品檢查失敗不影響其他商品，只更新 last_checked
- 每次狀態變更都立即寫入檔案
- 寫入失敗（PersistenceError）後不再開始新的檢查，進行中的檢查結束後中止本輪並往上拋出
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .base_scraper import BaseScraper, CheckResult
from .config import MAX_CONCURRENT_CHECKS, BotConfig
from .models import CheckUnit, utc_now
from .storage import PersistenceError
from .transition import NotificationDecision, StockStatus, decide, status_from_result
from .watchlist import WatchlistService

logger = logging.getLogger(__name__)


class CheckOutcome(str, Enum):
    """單一商品在本輪的處理結果"""
    BASELINE = "baseline"
    UPDATED = "updated"
    NOTIFIED = "notified"
    FAILED = "failed"
    DROPPED = "dropped"
    ABORTED = "aborted"


@dataclass
class TickReport:
    """一輪檢查的統計"""
    skipped: bool = False
    total: int = 0
    checked: int = 0
    failed: int = 0
    notified: int = 0
    dropped: int = 0
    aborted: int = 0

    def add(self, outcome: CheckOutcome) -> None:
        if outcome is CheckOutcome.ABORTED:
            self.aborted += 1
        elif outcome is CheckOutcome.FAILED:
            self.failed += 1
        elif outcome is CheckOutcome.DROPPED:
            self.dropped += 1
        else:
            self.checked += 1
            if outcome is CheckOutcome.NOTIFIED:
                self.notified += 1


class PollingEngine:
    """庫存輪詢引擎"""

    def __init__(
        self,
        service: WatchlistService,
        checker: BaseScraper,
        notifier,
        config: BotConfig,
        max_concurrent: int = MAX_CONCURRENT_CHECKS,
    ):
        """
        Args:
            service: 監看清單服務（狀態唯一擁有者）
            checker: 庫存檢查爬蟲
            notifier: 具有 notify_back_in_stock / notify_persistence_failure 的通知服務
            config: 逾時、User-Agent、管理員聊天室等設定
            max_concurrent: 同時進行中的檢查上限
        """
        self.service = service
        self.checker = checker
        self.notifier = notifier
        self.config = config
        self.max_concurrent = max_concurrent
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_tick(self) -> TickReport:
        """
        執行一輪檢查，所有檢查結束（成功或失敗）後才返回

        Returns:
            TickReport；已有 tick 在執行時返回 skipped=True 且不做任何事

        Raises:
            PersistenceError: 狀態檔寫入失敗
        """
        if self._running:
            logger.debug("Previous tick still running, skipping this one")
            return TickReport(skipped=True)

        self._running = True
        started = time.monotonic()
        try:
            units = await self.service.eligible_units()
            report = TickReport(total=len(units))
            if not units:
                logger.debug("No enabled items to check")
                return report

            logger.info("Checking %d item(s)", len(units))
            semaphore = asyncio.Semaphore(self.max_concurrent)
            abort = asyncio.Event()
            outcomes = await asyncio.gather(
                *(self._run_unit(semaphore, abort, unit) for unit in units),
                return_exceptions=True,
            )

            persistence_error: Optional[PersistenceError] = None
            for unit, outcome in zip(units, outcomes):
                if isinstance(outcome, PersistenceError):
                    persistence_error = persistence_error or outcome
                elif isinstance(outcome, BaseException):
                    logger.error("Unexpected error for %s: %r", unit.url, outcome)
                    report.failed += 1
                else:
                    report.add(outcome)

            if persistence_error is not None:
                logger.critical(
                    "Aborting tick, state could not be saved (%d item(s) skipped): %s",
                    report.aborted, persistence_error,
                )
                await self._alert_persistence_failure(persistence_error)
                raise persistence_error

            logger.info(
                "Tick finished in %.1fs: %d checked, %d failed, %d notified",
                time.monotonic() - started, report.checked, report.failed, report.notified,
            )
            return report
        finally:
            self._running = False

    async def _run_unit(
        self, semaphore: asyncio.Semaphore, abort: asyncio.Event, unit: CheckUnit
    ) -> CheckOutcome:
        """
        檢查單一商品並記錄結果

        abort 被設定後（本輪已有寫入失敗），尚未開始或尚未記錄的商品直接放棄。
        """
        async with semaphore:
            if abort.is_set():
                return CheckOutcome.ABORTED
            result = await self._check(unit)

        if abort.is_set():
            return CheckOutcome.ABORTED
        try:
            return await self._record(unit, result)
        except PersistenceError:
            abort.set()
            raise

    async def _record(self, unit: CheckUnit, result: Optional[CheckResult]) -> CheckOutcome:
        if result is None:
            await self.service.record_check_failure(unit.chat_id, unit.item_id, utc_now())
            return CheckOutcome.FAILED

        now_status = status_from_result(result.is_in_stock)
        previous = await self.service.record_check_result(
            unit.chat_id, unit.item_id, now_status, utc_now()
        )
        if previous is None:
            logger.info("Item %s was removed or disabled during the check", unit.item_id)
            return CheckOutcome.DROPPED

        if decide(previous, now_status) is NotificationDecision.NOTIFY:
            logger.info("Item %s (%s) is back in stock", unit.item_id, unit.url)
            await self._notify(unit, result)
            return CheckOutcome.NOTIFIED
        if previous is StockStatus.UNKNOWN:
            return CheckOutcome.BASELINE
        return CheckOutcome.UPDATED

    async def _check(self, unit: CheckUnit) -> Optional[CheckResult]:
        """呼叫爬蟲並套用硬性逾時；失敗時記錄日誌並返回 None"""
        try:
            return await asyncio.wait_for(
                self.checker.check(
                    unit.url,
                    timeout=self.config.request_timeout_ms,
                    user_agent=self.config.user_agent or None,
                ),
                timeout=self.config.check_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Item check timed out after %.0fs: %s", self.config.check_timeout_sec, unit.url
            )
        except Exception as e:
            logger.error("Item check error %s: %s", unit.url, e)
        return None

    async def _notify(self, unit: CheckUnit, result: CheckResult) -> None:
        try:
            sent = await asyncio.to_thread(
                self.notifier.notify_back_in_stock,
                unit.chat_id,
                unit.name,
                unit.url,
                result,
            )
        except Exception:
            logger.exception("Restock notification for %s raised", unit.item_id)
            sent = False
        if not sent:
            logger.warning("Restock notification for %s to %s was not delivered", unit.item_id, unit.chat_id)

    async def _alert_persistence_failure(self, error: PersistenceError) -> None:
        if not self.config.admin_chat_id or self.notifier is None:
            return
        try:
            await asyncio.to_thread(
                self.notifier.notify_persistence_failure, self.config.admin_chat_id, error
            )
        except Exception:
            logger.exception("Could not alert admin about the persistence failure")
