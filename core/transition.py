"""
庫存狀態轉換模組

定義商品的庫存狀態，以及根據前後兩次檢查結果判斷是否需要發送通知。
只有「缺貨 → 有貨」才會通知；第一次檢查只建立基準狀態。
"""

from enum import Enum


class StockStatus(str, Enum):
    """商品庫存狀態"""
    UNKNOWN = "unknown"
    IN = "in"
    OUT = "out"


class NotificationDecision(str, Enum):
    """通知判斷結果"""
    NONE = "none"
    NOTIFY = "notify"


def status_from_result(is_in_stock: bool) -> StockStatus:
    """將檢查結果轉為 StockStatus（只會是 IN 或 OUT）"""
    return StockStatus.IN if is_in_stock else StockStatus.OUT


def decide(last_status: StockStatus, now_status: StockStatus) -> NotificationDecision:
    """
    根據上次狀態與本次狀態決定是否通知

    Args:
        last_status: 上次記錄的狀態（可為 UNKNOWN）
        now_status: 本次檢查的狀態（必須是 IN 或 OUT）

    Returns:
        NotificationDecision.NOTIFY 僅當 OUT -> IN，其餘皆為 NONE

    Raises:
        ValueError: now_status 為 UNKNOWN 時
    """
    last_status = StockStatus(last_status)
    now_status = StockStatus(now_status)
    if now_status is StockStatus.UNKNOWN:
        raise ValueError("now_status must be 'in' or 'out'")

    if last_status is StockStatus.OUT and now_status is StockStatus.IN:
        return NotificationDecision.NOTIFY
    return NotificationDecision.NONE
