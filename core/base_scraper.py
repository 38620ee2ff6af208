"""
爬蟲基礎類別模組

定義庫存檢查爬蟲的共用介面和行為，包括：
- 檢查結果資料結構 (CheckResult, StoreOffer)
- 抽象方法定義 (check, parse_item_page)
- 瀏覽器初始化和關閉邏輯（async Playwright）
- User-Agent 隨機選擇
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)


class CheckError(Exception):
    """庫存檢查失敗"""
    pass


class PageStructureError(CheckError):
    """頁面缺少預期的標記（頁面結構不符）"""
    pass


@dataclass
class StoreOffer:
    """同一商品在其他分店的販售資訊"""
    shop: str
    price: str = ""
    has_add: bool = False
    sold_out: bool = False
    is_defective: bool = False

    @property
    def is_available(self) -> bool:
        return self.has_add and not self.sold_out


@dataclass
class CheckResult:
    """單一商品頁面的檢查結果"""
    url: str
    is_in_stock: bool
    is_in_main_in_stock: bool
    same_item_in_other_stores: List[StoreOffer] = field(default_factory=list)
    item_name: str = ""
    parent_shop_name: str = ""

    def available_stores(self) -> List[StoreOffer]:
        """
        取得目前可購買的其他分店

        只保留有「加入購物車」且未售完的分店，同名分店只保留第一筆。
        """
        seen = set()
        stores = []
        for offer in self.same_item_in_other_stores:
            if not offer.is_available or offer.shop in seen:
                continue
            seen.add(offer.shop)
            stores.append(offer)
        return stores


class BaseScraper(ABC):
    """
    爬蟲基礎類別

    所有網站特定的爬蟲都應繼承此類別並實作抽象方法。
    提供共用的瀏覽器自動化功能和隨機 User-Agent。
    """

    # 預設 User-Agent 列表，隨機選擇以避免被封鎖
    DEFAULT_USER_AGENTS = [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/118.0.5993.90 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    ]

    # 瀏覽器啟動參數（容器環境需要）
    BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

    # 預設頁面載入逾時（毫秒）
    DEFAULT_TIMEOUT_MS = 30000

    def __init__(self, headless: bool = True, user_agents: Optional[List[str]] = None):
        """
        初始化爬蟲

        Args:
            headless: 是否以無頭模式運行瀏覽器
            user_agents: 自訂 User-Agent 列表，若為 None 則使用預設列表
        """
        self.headless = headless
        self.user_agents = user_agents or self.DEFAULT_USER_AGENTS.copy()

        # 當前使用的 User-Agent
        self._current_user_agent: Optional[str] = None

    @property
    @abstractmethod
    def source_name(self) -> str:
        """返回來源名稱，例如 'mandarake'"""
        pass

    @abstractmethod
    async def check(
        self,
        url: str,
        timeout: Optional[int] = None,
        user_agent: Optional[str] = None,
    ) -> CheckResult:
        """
        檢查商品頁面的庫存

        Args:
            url: 商品頁面 URL
            timeout: 單次頁面載入的逾時（毫秒）
            user_agent: 指定 User-Agent，None 時隨機選擇

        Returns:
            CheckResult

        Raises:
            CheckError: 頁面結構不符等檢查失敗
        """
        pass

    @abstractmethod
    def parse_item_page(self, html: str, url: str) -> CheckResult:
        """
        解析商品頁面 HTML

        Args:
            html: 頁面 HTML
            url: 商品頁面 URL

        Returns:
            CheckResult
        """
        pass

    def _get_user_agent(self) -> str:
        """隨機選擇一個 User-Agent"""
        self._current_user_agent = random.choice(self.user_agents)
        return self._current_user_agent

    async def _open_page(self, playwright: Playwright, user_agent: Optional[str] = None) -> Tuple[Browser, Page]:
        """
        啟動瀏覽器並建立新頁面

        每次檢查使用獨立的瀏覽器，並行的檢查之間互不影響。

        Args:
            playwright: async_playwright() 取得的實例
            user_agent: 指定 User-Agent，None 時隨機選擇

        Returns:
            (browser, page)
        """
        browser = await playwright.chromium.launch(
            headless=self.headless, args=self.BROWSER_ARGS
        )
        context = await browser.new_context(
            user_agent=user_agent or self._get_user_agent()
        )
        page = await context.new_page()
        return browser, page

    async def _close_browser(self, browser: Optional[Browser]) -> None:
        """關閉瀏覽器，關閉時的錯誤不影響檢查結果"""
        if browser is None:
            return
        try:
            await browser.close()
        except Exception as e:
            logger.warning("Error closing browser: %s", e)

    async def _fetch_html(self, url: str, timeout: Optional[int], user_agent: Optional[str]) -> str:
        """開啟瀏覽器、交給 _load_item_page 載入頁面並取得 HTML"""
        async with async_playwright() as p:
            browser = None
            try:
                browser, page = await self._open_page(p, user_agent)
                await self._load_item_page(page, url, timeout or self.DEFAULT_TIMEOUT_MS)
                return await page.content()
            finally:
                await self._close_browser(browser)

    @abstractmethod
    async def _load_item_page(self, page: Page, url: str, timeout: int) -> None:
        """
        在指定頁面上載入商品頁（含必要的前置頁面與等待）

        Args:
            page: Playwright 頁面
            url: 商品頁面 URL
            timeout: 頁面載入逾時（毫秒）
        """
        pass
