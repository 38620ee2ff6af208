"""
Mandarake 爬蟲模組

繼承 BaseScraper，實作 Mandarake 通販 (order.mandarake.co.jp) 商品頁的庫存檢查。
流程：
- 先造訪首頁與通販首頁取得 cookies
- 商品頁網址自動補上 lang=en
- 以 BeautifulSoup 解析主商品按鈕與「其他分店」區塊
"""

import logging
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse

from bs4 import BeautifulSoup
from playwright.async_api import Page

from core.base_scraper import BaseScraper, CheckResult, PageStructureError, StoreOffer

logger = logging.getLogger(__name__)


class MandarakeScraper(BaseScraper):
    """
    Mandarake 爬蟲

    判斷規則：
    - 主商品：#mypagelist_form 內有 .addcart 按鈕即為有貨
    - 其他分店：.other_itemlist .block，有 .addcart 且沒有 .soldout 才算可購買
    - 任一處可購買即視為有貨
    """

    HOME_URL = "https://www.mandarake.co.jp/"
    ORDER_HOME_URL = "https://order.mandarake.co.jp/order/?lang=en"

    # 商品頁載入完成的標記
    STOCK_MARKER_SELECTOR = ".addcart, .soldout"
    MARKER_WAIT_MS = 5000

    @property
    def source_name(self) -> str:
        """返回來源名稱"""
        return "mandarake"

    async def check(
        self,
        url: str,
        timeout: Optional[int] = None,
        user_agent: Optional[str] = None,
    ) -> CheckResult:
        """
        檢查 Mandarake 商品頁的庫存

        Args:
            url: 商品頁面 URL
            timeout: 單次頁面載入的逾時（毫秒）
            user_agent: 指定 User-Agent

        Returns:
            CheckResult

        Raises:
            PageStructureError: 頁面沒有購物車或售完標記
            playwright TimeoutError / Error: 網路或載入失敗
        """
        html = await self._fetch_html(url, timeout, user_agent)
        return self.parse_item_page(html, url)

    async def _load_item_page(self, page: Page, url: str, timeout: int) -> None:
        # 1. 首頁取得 cookies
        await page.goto(self.HOME_URL, wait_until="networkidle", timeout=timeout)
        # 2. 通販首頁設定語言
        await page.goto(self.ORDER_HOME_URL, wait_until="networkidle", timeout=timeout)
        # 3. 商品頁
        item_url = self.normalize_url(url)
        logger.debug("Loading Mandarake URL: %s", item_url)
        await page.goto(item_url, wait_until="networkidle", timeout=timeout)
        await page.wait_for_selector(self.STOCK_MARKER_SELECTOR, timeout=self.MARKER_WAIT_MS)

    @staticmethod
    def normalize_url(url: str) -> str:
        """商品網址沒有 lang 參數時補上 lang=en，其餘參數保持不變"""
        parsed = urlparse(url)
        query_params = parse_qs(parsed.query, keep_blank_values=True)
        if "lang" in query_params:
            return url
        query_params["lang"] = ["en"]
        new_query = urlencode(query_params, doseq=True)
        return parsed._replace(query=new_query).geturl()

    def parse_item_page(self, html: str, url: str) -> CheckResult:
        """
        解析商品頁面 HTML

        Args:
            html: 頁面 HTML
            url: 商品頁面 URL（原樣放入結果）

        Returns:
            CheckResult

        Raises:
            PageStructureError: 頁面上找不到任何 .addcart / .soldout
        """
        soup = BeautifulSoup(html, "html.parser")

        if not soup.select(self.STOCK_MARKER_SELECTOR):
            raise PageStructureError(f"No stock markers on page: {url}")

        is_in_main_in_stock = bool(soup.select("#mypagelist_form .addcart"))
        parent_shop_name = self._text(soup.select_one(".content_head .shop p"))
        item_name = self._text(soup.select_one(".content_head .subject h1"))

        offers = []
        for block in soup.select(".other_itemlist .block"):
            offers.append(
                StoreOffer(
                    shop=self._text(block.select_one(".shop p")),
                    price=self._text(block.select_one(".price")),
                    has_add=block.select_one(".addcart") is not None,
                    sold_out=block.select_one(".soldout") is not None,
                    is_defective=self._is_defective(block),
                )
            )

        is_in_stock = is_in_main_in_stock or any(o.is_available for o in offers)

        return CheckResult(
            url=url,
            is_in_stock=is_in_stock,
            is_in_main_in_stock=is_in_main_in_stock,
            same_item_in_other_stores=offers,
            item_name=item_name,
            parent_shop_name=parent_shop_name,
        )

    @staticmethod
    def _text(element) -> str:
        return element.get_text(strip=True) if element is not None else ""

    @staticmethod
    def _is_defective(block) -> bool:
        # 有瑕疵的商品會加上 .defect 標籤，或在說明中標示
        if block.select_one(".defect") is not None:
            return True
        text = block.get_text(" ", strip=True).lower()
        return "defective" in text or "難あり" in text
