#!/usr/bin/env python3
"""
測試 MandarakeScraper 的頁面解析
"""
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from core.base_scraper import PageStructureError
from scrapers.mandarake.scraper import MandarakeScraper

URL = "https://order.mandarake.co.jp/order/detailPage/item?itemCode=1234567890"


def build_page(main_button: str = "", blocks: str = "") -> str:
    return f"""
    <html><body>
      <div class="content_head">
        <div class="subject"><h1>Hatsune Miku 1/8 Figure</h1></div>
        <div class="shop"><p>Nakano Store</p></div>
      </div>
      <form id="mypagelist_form">{main_button}</form>
      <div class="other_itemlist">{blocks}</div>
    </body></html>
    """


def store_block(shop: str, price: str, state: str, extra: str = "") -> str:
    button = {
        "add": '<div class="addcart">Add to cart</div>',
        "soldout": '<div class="soldout">Sold out</div>',
        "both": '<div class="addcart">Add</div><div class="soldout">Sold out</div>',
    }[state]
    return f"""
    <div class="block">
      <div class="shop"><p>{shop}</p></div>
      <div class="price">{price}</div>
      {button}{extra}
    </div>
    """


class TestParseItemPage(unittest.TestCase):
    def setUp(self):
        self.scraper = MandarakeScraper()

    def test_main_store_in_stock(self):
        """測試主商品有購物車按鈕"""
        html = build_page('<input class="addcart" type="button">')
        result = self.scraper.parse_item_page(html, URL)

        self.assertTrue(result.is_in_stock)
        self.assertTrue(result.is_in_main_in_stock)
        self.assertEqual(result.item_name, "Hatsune Miku 1/8 Figure")
        self.assertEqual(result.parent_shop_name, "Nakano Store")
        self.assertEqual(result.url, URL)

    def test_sold_out_everywhere(self):
        """測試主商品與其他分店都售完"""
        html = build_page(
            '<div class="soldout">Sold out</div>',
            store_block("Shibuya", "3,000 yen", "soldout"),
        )
        result = self.scraper.parse_item_page(html, URL)

        self.assertFalse(result.is_in_stock)
        self.assertFalse(result.is_in_main_in_stock)
        self.assertEqual(len(result.same_item_in_other_stores), 1)
        self.assertEqual(result.available_stores(), [])

    def test_other_store_in_stock(self):
        """測試只有其他分店可購買時也算有貨"""
        html = build_page(
            '<div class="soldout">Sold out</div>',
            store_block("Shibuya", "3,000 yen", "add")
            + store_block("Umeda", "2,800 yen", "both")
            + store_block("Shibuya", "3,100 yen", "add"),
        )
        result = self.scraper.parse_item_page(html, URL)

        self.assertTrue(result.is_in_stock)
        self.assertFalse(result.is_in_main_in_stock)
        offers = result.same_item_in_other_stores
        self.assertEqual([o.shop for o in offers], ["Shibuya", "Umeda", "Shibuya"])
        self.assertFalse(offers[1].is_available)

        stores = result.available_stores()
        self.assertEqual([(s.shop, s.price) for s in stores], [("Shibuya", "3,000 yen")])

    def test_defective_item_flag(self):
        html = build_page(
            "",
            store_block("Fukuoka", "1,000 yen", "add", '<span class="defect">Defective</span>')
            + store_block("Sapporo", "1,200 yen", "add", "<p>難あり</p>")
            + store_block("Nagoya", "1,500 yen", "add"),
        )
        offers = self.scraper.parse_item_page(html, URL).same_item_in_other_stores
        self.assertEqual([o.is_defective for o in offers], [True, True, False])

    def test_page_without_markers(self):
        """測試頁面沒有任何購物車或售完標記"""
        with self.assertRaises(PageStructureError):
            self.scraper.parse_item_page("<html><body>Access denied</body></html>", URL)


class TestNormalizeUrl(unittest.TestCase):
    def test_adds_lang(self):
        normalized = MandarakeScraper.normalize_url(URL)
        self.assertIn("itemCode=1234567890", normalized)
        self.assertTrue(normalized.endswith("lang=en"))

    def test_keeps_existing_lang(self):
        url = URL + "&lang=ja"
        self.assertEqual(MandarakeScraper.normalize_url(url), url)


class TestCheck(unittest.IsolatedAsyncioTestCase):
    async def test_check_parses_fetched_html(self):
        """測試 check 以抓到的 HTML 解析，並傳遞逾時與 User-Agent"""
        scraper = MandarakeScraper()
        html = build_page('<input class="addcart" type="button">')

        with patch.object(scraper, "_fetch_html", AsyncMock(return_value=html)) as mock_fetch:
            result = await scraper.check(URL, timeout=1234, user_agent="UA")

        mock_fetch.assert_awaited_once_with(URL, 1234, "UA")
        self.assertTrue(result.is_in_stock)
        self.assertEqual(scraper.source_name, "mandarake")

    async def test_open_page_rotates_user_agent_when_unset(self):
        """測試未指定 User-Agent 時從預設列表挑選，指定時直接使用"""
        scraper = MandarakeScraper()
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=MagicMock(new_page=AsyncMock()))
        playwright = MagicMock()
        playwright.chromium.launch = AsyncMock(return_value=browser)

        await scraper._open_page(playwright, None)
        chosen = browser.new_context.await_args.kwargs["user_agent"]
        self.assertIn(chosen, MandarakeScraper.DEFAULT_USER_AGENTS)

        await scraper._open_page(playwright, "Pinned UA")
        browser.new_context.assert_awaited_with(user_agent="Pinned UA")


if __name__ == "__main__":
    unittest.main()
