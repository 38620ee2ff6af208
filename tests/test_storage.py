#!/usr/bin/env python3
"""
測試 WatchStorage 類別
"""
import json
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from core.models import Snapshot, UserRecord, WatchedItem
from core.storage import PersistenceError, WatchStorage
from core.transition import StockStatus


def make_snapshot() -> Snapshot:
    return Snapshot(
        users={
            "12345": UserRecord(
                enabled=True,
                items=[
                    WatchedItem(
                        id="a1b2c3d4",
                        name="初音ミク フィギュア",
                        url="https://order.mandarake.co.jp/order/detailPage/item?itemCode=1",
                        last_status=StockStatus.OUT,
                        last_checked="2026-10-19T05:00:00.123456Z",
                    ),
                    WatchedItem(
                        id="e5f6a7b8",
                        name="Artbook",
                        url="https://order.mandarake.co.jp/order/detailPage/item?itemCode=2",
                        enabled=False,
                    ),
                ],
            ),
            "67890": UserRecord(enabled=False),
        },
        settings={"note": "kept"},
    )


class TestWatchStorage(unittest.TestCase):
    def setUp(self):
        """每個測試前創建臨時目錄"""
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "data", "data.json")
        self.storage = WatchStorage(self.path, retry_wait=0)

    def tearDown(self):
        """每個測試後清理臨時目錄"""
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_load_missing_file(self):
        """測試檔案不存在時返回空快照"""
        snapshot = self.storage.load()
        self.assertEqual(snapshot.users, {})
        self.assertEqual(snapshot.settings, {})

    def test_load_corrupt_file(self):
        """測試檔案損毀時返回空快照"""
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(self.storage.load().users, {})

    def test_load_wrong_shape(self):
        """測試 JSON 結構不符時返回空快照"""
        os.makedirs(os.path.dirname(self.path))
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(["not", "an", "object"], f)
        self.assertEqual(self.storage.load().users, {})

    def test_round_trip(self):
        """測試寫入後讀回內容一致"""
        self.storage.save(make_snapshot())
        loaded = self.storage.load()

        self.assertEqual(set(loaded.users), {"12345", "67890"})
        items = loaded.users["12345"].items
        self.assertEqual([i.id for i in items], ["a1b2c3d4", "e5f6a7b8"])
        self.assertEqual(items[0].name, "初音ミク フィギュア")
        self.assertIs(items[0].last_status, StockStatus.OUT)
        self.assertEqual(items[0].last_checked, "2026-10-19T05:00:00.123456Z")
        self.assertFalse(items[1].enabled)
        self.assertIs(items[1].last_status, StockStatus.UNKNOWN)
        self.assertFalse(loaded.users["67890"].enabled)
        self.assertEqual(loaded.settings, {"note": "kept"})

    def test_save_load_save_is_byte_identical(self):
        """測試 save(load()) 不改變檔案內容"""
        self.storage.save(make_snapshot())
        with open(self.path, "rb") as f:
            first = f.read()

        self.storage.save(self.storage.load())
        with open(self.path, "rb") as f:
            second = f.read()

        self.assertEqual(first, second)

    def test_no_temp_file_left(self):
        """測試寫入後不留下暫存檔"""
        self.storage.save(make_snapshot())
        self.assertTrue(os.path.exists(self.path))
        self.assertFalse(os.path.exists(self.storage.tmp_path))

    def test_load_legacy_keys(self):
        """測試讀取舊版 camelCase 欄位"""
        os.makedirs(os.path.dirname(self.path))
        legacy = {
            "users": {
                "111": {
                    "enabled": True,
                    "items": [
                        {
                            "id": "old1",
                            "name": "Legacy",
                            "url": "https://order.mandarake.co.jp/order/detailPage/item?itemCode=9",
                            "enabled": True,
                            "lastStatus": "in",
                            "lastChecked": "2024-01-01T00:00:00.000Z",
                        }
                    ],
                }
            },
            "settings": {},
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(legacy, f)

        item = self.storage.load().users["111"].items[0]
        self.assertIs(item.last_status, StockStatus.IN)
        self.assertEqual(item.last_checked, "2024-01-01T00:00:00.000Z")

        # 重新寫入後使用新欄位名稱
        self.storage.save(self.storage.load())
        with open(self.path, "r", encoding="utf-8") as f:
            saved = json.load(f)
        saved_item = saved["users"]["111"]["items"][0]
        self.assertEqual(saved_item["last_status"], "in")
        self.assertNotIn("lastStatus", saved_item)

    def test_unrecognised_status_only_affects_that_item(self):
        """測試無法辨識的狀態只讓該商品變回 unknown，其他資料保留"""
        self.storage.save(make_snapshot())
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data["users"]["12345"]["items"][1]["last_status"] = "restocking"
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

        with self.assertLogs("core.models", level="WARNING"):
            loaded = self.storage.load()

        self.assertEqual(set(loaded.users), {"12345", "67890"})
        items = loaded.users["12345"].items
        self.assertIs(items[0].last_status, StockStatus.OUT)
        self.assertIs(items[1].last_status, StockStatus.UNKNOWN)
        self.assertEqual(loaded.settings, {"note": "kept"})

    def test_save_failure_raises_persistence_error(self):
        """測試重試後仍無法寫入時拋出 PersistenceError"""
        with patch("core.storage.os.replace", side_effect=OSError("disk full")) as mock_replace:
            with self.assertRaises(PersistenceError):
                self.storage.save(make_snapshot())

        self.assertEqual(mock_replace.call_count, WatchStorage.DEFAULT_MAX_ATTEMPTS)
        self.assertFalse(os.path.exists(self.storage.tmp_path))
        self.assertFalse(os.path.exists(self.path))

    def test_transient_failure_is_retried(self):
        """測試暫時性錯誤會重試並成功"""
        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append(src)
            if len(calls) == 1:
                raise OSError("busy")
            return real_replace(src, dst)

        with patch("core.storage.os.replace", side_effect=flaky_replace):
            self.storage.save(make_snapshot())

        self.assertEqual(len(calls), 2)
        self.assertEqual(set(self.storage.load().users), {"12345", "67890"})


class TestWatchStorageAsync(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, "data", "data.json")
        self.storage = WatchStorage(self.path, retry_wait=0)

    def tearDown(self):
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    async def test_save_async_matches_save(self):
        """測試非同步寫入的檔案內容與同步寫入相同"""
        await self.storage.save_async(make_snapshot())
        with open(self.path, "rb") as f:
            first = f.read()

        self.storage.save(make_snapshot())
        with open(self.path, "rb") as f:
            self.assertEqual(f.read(), first)
        self.assertFalse(os.path.exists(self.storage.tmp_path))

    async def test_save_async_failure(self):
        """測試非同步寫入重試後仍失敗時拋出 PersistenceError 並清除暫存檔"""
        with patch("core.storage.os.replace", side_effect=OSError("disk full")) as mock_replace:
            with self.assertRaises(PersistenceError):
                await self.storage.save_async(make_snapshot())

        self.assertEqual(mock_replace.call_count, WatchStorage.DEFAULT_MAX_ATTEMPTS)
        self.assertFalse(os.path.exists(self.storage.tmp_path))
        self.assertFalse(os.path.exists(self.path))


if __name__ == "__main__":
    unittest.main()
