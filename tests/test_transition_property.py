#!/usr/bin/env python3
"""
Property-based test for the Restock Notification Decision

*For any* previous status P and current status C (C is in or out),
decide(P, C) SHALL be NOTIFY if and only if P == out and C == in.
"""
import unittest

from hypothesis import given, settings, strategies as st

from core.transition import NotificationDecision, StockStatus, decide, status_from_result


any_status = st.sampled_from(list(StockStatus))
known_status = st.sampled_from([StockStatus.IN, StockStatus.OUT])


@settings(max_examples=100)
@given(last=any_status, now=known_status)
def test_notify_only_on_out_to_in(last, now):
    """
    For any (last, now) pair, a notification is produced only for out -> in.
    """
    decision = decide(last, now)
    expected = last is StockStatus.OUT and now is StockStatus.IN
    assert (decision is NotificationDecision.NOTIFY) == expected, (
        f"decide({last.value}, {now.value}) = {decision.value}"
    )


@settings(max_examples=100)
@given(statuses=st.lists(known_status, min_size=1, max_size=30))
def test_notification_count_matches_restocks(statuses):
    """
    For any sequence of successful checks starting from unknown, the number of
    notifications equals the number of out -> in edges in the sequence.
    """
    last = StockStatus.UNKNOWN
    notified = 0
    for now in statuses:
        if decide(last, now) is NotificationDecision.NOTIFY:
            notified += 1
        last = now

    edges = sum(
        1 for prev, cur in zip(statuses, statuses[1:])
        if prev is StockStatus.OUT and cur is StockStatus.IN
    )
    assert notified == edges


@given(last=any_status)
def test_unknown_current_status_is_rejected(last):
    """本次狀態為 unknown 時必須拋出 ValueError"""
    try:
        decide(last, StockStatus.UNKNOWN)
    except ValueError:
        return
    raise AssertionError("decide() accepted an unknown current status")


class TestDecisionTable(unittest.TestCase):
    """完整決策表"""

    def test_table(self):
        cases = [
            (StockStatus.UNKNOWN, StockStatus.IN, NotificationDecision.NONE),
            (StockStatus.UNKNOWN, StockStatus.OUT, NotificationDecision.NONE),
            (StockStatus.IN, StockStatus.IN, NotificationDecision.NONE),
            (StockStatus.IN, StockStatus.OUT, NotificationDecision.NONE),
            (StockStatus.OUT, StockStatus.OUT, NotificationDecision.NONE),
            (StockStatus.OUT, StockStatus.IN, NotificationDecision.NOTIFY),
        ]
        for last, now, expected in cases:
            with self.subTest(last=last, now=now):
                self.assertIs(decide(last, now), expected)

    def test_accepts_raw_strings(self):
        """舊資料中的字串狀態也能判斷"""
        self.assertIs(decide("out", "in"), NotificationDecision.NOTIFY)

    def test_status_from_result(self):
        self.assertIs(status_from_result(True), StockStatus.IN)
        self.assertIs(status_from_result(False), StockStatus.OUT)


if __name__ == "__main__":
    unittest.main()
