from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mailfiler.ingestion.memory import InMemoryMailbox
from mailfiler.semantic.history import HistoricalPatternAnalyzer, analyze_history, classify_frequency
from tests.helpers import make_message, make_thread


@pytest.mark.parametrize(
    ("intervals", "expected"),
    [
        ([7, 7, 7], "weekly"),
        ([14, 14], "biweekly"),
        ([31, 28, 31], "monthly"),
        ([91], "quarterly"),
        ([182], "biannual"),
        ([365], "annual"),
        ([50], "irregular"),
        ([], None),
    ],
)
def test_classify_frequency(intervals, expected) -> None:
    assert classify_frequency(intervals) == expected


def test_analyze_history_monthly_sender() -> None:
    pattern = analyze_history(
        "billing@vendor.example",
        ["Invoice 001 from ACME", "Invoice 002 from ACME"],
        [
            datetime(2024, 2, 5, tzinfo=timezone.utc),
            datetime(2024, 1, 5, tzinfo=timezone.utc),
        ],
        ["invoice"],
    )

    assert pattern.sample_size == 2
    assert pattern.common_prefix == "Invoice 00"
    assert pattern.common_suffix == "from ACME"
    assert pattern.has_invoice_keywords is True
    assert pattern.has_numeric_tokens is True
    assert pattern.frequency == "monthly"
    assert pattern.average_interval_days == 31.0
    assert pattern.same_day_of_month is True
    assert pattern.day_of_month == 5


def test_analyze_history_single_message() -> None:
    pattern = analyze_history(
        "billing@vendor.example",
        ["Your statement"],
        [datetime(2024, 1, 5, tzinfo=timezone.utc)],
        ["invoice"],
    )

    assert pattern.common_prefix is None
    assert pattern.frequency is None
    assert pattern.same_day_of_month is False
    assert pattern.has_invoice_keywords is False
    assert pattern.has_numeric_tokens is False


def test_analyzer_ignores_unlabeled_messages() -> None:
    mailbox = InMemoryMailbox(
        [
            make_thread("a", from_address="billing@vendor.example", labels={"Invoice"}),
            make_thread("b", from_address="billing@vendor.example"),
        ]
    )
    analyzer = HistoricalPatternAnalyzer(mailbox, "Invoice", ["invoice"])

    pattern = analyzer.for_sender("billing@vendor.example")

    assert pattern.sample_size == 1


def test_analyzer_ignores_replies_from_other_addresses() -> None:
    thread = make_thread(
        "a",
        labels={"Invoice"},
        messages=[
            make_message(
                "m1",
                from_address="Billing <billing@vendor.example>",
                subject="Invoice INV-001",
                date=datetime(2024, 1, 3, tzinfo=timezone.utc),
            ),
            make_message(
                "m2",
                from_address="Me <me@example.com>",
                subject="Re: Invoice INV-001",
                date=datetime(2024, 1, 20, tzinfo=timezone.utc),
            ),
        ],
    )
    analyzer = HistoricalPatternAnalyzer(InMemoryMailbox([thread]), "Invoice", ["invoice"])

    pattern = analyzer.for_sender("billing@vendor.example")

    assert pattern.sample_size == 1
    assert pattern.day_of_month == 3


def test_analyzer_without_history_returns_none_and_caches() -> None:
    mailbox = InMemoryMailbox()
    analyzer = HistoricalPatternAnalyzer(mailbox, "Invoice", ["invoice"])

    assert analyzer.for_sender("billing@vendor.example") is None
    assert analyzer.for_sender("billing@vendor.example") is None
    assert len(mailbox.search_calls) == 1


def test_analyzer_swallows_mailbox_errors() -> None:
    class BrokenMailbox(InMemoryMailbox):
        def search(self, query, offset, limit, oldest_first=False):
            raise ConnectionError("imap down")

    analyzer = HistoricalPatternAnalyzer(BrokenMailbox(), "Invoice", ["invoice"])

    assert analyzer.for_sender("billing@vendor.example") is None
