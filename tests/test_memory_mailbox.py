from __future__ import annotations

import pytest

from mailfiler.exceptions import UserPermissionError
from mailfiler.ingestion.base import confirmed_invoices_query, unprocessed_query
from mailfiler.ingestion.memory import InMemoryMailbox
from tests.helpers import make_thread


def test_queries() -> None:
    assert unprocessed_query("GDrive_Processed") == "has:attachment -label:GDrive_Processed"
    assert confirmed_invoices_query("a@b.com", "Invoice") == "from:a@b.com label:Invoice"


def test_search_filters_and_orders_newest_first() -> None:
    mailbox = InMemoryMailbox(
        [
            make_thread("old", days=-5),
            make_thread("new", days=0),
            make_thread("done", labels={"GDrive_Processed"}),
            make_thread("plain", attachments=[]),
        ]
    )

    threads = mailbox.search(unprocessed_query("GDrive_Processed"), 0, 10)

    assert [t.id for t in threads] == ["new", "old"]


def test_search_oldest_first() -> None:
    mailbox = InMemoryMailbox(
        [make_thread("new", days=0), make_thread("old", days=-5), make_thread("mid", days=-2)]
    )

    threads = mailbox.search("has:attachment", 0, 2, oldest_first=True)

    assert [t.id for t in threads] == ["old", "mid"]


def test_search_returns_copies() -> None:
    mailbox = InMemoryMailbox([make_thread("t1")])

    [thread] = mailbox.search("has:attachment", 0, 1)
    thread.labels.add("changed")

    assert mailbox.thread_labels("t1") == set()


def test_add_label_and_access_check() -> None:
    mailbox = InMemoryMailbox([make_thread("t1")], owner="me@example.com")

    mailbox.add_label("t1", "GDrive_Processed")
    assert mailbox.thread_labels("t1") == {"GDrive_Processed"}

    mailbox.check_access()
    mailbox.access_denied = True
    with pytest.raises(UserPermissionError):
        mailbox.check_access()
