from __future__ import annotations

import pytest

from mailfiler.semantic.rules import (
    attachment_looks_like_invoice,
    extract_keyword_hits,
    has_pdf,
    is_pdf,
    matches_keywords,
    sender_in_list,
    sender_matches_entry,
)
from tests.helpers import make_attachment


@pytest.mark.parametrize(
    ("entry", "sender", "expected"),
    [
        ("invoice*@example.com", "invoice-2024@example.com", True),
        ("invoice*@example.com", "billing@example.com", False),
        ("*-noreply@example.com", "payment-noreply@example.com", True),
        ("*-noreply@example.com", "payment-noreply@other.com", False),
        ("inv*2024@example.com", "inv-march-2024@example.com", True),
        ("inv*2024@example.com", "inv@example.com", False),
        ("billing@example.com", "billing@example.com", True),
        ("billing@example.com", "sales@example.com", False),
        ("example.com", "anyone@example.com", True),
        ("@example.com", "anyone@example.com", True),
        ("*@example.com", "anyone@example.com", True),
        ("*@example.com", "anyone@example.org", False),
        ("", "anyone@example.com", False),
    ],
)
def test_sender_matches_entry(entry, sender, expected) -> None:
    assert sender_matches_entry(sender, entry) is expected


def test_sender_in_list_returns_matching_entry() -> None:
    entries = ["billing@other.com", "INVOICE*@Example.com"]

    assert sender_in_list("invoice-7@example.com", entries) == "INVOICE*@Example.com"
    assert sender_in_list("someone@example.com", entries) is None


def test_matches_keywords_subject_then_body() -> None:
    keywords = ["invoice", "factura"]

    assert matches_keywords("Invoice #123", None, keywords) == "invoice"
    assert matches_keywords("Hello", "adjuntamos la FACTURA", keywords) == "factura"
    assert matches_keywords("Hello", "nothing here", keywords) is None


def test_extract_keyword_hits_finds_references_and_amounts() -> None:
    hits = extract_keyword_hits("Invoice #123", "Total due: $1,234.50", ["invoice", "bill"])

    assert hits == ["invoice", "#123", "$1,234.50"]


def test_is_pdf_strict_requires_mime() -> None:
    attachment = make_attachment("doc.pdf", content_type="application/octet-stream")

    assert is_pdf(attachment) is True
    assert is_pdf(attachment, strict=True) is False
    assert has_pdf([make_attachment("a.png", content_type="image/png"), attachment]) is True


def test_attachment_looks_like_invoice() -> None:
    keywords = ["invoice", "factura"]

    assert attachment_looks_like_invoice(make_attachment("Invoice_2024-01.pdf"), keywords) is True
    assert attachment_looks_like_invoice(make_attachment("report.pdf"), keywords) is False
    assert (
        attachment_looks_like_invoice(
            make_attachment("invoice.png", content_type="image/png"), keywords
        )
        is False
    )
