from __future__ import annotations

import pytest

from mailfiler.config import AttachmentFilterConfig
from mailfiler.models import SkipReason
from mailfiler.processing.attachment_filter import (
    AttachmentFilter,
    classify_attachment,
    file_extension,
)


@pytest.fixture
def classifier() -> AttachmentFilter:
    return AttachmentFilter(AttachmentFilterConfig())


def test_classify_is_idempotent(classifier) -> None:
    first = classifier.classify("image001.png", 1200, "image/png", "inline")
    second = classifier.classify("image001.png", 1200, "image/png", "inline")

    assert first == second


def test_whitelisted_mime_type_overrides_embedded_name(classifier) -> None:
    decision = classifier.classify("logo.pdf", 500, "application/pdf", "inline")

    assert decision.skip is False
    assert decision.reason == SkipReason.MIME_WHITELISTED


def test_inline_image_is_skipped(classifier) -> None:
    decision = classifier.classify("scan.png", 900_000, "image/png", "inline; filename=scan.png")

    assert decision.skip is True
    assert decision.reason == SkipReason.INLINE_DISPOSITION


def test_inline_disposition_only_applies_to_images(classifier) -> None:
    decision = classifier.classify("notes.bin", 900_000, "application/octet-stream", "inline")

    assert decision.skip is False


@pytest.mark.parametrize(
    "name",
    [
        "https://mail.google.com/mail/u/0?ui=2&view=fimg&th=123",
        "photo?disp=emb&realattid=ii_1",
        "https://lh3.googleusercontent.com/abc",
    ],
)
def test_embedded_url_names_are_skipped(classifier, name) -> None:
    decision = classifier.classify(name, 300_000, "image/jpeg")

    assert decision.skip is True
    assert decision.reason == SkipReason.EMBEDDED_URL_PATTERN


@pytest.mark.parametrize("name", ["logo.png", "LOGO_acme.gif", "facebook.png", "signature.jpg"])
def test_common_embedded_names_are_skipped(classifier, name) -> None:
    decision = classifier.classify(name, 300_000, "image/png")

    assert decision.skip is True
    assert decision.reason == SkipReason.EMBEDDED_NAME_PATTERN


def test_embedded_name_needs_exact_or_underscore_match(classifier) -> None:
    decision = classifier.classify("logotype-final.png", 300_000, "image/png")

    assert decision.skip is False
    assert decision.reason == SkipReason.KEPT


@pytest.mark.parametrize(
    "name",
    [
        "image001.png",
        "inline-12345.jpg",
        "Outlook-abc.png",
        "emb_image3.gif",
        "0f8fad5b-d9cb-469f-a165-70867728950e.png",
        "part_1.2.3",
        "ATT00002.1",
    ],
)
def test_regex_embedded_names_are_skipped(classifier, name) -> None:
    decision = classifier.classify(name, 300_000, "application/octet-stream")

    assert decision.skip is True
    assert decision.reason == SkipReason.EMBEDDED_REGEX_PATTERN


def test_document_extension_is_kept_regardless_of_size(classifier) -> None:
    decision = classifier.classify("statement.xlsx", 10, "application/octet-stream")

    assert decision.skip is False
    assert decision.reason == SkipReason.KEPT
    assert decision.detail == ".xlsx"


def test_no_extension_below_50kib_is_skipped(classifier) -> None:
    decision = classifier.classify("abc123", 50 * 1024 - 1, "application/octet-stream")

    assert decision.skip is True
    assert decision.reason == SkipReason.NO_EXTENSION_SMALL


def test_no_extension_at_exactly_50kib_is_kept(classifier) -> None:
    decision = classifier.classify("abc123", 51200, "application/octet-stream")

    assert decision.skip is False
    assert decision.reason == SkipReason.KEPT


def test_no_extension_threshold_ignores_small_image_setting() -> None:
    classifier = AttachmentFilter(AttachmentFilterConfig(small_image_max_size=100))

    decision = classifier.classify("abc123", 40_000, "application/octet-stream")

    assert decision.reason == SkipReason.NO_EXTENSION_SMALL


@pytest.mark.parametrize("name", ["meeting.ics", "contact.VCF"])
def test_configured_extensions_are_skipped(classifier, name) -> None:
    decision = classifier.classify(name, 4_000, "text/calendar")

    assert decision.skip is True
    assert decision.reason == SkipReason.SKIPPED_EXTENSION


def test_small_image_boundary(classifier) -> None:
    at_threshold = classifier.classify("photo.jpg", 20000, "image/jpeg")
    above_threshold = classifier.classify("photo.jpg", 20001, "image/jpeg")

    assert at_threshold.skip is True
    assert at_threshold.reason == SkipReason.SMALL_IMAGE
    assert above_threshold.skip is False
    assert above_threshold.reason == SkipReason.KEPT


def test_small_images_kept_when_disabled() -> None:
    classifier = AttachmentFilter(AttachmentFilterConfig(skip_small_images=False))

    decision = classifier.classify("photo.jpg", 100, "image/jpeg")

    assert decision.skip is False


def test_missing_fields_do_not_raise(classifier) -> None:
    decision = classifier.classify(None, None, None)

    assert decision.skip is True
    assert decision.reason == SkipReason.NO_EXTENSION_SMALL


def test_classify_attachment_uses_default_config() -> None:
    decision = classify_attachment("invoice.pdf", 10_000, "application/pdf")

    assert decision.skip is False


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("report.PDF", ".pdf"),
        ("archive.tar.gz", ".gz"),
        ("noext", ""),
        ("weird.name with space", ""),
        ("", ""),
    ],
)
def test_file_extension(name, expected) -> None:
    assert file_extension(name) == expected
