"""Binary invoice heuristics: keywords, sender lists and PDF checks."""

import logging
import re
from typing import Iterable, Optional

from ..models import MailAttachment
from ..processing.attachment_filter import file_extension
from ..processing.sender import split_address

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

_REFERENCE_PATTERN = re.compile(r"#\s?[A-Za-z]*-?\d{2,}")
_AMOUNT_PATTERN = re.compile(
    r"(?:[$€£]\s?\d[\d.,]*\d)|(?:\d[\d.,]*\d\s?(?:€|EUR|USD|GBP))", re.IGNORECASE
)
MAX_KEYWORD_HITS = 10


def is_pdf(attachment: MailAttachment, strict: bool = False) -> bool:
    """PDF by extension, or by extension and MIME type when ``strict``."""
    by_extension = file_extension(attachment.filename) == ".pdf"
    if strict:
        return by_extension and attachment.content_type.lower() == PDF_MIME_TYPE
    return by_extension


def has_pdf(attachments: Iterable[MailAttachment], strict: bool = False) -> bool:
    return any(is_pdf(a, strict) for a in attachments)


def matches_keywords(
    subject: Optional[str], body: Optional[str], keywords: Iterable[str]
) -> Optional[str]:
    """First keyword found in the subject, then in the body. None if none match."""
    lowered = [k.lower() for k in keywords if k]
    for text in (subject, body):
        if not text:
            continue
        haystack = text.lower()
        for keyword in lowered:
            if keyword in haystack:
                return keyword
    return None


def extract_keyword_hits(
    subject: Optional[str], body: Optional[str], keywords: Iterable[str]
) -> list[str]:
    """Invoice-ish tokens found locally, sent to AI providers instead of the body."""
    text = f"{subject or ''}\n{body or ''}"
    lowered = text.lower()
    hits: list[str] = []
    for keyword in keywords:
        if keyword and keyword.lower() in lowered and keyword.lower() not in hits:
            hits.append(keyword.lower())
    for pattern in (_REFERENCE_PATTERN, _AMOUNT_PATTERN):
        for match in pattern.findall(text):
            token = match.strip()
            if token not in hits:
                hits.append(token)
    return hits[:MAX_KEYWORD_HITS]


def attachment_looks_like_invoice(attachment: MailAttachment, keywords: Iterable[str]) -> bool:
    """A PDF whose own file name carries an invoice keyword."""
    if not (is_pdf(attachment) or attachment.content_type.lower() == PDF_MIME_TYPE):
        return False
    name = attachment.filename.lower()
    return any(k and k.lower() in name for k in keywords)


def _match_local_part(pattern: str, local: str) -> bool:
    if "*" not in pattern:
        return pattern == local
    prefix, _, suffix = pattern.partition("*")
    suffix = suffix.replace("*", "")
    return (
        len(local) >= len(prefix) + len(suffix)
        and local.startswith(prefix)
        and local.endswith(suffix)
    )


def sender_matches_entry(sender_email: str, entry: str) -> bool:
    """Test one normalized sender address against one list entry.

    Entries: ``user@domain``, ``domain``, ``@domain``, ``*@domain``,
    ``prefix*@domain``, ``*suffix@domain`` and ``prefix*suffix@domain``. The
    domain must match before the local-part wildcard is looked at.
    """
    entry = (entry or "").strip().lower()
    local, domain = split_address(sender_email)
    if not entry or not domain:
        return False

    if "@" not in entry:
        return domain == entry

    entry_local, _, entry_domain = entry.rpartition("@")
    if entry_domain != domain:
        return False
    if entry_local in ("", "*"):
        return True
    return _match_local_part(entry_local, local)


def sender_in_list(sender_email: str, entries: Iterable[str]) -> Optional[str]:
    """The first entry matching ``sender_email``, or None."""
    for entry in entries:
        if sender_matches_entry(sender_email, entry):
            logger.debug(f"Sender {sender_email} matched list entry {entry!r}")
            return entry
    return None
