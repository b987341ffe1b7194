"""Historical invoice patterns for one sender.

Looks at the sender's earlier messages that a person labeled as invoices and
summarizes them for the AI prompt. The summary is context only; it never
decides anything by itself.
"""

import logging
import os
import re
from datetime import datetime
from statistics import mean
from typing import Iterable, Optional

from ..ingestion.base import Mailbox, confirmed_invoices_query
from ..models import HistoricalPattern
from ..processing.sender import extract_email

logger = logging.getLogger(__name__)

# (label, min days, max days), checked in order against the mean interval.
FREQUENCY_BUCKETS = (
    ("weekly", 5, 9),
    ("biweekly", 12, 16),
    ("monthly", 26, 35),
    ("quarterly", 85, 95),
    ("biannual", 175, 190),
    ("annual", 355, 375),
)
MIN_AFFIX_LENGTH = 3

_NUMERIC_TOKEN = re.compile(r"\d+")


def classify_frequency(interval_days: Iterable[float]) -> Optional[str]:
    """Bucket the mean inter-arrival time. None when there are no intervals."""
    intervals = list(interval_days)
    if not intervals:
        return None
    average = mean(intervals)
    for label, low, high in FREQUENCY_BUCKETS:
        if low <= average <= high:
            return label
    return "irregular"


def common_prefix(subjects: list[str]) -> Optional[str]:
    prefix = os.path.commonprefix(subjects).strip()
    return prefix if len(prefix) >= MIN_AFFIX_LENGTH else None


def common_suffix(subjects: list[str]) -> Optional[str]:
    reversed_suffix = os.path.commonprefix([s[::-1] for s in subjects])
    suffix = reversed_suffix[::-1].strip()
    return suffix if len(suffix) >= MIN_AFFIX_LENGTH else None


def analyze_history(
    sender: str,
    subjects: list[str],
    dates: list[datetime],
    keywords: Iterable[str],
) -> HistoricalPattern:
    """Summarize subjects and send dates of confirmed invoices."""
    keywords = [k.lower() for k in keywords if k]
    ordered = sorted(dates)
    intervals = [
        (later - earlier).total_seconds() / 86400
        for earlier, later in zip(ordered, ordered[1:])
    ]
    days_of_month = {d.day for d in ordered}

    return HistoricalPattern(
        sender=sender,
        sample_size=len(subjects),
        common_prefix=common_prefix(subjects) if len(subjects) > 1 else None,
        common_suffix=common_suffix(subjects) if len(subjects) > 1 else None,
        has_invoice_keywords=any(k in s.lower() for s in subjects for k in keywords),
        has_numeric_tokens=any(_NUMERIC_TOKEN.search(s) for s in subjects),
        frequency=classify_frequency(intervals),
        average_interval_days=round(mean(intervals), 1) if intervals else None,
        same_day_of_month=len(ordered) > 1 and len(days_of_month) == 1,
        day_of_month=next(iter(days_of_month)) if len(days_of_month) == 1 else None,
    )


class HistoricalPatternAnalyzer:
    """Looks up and summarizes a sender's confirmed invoices."""

    def __init__(self, mailbox: Mailbox, confirmed_label: str, keywords: Iterable[str], max_messages: int = 10):
        self.mailbox = mailbox
        self.confirmed_label = confirmed_label
        self.keywords = list(keywords)
        self.max_messages = max_messages
        self._cache: dict[str, Optional[HistoricalPattern]] = {}

    def for_sender(self, sender_email: str) -> Optional[HistoricalPattern]:
        """Pattern for a sender, or None without confirmed history. Never raises."""
        if not sender_email:
            return None
        if sender_email in self._cache:
            return self._cache[sender_email]

        sender = extract_email(sender_email)
        pattern = None
        try:
            threads = self.mailbox.search(
                confirmed_invoices_query(sender_email, self.confirmed_label), 0, self.max_messages
            )
            messages = [
                m
                for t in threads
                for m in t.messages
                if extract_email(m.from_address) == sender
                and (self.confirmed_label in m.labels or self.confirmed_label in t.labels)
            ][: self.max_messages]
            if messages:
                pattern = analyze_history(
                    sender_email,
                    [m.subject for m in messages],
                    [m.date for m in messages],
                    self.keywords,
                )
                logger.debug(
                    f"History for {sender_email}: {pattern.sample_size} invoices, "
                    f"frequency={pattern.frequency}"
                )
        except Exception as e:
            logger.warning(f"Historical pattern lookup failed for {sender_email}: {e}")

        self._cache[sender_email] = pattern
        return pattern
