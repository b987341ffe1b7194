from __future__ import annotations

from datetime import datetime, timedelta, timezone

from mailfiler.config import AttachmentFilterConfig, Config, InvoiceDetectionConfig, RetryConfig
from mailfiler.exceptions import TransientProviderError
from mailfiler.models import MailAttachment, MailMessage, MailThread
from mailfiler.semantic.inference import InvoiceScorer, ScoringRequest

BASE_DATE = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_attachment(
    filename: str = "report.pdf",
    *,
    content_type: str = "application/pdf",
    data: bytes = b"%PDF-1.4 test document",
    size_bytes: int | None = None,
    content_disposition: str | None = "attachment",
) -> MailAttachment:
    return MailAttachment(
        filename=filename,
        content_type=content_type,
        data=data,
        size_bytes=len(data) if size_bytes is None else size_bytes,
        content_disposition=content_disposition,
    )


def make_message(
    message_id: str = "m1",
    *,
    from_address: str = "Billing <billing@vendor.example>",
    subject: str = "Monthly statement",
    body_text: str | None = "Hello",
    date: datetime | None = None,
    days: int = 0,
    attachments: list[MailAttachment] | None = None,
    labels: set[str] | None = None,
) -> MailMessage:
    return MailMessage(
        id=message_id,
        from_address=from_address,
        subject=subject,
        body_text=body_text,
        date=date or BASE_DATE + timedelta(days=days),
        attachments=[make_attachment()] if attachments is None else attachments,
        labels=labels or set(),
    )


def make_thread(
    thread_id: str = "t1",
    *,
    messages: list[MailMessage] | None = None,
    labels: set[str] | None = None,
    **message_kwargs,
) -> MailThread:
    if messages is None:
        messages = [make_message(f"{thread_id}-m1", **message_kwargs)]
    return MailThread(id=thread_id, messages=messages, labels=labels or set())


def make_detection_config(**overrides) -> InvoiceDetectionConfig:
    values = {
        "enabled": True,
        "method": "gemini",
        "gemini_api_key": "gemini-test-key",
        "use_historical_patterns": False,
    }
    values.update(overrides)
    return InvoiceDetectionConfig(**values)


def make_config(
    *,
    detection: InvoiceDetectionConfig | None = None,
    attachment_filter: AttachmentFilterConfig | None = None,
    **overrides,
) -> Config:
    values = {
        "main_folder_id": "root",
        "storage_backend": "memory",
        "lock_wait_seconds": 0.0,
        "folder_lock_wait_seconds": 0.0,
        "retry": RetryConfig(max_attempts=3, initial_delay_sec=0.0, max_delay_sec=0.0),
        "invoice_detection": detection or InvoiceDetectionConfig(),
        "attachment_filter": attachment_filter or AttachmentFilterConfig(),
    }
    values.update(overrides)
    return Config(**values)


class FakeScorer(InvoiceScorer):
    """Scorer returning a fixed confidence, or failing like an unreachable provider."""

    def __init__(self, name: str, confidence: float | None = None) -> None:
        self.name = name
        self.confidence = confidence
        self.requests: list[ScoringRequest] = []

    def score(self, request: ScoringRequest) -> float:
        self.requests.append(request)
        if self.confidence is None:
            raise TransientProviderError(self.name, "provider unavailable", status_code=503)
        return self.confidence
