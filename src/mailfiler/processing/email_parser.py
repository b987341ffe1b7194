"""Parse RFC822 messages fetched over IMAP into mailbox models."""

import email
from datetime import datetime, timezone
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import Optional

from ..models import MailAttachment, MailMessage


class EmailParser:
    """Parse RFC822 email messages and extract components."""

    @staticmethod
    def parse(
        email_bytes: bytes,
        message_id: str,
        labels: Optional[set[str]] = None,
        fallback_date: Optional[datetime] = None,
    ) -> MailMessage:
        """Parse email bytes into a MailMessage.

        Args:
            email_bytes: Email in RFC822 format (bytes)
            message_id: Mailbox identifier for the message (IMAP UID)
            labels: Labels the mailbox reports for this message
            fallback_date: Used when the Date header is missing or malformed

        Returns:
            MailMessage: Parsed message with attachments
        """
        msg = email.message_from_bytes(email_bytes)

        return MailMessage(
            id=message_id,
            from_address=EmailParser._decode(msg.get("From", "")),
            subject=EmailParser._decode(msg.get("Subject", "")),
            body_text=EmailParser._extract_body(msg),
            date=EmailParser._parse_date(msg.get("Date"), fallback_date),
            attachments=EmailParser._extract_attachments(msg),
            labels=set(labels or ()),
        )

    @staticmethod
    def _decode(value: Optional[str]) -> str:
        if not value:
            return ""
        try:
            return str(make_header(decode_header(value)))
        except Exception:
            return str(value)

    @staticmethod
    def _parse_date(value: Optional[str], fallback: Optional[datetime]) -> datetime:
        if value:
            try:
                parsed = parsedate_to_datetime(value)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=timezone.utc)
                return parsed
            except (TypeError, ValueError):
                pass
        return fallback or datetime.now(timezone.utc)

    @staticmethod
    def _extract_attachments(msg: Message) -> list[MailAttachment]:
        """Extract every part that carries a filename.

        Inline images are included; the classifier decides what to keep.
        """
        attachments = []

        for part in msg.walk():
            filename = part.get_filename()

            # Skip if no filename (not an attachment)
            if not filename:
                continue

            try:
                payload = part.get_payload(decode=True)
                if payload is None:
                    continue

                attachments.append(MailAttachment(
                    filename=EmailParser._decode(filename),
                    content_type=part.get_content_type(),
                    data=payload,
                    size_bytes=len(payload),
                    content_disposition=part.get("Content-Disposition"),
                ))

            except Exception:
                # Skip malformed attachments
                continue

        return attachments

    @staticmethod
    def _extract_body(msg: Message) -> Optional[str]:
        """Extract the plain text body, if any."""
        parts = msg.walk() if msg.is_multipart() else [msg]

        for part in parts:
            if part.get_content_type() != "text/plain":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            charset = part.get_content_charset() or "utf-8"
            try:
                payload = part.get_payload(decode=True)
                if payload:
                    return payload.decode(charset, errors="ignore").strip()
            except Exception:
                continue

        return None
