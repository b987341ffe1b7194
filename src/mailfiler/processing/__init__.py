"""Attachment classification and sender parsing."""

from .attachment_filter import AttachmentFilter, classify_attachment, file_extension
from .email_parser import EmailParser
from .sender import UNKNOWN_DOMAIN, extract_domain, extract_email, split_address

__all__ = [
    "AttachmentFilter",
    "classify_attachment",
    "file_extension",
    "EmailParser",
    "UNKNOWN_DOMAIN",
    "extract_domain",
    "extract_email",
    "split_address",
]
