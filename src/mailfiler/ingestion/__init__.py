"""Mailbox access."""

from .base import Mailbox, confirmed_invoices_query, unprocessed_query
from .gmail import GmailMailbox
from .memory import InMemoryMailbox

__all__ = [
    "Mailbox",
    "GmailMailbox",
    "InMemoryMailbox",
    "unprocessed_query",
    "confirmed_invoices_query",
]
