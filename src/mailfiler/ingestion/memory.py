"""In-memory mailbox (for testing)."""

import shlex
from datetime import datetime, timezone
from typing import Optional

from ..exceptions import UserPermissionError
from ..models import MailThread
from ..processing.sender import extract_email
from .base import Mailbox


class InMemoryMailbox(Mailbox):
    """Mailbox backed by a list of threads.

    Understands the subset of Gmail search the engine issues:
    ``has:attachment``, ``label:X``, ``-label:X`` and ``from:X``.
    Results come back newest-first, like Gmail, unless ``oldest_first``.
    """

    def __init__(self, threads: Optional[list[MailThread]] = None, owner: str = "me@example.com"):
        self.owner = owner
        self.threads: dict[str, MailThread] = {t.id: t for t in threads or []}
        self.search_calls: list[tuple[str, int, int]] = []
        self.fail_add_label: set[str] = set()
        self.access_denied = False

    def add_thread(self, thread: MailThread) -> None:
        self.threads[thread.id] = thread

    def _matches(self, thread: MailThread, terms: list[str]) -> bool:
        for term in terms:
            negate = term.startswith("-")
            key, _, value = term.lstrip("-").partition(":")
            if key == "has" and value == "attachment":
                result = thread.has_attachments
            elif key == "label":
                result = value in thread.labels or any(value in m.labels for m in thread.messages)
            elif key == "from":
                wanted = value.lower()
                result = any(
                    extract_email(m.from_address) == wanted or wanted in m.from_address.lower()
                    for m in thread.messages
                )
            else:
                result = True
            if result == negate:
                return False
        return True

    def search(self, query: str, offset: int, limit: int, oldest_first: bool = False) -> list[MailThread]:
        self.search_calls.append((query, offset, limit))
        terms = shlex.split(query)
        matching = [t for t in self.threads.values() if self._matches(t, terms)]
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        matching.sort(key=lambda t: t.last_message_date or oldest, reverse=not oldest_first)
        return [t.model_copy(deep=True) for t in matching[offset:offset + limit]]

    def thread_labels(self, thread_id: str) -> set[str]:
        return set(self.threads[thread_id].labels)

    def add_label(self, thread_id: str, label: str) -> None:
        if thread_id in self.fail_add_label:
            raise RuntimeError(f"label update failed for {thread_id}")
        self.threads[thread_id].labels.add(label)

    def check_access(self) -> None:
        if self.access_denied:
            raise UserPermissionError(self.owner)
