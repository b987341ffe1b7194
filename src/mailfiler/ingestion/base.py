"""Abstract base class for mailbox access."""

from abc import ABC, abstractmethod

from ..models import MailThread


def unprocessed_query(processed_label: str) -> str:
    """Search for threads that have an attachment and lack the processed label."""
    return f"has:attachment -label:{processed_label}"


def confirmed_invoices_query(sender: str, confirmed_label: str) -> str:
    """Search for a sender's messages manually labeled as invoices."""
    return f"from:{sender} label:{confirmed_label}"


class Mailbox(ABC):
    """Abstract interface for reading threads and marking them processed."""

    @abstractmethod
    def search(self, query: str, offset: int, limit: int, oldest_first: bool = False) -> list[MailThread]:
        """Search threads using Gmail search syntax.

        Threads are ordered by their latest matching message, newest first
        unless ``oldest_first`` is set. Paging follows the same order.

        Args:
            query: Search string (``has:attachment``, ``label:``, ``-label:``, ``from:``)
            offset: Number of matching threads to skip
            limit: Maximum number of threads to return
            oldest_first: Page from the oldest end

        Returns:
            list[MailThread]: Threads with their messages and attachments
        """
        pass

    @abstractmethod
    def thread_labels(self, thread_id: str) -> set[str]:
        """Current labels of a thread, read fresh from the mailbox."""
        pass

    @abstractmethod
    def add_label(self, thread_id: str, label: str) -> None:
        """Apply ``label`` to every message of a thread. Idempotent."""
        pass

    def check_access(self) -> None:
        """Make sure the mailbox can be read.

        Raises:
            UserPermissionError: If access is denied
        """
        pass

    def close(self):
        """Close the connection."""
        pass
