"""Gmail mailbox over IMAP with OAuth2 and the Gmail IMAP extensions."""

import imaplib
import logging
import re
import shlex
import ssl
from typing import Optional

import requests

from ..exceptions import UserPermissionError
from ..models import MailThread
from ..processing.email_parser import EmailParser
from .base import Mailbox

logger = logging.getLogger(__name__)

ALL_MAIL = '"[Gmail]/All Mail"'

_THRID_PATTERN = re.compile(rb"X-GM-THRID (\d+)")
_UID_PATTERN = re.compile(rb"UID (\d+)")
_LABELS_PATTERN = re.compile(rb"X-GM-LABELS \((.*?)\)(?: |\)|$)")


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_labels(raw: bytes) -> set[str]:
    try:
        return {label for label in shlex.split(raw.decode("utf-8", errors="ignore")) if label}
    except ValueError:
        return set(raw.decode("utf-8", errors="ignore").split())


class GmailMailbox(Mailbox):
    """Gmail mailbox using IMAP with XOAUTH2.

    Threads come from ``X-GM-THRID``, search from ``X-GM-RAW`` (Gmail search
    syntax) and labels from ``X-GM-LABELS``.
    """

    def __init__(
        self,
        email_address: str,
        access_token: str,
        client_id: str = None,
        client_secret: str = None,
        refresh_token: str = None,
    ):
        """Initialize Gmail mailbox.

        Args:
            email_address: Gmail email address
            access_token: OAuth2 access token
            client_id: OAuth2 client ID (for token refresh)
            client_secret: OAuth2 client secret (for token refresh)
            refresh_token: OAuth2 refresh token (for token refresh)
        """
        self.email_address = email_address
        self.access_token = access_token
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self._imap: Optional[imaplib.IMAP4_SSL] = None

    def _connect(self):
        """Connect to Gmail IMAP and select All Mail if not already connected."""
        if self._imap is not None:
            return

        imap = imaplib.IMAP4_SSL("imap.gmail.com", ssl_context=ssl.create_default_context())
        auth_string = f"user={self.email_address}\x01auth=Bearer {self.access_token}\x01\x01"
        try:
            imap.authenticate("XOAUTH2", lambda x: auth_string)
        except imaplib.IMAP4.error as e:
            raise UserPermissionError(self.email_address, f"IMAP authentication failed: {e}") from e

        status, _ = imap.select(ALL_MAIL)
        if status != "OK":
            raise UserPermissionError(self.email_address, "cannot select All Mail")
        self._imap = imap

    def _uid(self, command: str, *args):
        status, data = self._imap.uid(command, *args)
        if status != "OK":
            raise Exception(f"IMAP UID {command} failed: {status}")
        return data

    def _search_uids(self, *criteria: str) -> list[bytes]:
        data = self._uid("SEARCH", *criteria)
        return data[0].split() if data and data[0] else []

    def _thread_uids(self, thread_id: str) -> list[bytes]:
        return self._search_uids("X-GM-THRID", thread_id)

    def search(self, query: str, offset: int, limit: int, oldest_first: bool = False) -> list[MailThread]:
        """Search threads and load the requested page.

        A thread sorts by its highest matching UID (UIDs ascend with arrival).
        """
        self._connect()

        uids = self._search_uids("X-GM-RAW", _quote(query))
        if not uids:
            return []

        latest: dict[str, int] = {}
        data = self._uid("FETCH", b",".join(uids).decode(), "(X-GM-THRID)")
        for item in data:
            header = item[0] if isinstance(item, tuple) else item
            if not isinstance(header, bytes):
                continue
            thrid, uid = _THRID_PATTERN.search(header), _UID_PATTERN.search(header)
            if thrid and uid:
                thread_id = thrid.group(1).decode()
                latest[thread_id] = max(latest.get(thread_id, 0), int(uid.group(1)))

        thread_ids = sorted(latest, key=latest.__getitem__, reverse=not oldest_first)
        return [self._load_thread(thrid) for thrid in thread_ids[offset:offset + limit]]

    def _load_thread(self, thread_id: str) -> MailThread:
        messages = []
        labels: set[str] = set()

        for uid in self._thread_uids(thread_id):
            data = self._uid("FETCH", uid.decode(), "(X-GM-LABELS RFC822)")
            for item in data:
                if not isinstance(item, tuple) or len(item) < 2:
                    continue
                header, rfc822_data = item[0], item[1]
                label_match = _LABELS_PATTERN.search(header)
                message_labels = _parse_labels(label_match.group(1)) if label_match else set()
                labels |= message_labels
                messages.append(EmailParser.parse(rfc822_data, uid.decode(), message_labels))

        messages.sort(key=lambda m: m.date)
        return MailThread(id=thread_id, messages=messages, labels=labels)

    def thread_labels(self, thread_id: str) -> set[str]:
        self._connect()
        uids = self._thread_uids(thread_id)
        if not uids:
            return set()

        labels: set[str] = set()
        data = self._uid("FETCH", b",".join(uids).decode(), "(X-GM-LABELS)")
        for item in data:
            header = item[0] if isinstance(item, tuple) else item
            if not isinstance(header, bytes):
                continue
            match = _LABELS_PATTERN.search(header)
            if match:
                labels |= _parse_labels(match.group(1))
        return labels

    def add_label(self, thread_id: str, label: str) -> None:
        self._connect()
        uids = self._thread_uids(thread_id)
        if not uids:
            logger.warning(f"Thread {thread_id} has no messages to label")
            return
        self._uid("STORE", b",".join(uids).decode(), "+X-GM-LABELS", f"({_quote(label)})")
        logger.debug(f"Labeled thread {thread_id} with {label!r}")

    def check_access(self) -> None:
        self._connect()

    def close(self):
        """Close IMAP connection."""
        if self._imap is not None:
            try:
                self._imap.close()
                self._imap.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"Ignoring error while closing IMAP connection: {e}")
            self._imap = None

    def refresh_access_token(self) -> str:
        """Refresh OAuth2 access token.

        Returns:
            str: New access token

        Raises:
            UserPermissionError: If credentials are missing or the refresh is rejected
        """
        if not self.refresh_token or not self.client_id or not self.client_secret:
            raise UserPermissionError(self.email_address, "missing OAuth2 credentials for token refresh")

        token_url = "https://oauth2.googleapis.com/token"
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": self.refresh_token,
            "grant_type": "refresh_token",
        }

        response = requests.post(token_url, data=data, timeout=30)
        if response.status_code in (400, 401, 403):
            raise UserPermissionError(self.email_address, f"token refresh rejected ({response.status_code})")
        response.raise_for_status()

        new_token = response.json()["access_token"]
        self.access_token = new_token
        return new_token
