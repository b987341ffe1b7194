"""Concurrency-safe get-or-create for domain and invoice folders.

The storage collaborator has no atomic get-or-create, so creation follows an
explicit double-checked locking sequence:

    1. acquire the folder-creation lock (bounded wait)
    2. look for the folder, return it if present
    3. look again, in case a concurrent creator finished meanwhile
    4. create it
    5. release the lock, whatever happened

If the lock cannot be obtained in time the same sequence runs without it.
Duplicates can then appear when the storage allows them; every caller picks
the folder with the lowest id so all of them converge on the same one.

Resolution falls back to the ``unknown`` bucket, then to the parent itself,
so an attachment is never dropped just because its folder could not be made.
"""

import logging
import uuid
from typing import Callable, Optional

from ..config import Config, RetryConfig
from ..exceptions import StorageUnavailable
from ..models import DomainFolderKey, Folder, FolderPurpose
from ..processing.sender import UNKNOWN_DOMAIN, sanitize_folder_name
from ..retry import retry_with_backoff
from .base import FolderStorage
from .locks import StoreLock
from .properties import FOLDER_LOCK_PREFIX, PropertyStore

logger = logging.getLogger(__name__)


class FolderResolver:
    """Resolve ``(parent, DomainFolderKey)`` to exactly one live folder."""

    def __init__(
        self,
        storage: FolderStorage,
        property_store: PropertyStore,
        invoices_folder_name: str = "Invoices",
        retry: Optional[RetryConfig] = None,
        lock_wait_seconds: float = 10.0,
        lock_ttl_seconds: float = 60.0,
        lock_poll_interval_seconds: float = 0.2,
        holder: Optional[str] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.storage = storage
        self.property_store = property_store
        self.invoices_folder_name = invoices_folder_name
        self.retry = retry or RetryConfig()
        self.lock_wait_seconds = lock_wait_seconds
        self.lock_ttl_ms = int(lock_ttl_seconds * 1000)
        self.lock_poll_interval_seconds = lock_poll_interval_seconds
        self.holder = holder or f"folders-{uuid.uuid4().hex[:12]}"
        self._sleep_kwargs = {"sleep": sleep} if sleep else {}

    @classmethod
    def from_config(cls, config: Config, storage: FolderStorage, property_store: PropertyStore):
        return cls(
            storage=storage,
            property_store=property_store,
            invoices_folder_name=config.invoice_detection.invoices_folder_name,
            retry=config.retry,
            lock_wait_seconds=config.folder_lock_wait_seconds,
            lock_ttl_seconds=config.folder_lock_ttl_seconds,
        )

    def resolve(self, parent: Folder, key: DomainFolderKey) -> Folder:
        """Return the folder for ``key`` under ``parent``, creating it if needed.

        Invoice keys resolve ``parent/<invoices folder>/<domain>``.

        Raises:
            StorageUnavailable: If even ``parent`` cannot be reached
        """
        name = sanitize_folder_name(key.domain)
        try:
            container = self._container(parent, key.purpose)
            return self.get_or_create(container, name)
        except Exception as e:
            logger.error(f"Could not resolve folder {name!r} ({key.purpose.value}): {e}")

        if name != UNKNOWN_DOMAIN:
            try:
                container = self._container(parent, key.purpose)
                folder = self.get_or_create(container, UNKNOWN_DOMAIN)
                logger.warning(f"Using {UNKNOWN_DOMAIN!r} bucket for domain {name!r}")
                return folder
            except Exception as e:
                logger.error(f"Could not resolve {UNKNOWN_DOMAIN!r} bucket: {e}")

        try:
            folder = self._call(lambda: self.storage.get_folder(parent.id), f"get_folder {parent.id}")
        except Exception as e:
            raise StorageUnavailable(f"Parent folder {parent.id} unreachable: {e}") from e
        logger.warning(f"Filing into parent folder {parent.name!r} for domain {name!r}")
        return folder

    def _container(self, parent: Folder, purpose: FolderPurpose) -> Folder:
        if purpose == FolderPurpose.INVOICES:
            return self.get_or_create(parent, self.invoices_folder_name)
        return parent

    def get_or_create(self, parent: Folder, name: str) -> Folder:
        """Double-checked get-or-create of ``name`` directly under ``parent``."""
        existing = self._find(parent, name)
        if existing is not None:
            return existing

        lock = StoreLock(
            self.property_store,
            f"{FOLDER_LOCK_PREFIX}:{parent.id}:{name}",
            self.holder,
            self.lock_ttl_ms,
            **self._sleep_kwargs,
        )
        with lock.hold(self.lock_wait_seconds, self.lock_poll_interval_seconds) as locked:
            if not locked:
                logger.warning(
                    f"Folder lock for {name!r} not acquired within "
                    f"{self.lock_wait_seconds}s; continuing without it"
                )

            existing = self._find(parent, name)
            if existing is not None:
                logger.debug(f"Folder {name!r} appeared while waiting for the lock")
                return existing

            created = self._call(
                lambda: self.storage.create_folder(parent, name),
                f"create_folder {name}",
            )
            logger.info(f"Created folder {name!r} in {parent.name!r}")

        if not locked:
            # Converge with any concurrent creator that also ran unlocked.
            winner = self._find(parent, name)
            if winner is not None:
                return winner
        return created

    def _find(self, parent: Folder, name: str) -> Optional[Folder]:
        matches = self._call(
            lambda: self.storage.child_folders_by_name(parent, name),
            f"child_folders_by_name {name}",
        )
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(f"{len(matches)} folders named {name!r} in {parent.name!r}; using oldest")
        return min(matches, key=lambda f: f.id)

    def _call(self, operation, description: str):
        return retry_with_backoff(operation, self.retry, description, **self._sleep_kwargs)
