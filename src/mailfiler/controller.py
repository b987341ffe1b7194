"""Batch run controller - unprocessed threads in, filed attachments out.

One run:

    1. validate the configuration (no lock taken on failure)
    2. take the execution lock, or return "skipped"
    3. fetch unprocessed threads, oldest first
    4. classify, file and (maybe) invoice-file every attachment
    5. label each thread that had attachments
    6. stop after ``batch_size`` threads yielded a kept attachment
    7. release the lock on every exit path
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import Config
from .exceptions import ConfigurationError, UserPermissionError
from .ingestion.base import Mailbox, unprocessed_query
from .metrics import MetricsCollector
from .models import (
    DomainFolderKey,
    Folder,
    FolderPurpose,
    MailAttachment,
    MailMessage,
    MailThread,
    RunResult,
    RunStatus,
)
from .processing.attachment_filter import AttachmentFilter
from .processing.sender import extract_domain
from .retry import retry_with_backoff
from .semantic.chain import InvoiceDecisionChain
from .semantic.rules import attachment_looks_like_invoice
from .storage.base import FolderStorage
from .storage.folders import FolderResolver
from .storage.locks import execution_lock, now_ms
from .storage.properties import PropertyStore
from .users import UserRegistry

logger = logging.getLogger(__name__)

SKIPPED = "skipped"
SAVED = "saved"
DUPLICATE = "duplicate"

_STAGE_FIELDS = {
    "classification": "classification_time_sec",
    "folder": "folder_time_sec",
    "invoice_detection": "invoice_detection_time_sec",
    "upload": "upload_time_sec",
}
_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class BatchRunController:
    """Drives classifier -> folder resolver -> invoice chain for one mailbox."""

    def __init__(
        self,
        config: Config,
        mailbox: Optional[Mailbox],
        storage: FolderStorage,
        property_store: PropertyStore,
        chain_factory: Optional[Callable[[Mailbox], InvoiceDecisionChain]] = None,
        attachment_filter: Optional[AttachmentFilter] = None,
        resolver: Optional[FolderResolver] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the controller.

        Args:
            config: Application configuration
            mailbox: Mailbox for single-user runs (None when only ``run_for_users`` is used)
            storage: Folder store attachments are filed into
            property_store: Holds locks, the user registry and API keys
            chain_factory: Builds the invoice chain for a mailbox
            attachment_filter: Classifier (built from config if omitted)
            resolver: Folder resolver (built from config if omitted)
            clock: Epoch-ms clock used by the execution lock
            sleep: Injected for tests
        """
        self.config = config
        self.mailbox = mailbox
        self.storage = storage
        self.property_store = property_store
        self.chain_factory = chain_factory or (
            lambda mb: InvoiceDecisionChain.from_config(config, property_store, mb)
        )
        self.attachment_filter = attachment_filter or AttachmentFilter(config.attachment_filter)
        self.resolver = resolver or FolderResolver.from_config(config, storage, property_store)
        self.clock = clock
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self) -> RunResult:
        """Process the configured mailbox once. Never raises."""
        if self.mailbox is None:
            return RunResult(status=RunStatus.CONFIG_ERROR, success=False, message="No mailbox configured")
        return self._locked_run(lambda: self.process_mailbox(self.mailbox))

    def run_for_users(
        self,
        registry: UserRegistry,
        mailbox_factory: Callable[[str], Mailbox],
    ) -> RunResult:
        """Process every registered user under one execution lock. Never raises."""
        return self._locked_run(lambda: self._process_users(registry, mailbox_factory))

    def _locked_run(self, body: Callable[[], RunResult]) -> RunResult:
        start = time.perf_counter()

        try:
            self.config.validate(self.property_store)
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return RunResult(status=RunStatus.CONFIG_ERROR, success=False, message=str(e))
        except Exception as e:
            logger.error(f"Could not validate configuration: {e}")
            return RunResult(status=RunStatus.FAILED, success=False, message=str(e))

        holder = f"mailfiler-{uuid.uuid4().hex[:12]}"
        lock = execution_lock(
            self.property_store, holder, self.config.execution_lock_ms, clock=self.clock, sleep=self.sleep
        )
        try:
            acquired = lock.acquire(self.config.lock_wait_seconds, self.config.lock_poll_interval_seconds)
        except Exception as e:
            logger.error(f"Could not read execution lock: {e}")
            return RunResult(status=RunStatus.FAILED, success=False, message=f"Lock error: {e}")

        if not acquired:
            current = lock.current()
            owner = current.holder if current else "another run"
            logger.info(f"Execution lock held by {owner}; skipping this run")
            return RunResult(
                status=RunStatus.SKIPPED,
                success=True,
                message=f"Another run is in progress ({owner})",
            )

        try:
            result = body()
        except Exception as e:
            logger.exception(f"Run failed: {e}")
            result = RunResult(status=RunStatus.FAILED, success=False, message=str(e))
        finally:
            lock.release()

        result.duration_sec = time.perf_counter() - start
        logger.info(
            f"Run {result.status.value}: {result.threads_processed} threads, "
            f"{result.attachments_saved} saved, {result.attachments_skipped} skipped, "
            f"{result.attachments_duplicate} duplicates, {len(result.errors)} errors "
            f"in {result.duration_sec:.2f}s"
        )
        return result

    def _process_users(self, registry: UserRegistry, mailbox_factory: Callable[[str], Mailbox]) -> RunResult:
        total = RunResult(status=RunStatus.COMPLETED, success=True)
        registry.clear_access_cache()
        users = registry.list()
        if not users:
            total.message = "No registered users"
            return total

        for user in users:
            mailbox = None
            try:
                mailbox = mailbox_factory(user)
                allowed = registry.cached_access(user)
                if allowed is None:
                    mailbox.check_access()
                    registry.record_access(user, True)
                elif not allowed:
                    logger.info(f"Skipping {user}: mailbox access denied earlier in this run")
                    continue

                logger.info(f"Processing mailbox of {user}")
                result = self.process_mailbox(mailbox)
                total.merge(result)
                total.users_processed += 1
            except UserPermissionError as e:
                logger.warning(f"No access to mailbox of {user}: {e}")
                registry.record_access(user, False)
                total.errors.append({"user": user, "error": str(e)})
            except Exception as e:
                logger.error(f"Failed to process {user}: {e}")
                total.errors.append({"user": user, "error": str(e)})
            finally:
                if mailbox is not None:
                    mailbox.close()

        return total

    # ------------------------------------------------------------------
    # Mailbox processing
    # ------------------------------------------------------------------

    def process_mailbox(self, mailbox: Mailbox) -> RunResult:
        """Process one mailbox. Callers hold the execution lock."""
        result = RunResult(status=RunStatus.COMPLETED, success=True)
        metrics = MetricsCollector()
        chain = self.chain_factory(mailbox)

        root = retry_with_backoff(
            lambda: self.storage.get_folder(self.config.main_folder_id),
            self.config.retry,
            f"get_folder {self.config.main_folder_id}",
            sleep=self.sleep,
        )

        threads = self.fetch_candidates(mailbox)
        result.threads_scanned = len(threads)
        logger.info(f"Found {len(threads)} unprocessed threads with attachments")

        batch_size = self.config.batch_size
        threads_with_kept = 0
        for start in range(0, len(threads), batch_size):
            batch = threads[start:start + batch_size]
            logger.info(f"Processing batch {start // batch_size + 1} ({len(batch)} threads)")

            for thread in batch:
                if threads_with_kept >= batch_size:
                    break
                try:
                    if self._process_thread(mailbox, thread, root, chain, result, metrics):
                        threads_with_kept += 1
                except Exception as e:
                    logger.error(f"Thread {thread.id} failed: {e}")
                    result.errors.append({"thread": thread.id, "error": str(e)})

            if threads_with_kept >= batch_size:
                logger.info(f"Reached {batch_size} threads with kept attachments; stopping")
                break

        for stage, field in _STAGE_FIELDS.items():
            setattr(result, field, metrics.total(stage))
        return result

    def fetch_candidates(self, mailbox: Mailbox) -> list[MailThread]:
        """The oldest ``max_threads_scanned`` unprocessed threads, oldest first.

        Paging starts at the oldest end so a backlog larger than the cap
        drains in order instead of being crowded out by new mail.
        """
        query = unprocessed_query(self.config.processed_label)
        threads: list[MailThread] = []
        offset = 0

        while len(threads) < self.config.max_threads_scanned:
            limit = min(self.config.page_size, self.config.max_threads_scanned - len(threads))
            page = mailbox.search(query, offset, limit, oldest_first=True)
            if not page:
                break
            threads.extend(page)
            offset += len(page)
            if len(page) < limit:
                break

        threads.sort(key=lambda t: t.last_message_date or _OLDEST)
        return threads

    def _process_thread(
        self,
        mailbox: Mailbox,
        thread: MailThread,
        root: Folder,
        chain: InvoiceDecisionChain,
        result: RunResult,
        metrics: MetricsCollector,
    ) -> bool:
        """Handle one thread. Returns True if any attachment was kept."""
        label = self.config.processed_label
        if label in mailbox.thread_labels(thread.id):
            logger.debug(f"Thread {thread.id} already labeled {label!r}")
            return False

        result.threads_processed += 1
        had_attachments = kept_any = saved_any = False

        for message in thread.messages:
            for attachment in message.attachments:
                had_attachments = True
                result.attachments_seen += 1
                try:
                    outcome = self._process_attachment(message, attachment, root, chain, result, metrics)
                except Exception as e:
                    logger.error(f"Attachment {attachment.filename!r} in message {message.id} failed: {e}")
                    result.errors.append(
                        {"thread": thread.id, "attachment": attachment.filename, "error": str(e)}
                    )
                    continue
                kept_any = kept_any or outcome != SKIPPED
                saved_any = saved_any or outcome == SAVED

        if saved_any:
            result.threads_with_saved_attachments += 1

        # Labeled even when every attachment was filtered out.
        if had_attachments:
            try:
                mailbox.add_label(thread.id, label)
            except Exception as e:
                logger.error(f"Could not label thread {thread.id}: {e}")
                result.errors.append({"thread": thread.id, "error": f"label: {e}"})

        return kept_any

    def _process_attachment(
        self,
        message: MailMessage,
        attachment: MailAttachment,
        root: Folder,
        chain: InvoiceDecisionChain,
        result: RunResult,
        metrics: MetricsCollector,
    ) -> str:
        with metrics.timed("classification"):
            decision = self.attachment_filter.classify_metadata(attachment.metadata())
        if decision.skip:
            result.attachments_skipped += 1
            logger.info(
                f"Skipped {attachment.filename!r} ({attachment.size_bytes} bytes): "
                f"{decision.reason.value}" + (f" [{decision.detail}]" if decision.detail else "")
            )
            return SKIPPED

        domain = extract_domain(message.from_address)
        with metrics.timed("folder"):
            folder = self.resolver.resolve(root, DomainFolderKey(domain=domain))
        with metrics.timed("upload"):
            saved = self._persist(folder, attachment)
        if saved:
            result.attachments_saved += 1
        else:
            result.attachments_duplicate += 1

        if self._wants_invoice_copy(message, attachment, chain, metrics):
            with metrics.timed("folder"):
                invoice_folder = self.resolver.resolve(
                    root, DomainFolderKey(domain=domain, purpose=FolderPurpose.INVOICES)
                )
            with metrics.timed("upload"):
                if self._persist(invoice_folder, attachment):
                    result.invoice_copies_saved += 1

        return SAVED if saved else DUPLICATE

    def _wants_invoice_copy(
        self,
        message: MailMessage,
        attachment: MailAttachment,
        chain: InvoiceDecisionChain,
        metrics: MetricsCollector,
    ) -> bool:
        detection = self.config.invoice_detection
        with metrics.timed("invoice_detection"):
            if chain.is_invoice(message, message.attachments):
                return True
        if detection.file_invoice_named_attachments and attachment_looks_like_invoice(
            attachment, detection.keywords
        ):
            logger.info(f"{attachment.filename!r} looks like an invoice by name")
            return True
        return False

    def _persist(self, folder: Folder, attachment: MailAttachment) -> bool:
        """Store ``attachment`` unless a file with the same name and size exists."""
        existing = retry_with_backoff(
            lambda: self.storage.files_by_name(folder, attachment.filename),
            self.config.retry,
            f"files_by_name {attachment.filename}",
            sleep=self.sleep,
        )
        if any(f.size_bytes == attachment.size_bytes for f in existing):
            logger.info(f"Duplicate {attachment.filename!r} already in {folder.name!r}")
            return False

        stored = retry_with_backoff(
            lambda: self.storage.create_file(
                folder, attachment.filename, attachment.data, attachment.content_type
            ),
            self.config.retry,
            f"create_file {attachment.filename}",
            sleep=self.sleep,
        )
        logger.info(f"Saved {stored.name!r} ({stored.size_bytes} bytes) to {folder.name!r}")
        return True
