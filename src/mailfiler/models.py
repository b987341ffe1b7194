"""Pydantic models shared across classification, filing and run control."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Classification Models
# ============================================================================


class SkipReason(str, Enum):
    """Why the classifier kept or skipped an attachment."""

    MIME_WHITELISTED = "mime_whitelisted"
    INLINE_DISPOSITION = "inline_disposition"
    EMBEDDED_URL_PATTERN = "embedded_url_pattern"
    EMBEDDED_NAME_PATTERN = "embedded_name_pattern"
    EMBEDDED_REGEX_PATTERN = "embedded_regex_pattern"
    NO_EXTENSION_SMALL = "no_extension_small"
    SKIPPED_EXTENSION = "skipped_extension"
    SMALL_IMAGE = "small_image"
    KEPT = "kept"


class AttachmentMetadata(BaseModel):
    """Attachment facts the classifier looks at. Derived once per run."""

    name: str
    size_bytes: int
    mime_type: str
    content_disposition: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ClassificationDecision(BaseModel):
    """Keep/skip verdict for one attachment."""

    skip: bool
    reason: SkipReason
    detail: Optional[str] = Field(None, description="Pattern or extension that fired")

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Folder Models
# ============================================================================


class FolderPurpose(str, Enum):
    ATTACHMENTS = "attachments"
    INVOICES = "invoices"


class DomainFolderKey(BaseModel):
    """Lookup key for the folder resolver's get-or-create."""

    domain: str
    purpose: FolderPurpose = FolderPurpose.ATTACHMENTS

    model_config = ConfigDict(frozen=True)


class Folder(BaseModel):
    """Handle to a folder in the storage collaborator."""

    id: str
    name: str
    parent_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class StoredFile(BaseModel):
    """Handle to a file in the storage collaborator."""

    id: str
    name: str
    folder_id: str
    size_bytes: int
    content_type: str = "application/octet-stream"


# ============================================================================
# Mailbox Models
# ============================================================================


class MailAttachment(BaseModel):
    """Attachment with raw bytes as read from the mailbox."""

    filename: str
    content_type: str
    data: bytes
    size_bytes: int
    content_disposition: Optional[str] = None

    def metadata(self) -> AttachmentMetadata:
        return AttachmentMetadata(
            name=self.filename,
            size_bytes=self.size_bytes,
            mime_type=self.content_type,
            content_disposition=self.content_disposition,
        )


class MailMessage(BaseModel):
    """One message inside a conversation thread."""

    id: str
    from_address: str
    subject: str = ""
    body_text: Optional[str] = None
    date: datetime
    attachments: list[MailAttachment] = Field(default_factory=list)
    labels: set[str] = Field(default_factory=set)


class MailThread(BaseModel):
    """Conversation thread as returned by a mailbox search."""

    id: str
    messages: list[MailMessage] = Field(default_factory=list)
    labels: set[str] = Field(default_factory=set)

    @property
    def last_message_date(self) -> Optional[datetime]:
        if not self.messages:
            return None
        return max(message.date for message in self.messages)

    @property
    def has_attachments(self) -> bool:
        return any(message.attachments for message in self.messages)


# ============================================================================
# Invoice Detection Models
# ============================================================================


class SignalSource(str, Enum):
    AI_CONFIDENCE = "ai_confidence"
    KEYWORD = "keyword"
    SENDER_LIST = "sender_list"


class InvoiceSignal(BaseModel):
    """Result of one strategy in the invoice decision chain."""

    source: SignalSource
    matched: bool
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    provider: Optional[str] = None


class HistoricalPattern(BaseModel):
    """Descriptive summary of prior confirmed invoices from one sender."""

    sender: str
    sample_size: int
    common_prefix: Optional[str] = None
    common_suffix: Optional[str] = None
    has_invoice_keywords: bool = False
    has_numeric_tokens: bool = False
    frequency: Optional[str] = None  # "weekly", "monthly", ..., "irregular"
    average_interval_days: Optional[float] = None
    same_day_of_month: bool = False
    day_of_month: Optional[int] = None


# ============================================================================
# Locking Models
# ============================================================================


class ExecutionLock(BaseModel):
    """Process-wide lock record. Stored as {"user": ..., "timestamp": ...}."""

    holder: str = Field(alias="user")
    acquired_at_epoch_ms: int = Field(alias="timestamp")
    max_hold_ms: int = Field(0, exclude=True)

    model_config = ConfigDict(populate_by_name=True)

    def is_expired(self, now_ms: int) -> bool:
        return now_ms - self.acquired_at_epoch_ms > self.max_hold_ms


# ============================================================================
# Run Models
# ============================================================================


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CONFIG_ERROR = "config_error"
    FAILED = "failed"


class RunResult(BaseModel):
    """Aggregate outcome of one controller run."""

    status: RunStatus
    success: bool
    message: Optional[str] = None
    users_processed: int = 0
    threads_scanned: int = 0
    threads_processed: int = 0
    threads_with_saved_attachments: int = 0
    attachments_seen: int = 0
    attachments_skipped: int = 0
    attachments_saved: int = 0
    attachments_duplicate: int = 0
    invoice_copies_saved: int = 0
    errors: list[dict] = Field(default_factory=list)  # [{"thread": str, "error": str}, ...]
    duration_sec: float = 0.0
    classification_time_sec: float = 0.0
    folder_time_sec: float = 0.0
    invoice_detection_time_sec: float = 0.0
    upload_time_sec: float = 0.0

    def merge(self, other: "RunResult") -> None:
        """Add another result's counters into this one."""
        for field in (
            "threads_scanned",
            "threads_processed",
            "threads_with_saved_attachments",
            "attachments_seen",
            "attachments_skipped",
            "attachments_saved",
            "attachments_duplicate",
            "invoice_copies_saved",
        ):
            setattr(self, field, getattr(self, field) + getattr(other, field))
        for field in (
            "classification_time_sec",
            "folder_time_sec",
            "invoice_detection_time_sec",
            "upload_time_sec",
        ):
            setattr(self, field, getattr(self, field) + getattr(other, field))
        self.errors.extend(other.errors)
