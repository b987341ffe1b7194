"""Mail attachment filer - unprocessed threads in, per-domain folders out."""

# Models
from .models import (
    AttachmentMetadata,
    ClassificationDecision,
    DomainFolderKey,
    ExecutionLock,
    Folder,
    FolderPurpose,
    HistoricalPattern,
    InvoiceSignal,
    MailAttachment,
    MailMessage,
    MailThread,
    RunResult,
    RunStatus,
    SignalSource,
    SkipReason,
    StoredFile,
)

# Errors
from .exceptions import (
    ConfigurationError,
    MailfilerError,
    StorageUnavailable,
    TransientProviderError,
    TransientStorageError,
    UserPermissionError,
)

# Components
from .processing import AttachmentFilter, classify_attachment, extract_domain
from .semantic import InvoiceDecisionChain
from .storage import FolderResolver, StoreLock
from .controller import BatchRunController
from .users import UserRegistry

# Configuration
from .config import Config

__version__ = "0.1.0"

__all__ = [
    # Models
    "AttachmentMetadata",
    "ClassificationDecision",
    "DomainFolderKey",
    "ExecutionLock",
    "Folder",
    "FolderPurpose",
    "HistoricalPattern",
    "InvoiceSignal",
    "MailAttachment",
    "MailMessage",
    "MailThread",
    "RunResult",
    "RunStatus",
    "SignalSource",
    "SkipReason",
    "StoredFile",
    # Errors
    "MailfilerError",
    "ConfigurationError",
    "TransientStorageError",
    "StorageUnavailable",
    "TransientProviderError",
    "UserPermissionError",
    # Components
    "AttachmentFilter",
    "classify_attachment",
    "extract_domain",
    "InvoiceDecisionChain",
    "FolderResolver",
    "StoreLock",
    "BatchRunController",
    "UserRegistry",
    "Config",
]
