"""Configuration management for the mailfiler application."""

import os
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .exceptions import ConfigurationError

GEMINI_API_KEY_PROPERTY = "GEMINI_API_KEY"
OPENAI_API_KEY_PROPERTY = "OPENAI_API_KEY"

DETECTION_METHODS = ("gemini", "openai", "email")
STORAGE_BACKENDS = ("memory", "filesystem", "s3")


def _split_list(value: Optional[str], coerce_lower: bool = True) -> list[str]:
    """Turn a comma/semicolon separated env string into a cleaned list."""
    if not value:
        return []
    items = []
    for item in re.split(r"[;,]", value):
        trimmed = item.strip()
        if not trimmed:
            continue
        items.append(trimmed.lower() if coerce_lower else trimmed)
    return items


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: Sequence[str], coerce_lower: bool = True) -> list[str]:
    raw = os.getenv(name)
    if raw is None:
        return list(default)
    return _split_list(raw, coerce_lower=coerce_lower)


def _extensions(values: Sequence[str]) -> list[str]:
    """Normalize extensions to lowercase with a leading dot."""
    return [v if v.startswith(".") else f".{v}" for v in (x.lower() for x in values)]


@dataclass
class AttachmentFilterConfig:
    """Knobs for the attachment classifier."""

    skip_small_images: bool = True
    small_image_max_size: int = 20000
    small_image_extensions: list[str] = field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp"]
    )
    skip_file_types: list[str] = field(default_factory=lambda: [".ics", ".vcf"])

    @classmethod
    def from_env(cls) -> "AttachmentFilterConfig":
        defaults = cls()
        return cls(
            skip_small_images=_env_bool("SKIP_SMALL_IMAGES", defaults.skip_small_images),
            small_image_max_size=int(
                os.getenv("SMALL_IMAGE_MAX_SIZE", str(defaults.small_image_max_size))
            ),
            small_image_extensions=_extensions(
                _env_list("SMALL_IMAGE_EXTENSIONS", defaults.small_image_extensions)
            ),
            skip_file_types=_extensions(_env_list("SKIP_FILE_TYPES", defaults.skip_file_types)),
        )


@dataclass
class InvoiceDetectionConfig:
    """Settings for the invoice decision chain."""

    enabled: bool = False
    method: str = "gemini"  # "gemini", "openai" or "email"
    ai_confidence_threshold: float = 0.9
    keywords: list[str] = field(
        default_factory=lambda: [
            "invoice",
            "factura",
            "receipt",
            "recibo",
            "bill",
            "payment",
            "pago",
        ]
    )
    fallback_to_keywords: bool = True
    only_analyze_pdfs: bool = True
    strict_pdf_check: bool = False
    skip_ai_for_domains: list[str] = field(default_factory=list)
    invoice_senders: list[str] = field(default_factory=list)
    invoices_folder_name: str = "Invoices"
    file_invoice_named_attachments: bool = True

    # Historical patterns
    use_historical_patterns: bool = True
    confirmed_invoice_label: str = "Invoice"
    max_history_messages: int = 10

    # Providers
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_timeout_sec: float = 20.0
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-3.5-turbo"
    openai_timeout_sec: float = 20.0
    openai_max_body_chars: int = 4000

    @classmethod
    def from_env(cls) -> "InvoiceDetectionConfig":
        defaults = cls()
        return cls(
            enabled=_env_bool("INVOICE_DETECTION_ENABLED", defaults.enabled),
            method=os.getenv("INVOICE_DETECTION_METHOD", defaults.method).strip().lower(),
            ai_confidence_threshold=float(
                os.getenv("AI_CONFIDENCE_THRESHOLD", str(defaults.ai_confidence_threshold))
            ),
            keywords=_env_list("INVOICE_KEYWORDS", defaults.keywords),
            fallback_to_keywords=_env_bool("FALLBACK_TO_KEYWORDS", defaults.fallback_to_keywords),
            only_analyze_pdfs=_env_bool("ONLY_ANALYZE_PDFS", defaults.only_analyze_pdfs),
            strict_pdf_check=_env_bool("STRICT_PDF_CHECK", defaults.strict_pdf_check),
            skip_ai_for_domains=_env_list("SKIP_AI_FOR_DOMAINS", defaults.skip_ai_for_domains),
            invoice_senders=_env_list("INVOICE_SENDERS", defaults.invoice_senders),
            invoices_folder_name=os.getenv("INVOICES_FOLDER_NAME", defaults.invoices_folder_name),
            file_invoice_named_attachments=_env_bool(
                "FILE_INVOICE_NAMED_ATTACHMENTS", defaults.file_invoice_named_attachments
            ),
            use_historical_patterns=_env_bool(
                "USE_HISTORICAL_PATTERNS", defaults.use_historical_patterns
            ),
            confirmed_invoice_label=os.getenv(
                "CONFIRMED_INVOICE_LABEL", defaults.confirmed_invoice_label
            ),
            max_history_messages=int(
                os.getenv("MAX_HISTORY_MESSAGES", str(defaults.max_history_messages))
            ),
            gemini_api_key=os.getenv("GEMINI_API_KEY") or None,
            gemini_model=os.getenv("GEMINI_MODEL", defaults.gemini_model),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
            openai_max_body_chars=int(
                os.getenv("OPENAI_MAX_BODY_CHARS", str(defaults.openai_max_body_chars))
            ),
        )


@dataclass
class RetryConfig:
    """Exponential backoff for storage calls."""

    max_attempts: int = 3
    initial_delay_sec: float = 1.0
    max_delay_sec: float = 10.0

    @classmethod
    def from_env(cls) -> "RetryConfig":
        defaults = cls()
        return cls(
            max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", str(defaults.max_attempts))),
            initial_delay_sec=float(
                os.getenv("RETRY_INITIAL_DELAY_SEC", str(defaults.initial_delay_sec))
            ),
            max_delay_sec=float(os.getenv("RETRY_MAX_DELAY_SEC", str(defaults.max_delay_sec))),
        )


@dataclass
class Config:
    """Application configuration, passed explicitly into every component."""

    # Storage root
    main_folder_id: str

    # Mailbox
    processed_label: str = "GDrive_Processed"
    gmail_email: Optional[str] = None
    gmail_access_token: Optional[str] = None
    gmail_refresh_token: Optional[str] = None
    google_oauth2_client_id: Optional[str] = None
    google_oauth2_client_secret: Optional[str] = None

    # Batching
    batch_size: int = 10
    page_size: int = 100
    max_threads_scanned: int = 500

    # Locks
    execution_lock_minutes: int = 30
    lock_wait_seconds: float = 30.0
    folder_lock_wait_seconds: float = 10.0
    folder_lock_ttl_seconds: float = 60.0
    lock_poll_interval_seconds: float = 0.5

    # Storage backend
    storage_backend: str = "filesystem"
    storage_dir: str = "attachments"
    s3_endpoint: Optional[str] = None
    s3_bucket: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    # Property store (PostgreSQL); in-memory when unset
    database_url: Optional[str] = None

    attachment_filter: AttachmentFilterConfig = field(default_factory=AttachmentFilterConfig)
    invoice_detection: InvoiceDetectionConfig = field(default_factory=InvoiceDetectionConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)

    @property
    def execution_lock_ms(self) -> int:
        return self.execution_lock_minutes * 60 * 1000

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config: Configuration object

        Raises:
            ConfigurationError: If required environment variables are missing
        """
        required_vars = ["MAILFILER_MAIN_FOLDER_ID"]

        missing = [var for var in required_vars if not os.getenv(var)]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        return cls(
            main_folder_id=os.getenv("MAILFILER_MAIN_FOLDER_ID"),
            processed_label=os.getenv("MAILFILER_PROCESSED_LABEL", "GDrive_Processed"),
            gmail_email=os.getenv("GMAIL_EMAIL"),
            gmail_access_token=os.getenv("GMAIL_ACCESS_TOKEN"),
            gmail_refresh_token=os.getenv("GMAIL_REFRESH_TOKEN"),
            google_oauth2_client_id=os.getenv("GOOGLE_OAUTH2_CLIENT_ID"),
            google_oauth2_client_secret=os.getenv("GOOGLE_OAUTH2_CLIENT_SECRET"),
            batch_size=int(os.getenv("MAILFILER_BATCH_SIZE", "10")),
            page_size=int(os.getenv("MAILFILER_PAGE_SIZE", "100")),
            max_threads_scanned=int(os.getenv("MAILFILER_MAX_THREADS_SCANNED", "500")),
            execution_lock_minutes=int(os.getenv("MAILFILER_EXECUTION_LOCK_MINUTES", "30")),
            lock_wait_seconds=float(os.getenv("MAILFILER_LOCK_WAIT_SECONDS", "30")),
            folder_lock_wait_seconds=float(os.getenv("MAILFILER_FOLDER_LOCK_WAIT_SECONDS", "10")),
            storage_backend=os.getenv("STORAGE_BACKEND", "filesystem").strip().lower(),
            storage_dir=os.getenv("STORAGE_DIR", "attachments"),
            s3_endpoint=os.getenv("S3_ENDPOINT"),
            s3_bucket=os.getenv("S3_BUCKET"),
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            database_url=os.getenv("DATABASE_URL"),
            attachment_filter=AttachmentFilterConfig.from_env(),
            invoice_detection=InvoiceDetectionConfig.from_env(),
            retry=RetryConfig.from_env(),
        )

    def resolve_api_key(self, provider: str, property_store=None) -> Optional[str]:
        """Find a provider API key in config first, then in the property store."""
        detection = self.invoice_detection
        if provider == "gemini":
            explicit, property_key = detection.gemini_api_key, GEMINI_API_KEY_PROPERTY
        elif provider == "openai":
            explicit, property_key = detection.openai_api_key, OPENAI_API_KEY_PROPERTY
        else:
            return None

        if explicit:
            return explicit
        if property_store is not None:
            return property_store.get(property_key) or None
        return None

    def validate(self, property_store=None) -> None:
        """Check the run can start.

        Raises:
            ConfigurationError: On the first problem found
        """
        if not self.main_folder_id:
            raise ConfigurationError("main_folder_id is required")
        if not self.processed_label:
            raise ConfigurationError("processed_label is required")
        if self.batch_size < 1:
            raise ConfigurationError("batch_size must be at least 1")
        if self.page_size < 1:
            raise ConfigurationError("page_size must be at least 1")
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ConfigurationError(f"Unknown storage backend: {self.storage_backend}")

        detection = self.invoice_detection
        if not detection.enabled:
            return
        if detection.method not in DETECTION_METHODS:
            raise ConfigurationError(f"Unknown invoice detection method: {detection.method}")
        if not 0.0 <= detection.ai_confidence_threshold <= 1.0:
            raise ConfigurationError("ai_confidence_threshold must be within [0, 1]")
        if detection.method in ("gemini", "openai"):
            if not self.resolve_api_key(detection.method, property_store):
                raise ConfigurationError(
                    f"{detection.method} API key not found in config or property store"
                )
