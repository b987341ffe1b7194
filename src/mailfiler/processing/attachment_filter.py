"""Attachment classifier: decides which attachments are real content.

Rules are evaluated in a fixed order and the first match wins. The order
matters: the MIME whitelist overrides every name heuristic, and the document
extension allow-list overrides every size heuristic.
"""

import logging
import os
import re
from typing import Callable, Optional

from ..config import AttachmentFilterConfig
from ..models import AttachmentMetadata, ClassificationDecision, SkipReason

logger = logging.getLogger(__name__)

WHITELISTED_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "application/zip",
        "application/x-zip-compressed",
        "application/x-rar-compressed",
        "application/vnd.rar",
        "application/x-7z-compressed",
        "text/csv",
        "text/plain",
        "application/json",
    }
)

EMBEDDED_URL_MARKERS = (
    "view=fimg",
    "disp=emb",
    "cid=",
    "realattid=",
    "googleusercontent.com",
    "ggpht.com",
    "mail.google.com/mail",
    "attachments.office.net",
    "outlook.office.com",
    "/proxy/",
)

EMBEDDED_NAMES = frozenset(
    {
        "logo",
        "icon",
        "banner",
        "signature",
        "sig",
        "avatar",
        "profile",
        "badge",
        "spacer",
        "pixel",
        "facebook",
        "twitter",
        "linkedin",
        "instagram",
        "youtube",
        "tiktok",
        "pinterest",
        "whatsapp",
    }
)

EMBEDDED_NAME_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"image\d+\.(png|jpg|gif|jpeg)",
        r"^inline-",
        r"^Outlook-",
        r"^emb_(image|embed)\d+",
        r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}(\.(png|jpe?g|gif|bmp|webp))?$",
        r"part_\d+\.\d+\.\d+",
        r"att\d+\.\d+",
    )
)

DOCUMENT_EXTENSIONS = frozenset(
    {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".zip", ".rar", ".7z", ".csv", ".txt"}
)

# Fixed on purpose; not tied to small_image_max_size.
NO_EXTENSION_MIN_SIZE = 50 * 1024


def file_extension(name: str) -> str:
    """Lowercased extension with the dot, or ``""``."""
    _, ext = os.path.splitext(name or "")
    if not ext or len(ext) > 10 or " " in ext:
        return ""
    return ext.lower()


class AttachmentFilter:
    """Multi-stage keep/skip classifier bound to a filter configuration."""

    def __init__(self, config: Optional[AttachmentFilterConfig] = None):
        self.config = config or AttachmentFilterConfig()
        self._skip_extensions = frozenset(e.lower() for e in self.config.skip_file_types)
        self._image_extensions = frozenset(e.lower() for e in self.config.small_image_extensions)
        self._rules: list[Callable[[AttachmentMetadata, str], Optional[ClassificationDecision]]] = [
            self._mime_whitelist,
            self._inline_disposition,
            self._embedded_url,
            self._embedded_name,
            self._embedded_regex,
            self._document_extension,
            self._no_extension_small,
            self._skipped_extension,
            self._small_image,
        ]

    def classify(
        self,
        name: str,
        size_bytes: int,
        mime_type: str,
        content_disposition: Optional[str] = None,
    ) -> ClassificationDecision:
        """Classify one attachment. Never raises."""
        metadata = AttachmentMetadata(
            name=name or "",
            size_bytes=size_bytes or 0,
            mime_type=(mime_type or "").lower(),
            content_disposition=content_disposition,
        )
        return self.classify_metadata(metadata)

    def classify_metadata(self, metadata: AttachmentMetadata) -> ClassificationDecision:
        ext = file_extension(metadata.name)
        for rule in self._rules:
            try:
                decision = rule(metadata, ext)
            except Exception as e:
                logger.debug(f"Rule {rule.__name__} failed for {metadata.name!r}: {e}")
                continue
            if decision is not None:
                return decision
        return ClassificationDecision(skip=False, reason=SkipReason.KEPT)

    # ------------------------------------------------------------------
    # Rules, in evaluation order
    # ------------------------------------------------------------------

    def _mime_whitelist(self, meta: AttachmentMetadata, ext: str):
        if meta.mime_type.lower() in WHITELISTED_MIME_TYPES:
            return ClassificationDecision(
                skip=False, reason=SkipReason.MIME_WHITELISTED, detail=meta.mime_type
            )
        return None

    def _inline_disposition(self, meta: AttachmentMetadata, ext: str):
        disposition = (meta.content_disposition or "").lower()
        if "inline" in disposition and meta.mime_type.lower().startswith("image/"):
            return ClassificationDecision(skip=True, reason=SkipReason.INLINE_DISPOSITION)
        return None

    def _embedded_url(self, meta: AttachmentMetadata, ext: str):
        lowered = meta.name.lower()
        for marker in EMBEDDED_URL_MARKERS:
            if marker in lowered:
                return ClassificationDecision(
                    skip=True, reason=SkipReason.EMBEDDED_URL_PATTERN, detail=marker
                )
        return None

    def _embedded_name(self, meta: AttachmentMetadata, ext: str):
        stem = os.path.splitext(meta.name)[0].lower() if ext else meta.name.lower()
        for word in EMBEDDED_NAMES:
            if stem == word or stem.startswith(f"{word}_"):
                return ClassificationDecision(
                    skip=True, reason=SkipReason.EMBEDDED_NAME_PATTERN, detail=word
                )
        return None

    def _embedded_regex(self, meta: AttachmentMetadata, ext: str):
        for pattern in EMBEDDED_NAME_PATTERNS:
            if pattern.search(meta.name):
                return ClassificationDecision(
                    skip=True, reason=SkipReason.EMBEDDED_REGEX_PATTERN, detail=pattern.pattern
                )
        return None

    def _document_extension(self, meta: AttachmentMetadata, ext: str):
        if ext in DOCUMENT_EXTENSIONS:
            return ClassificationDecision(skip=False, reason=SkipReason.KEPT, detail=ext)
        return None

    def _no_extension_small(self, meta: AttachmentMetadata, ext: str):
        if not ext and meta.size_bytes < NO_EXTENSION_MIN_SIZE:
            return ClassificationDecision(skip=True, reason=SkipReason.NO_EXTENSION_SMALL)
        return None

    def _skipped_extension(self, meta: AttachmentMetadata, ext: str):
        if ext and ext in self._skip_extensions:
            return ClassificationDecision(
                skip=True, reason=SkipReason.SKIPPED_EXTENSION, detail=ext
            )
        return None

    def _small_image(self, meta: AttachmentMetadata, ext: str):
        if (
            self.config.skip_small_images
            and ext in self._image_extensions
            and meta.size_bytes <= self.config.small_image_max_size
        ):
            return ClassificationDecision(skip=True, reason=SkipReason.SMALL_IMAGE, detail=ext)
        return None


def classify_attachment(
    name: str,
    size_bytes: int,
    mime_type: str,
    content_disposition: Optional[str] = None,
    config: Optional[AttachmentFilterConfig] = None,
) -> ClassificationDecision:
    """Classify with a throwaway filter. Prefer a shared ``AttachmentFilter`` in loops."""
    return AttachmentFilter(config).classify(name, size_bytes, mime_type, content_disposition)
