"""Sender address parsing. Pure functions, never raise."""

import re

UNKNOWN_DOMAIN = "unknown"

# Permissive: anything after "@" up to a delimiter, that contains a dot.
_DOMAIN_PATTERN = re.compile(r"@([A-Za-z0-9](?:[A-Za-z0-9\-_]*[A-Za-z0-9])?(?:\.[A-Za-z0-9\-_]+)+)")
_ADDRESS_PATTERN = re.compile(
    r"([A-Za-z0-9.!#$%&'*+/=?^_`{|}~\-]+)@([A-Za-z0-9](?:[A-Za-z0-9\-_]*[A-Za-z0-9])?(?:\.[A-Za-z0-9\-_]+)+)"
)
_UNSAFE_FOLDER_CHARS = re.compile(r"[\\/:*?\"<>|\x00-\x1f]")


def extract_domain(from_header) -> str:
    """Return the lower-cased sender domain, or ``"unknown"``.

    Accepts ``Name <user@domain>`` and bare ``user@domain``.
    """
    try:
        if not from_header or not isinstance(from_header, str):
            return UNKNOWN_DOMAIN
        # Prefer the bracketed address when present.
        bracketed = re.search(r"<([^>]*)>", from_header)
        candidate = bracketed.group(1) if bracketed else from_header
        match = _DOMAIN_PATTERN.search(candidate) or _DOMAIN_PATTERN.search(from_header)
        if not match:
            return UNKNOWN_DOMAIN
        return match.group(1).lower().rstrip(".")
    except Exception:
        return UNKNOWN_DOMAIN


def extract_email(from_header) -> str:
    """Return the normalized ``local@domain`` address, or ``""``."""
    try:
        if not from_header or not isinstance(from_header, str):
            return ""
        bracketed = re.search(r"<([^>]*)>", from_header)
        candidate = bracketed.group(1) if bracketed else from_header
        match = _ADDRESS_PATTERN.search(candidate) or _ADDRESS_PATTERN.search(from_header)
        if not match:
            return ""
        return f"{match.group(1)}@{match.group(2)}".lower()
    except Exception:
        return ""


def split_address(address: str) -> tuple[str, str]:
    """Split ``local@domain`` into its parts. Missing parts come back empty."""
    if not address or "@" not in address:
        return "", (address or "").lower()
    local, _, domain = address.strip().lower().rpartition("@")
    return local, domain


def sanitize_folder_name(name: str) -> str:
    """Strip characters storage backends reject in folder names."""
    cleaned = _UNSAFE_FOLDER_CHARS.sub("_", name or "").strip().strip(".")
    return cleaned or UNKNOWN_DOMAIN
