"""Build storage, property store and mailbox collaborators from a Config."""

import logging
from typing import Callable, Optional

from .config import Config
from .exceptions import ConfigurationError, UserPermissionError
from .ingestion import GmailMailbox, Mailbox
from .processing.sender import extract_email
from .storage import (
    FileSystemFolderStorage,
    FolderStorage,
    InMemoryFolderStorage,
    InMemoryPropertyStore,
    PostgresPropertyStore,
    PropertyStore,
    S3FolderStorage,
)
from .users import UserRegistry

logger = logging.getLogger(__name__)


def build_storage(config: Config) -> FolderStorage:
    backend = config.storage_backend
    if backend == "memory":
        return InMemoryFolderStorage(root_ids=(config.main_folder_id,))
    if backend == "filesystem":
        return FileSystemFolderStorage(config.storage_dir)
    if backend == "s3":
        if not config.s3_bucket:
            raise ConfigurationError("S3_BUCKET is required for the s3 storage backend")
        return S3FolderStorage(
            endpoint_url=config.s3_endpoint,
            bucket_name=config.s3_bucket,
            access_key_id=config.aws_access_key_id,
            secret_access_key=config.aws_secret_access_key,
        )
    raise ConfigurationError(f"Unknown storage backend: {backend}")


def build_property_store(config: Config) -> PropertyStore:
    """PostgreSQL when DATABASE_URL is set, otherwise process-local memory."""
    if config.database_url:
        return PostgresPropertyStore(config.database_url)
    logger.warning("DATABASE_URL not set; locks only guard this process")
    return InMemoryPropertyStore()


def build_mailbox(
    config: Config,
    email_address: Optional[str] = None,
    refresh_token: Optional[str] = None,
) -> Mailbox:
    """Gmail mailbox for ``email_address`` (default: GMAIL_EMAIL).

    ``refresh_token`` overrides GMAIL_REFRESH_TOKEN. A fresh access token is
    fetched whenever a refresh token is available.
    """
    email_address = email_address or config.gmail_email
    if not email_address:
        raise ConfigurationError("GMAIL_EMAIL is required")
    refresh_token = refresh_token or config.gmail_refresh_token

    mailbox = GmailMailbox(
        email_address=email_address,
        access_token=config.gmail_access_token or "",
        client_id=config.google_oauth2_client_id,
        client_secret=config.google_oauth2_client_secret,
        refresh_token=refresh_token,
    )
    if refresh_token:
        mailbox.refresh_access_token()
    elif not config.gmail_access_token:
        raise ConfigurationError("GMAIL_ACCESS_TOKEN or GMAIL_REFRESH_TOKEN is required")
    return mailbox


def user_mailbox_factory(config: Config, registry: UserRegistry) -> Callable[[str], Mailbox]:
    """Mailbox factory for multi-user runs.

    Each user signs in with their own registered refresh token. The GMAIL_*
    credentials are only used for the GMAIL_EMAIL account itself.
    """
    owner = extract_email(config.gmail_email or "")

    def factory(email_address: str) -> Mailbox:
        refresh_token = registry.refresh_token(email_address)
        if refresh_token:
            return build_mailbox(config, email_address, refresh_token)
        if email_address == owner:
            return build_mailbox(config, email_address)
        raise UserPermissionError(email_address, "no refresh token registered")

    return factory
