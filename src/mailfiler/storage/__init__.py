"""Storage layer: folder stores, property stores, locks and folder resolution."""

from .attachments import S3FolderStorage
from .base import FolderStorage, InMemoryFolderStorage
from .database import PostgresPropertyStore
from .filesystem import FileSystemFolderStorage
from .folders import FolderResolver
from .locks import StoreLock, execution_lock
from .properties import InMemoryPropertyStore, PropertyStore

__all__ = [
    "FolderStorage",
    "InMemoryFolderStorage",
    "FileSystemFolderStorage",
    "S3FolderStorage",
    "FolderResolver",
    "StoreLock",
    "execution_lock",
    "PropertyStore",
    "InMemoryPropertyStore",
    "PostgresPropertyStore",
]
