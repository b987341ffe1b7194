"""Folder storage abstraction."""

import itertools
import re
import threading
import time
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Optional

from ..models import Folder, StoredFile


def safe_file_name(name: str) -> str:
    """Drop any directory parts from an attachment name."""
    base = PurePosixPath(name.replace("\\", "/")).name
    return base if base not in ("", ".", "..") else "attachment"


def is_name_variant(candidate: str, name: str) -> bool:
    """True for ``name`` itself or a ``stem (n).ext`` copy of it."""
    if candidate == name:
        return True
    path = PurePosixPath(name)
    pattern = rf"{re.escape(path.stem)} \(\d+\){re.escape(path.suffix)}"
    return re.fullmatch(pattern, candidate) is not None


def unique_file_name(name: str, taken: set[str]) -> str:
    """Return ``name`` or ``stem (n).ext`` so it does not collide with ``taken``."""
    if name not in taken:
        return name
    path = PurePosixPath(name)
    stem, suffix = path.stem, path.suffix
    for n in itertools.count(1):
        candidate = f"{stem} ({n}){suffix}"
        if candidate not in taken:
            return candidate
    raise AssertionError("unreachable")


class FolderStorage(ABC):
    """Abstract interface for the folder/file store attachments are filed into.

    Implementations offer no atomic get-or-create; callers serialize creation
    themselves (see ``FolderResolver``).
    """

    @abstractmethod
    def get_folder(self, folder_id: str) -> Folder:
        """Return the folder with this id.

        Raises:
            TransientStorageError: If the store cannot be reached
            KeyError: If no such folder exists
        """
        pass

    @abstractmethod
    def child_folders_by_name(self, parent: Folder, name: str) -> list[Folder]:
        """List direct children of ``parent`` called ``name``."""
        pass

    @abstractmethod
    def create_folder(self, parent: Folder, name: str) -> Folder:
        """Create a child folder. May create a duplicate if one already exists."""
        pass

    @abstractmethod
    def files_by_name(self, folder: Folder, name: str) -> list[StoredFile]:
        """List files in ``folder`` called ``name``.

        Also lists the ``stem (n).ext`` copies ``create_file`` made when the
        name was already taken, so name+size deduplication sees them.
        """
        pass

    @abstractmethod
    def create_file(
        self,
        folder: Folder,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredFile:
        """Store a new file in ``folder``."""
        pass


class InMemoryFolderStorage(FolderStorage):
    """Store folders and files in memory (for testing).

    ``create_delay`` widens the gap between a caller's existence check and its
    create, to make concurrent duplicate creation observable in tests.
    """

    def __init__(self, root_ids: tuple[str, ...] = ("root",), create_delay: float = 0.0):
        self.create_delay = create_delay
        self.folders: dict[str, Folder] = {}
        self.files: dict[str, StoredFile] = {}
        self.contents: dict[str, bytes] = {}
        self.create_folder_calls = 0
        self._ids = itertools.count(1)
        self._mutex = threading.Lock()
        for root_id in root_ids:
            self.folders[root_id] = Folder(id=root_id, name=root_id)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids):06d}"

    def get_folder(self, folder_id: str) -> Folder:
        with self._mutex:
            return self.folders[folder_id]

    def child_folders_by_name(self, parent: Folder, name: str) -> list[Folder]:
        with self._mutex:
            return sorted(
                (f for f in self.folders.values() if f.parent_id == parent.id and f.name == name),
                key=lambda f: f.id,
            )

    def create_folder(self, parent: Folder, name: str) -> Folder:
        if self.create_delay:
            time.sleep(self.create_delay)
        with self._mutex:
            self.create_folder_calls += 1
            folder = Folder(id=self._next_id("f"), name=name, parent_id=parent.id)
            self.folders[folder.id] = folder
            return folder

    def files_by_name(self, folder: Folder, name: str) -> list[StoredFile]:
        with self._mutex:
            return [
                f for f in self.files.values()
                if f.folder_id == folder.id and is_name_variant(f.name, name)
            ]

    def create_file(
        self,
        folder: Folder,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredFile:
        with self._mutex:
            stored = StoredFile(
                id=self._next_id("file"),
                name=name,
                folder_id=folder.id,
                size_bytes=len(data),
                content_type=content_type,
            )
            self.files[stored.id] = stored
            self.contents[stored.id] = data
            return stored

    def folders_named(self, name: str, parent_id: Optional[str] = None) -> list[Folder]:
        """Test helper: all folders called ``name`` (optionally under one parent)."""
        return [
            f for f in self.folders.values()
            if f.name == name and (parent_id is None or f.parent_id == parent_id)
        ]

    def files_in(self, folder_id: str) -> list[StoredFile]:
        """Test helper: all files directly in a folder."""
        return [f for f in self.files.values() if f.folder_id == folder_id]
