"""Folder storage on the local filesystem."""

import logging
from pathlib import Path

from ..exceptions import TransientStorageError
from ..models import Folder, StoredFile
from .base import FolderStorage, is_name_variant, safe_file_name, unique_file_name

logger = logging.getLogger(__name__)


class FileSystemFolderStorage(FolderStorage):
    """Store folders as directories under ``base_dir``.

    Folder ids are POSIX paths relative to ``base_dir``. A directory cannot be
    duplicated, so a lost creation race simply returns the existing one.
    """

    def __init__(self, base_dir: Path):
        """Initialize filesystem storage.

        Args:
            base_dir: Base directory for storing attachments
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, folder_id: str) -> Path:
        return self.base_dir / folder_id

    def _folder(self, path: Path) -> Folder:
        relative = path.relative_to(self.base_dir).as_posix()
        parent = path.parent.relative_to(self.base_dir).as_posix() if path.parent != self.base_dir else None
        return Folder(id=relative, name=path.name, parent_id=parent)

    def get_folder(self, folder_id: str) -> Folder:
        """Return a root folder, creating its directory on first use."""
        path = self._path(folder_id)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransientStorageError(f"Cannot open folder {folder_id}: {e}") from e
        return self._folder(path)

    def child_folders_by_name(self, parent: Folder, name: str) -> list[Folder]:
        path = self._path(parent.id) / name
        try:
            return [self._folder(path)] if path.is_dir() else []
        except OSError as e:
            raise TransientStorageError(f"Cannot list {parent.id}: {e}") from e

    def create_folder(self, parent: Folder, name: str) -> Folder:
        path = self._path(parent.id) / name
        try:
            path.mkdir(exist_ok=True)
        except OSError as e:
            raise TransientStorageError(f"Cannot create folder {name} in {parent.id}: {e}") from e
        logger.debug(f"Created folder {path}")
        return self._folder(path)

    def files_by_name(self, folder: Folder, name: str) -> list[StoredFile]:
        name = safe_file_name(name)
        folder_path = self._path(folder.id)
        try:
            if not folder_path.is_dir():
                return []
            matches = [
                (path.name, path.stat().st_size)
                for path in sorted(folder_path.iterdir())
                if path.is_file() and is_name_variant(path.name, name)
            ]
        except OSError as e:
            raise TransientStorageError(f"Cannot list {folder_path}: {e}") from e
        return [
            StoredFile(id=f"{folder.id}/{file_name}", name=file_name, folder_id=folder.id, size_bytes=size)
            for file_name, size in matches
        ]

    def create_file(
        self,
        folder: Folder,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredFile:
        folder_path = self._path(folder.id)
        try:
            taken = {p.name for p in folder_path.iterdir()}
            final_name = unique_file_name(safe_file_name(name), taken)
            with open(folder_path / final_name, "wb") as f:
                f.write(data)
        except OSError as e:
            raise TransientStorageError(f"Cannot write {name} to {folder.id}: {e}") from e

        return StoredFile(
            id=f"{folder.id}/{final_name}",
            name=final_name,
            folder_id=folder.id,
            size_bytes=len(data),
            content_type=content_type,
        )
