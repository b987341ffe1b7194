"""S3/R2 folder storage for email attachments using boto3."""

import logging
from pathlib import PurePosixPath
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..exceptions import TransientStorageError
from ..models import Folder, StoredFile
from .base import FolderStorage, is_name_variant, safe_file_name, unique_file_name

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3FolderStorage(FolderStorage):
    """S3-compatible folder storage (supports Cloudflare R2).

    Folders are key prefixes ending in ``/``, marked by a zero-byte object at
    the prefix itself so empty folders exist. Folder ids are those prefixes.
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        bucket_name: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        s3_client=None,
    ):
        """Initialize S3 storage.

        Args:
            endpoint_url: S3 endpoint URL (for R2: https://<account>.r2.cloudflarestorage.com)
            bucket_name: S3 bucket name
            access_key_id: AWS access key ID
            secret_access_key: AWS secret access key
            s3_client: Pre-built client (tests)
        """
        self.bucket_name = bucket_name
        self.s3_client = s3_client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        logger.info(f"S3 folder storage initialized for bucket: {bucket_name}")

    @staticmethod
    def _prefix(folder_id: str) -> str:
        return folder_id if folder_id.endswith("/") else f"{folder_id}/"

    @staticmethod
    def _folder(prefix: str) -> Folder:
        path = PurePosixPath(prefix.rstrip("/"))
        parent = str(path.parent)
        return Folder(
            id=prefix,
            name=path.name,
            parent_id=None if parent in (".", "") else f"{parent}/",
        )

    def _head(self, key: str) -> Optional[dict]:
        try:
            return self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in _NOT_FOUND_CODES:
                return None
            logger.error(f"Error checking object existence for {key}: {e}")
            raise TransientStorageError(f"head_object {key} failed: {e}") from e
        except BotoCoreError as e:
            raise TransientStorageError(f"head_object {key} failed: {e}") from e

    def _put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading {key}: {e}")
            raise TransientStorageError(f"put_object {key} failed: {e}") from e

    def get_folder(self, folder_id: str) -> Folder:
        prefix = self._prefix(folder_id)
        if self._head(prefix) is None:
            self._put(prefix, b"", "application/x-directory")
        return self._folder(prefix)

    def child_folders_by_name(self, parent: Folder, name: str) -> list[Folder]:
        prefix = f"{self._prefix(parent.id)}{name}/"
        try:
            response = self.s3_client.list_objects_v2(
                Bucket=self.bucket_name, Prefix=prefix, MaxKeys=1
            )
        except (ClientError, BotoCoreError) as e:
            raise TransientStorageError(f"list_objects_v2 {prefix} failed: {e}") from e
        return [self._folder(prefix)] if response.get("KeyCount", 0) > 0 else []

    def create_folder(self, parent: Folder, name: str) -> Folder:
        prefix = f"{self._prefix(parent.id)}{name}/"
        self._put(prefix, b"", "application/x-directory")
        logger.debug(f"Created folder marker: {prefix}")
        return self._folder(prefix)

    def files_by_name(self, folder: Folder, name: str) -> list[StoredFile]:
        prefix = self._prefix(folder.id)
        name = safe_file_name(name)
        stem = PurePosixPath(name).stem
        matches = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=f"{prefix}{stem}", Delimiter="/"):
                for obj in page.get("Contents", []):
                    file_name = obj["Key"][len(prefix):]
                    if is_name_variant(file_name, name):
                        matches.append(
                            StoredFile(
                                id=obj["Key"],
                                name=file_name,
                                folder_id=folder.id,
                                size_bytes=obj.get("Size", 0),
                            )
                        )
        except (ClientError, BotoCoreError) as e:
            raise TransientStorageError(f"list_objects_v2 {prefix}{stem} failed: {e}") from e
        return matches

    def _names_in(self, folder: Folder) -> set[str]:
        prefix = self._prefix(folder.id)
        names = set()
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter="/"):
                for obj in page.get("Contents", []):
                    names.add(obj["Key"][len(prefix):])
        except (ClientError, BotoCoreError) as e:
            raise TransientStorageError(f"list_objects_v2 {prefix} failed: {e}") from e
        return names

    def create_file(
        self,
        folder: Folder,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> StoredFile:
        safe_name = safe_file_name(name)
        if self._head(f"{self._prefix(folder.id)}{safe_name}") is not None:
            safe_name = unique_file_name(safe_name, self._names_in(folder))
        key = f"{self._prefix(folder.id)}{safe_name}"
        self._put(key, data, content_type)
        logger.debug(f"Uploaded attachment: {key} ({len(data)} bytes)")
        return StoredFile(
            id=key,
            name=safe_name,
            folder_id=folder.id,
            size_bytes=len(data),
            content_type=content_type,
        )
