from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from mailfiler.exceptions import TransientStorageError
from mailfiler.storage import database
from mailfiler.storage.attachments import S3FolderStorage
from mailfiler.storage.base import (
    InMemoryFolderStorage,
    is_name_variant,
    safe_file_name,
    unique_file_name,
)
from mailfiler.storage.filesystem import FileSystemFolderStorage
from mailfiler.storage.database import PostgresPropertyStore


def client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def test_unique_file_name() -> None:
    assert unique_file_name("report.pdf", set()) == "report.pdf"
    assert unique_file_name("report.pdf", {"report.pdf", "report (1).pdf"}) == "report (2).pdf"
    assert unique_file_name("README", {"README"}) == "README (1)"


@pytest.mark.parametrize(
    "candidate, expected",
    [
        ("report.pdf", True),
        ("report (1).pdf", True),
        ("report (12).pdf", True),
        ("report (a).pdf", False),
        ("report (1).pdf.exe", False),
        ("my report.pdf", False),
    ],
)
def test_is_name_variant(candidate: str, expected: bool) -> None:
    assert is_name_variant(candidate, "report.pdf") is expected


@pytest.mark.parametrize(
    "name, expected",
    [
        ("report.pdf", "report.pdf"),
        ("../x.pdf", "x.pdf"),
        ("/etc/hosts", "hosts"),
        ("C:\\Users\\me\\scan.pdf", "scan.pdf"),
        ("..", "attachment"),
    ],
)
def test_safe_file_name(name: str, expected: str) -> None:
    assert safe_file_name(name) == expected


def test_in_memory_storage_allows_duplicate_folders() -> None:
    storage = InMemoryFolderStorage()
    root = storage.get_folder("root")

    first = storage.create_folder(root, "vendor.io")
    second = storage.create_folder(root, "vendor.io")

    assert first.id != second.id
    assert storage.child_folders_by_name(root, "vendor.io") == [first, second]


# ============================================================================
# Filesystem
# ============================================================================


def test_filesystem_folders(tmp_path) -> None:
    storage = FileSystemFolderStorage(tmp_path)
    root = storage.get_folder("root")

    assert (tmp_path / "root").is_dir()
    assert storage.child_folders_by_name(root, "vendor.io") == []

    folder = storage.create_folder(root, "vendor.io")

    assert folder.id == "root/vendor.io"
    assert folder.parent_id == "root"
    assert storage.child_folders_by_name(root, "vendor.io") == [folder]


def test_filesystem_files_get_unique_names(tmp_path) -> None:
    storage = FileSystemFolderStorage(tmp_path)
    folder = storage.create_folder(storage.get_folder("root"), "vendor.io")

    first = storage.create_file(folder, "report.pdf", b"one")
    second = storage.create_file(folder, "report.pdf", b"second")

    assert first.name == "report.pdf"
    assert second.name == "report (1).pdf"
    assert (tmp_path / "root" / "vendor.io" / "report (1).pdf").read_bytes() == b"second"
    assert [(f.name, f.size_bytes) for f in storage.files_by_name(folder, "report.pdf")] == [
        ("report (1).pdf", 6),
        ("report.pdf", 3),
    ]
    assert storage.files_by_name(folder, "missing.pdf") == []


def test_filesystem_strips_directory_parts(tmp_path) -> None:
    storage = FileSystemFolderStorage(tmp_path / "files")
    folder = storage.create_folder(storage.get_folder("root"), "vendor.io")
    (tmp_path / "files" / "root" / "x.pdf").write_bytes(b"outside")

    assert storage.files_by_name(folder, "../x.pdf") == []

    stored = storage.create_file(folder, "../x.pdf", b"inside")

    assert stored.id == "root/vendor.io/x.pdf"
    assert (tmp_path / "files" / "root" / "x.pdf").read_bytes() == b"outside"
    assert [f.name for f in storage.files_by_name(folder, "../x.pdf")] == ["x.pdf"]


# ============================================================================
# S3
# ============================================================================


def test_s3_get_folder_writes_marker_when_missing() -> None:
    client = MagicMock()
    client.head_object.side_effect = client_error("404")
    storage = S3FolderStorage(None, "bucket", s3_client=client)

    folder = storage.get_folder("root")

    assert folder.id == "root/"
    assert folder.name == "root"
    client.put_object.assert_called_once_with(
        Bucket="bucket", Key="root/", Body=b"", ContentType="application/x-directory"
    )


def test_s3_child_folders_by_name() -> None:
    client = MagicMock()
    client.list_objects_v2.return_value = {"KeyCount": 1}
    storage = S3FolderStorage(None, "bucket", s3_client=client)
    root = storage._folder("root/")

    [folder] = storage.child_folders_by_name(root, "vendor.io")

    assert folder.id == "root/vendor.io/"
    assert folder.name == "vendor.io"
    assert folder.parent_id == "root/"
    client.list_objects_v2.assert_called_once_with(Bucket="bucket", Prefix="root/vendor.io/", MaxKeys=1)


def test_s3_create_file_avoids_overwrite() -> None:
    client = MagicMock()
    client.head_object.return_value = {"ContentLength": 3, "ContentType": "application/pdf"}
    paginator = MagicMock()
    paginator.paginate.return_value = [{"Contents": [{"Key": "root/vendor.io/report.pdf"}]}]
    client.get_paginator.return_value = paginator
    storage = S3FolderStorage(None, "bucket", s3_client=client)
    folder = storage._folder("root/vendor.io/")

    stored = storage.create_file(folder, "report.pdf", b"new data", "application/pdf")

    assert stored.name == "report (1).pdf"
    assert client.put_object.call_args.kwargs["Key"] == "root/vendor.io/report (1).pdf"


def test_s3_files_by_name_lists_renamed_copies() -> None:
    client = MagicMock()
    paginator = MagicMock()
    paginator.paginate.return_value = [
        {
            "Contents": [
                {"Key": "root/vendor.io/report.pdf", "Size": 1234},
                {"Key": "root/vendor.io/report (1).pdf", "Size": 99},
                {"Key": "root/vendor.io/report-final.pdf", "Size": 5},
            ]
        }
    ]
    client.get_paginator.return_value = paginator
    storage = S3FolderStorage(None, "bucket", s3_client=client)

    stored = storage.files_by_name(storage._folder("root/vendor.io/"), "report.pdf")

    assert [(f.id, f.size_bytes) for f in stored] == [
        ("root/vendor.io/report.pdf", 1234),
        ("root/vendor.io/report (1).pdf", 99),
    ]
    paginator.paginate.assert_called_once_with(
        Bucket="bucket", Prefix="root/vendor.io/report", Delimiter="/"
    )


def test_s3_errors_are_transient() -> None:
    client = MagicMock()
    client.head_object.side_effect = client_error("AccessDenied")
    storage = S3FolderStorage(None, "bucket", s3_client=client)

    with pytest.raises(TransientStorageError):
        storage.get_folder("root")


# ============================================================================
# PostgreSQL property store
# ============================================================================


@pytest.fixture
def pg_connection(monkeypatch):
    conn = MagicMock()
    conn.closed = False
    cursor = conn.cursor.return_value.__enter__.return_value
    monkeypatch.setattr(database.psycopg, "connect", MagicMock(return_value=conn))
    return conn, cursor


def test_postgres_set_if_absent_uses_on_conflict(pg_connection) -> None:
    conn, cursor = pg_connection
    cursor.rowcount = 1
    store = PostgresPropertyStore("postgresql://localhost/test")

    assert store.set_if_absent("EXECUTION_LOCK", "{}") is True

    sql = cursor.execute.call_args.args[0]
    assert "ON CONFLICT (key) DO NOTHING" in sql
    conn.commit.assert_called()


def test_postgres_compare_and_delete_reports_miss(pg_connection) -> None:
    _, cursor = pg_connection
    cursor.rowcount = 0
    store = PostgresPropertyStore("postgresql://localhost/test")

    assert store.compare_and_delete("EXECUTION_LOCK", "{}") is False


def test_postgres_get_returns_value(pg_connection) -> None:
    _, cursor = pg_connection
    cursor.fetchone.return_value = {"value": "stored"}
    store = PostgresPropertyStore("postgresql://localhost/test")

    assert store.get("REGISTERED_USERS") == "stored"


def test_postgres_rolls_back_on_error(pg_connection) -> None:
    conn, cursor = pg_connection
    store = PostgresPropertyStore("postgresql://localhost/test")
    store.connect()
    cursor.execute.side_effect = RuntimeError("connection lost")

    with pytest.raises(RuntimeError):
        store.set("KEY", "value")

    conn.rollback.assert_called_once()
