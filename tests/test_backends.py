from __future__ import annotations

import pytest

from mailfiler import backends
from mailfiler.exceptions import ConfigurationError, UserPermissionError
from mailfiler.storage.base import InMemoryFolderStorage
from mailfiler.storage.properties import InMemoryPropertyStore
from mailfiler.users import UserRegistry
from tests.helpers import make_config


class RecordingMailbox:
    """Stands in for GmailMailbox; records how it was built."""

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.refreshed = False

    def refresh_access_token(self) -> str:
        self.refreshed = True
        return "fresh-access-token"


@pytest.fixture
def gmail(monkeypatch):
    monkeypatch.setattr(backends, "GmailMailbox", RecordingMailbox)


def gmail_config(**overrides):
    values = {
        "gmail_email": "owner@example.com",
        "gmail_refresh_token": "owner-token",
        "google_oauth2_client_id": "client-id",
        "google_oauth2_client_secret": "client-secret",
    }
    values.update(overrides)
    return make_config(**values)


def test_build_mailbox_refreshes_with_configured_token(gmail) -> None:
    mailbox = backends.build_mailbox(gmail_config())

    assert mailbox.kwargs["email_address"] == "owner@example.com"
    assert mailbox.kwargs["refresh_token"] == "owner-token"
    assert mailbox.refreshed is True


def test_build_mailbox_requires_some_token(gmail) -> None:
    with pytest.raises(ConfigurationError):
        backends.build_mailbox(gmail_config(gmail_refresh_token=None))


def test_user_factory_uses_each_users_own_token(gmail) -> None:
    registry = UserRegistry(InMemoryPropertyStore())
    registry.add("alice@example.com", refresh_token="alice-token")
    registry.add("owner@example.com")
    factory = backends.user_mailbox_factory(gmail_config(), registry)

    alice = factory("alice@example.com")
    owner = factory("owner@example.com")

    assert alice.kwargs["email_address"] == "alice@example.com"
    assert alice.kwargs["refresh_token"] == "alice-token"
    assert alice.refreshed is True
    assert owner.kwargs["refresh_token"] == "owner-token"


def test_user_factory_rejects_user_without_token(gmail) -> None:
    registry = UserRegistry(InMemoryPropertyStore())
    registry.add("bob@example.com")
    factory = backends.user_mailbox_factory(gmail_config(), registry)

    with pytest.raises(UserPermissionError):
        factory("bob@example.com")


def test_build_storage_memory_backend_knows_main_folder() -> None:
    storage = backends.build_storage(make_config(main_folder_id="drive-root"))

    assert isinstance(storage, InMemoryFolderStorage)
    assert storage.get_folder("drive-root").id == "drive-root"


def test_build_storage_s3_requires_bucket() -> None:
    with pytest.raises(ConfigurationError):
        backends.build_storage(make_config(storage_backend="s3", s3_bucket=None))


def test_property_store_defaults_to_memory() -> None:
    store = backends.build_property_store(make_config(database_url=None))

    assert isinstance(store, InMemoryPropertyStore)
