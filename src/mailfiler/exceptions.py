"""Exception hierarchy for the attachment filing engine."""


class MailfilerError(Exception):
    """Base class for all mailfiler errors."""


class ConfigurationError(MailfilerError):
    """Configuration is incomplete or invalid. Fatal before any lock is taken."""


class TransientStorageError(MailfilerError):
    """A storage call failed in a way that is worth retrying."""


class StorageUnavailable(MailfilerError):
    """Not even the parent folder could be reached."""


class TransientProviderError(MailfilerError):
    """An AI provider call failed (transport, non-2xx, or malformed reply)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class UserPermissionError(MailfilerError):
    """The engine cannot access a user's mailbox. Isolates that user only."""

    def __init__(self, user: str, message: str = "mailbox access denied"):
        super().__init__(f"{user}: {message}")
        self.user = user
