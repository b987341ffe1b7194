"""Registered users for multi-user runs, kept in the property store."""

import logging
from typing import Optional

from .processing.sender import extract_email
from .storage.properties import (
    CHECKED_USERS_CACHE_KEY,
    REGISTERED_USERS_KEY,
    USER_REFRESH_TOKEN_PREFIX,
    PropertyStore,
)

logger = logging.getLogger(__name__)


class UserRegistry:
    """``REGISTERED_USERS`` as a JSON list plus a per-run access cache.

    The access cache (``CHECKED_USERS_CACHE``, ``{email: bool}``) remembers
    which mailboxes were reachable so a user is checked once per run. Each
    user's OAuth2 refresh token lives under ``USER_REFRESH_TOKEN:<email>``.
    """

    def __init__(self, store: PropertyStore):
        self.store = store

    @staticmethod
    def _normalize(email: str) -> str:
        normalized = extract_email(email or "")
        if not normalized:
            raise ValueError(f"Not an email address: {email!r}")
        return normalized

    def list(self) -> list[str]:
        users = self.store.get_json(REGISTERED_USERS_KEY, [])
        if not isinstance(users, list):
            logger.warning(f"{REGISTERED_USERS_KEY} is not a list; ignoring it")
            return []
        return [u for u in users if isinstance(u, str)]

    def add(self, email: str, refresh_token: Optional[str] = None) -> bool:
        """Register a user. Returns False if already registered.

        A given ``refresh_token`` is stored either way, replacing the old one.
        """
        email = self._normalize(email)
        if refresh_token:
            self.store.set(self._token_key(email), refresh_token)
        users = self.list()
        if email in users:
            return False
        users.append(email)
        self.store.set_json(REGISTERED_USERS_KEY, users)
        logger.info(f"Registered user {email}")
        return True

    def remove(self, email: str) -> bool:
        """Unregister a user. Returns False if not registered."""
        email = self._normalize(email)
        users = self.list()
        if email not in users:
            return False
        users.remove(email)
        self.store.set_json(REGISTERED_USERS_KEY, users)
        self.store.delete(self._token_key(email))
        logger.info(f"Removed user {email}")
        return True

    @staticmethod
    def _token_key(email: str) -> str:
        return f"{USER_REFRESH_TOKEN_PREFIX}:{email}"

    def refresh_token(self, email: str) -> Optional[str]:
        return self.store.get(self._token_key(self._normalize(email)))

    def cached_access(self, email: str) -> Optional[bool]:
        cache = self.store.get_json(CHECKED_USERS_CACHE_KEY, {})
        if not isinstance(cache, dict):
            return None
        return cache.get(email)

    def record_access(self, email: str, allowed: bool) -> None:
        cache = self.store.get_json(CHECKED_USERS_CACHE_KEY, {})
        if not isinstance(cache, dict):
            cache = {}
        cache[email] = allowed
        self.store.set_json(CHECKED_USERS_CACHE_KEY, cache)

    def clear_access_cache(self) -> None:
        self.store.delete(CHECKED_USERS_CACHE_KEY)
