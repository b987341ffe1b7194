"""Key-value property store used for locks, the user registry and secrets."""

import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

EXECUTION_LOCK_KEY = "EXECUTION_LOCK"
REGISTERED_USERS_KEY = "REGISTERED_USERS"
CHECKED_USERS_CACHE_KEY = "CHECKED_USERS_CACHE"
FOLDER_LOCK_PREFIX = "FOLDER_LOCK"
USER_REFRESH_TOKEN_PREFIX = "USER_REFRESH_TOKEN"


class PropertyStore(ABC):
    """Flat string-to-string store with the atomic primitives locks need."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def set_if_absent(self, key: str, value: str) -> bool:
        """Atomically store ``value`` unless ``key`` exists. True if stored."""
        pass

    @abstractmethod
    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        """Atomically replace ``expected`` with ``value``. True if replaced."""
        pass

    @abstractmethod
    def compare_and_delete(self, key: str, expected: str) -> bool:
        """Atomically delete ``key`` if it still holds ``expected``."""
        pass

    def get_json(self, key: str, default: Any = None) -> Any:
        """Decode a JSON value. Missing or corrupt values give ``default``."""
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))


class InMemoryPropertyStore(PropertyStore):
    """Process-local store (for testing and single-process use)."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.values: dict[str, str] = dict(initial or {})
        self._mutex = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._mutex:
            return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._mutex:
            self.values[key] = value

    def delete(self, key: str) -> None:
        with self._mutex:
            self.values.pop(key, None)

    def set_if_absent(self, key: str, value: str) -> bool:
        with self._mutex:
            if key in self.values:
                return False
            self.values[key] = value
            return True

    def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        with self._mutex:
            if self.values.get(key) != expected:
                return False
            self.values[key] = value
            return True

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._mutex:
            if self.values.get(key) != expected:
                return False
            del self.values[key]
            return True
