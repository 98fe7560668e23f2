"""Session key/value storage contract used by the launch flow."""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

SMART_ID_KEY = 'smartId'


class Storage(ABC):
    """Per-session key/value store. Values must be JSON serializable."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Return the value at ``key`` or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> Any:
        """Store ``value`` at ``key`` (overwriting) and return it."""

    @abstractmethod
    def unset(self, key: str) -> bool:
        """Delete ``key``; True if it existed."""


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        self._data[key] = value
        return value

    def unset(self, key):
        if key in self._data:
            del self._data[key]
            return True
        return False

    def __contains__(self, key) -> bool:
        return key in self._data
