"""Abstract key-value persistence interface."""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Byte strings addressed by string keys."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the value for ``key``, or None if absent."""
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns False if it was not present."""
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """All keys starting with ``prefix``."""
        ...
