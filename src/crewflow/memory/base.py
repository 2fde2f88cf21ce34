"""MemoryStore ABC and MemoryEntry dataclass."""

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MemoryEntry:
    content: str
    metadata: Mapping[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)


def as_entry(entry: "MemoryEntry | str") -> MemoryEntry:
    return entry if isinstance(entry, MemoryEntry) else MemoryEntry(content=str(entry))


class MemoryStore(ABC):
    """Key-scoped context accumulator owned by a single executor.

    The crew never reads or writes a store; executors do.
    """

    @abstractmethod
    async def load(self, key: str, query: str | None = None) -> list[MemoryEntry]:
        """Return the entries relevant for ``key``, oldest first.

        ``query`` is only used by stores that search.
        """

    @abstractmethod
    async def save(self, key: str, entry: MemoryEntry | str) -> None: ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry for every key."""

    @abstractmethod
    def entries(self, key: str) -> list[MemoryEntry]:
        """Everything currently stored under ``key``, without searching or summarizing."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"
