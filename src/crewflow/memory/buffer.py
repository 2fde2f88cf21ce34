"""In-process buffer stores: unbounded and sliding window."""

from collections import deque

from crewflow.memory.base import MemoryEntry, MemoryStore, as_entry


class BufferMemory(MemoryStore):
    """Append-only; keeps the full history of every key."""

    def __init__(self) -> None:
        self._entries: dict[str, list[MemoryEntry]] = {}

    async def load(self, key: str, query: str | None = None) -> list[MemoryEntry]:
        return self.entries(key)

    async def save(self, key: str, entry: MemoryEntry | str) -> None:
        self._entries.setdefault(key, []).append(as_entry(entry))

    async def clear(self) -> None:
        self._entries.clear()

    def entries(self, key: str) -> list[MemoryEntry]:
        return list(self._entries.get(key, ()))


class WindowMemory(MemoryStore):
    """Keeps only the ``size`` most recent entries per key; the oldest are evicted first."""

    def __init__(self, size: int = 10) -> None:
        if size < 1:
            raise ValueError(f"size must be >= 1, got {size}")
        self.size = size
        self._entries: dict[str, deque[MemoryEntry]] = {}

    async def load(self, key: str, query: str | None = None) -> list[MemoryEntry]:
        return self.entries(key)

    async def save(self, key: str, entry: MemoryEntry | str) -> None:
        window = self._entries.get(key)
        if window is None:
            window = self._entries[key] = deque(maxlen=self.size)
        window.append(as_entry(entry))

    async def clear(self) -> None:
        self._entries.clear()

    def entries(self, key: str) -> list[MemoryEntry]:
        return list(self._entries.get(key, ()))

    def __repr__(self) -> str:
        return f"WindowMemory(size={self.size})"
