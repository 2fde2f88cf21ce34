"""RetrievalMemory — loads by similarity search over a backing index."""

import math
import re
from abc import ABC, abstractmethod
from collections import Counter

from crewflow.memory.base import MemoryEntry, MemoryStore, as_entry

_WORD_RE = re.compile(r"\w+")


class RetrievalIndex(ABC):
    """Similarity index a ``RetrievalMemory`` delegates to."""

    @abstractmethod
    async def add(self, key: str, entry: MemoryEntry) -> None: ...

    @abstractmethod
    async def search(self, key: str, query: str, top_k: int) -> list[MemoryEntry]:
        """Return at most ``top_k`` entries of ``key`` ranked by similarity to ``query``."""

    @abstractmethod
    async def clear(self) -> None: ...


def _vector(text: str) -> Counter[str]:
    return Counter(w.lower() for w in _WORD_RE.findall(text))


def _cosine(a: Counter[str], b: Counter[str]) -> float:
    dot = sum(count * b[word] for word, count in a.items())
    if not dot:
        return 0.0
    norm = math.sqrt(sum(c * c for c in a.values())) * math.sqrt(sum(c * c for c in b.values()))
    return dot / norm


class KeywordIndex(RetrievalIndex):
    """In-process bag-of-words index with cosine similarity."""

    def __init__(self) -> None:
        self._docs: dict[str, list[tuple[MemoryEntry, Counter[str]]]] = {}

    async def add(self, key: str, entry: MemoryEntry) -> None:
        self._docs.setdefault(key, []).append((entry, _vector(entry.content)))

    async def search(self, key: str, query: str, top_k: int) -> list[MemoryEntry]:
        q = _vector(query)
        scored = [
            (_cosine(q, vec), pos, entry)
            for pos, (entry, vec) in enumerate(self._docs.get(key, ()))
        ]
        # best score first, newer entries win ties
        scored.sort(key=lambda s: (-s[0], -s[1]))
        return [entry for score, _, entry in scored[:top_k] if score > 0]

    async def clear(self) -> None:
        self._docs.clear()


class RetrievalMemory(MemoryStore):
    """Saves to a raw log and an index; loads the ``top_k`` most similar entries.

    Without a ``query``, ``load`` searches with the newest entry of the key.
    """

    def __init__(self, index: RetrievalIndex | None = None, *, top_k: int = 5) -> None:
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")
        self.index = index or KeywordIndex()
        self.top_k = top_k
        self._log: dict[str, list[MemoryEntry]] = {}

    async def load(self, key: str, query: str | None = None) -> list[MemoryEntry]:
        log = self._log.get(key)
        if not log:
            return []
        return await self.index.search(key, query or log[-1].content, self.top_k)

    async def save(self, key: str, entry: MemoryEntry | str) -> None:
        entry = as_entry(entry)
        self._log.setdefault(key, []).append(entry)
        await self.index.add(key, entry)

    async def clear(self) -> None:
        self._log.clear()
        await self.index.clear()

    def entries(self, key: str) -> list[MemoryEntry]:
        return list(self._log.get(key, ()))

    def __repr__(self) -> str:
        return f"RetrievalMemory(index={type(self.index).__name__}, top_k={self.top_k})"
