"""SummaryMemory — compresses old history through a summarizer executor."""

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING

from crewflow.core.task import Task
from crewflow.errors import CrewflowError
from crewflow.memory.base import MemoryEntry, MemoryStore, as_entry
from crewflow.resilience.invoker import ResilientInvoker

if TYPE_CHECKING:
    from crewflow.core.executor import Executor

logger = logging.getLogger(__name__)

SUMMARIZE_TOOL = "summarize"

SUMMARY_PROMPT = """Summarize the following history into a single concise note.
Keep every fact a later task could need; drop repetition.

{history}
"""


class SummaryMemory(MemoryStore):
    """History that folds itself into one synthesized entry when it grows.

    Once a key holds more than ``threshold`` entries, everything except the
    ``keep_recent`` newest entries is sent to ``summarizer`` (through the
    resilience layer) and replaced by the summary it returns. If the
    summarizer fails, the history is left as it was and the next save tries
    again.
    """

    def __init__(
        self,
        summarizer: "Executor",
        *,
        invoker: ResilientInvoker | None = None,
        threshold: int = 20,
        keep_recent: int = 4,
    ) -> None:
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        if not 0 <= keep_recent < threshold:
            raise ValueError("keep_recent must be >= 0 and < threshold")
        self.summarizer = summarizer
        self.threshold = threshold
        self.keep_recent = keep_recent
        self._invoker = invoker
        self._entries: dict[str, list[MemoryEntry]] = {}
        self._compressing: set[str] = set()

    @property
    def invoker(self) -> ResilientInvoker:
        return self._invoker or self.summarizer.invoker

    async def load(self, key: str, query: str | None = None) -> list[MemoryEntry]:
        return self.entries(key)

    async def save(self, key: str, entry: MemoryEntry | str) -> None:
        history = self._entries.setdefault(key, [])
        history.append(as_entry(entry))
        if len(history) > self.threshold and key not in self._compressing:
            await self._compress(key, history)

    async def _compress(self, key: str, history: list[MemoryEntry]) -> None:
        split = len(history) - self.keep_recent
        older = history[:split]
        task = Task(
            id=f"summarize:{key}",
            description=SUMMARY_PROMPT,
            expected_output="A single summary note",
        )
        inputs = MappingProxyType({"key": key, "history": "\n".join(e.content for e in older)})

        self._compressing.add(key)
        try:
            summary = await self.invoker.invoke(
                self.summarizer.execute,
                task,
                inputs,
                key=(self.summarizer.name, SUMMARIZE_TOOL),
                config=self.summarizer.resilience,
            )
        except CrewflowError as e:
            logger.warning("Summarizing memory %r failed, keeping raw history: %s", key, e)
            return
        finally:
            self._compressing.discard(key)

        if self._entries.get(key) is not history:
            # cleared while the summarizer was running
            return
        entry = MemoryEntry(content=str(summary), metadata={"summary": True, "count": len(older)})
        self._entries[key] = [entry, *history[split:]]
        logger.debug("Memory %r: %d entries folded into a summary", key, len(older))

    async def clear(self) -> None:
        self._entries.clear()

    def entries(self, key: str) -> list[MemoryEntry]:
        return list(self._entries.get(key, ()))

    def __repr__(self) -> str:
        return f"SummaryMemory(summarizer={self.summarizer.name!r}, threshold={self.threshold})"
