"""Memory stores executors use to accumulate context across tasks."""

from crewflow.memory.base import MemoryEntry, MemoryStore
from crewflow.memory.buffer import BufferMemory, WindowMemory
from crewflow.memory.retrieval import KeywordIndex, RetrievalIndex, RetrievalMemory
from crewflow.memory.summary import SummaryMemory

__all__ = [
    "BufferMemory",
    "KeywordIndex",
    "MemoryEntry",
    "MemoryStore",
    "RetrievalIndex",
    "RetrievalMemory",
    "SummaryMemory",
    "WindowMemory",
]
