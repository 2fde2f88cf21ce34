"""Executor ABC, AgentProfile and Tool — the units that perform tasks."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping, Sequence
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from crewflow.errors import DelegationError, IterationLimitError
from crewflow.memory.base import MemoryStore
from crewflow.resilience.invoker import ResilienceConfig, ResilientInvoker

if TYPE_CHECKING:
    from crewflow.core.task import Task

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentProfile:
    """Narrative configuration of an executor. Passed through, never interpreted."""

    role: str
    goal: str = ""
    backstory: str = ""


@dataclass(frozen=True)
class Tool:
    """A callable an executor may use. ``name`` partitions circuit breakers."""

    name: str
    func: Callable[..., Any]
    description: str = ""
    resilience: ResilienceConfig | None = None


class _ToolBudget:
    __slots__ = ("limit", "used")

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0


_tool_budget: ContextVar[_ToolBudget | None] = ContextVar("crewflow_tool_budget", default=None)


class Executor(ABC):
    """Abstract base class for everything that can perform a task.

    Subclasses implement ``run``. Callers use ``execute``, which enforces
    ``max_execution_time`` and gives each execution a fresh budget of
    ``max_iterations`` tool calls.

    An executor with ``allow_delegation`` can act as a crew manager: the crew
    asks it to ``delegate`` every ready task to one of the candidates.
    """

    def __init__(
        self,
        name: str,
        *,
        profile: AgentProfile | None = None,
        tools: Iterable[Tool] = (),
        memory: MemoryStore | None = None,
        allow_delegation: bool = False,
        max_iterations: int = 15,
        max_execution_time: float | None = None,
        resilience: ResilienceConfig | None = None,
    ) -> None:
        self.name = name
        self.profile = profile or AgentProfile(role=name)
        self.tools: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in self.tools:
                raise ValueError(f"Duplicate tool {tool.name!r} on executor {name!r}")
            self.tools[tool.name] = tool
        self.memory = memory
        self.allow_delegation = allow_delegation
        self.max_iterations = max_iterations
        self.max_execution_time = max_execution_time
        self.resilience = resilience
        self._invoker: ResilientInvoker | None = None

    @property
    def role(self) -> str:
        return self.profile.role

    @property
    def invoker(self) -> ResilientInvoker:
        if self._invoker is None:
            self._invoker = ResilientInvoker(self.resilience)
        return self._invoker

    def bind(self, invoker: ResilientInvoker) -> None:
        """Route this executor's tool calls through ``invoker``."""
        self._invoker = invoker

    @abstractmethod
    async def run(self, task: "Task", inputs: Mapping[str, Any]) -> Any:
        """Perform ``task``. ``inputs`` is a read-only view of dependency results.

        Raise to signal failure.
        """

    async def execute(self, task: "Task", inputs: Mapping[str, Any]) -> Any:
        token = _tool_budget.set(_ToolBudget(self.max_iterations))
        try:
            if self.max_execution_time is None:
                return await self.run(task, inputs)
            return await asyncio.wait_for(self.run(task, inputs), timeout=self.max_execution_time)
        finally:
            _tool_budget.reset(token)

    async def use_tool(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Call one of this executor's tools through the resilience layer."""
        tool = self.tools.get(name)
        if tool is None:
            raise KeyError(f"Executor {self.name!r} has no tool {name!r}")

        budget = _tool_budget.get()
        if budget is not None:
            budget.used += 1
            if budget.used > budget.limit:
                raise IterationLimitError(
                    f"Executor {self.name!r} exceeded max_iterations={budget.limit}"
                )

        return await self.invoker.invoke(
            tool.func,
            *args,
            key=(self.name, name),
            config=tool.resilience or self.resilience,
            **kwargs,
        )

    async def delegate(self, task: "Task", candidates: Sequence["Executor"]) -> "Executor":
        """Pick who performs ``task``: its assigned executor if available, else self."""
        if not self.allow_delegation:
            raise DelegationError(f"Executor {self.name!r} has no delegation authority")
        if task.executor is not None and any(c is task.executor for c in candidates):
            return task.executor
        return self

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, role={self.role!r})"
