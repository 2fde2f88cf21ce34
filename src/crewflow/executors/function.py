"""Local executors: FunctionExecutor and EchoExecutor."""

from collections.abc import Callable, Mapping
from typing import Any

from crewflow.core.context import format_template
from crewflow.core.executor import Executor
from crewflow.core.task import Task
from crewflow.memory.base import MemoryEntry
from crewflow.resilience.invoker import call


class FunctionExecutor(Executor):
    """Adapt a plain or async callable ``func(task, inputs)`` to the executor interface.

    A plain callable runs in a worker thread, so it does not block sibling
    tasks and ``max_execution_time`` still applies to it.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[Task, Mapping[str, Any]], Any],
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.func = func

    async def run(self, task: Task, inputs: Mapping[str, Any]) -> Any:
        return await call(self.func, task, inputs)


class EchoExecutor(Executor):
    """Deterministic offline executor.

    Returns the task description with ``{placeholders}`` filled from the
    inputs, so a crew definition can be exercised without any model.
    """

    async def run(self, task: Task, inputs: Mapping[str, Any]) -> str:
        text = format_template(task.description, inputs).strip()
        if self.memory is not None:
            await self.memory.save(self.name, MemoryEntry(text, {"task": task.id}))
        return text
