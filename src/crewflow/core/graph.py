"""TaskGraph — DAG of tasks with a per-task lifecycle and failure propagation."""

import logging
from collections import deque
from collections.abc import Iterable, Iterator
from enum import Enum
from typing import Any, Self

from crewflow.core.task import Task, TaskStatus
from crewflow.errors import (
    CycleError,
    DuplicateIdError,
    InvalidTransitionError,
    UnknownTaskError,
)

logger = logging.getLogger(__name__)


class FailurePolicy(Enum):
    FAIL_FAST = "fail_fast"
    BEST_EFFORT = "best_effort"


class TaskGraph:
    """Directed acyclic graph of tasks keyed by id.

    Tasks are added with ``add_task(task, *depends_on)``; every dependency
    must already be in the graph, so the graph is acyclic by construction.
    ``add_dependency`` adds an edge between existing tasks and rejects any
    edge that would close a cycle. ``from_tasks`` accepts forward references.

    Insertion order is preserved and is the tie-breaker whenever several tasks
    are READY at once.

    With ``FailurePolicy.FAIL_FAST`` every task downstream of a failure is
    SKIPPED as soon as the failure is recorded; with ``BEST_EFFORT`` it stays
    PENDING.
    """

    def __init__(self, *, failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> None:
        self.failure_policy = failure_policy
        self._tasks: dict[str, Task] = {}
        self._dependents: dict[str, list[str]] = {}  # task_id -> ids that depend on it

    @classmethod
    def from_tasks(
        cls,
        tasks: Iterable[Task],
        *,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
    ) -> Self:
        """Build a graph from tasks declared in any order.

        Raises ``DuplicateIdError``, ``UnknownTaskError`` or ``CycleError``.
        """
        graph = cls(failure_policy=failure_policy)
        declared: dict[str, Task] = {}
        deps: dict[str, list[str]] = {}
        for task in tasks:
            if task.id in declared:
                raise DuplicateIdError(f"Duplicate task id: {task.id!r}")
            declared[task.id] = task
            deps[task.id] = list(dict.fromkeys(task.depends_on))

        for tid, task_deps in deps.items():
            missing = [d for d in task_deps if d not in declared]
            if missing:
                raise UnknownTaskError(f"Task {tid!r} depends on unknown task(s): {missing}")

        # Kahn's algorithm, only to detect cycles
        in_degree = {tid: len(task_deps) for tid, task_deps in deps.items()}
        dependents: dict[str, list[str]] = {tid: [] for tid in declared}
        for tid, task_deps in deps.items():
            for dep in task_deps:
                dependents[dep].append(tid)
        queue = deque(tid for tid, deg in in_degree.items() if deg == 0)
        visited = 0
        while queue:
            tid = queue.popleft()
            visited += 1
            for succ in dependents[tid]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    queue.append(succ)
        if visited != len(declared):
            stuck = [tid for tid, deg in in_degree.items() if deg > 0]
            raise CycleError(f"Dependency cycle among tasks: {stuck}")

        for tid, task in declared.items():
            task.depends_on = deps[tid]
        graph._tasks = declared
        graph._dependents = dependents
        graph.reset()
        return graph

    # -- construction -----------------------------------------------------

    def add_task(self, task: Task, *depends_on: str) -> Self:
        """Add ``task``; ``depends_on`` extends the task's own dependency list."""
        if task.id in self._tasks:
            raise DuplicateIdError(f"Duplicate task id: {task.id!r}")
        deps = list(dict.fromkeys([*task.depends_on, *depends_on]))
        if task.id in deps:
            raise CycleError(f"Task {task.id!r} cannot depend on itself")
        missing = [d for d in deps if d not in self._tasks]
        if missing:
            raise UnknownTaskError(f"Task {task.id!r} depends on unknown task(s): {missing}")

        task.depends_on = deps
        self._tasks[task.id] = task
        self._dependents[task.id] = []
        for dep in deps:
            self._dependents[dep].append(task.id)
        self._set_initial_status(task)
        return self

    def add_dependency(self, task_id: str, depends_on: str) -> Self:
        """Add the edge *depends_on* -> *task_id* between two existing tasks."""
        task = self.get(task_id)
        self.get(depends_on)
        if depends_on in task.depends_on:
            return self
        if task.status not in (TaskStatus.PENDING, TaskStatus.READY):
            raise InvalidTransitionError(task_id, task.status.value, TaskStatus.PENDING.value)
        if depends_on == task_id or self._reaches(task_id, depends_on):
            raise CycleError(f"Edge {depends_on!r} -> {task_id!r} would create a cycle")

        task.depends_on.append(depends_on)
        self._dependents[depends_on].append(task_id)
        self._set_initial_status(task)
        return self

    def _reaches(self, source: str, target: str) -> bool:
        """True if *target* is downstream of *source*."""
        seen: set[str] = set()
        stack = [source]
        while stack:
            current = stack.pop()
            for succ in self._dependents[current]:
                if succ == target:
                    return True
                if succ not in seen:
                    seen.add(succ)
                    stack.append(succ)
        return False

    def _set_initial_status(self, task: Task) -> None:
        dep_statuses = [self._tasks[d].status for d in task.depends_on]
        if all(s is TaskStatus.COMPLETED for s in dep_statuses):
            task.status = TaskStatus.READY
        elif self.failure_policy is FailurePolicy.FAIL_FAST and any(
            s in (TaskStatus.FAILED, TaskStatus.SKIPPED) for s in dep_statuses
        ):
            task.status = TaskStatus.SKIPPED
        else:
            task.status = TaskStatus.PENDING

    def reset(self) -> None:
        """Return every task to its initial status and drop results and errors."""
        for task in self._tasks.values():
            task.result = None
            task.error = None
            task.status = TaskStatus.READY if not task.depends_on else TaskStatus.PENDING

    # -- scheduling -------------------------------------------------------

    def ready_tasks(self) -> Iterator[Task]:
        """Yield the currently READY tasks in insertion order.

        Statuses are read lazily, so a task that leaves READY before the
        iterator reaches it is not yielded. Call again for a fresh pass.
        """
        for task in list(self._tasks.values()):
            if task.status is TaskStatus.READY:
                yield task

    def mark_running(self, task_id: str) -> None:
        self._transition(task_id, TaskStatus.READY, TaskStatus.RUNNING)

    def mark_completed(self, task_id: str, result: Any) -> list[str]:
        """Complete a RUNNING task. Returns the ids that became READY."""
        task = self._transition(task_id, TaskStatus.RUNNING, TaskStatus.COMPLETED)
        task.result = result
        task.error = None

        newly_ready: list[str] = []
        for succ_id in self._dependents[task_id]:
            succ = self._tasks[succ_id]
            if succ.status is TaskStatus.PENDING and all(
                self._tasks[d].status is TaskStatus.COMPLETED for d in succ.depends_on
            ):
                succ.status = TaskStatus.READY
                newly_ready.append(succ_id)
        return newly_ready

    def mark_failed(self, task_id: str, error: BaseException) -> list[str]:
        """Fail a RUNNING task. Returns the ids that were skipped as a consequence."""
        task = self._transition(task_id, TaskStatus.RUNNING, TaskStatus.FAILED)
        task.error = error
        task.result = None
        if self.failure_policy is FailurePolicy.BEST_EFFORT:
            return []
        return self._skip_downstream(task_id)

    def _skip_downstream(self, task_id: str) -> list[str]:
        skipped: list[str] = []
        queue = deque(self._dependents[task_id])
        while queue:
            succ = self._tasks[queue.popleft()]
            if succ.status in (TaskStatus.PENDING, TaskStatus.READY):
                succ.status = TaskStatus.SKIPPED
                skipped.append(succ.id)
                queue.extend(self._dependents[succ.id])
        return skipped

    def _transition(self, task_id: str, expected: TaskStatus, target: TaskStatus) -> Task:
        task = self.get(task_id)
        if task.status is not expected:
            raise InvalidTransitionError(task_id, task.status.value, target.value)
        task.status = target
        logger.debug("Task %s: %s -> %s", task_id, expected.value, target.value)
        return task

    # -- queries ----------------------------------------------------------

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise UnknownTaskError(f"Unknown task: {task_id!r}") from None

    def predecessors(self, task_id: str) -> list[str]:
        return list(self.get(task_id).depends_on)

    def dependents(self, task_id: str) -> list[str]:
        self.get(task_id)
        return list(self._dependents[task_id])

    def with_status(self, *statuses: TaskStatus) -> list[str]:
        return [tid for tid, t in self._tasks.items() if t.status in statuses]

    @property
    def task_ids(self) -> list[str]:
        return list(self._tasks)

    @property
    def levels(self) -> list[list[str]]:
        """Topological ordering grouped into levels of mutually independent tasks."""
        in_degree = {tid: len(t.depends_on) for tid, t in self._tasks.items()}
        level = [tid for tid, deg in in_degree.items() if deg == 0]
        levels: list[list[str]] = []

        while level:
            levels.append(level)
            next_level: list[str] = []
            for tid in level:
                for succ in self._dependents[tid]:
                    in_degree[succ] -= 1
                    if in_degree[succ] == 0:
                        next_level.append(succ)
            level = sorted(next_level, key=self.task_ids.index)

        return levels

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __repr__(self) -> str:
        edges = sum(len(s) for s in self._dependents.values())
        return f"TaskGraph(tasks={len(self._tasks)}, edges={edges})"
