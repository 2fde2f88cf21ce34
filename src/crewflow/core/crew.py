"""Crew — runs a TaskGraph under a process policy and reports per-task outcomes."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from crewflow.core.context import Context
from crewflow.core.executor import Executor
from crewflow.core.graph import TaskGraph
from crewflow.core.rate_limit import RollingWindowLimiter
from crewflow.core.task import Task, TaskStatus
from crewflow.errors import (
    CrewConfigError,
    CrewflowError,
    DelegationError,
    RunCancelledError,
    RunFailedError,
)
from crewflow.resilience.invoker import ResilienceConfig, ResilientInvoker

logger = logging.getLogger(__name__)

# Tool keys the crew uses when it calls executors through the invoker
EXECUTE_TOOL = "execute"
DELEGATE_TOOL = "delegate"

DEFAULT_CONCURRENCY = 4
DEFAULT_GRACE_PERIOD = 5.0


class Process(Enum):
    SEQUENTIAL = "sequential"
    HIERARCHICAL = "hierarchical"


@dataclass
class TaskOutcome:
    status: TaskStatus
    result: Any = None
    error: str | None = None
    executor: str | None = None
    duration_ms: float = 0.0


@dataclass
class CrewReport:
    outcomes: dict[str, TaskOutcome] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)  # completion order
    duration_ms: float = 0.0
    error: RunFailedError | RunCancelledError | None = None

    @property
    def success(self) -> bool:
        return self.error is None and all(
            o.status is TaskStatus.COMPLETED for o in self.outcomes.values()
        )

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, RunCancelledError)

    def _with_status(self, *statuses: TaskStatus) -> list[str]:
        return [tid for tid, o in self.outcomes.items() if o.status in statuses]

    @property
    def completed(self) -> list[str]:
        return self._with_status(TaskStatus.COMPLETED)

    @property
    def failed(self) -> list[str]:
        return self._with_status(TaskStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self._with_status(TaskStatus.SKIPPED)

    @property
    def incomplete(self) -> list[str]:
        return [tid for tid, o in self.outcomes.items() if o.status is not TaskStatus.COMPLETED]

    @property
    def final_output(self) -> Any:
        """Result of the last task to complete, or None."""
        return self.outcomes[self.order[-1]].result if self.order else None

    def result(self, task_id: str) -> Any:
        return self.outcomes[task_id].result

    def summary(self) -> dict[str, Any]:
        by_status: dict[str, int] = {}
        for o in self.outcomes.values():
            by_status[o.status.value] = by_status.get(o.status.value, 0) + 1
        return {
            "total": len(self.outcomes),
            "by_status": by_status,
            "order": list(self.order),
            "duration_ms": self.duration_ms,
            "success": self.success,
            "cancelled": self.cancelled,
        }

    def raise_for_status(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass
class _Outcome:
    executor: str
    result: Any = None
    error: CrewflowError | None = None
    duration_ms: float = 0.0


class Crew:
    """Orchestrate a task graph across a set of executors.

    ``Process.SEQUENTIAL`` runs one task at a time in topological order, ties
    broken by insertion order; every task needs an assigned executor.

    ``Process.HIERARCHICAL`` asks ``manager`` to delegate each ready task and
    runs up to ``concurrency`` tasks at once. Delegation is one level deep:
    the chosen executor is never asked to delegate again.

    Every call into an executor goes through the shared ``ResilientInvoker``;
    the crew itself never retries. A failed call fails the task and the
    graph's failure policy decides what happens downstream.

    ``max_rpm`` caps dispatches per rolling minute. Dispatch waits for budget,
    tasks are never dropped.
    """

    def __init__(
        self,
        graph: TaskGraph,
        executors: Iterable[Executor],
        *,
        process: Process = Process.SEQUENTIAL,
        manager: Executor | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_rpm: int | None = None,
        resilience: ResilienceConfig | None = None,
        cancel_grace_period: float = DEFAULT_GRACE_PERIOD,
        invoker: ResilientInvoker | None = None,
        limiter: RollingWindowLimiter | None = None,
    ) -> None:
        self.graph = graph
        self.executors: dict[str, Executor] = {}
        for ex in executors:
            if ex.name in self.executors:
                raise CrewConfigError(f"Duplicate executor name: {ex.name!r}")
            self.executors[ex.name] = ex
        self.process = process
        self.manager = manager
        self.concurrency = concurrency
        self.cancel_grace_period = cancel_grace_period
        self.invoker = invoker or ResilientInvoker(resilience)
        self.limiter = limiter or RollingWindowLimiter(max_rpm)
        self._validate()

        for ex in self._participants():
            ex.bind(self.invoker)

        self.context = Context()
        self._stop = asyncio.Event()
        self._running = False
        self._in_flight: dict[asyncio.Future[_Outcome], str] = {}
        self._outcomes: dict[str, _Outcome] = {}
        self._order: list[str] = []

    def _participants(self) -> list[Executor]:
        members = list(self.executors.values())
        if self.manager is not None and all(m is not self.manager for m in members):
            members.append(self.manager)
        return members

    def _validate(self) -> None:
        if self.concurrency < 1:
            raise CrewConfigError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.cancel_grace_period < 0:
            raise CrewConfigError("cancel_grace_period must be >= 0")

        members = self._participants()
        for task in self.graph:
            if task.executor is None:
                if self.process is Process.SEQUENTIAL:
                    raise CrewConfigError(f"Task {task.id!r} has no executor")
                continue
            if all(m is not task.executor for m in members):
                raise CrewConfigError(
                    f"Task {task.id!r} is assigned to {task.executor.name!r}, "
                    "which is not part of the crew"
                )

        if self.process is Process.HIERARCHICAL:
            if self.manager is None:
                raise CrewConfigError("Hierarchical process requires a manager")
            if not self.manager.allow_delegation:
                raise CrewConfigError(
                    f"Manager {self.manager.name!r} must have allow_delegation=True"
                )

    # -- public API -------------------------------------------------------

    def cancel(self) -> None:
        """Stop dispatching; in-flight tasks get the grace period, then are interrupted.

        Only meaningful while ``run`` is in progress.
        """
        self._stop.set()

    async def run(
        self,
        inputs: Mapping[str, Any] | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> CrewReport:
        if self._running:
            raise RuntimeError("Crew is already running")
        self._running = True
        start = time.monotonic()

        self.graph.reset()
        self.context = Context(inputs)
        self._stop = asyncio.Event()
        self._in_flight.clear()
        self._outcomes.clear()
        self._order.clear()

        watcher = asyncio.ensure_future(self._forward(cancel_event)) if cancel_event else None
        logger.info("Starting %s run: %d task(s)", self.process.value, len(self.graph))
        try:
            if self.process is Process.SEQUENTIAL:
                await self._run_sequential()
            else:
                await self._run_hierarchical()
        finally:
            if watcher is not None:
                watcher.cancel()
            self._running = False

        report = self._build_report()
        report.duration_ms = round((time.monotonic() - start) * 1000, 1)
        logger.info("Run finished in %.0fms: %s", report.duration_ms, report.summary()["by_status"])
        return report

    async def _forward(self, event: asyncio.Event) -> None:
        await event.wait()
        self._stop.set()

    # -- process policies -------------------------------------------------

    async def _run_sequential(self) -> None:
        while not self._stop.is_set():
            task = next(self.graph.ready_tasks(), None)
            if task is None:
                return
            if not await self._until_stopped(self.limiter.acquire()):
                return
            assert task.executor is not None
            self._dispatch(task, self._perform(task, task.executor))
            while self._in_flight:
                await self._collect_next()

    async def _run_hierarchical(self) -> None:
        while True:
            while not self._stop.is_set() and len(self._in_flight) < self.concurrency:
                task = next(self.graph.ready_tasks(), None)
                if task is None:
                    break
                if not await self._until_stopped(self.limiter.acquire()):
                    break
                self._dispatch(task, self._delegate_and_perform(task))
            if not self._in_flight:
                return
            await self._collect_next()

    # -- dispatch and collection (coordinator only) -----------------------

    def _dispatch(self, task: Task, work: Awaitable[_Outcome]) -> None:
        self.graph.mark_running(task.id)
        logger.info("Dispatching %s", task.id)
        self._in_flight[asyncio.ensure_future(work)] = task.id

    async def _until_stopped(self, aw: Awaitable[Any]) -> bool:
        """Await ``aw`` unless the run is cancelled first. True if ``aw`` finished."""
        job = asyncio.ensure_future(aw)
        stop = asyncio.ensure_future(self._stop.wait())
        done, _ = await asyncio.wait({job, stop}, return_when=asyncio.FIRST_COMPLETED)
        for fut in (job, stop):
            if fut not in done:
                fut.cancel()
        if job not in done:
            await asyncio.gather(job, return_exceptions=True)
            return False
        job.result()
        return not self._stop.is_set()

    async def _collect_next(self) -> None:
        stop = asyncio.ensure_future(self._stop.wait())
        done, _ = await asyncio.wait(
            {*self._in_flight, stop}, return_when=asyncio.FIRST_COMPLETED
        )
        if stop not in done:
            stop.cancel()
        for job in done:
            if job in self._in_flight:
                self._apply(self._in_flight.pop(job), job.result())
        if self._stop.is_set():
            await self._wind_down()

    async def _wind_down(self) -> None:
        if not self._in_flight:
            return
        logger.warning(
            "Cancellation requested, waiting up to %.1fs for %d running task(s)",
            self.cancel_grace_period,
            len(self._in_flight),
        )
        done, pending = await asyncio.wait(self._in_flight, timeout=self.cancel_grace_period)
        for job in done:
            self._apply(self._in_flight.pop(job), job.result())
        for job in pending:
            job.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for job in pending:
            task_id = self._in_flight.pop(job)
            logger.warning("Interrupted %s", task_id)
            self.graph.mark_failed(task_id, RunCancelledError([task_id]))

    def _apply(self, task_id: str, outcome: _Outcome) -> None:
        """Record a finished task. The only place the shared context is written."""
        self._outcomes[task_id] = outcome
        if outcome.error is None:
            self.context.set(task_id, outcome.result)
            self.graph.mark_completed(task_id, outcome.result)
            self._order.append(task_id)
            logger.info("Completed %s (%s, %.0fms)", task_id, outcome.executor, outcome.duration_ms)
            return

        skipped = self.graph.mark_failed(task_id, outcome.error)
        logger.warning("Task %s failed: %s", task_id, outcome.error)
        if skipped:
            logger.warning("Skipping downstream of %s: %s", task_id, skipped)

    # -- workers ----------------------------------------------------------

    async def _perform(self, task: Task, executor: Executor) -> _Outcome:
        inputs = self.context.snapshot(task.depends_on)
        start = time.monotonic()
        try:
            result = await self.invoker.invoke(
                executor.execute,
                task,
                inputs,
                key=(executor.name, EXECUTE_TOOL),
                config=executor.resilience,
            )
            task.validate(result)
        except CrewflowError as e:
            return _Outcome(executor.name, error=e, duration_ms=_elapsed_ms(start))
        return _Outcome(executor.name, result=result, duration_ms=_elapsed_ms(start))

    async def _delegate_and_perform(self, task: Task) -> _Outcome:
        assert self.manager is not None
        candidates = self._participants()
        try:
            chosen = await self.invoker.invoke(
                self.manager.delegate,
                task,
                candidates,
                key=(self.manager.name, DELEGATE_TOOL),
                config=self.manager.resilience,
            )
        except CrewflowError as e:
            return _Outcome(self.manager.name, error=e)

        if all(c is not chosen for c in candidates):
            return _Outcome(
                self.manager.name,
                error=DelegationError(
                    f"Manager {self.manager.name!r} delegated {task.id!r} to {chosen!r}, "
                    "which is not part of the crew"
                ),
            )
        logger.info("%s delegated %s to %s", self.manager.name, task.id, chosen.name)
        return await self._perform(task, chosen)

    # -- reporting --------------------------------------------------------

    def _build_report(self) -> CrewReport:
        report = CrewReport(order=list(self._order))
        for task in self.graph:
            outcome = self._outcomes.get(task.id)
            error: str | None = None
            if task.error is not None:
                error = str(task.error)
            elif task.status is TaskStatus.SKIPPED:
                error = "upstream dependency failed"
            report.outcomes[task.id] = TaskOutcome(
                status=task.status,
                result=task.result,
                error=error,
                executor=outcome.executor if outcome else None,
                duration_ms=outcome.duration_ms if outcome else 0.0,
            )

        incomplete = report.incomplete
        if self._stop.is_set() and incomplete:
            report.error = RunCancelledError(incomplete)
        elif incomplete:
            report.error = RunFailedError(
                failed=report.failed,
                skipped=report.skipped,
                pending=[
                    tid
                    for tid, o in report.outcomes.items()
                    if o.status in (TaskStatus.PENDING, TaskStatus.READY)
                ],
            )
        return report

    def __repr__(self) -> str:
        return (
            f"Crew(process={self.process.value}, tasks={len(self.graph)}, "
            f"executors={list(self.executors)})"
        )


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
