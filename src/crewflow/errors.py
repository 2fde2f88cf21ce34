"""Exception hierarchy shared by the graph, the invoker and the crew."""

from collections.abc import Iterable, Sequence


class CrewflowError(Exception):
    """Base class for all crewflow errors."""


# ---------------------------------------------------------------------------
# Graph construction and lifecycle
# ---------------------------------------------------------------------------


class GraphError(CrewflowError):
    """Misuse of the task graph. Always fatal to the call that triggered it."""


class CycleError(GraphError):
    """Raised when a dependency would make the graph cyclic."""


class DuplicateIdError(GraphError):
    """Raised when a task id is added twice."""


class UnknownTaskError(GraphError, KeyError):
    """Raised when a task id (or a dependency id) is not in the graph."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class InvalidTransitionError(GraphError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        super().__init__(f"Task {task_id!r} cannot move from {current} to {target}")
        self.task_id = task_id
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# Resilience
# ---------------------------------------------------------------------------


class CircuitOpenError(CrewflowError):
    """The circuit for this (executor, tool) pair is open. Retry later."""

    def __init__(self, key: tuple[str, str], retry_after: float = 0.0) -> None:
        super().__init__(
            f"Circuit open for {key[0]}/{key[1]} (retry in {max(retry_after, 0.0):.1f}s)"
        )
        self.key = key
        self.retry_after = retry_after


class InvocationError(CrewflowError):
    """An external call failed on every allowed attempt."""

    def __init__(self, key: tuple[str, str], attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"{key[0]}/{key[1]} failed after {attempts} attempt(s): "
            f"{type(last_error).__name__}: {last_error}"
        )
        self.key = key
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class DelegationError(CrewflowError):
    """The manager picked an executor that is not part of the crew."""


class OutputValidationError(CrewflowError):
    """A task result was rejected by its expected-output validator."""


class IterationLimitError(CrewflowError):
    """An executor used more tool calls than its ``max_iterations`` budget."""


class CrewConfigError(CrewflowError, ValueError):
    """Invalid crew, executor or experiment configuration."""


class RunCancelledError(CrewflowError):
    """The run was cancelled before every task completed. Not a fault."""

    def __init__(self, incomplete: Iterable[str]) -> None:
        self.incomplete: list[str] = list(incomplete)
        super().__init__(f"Run cancelled; incomplete tasks: {', '.join(self.incomplete) or '-'}")


class RunFailedError(CrewflowError):
    """Aggregate failure of a run: lists every task that did not complete."""

    def __init__(
        self,
        failed: Sequence[str],
        skipped: Sequence[str] = (),
        pending: Sequence[str] = (),
    ) -> None:
        self.failed = list(failed)
        self.skipped = list(skipped)
        self.pending = list(pending)
        parts = [f"failed={self.failed}"]
        if self.skipped:
            parts.append(f"skipped={self.skipped}")
        if self.pending:
            parts.append(f"pending={self.pending}")
        super().__init__("Run did not complete: " + ", ".join(parts))
