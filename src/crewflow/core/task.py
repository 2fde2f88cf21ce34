"""Task dataclass and TaskStatus enum."""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from crewflow.errors import OutputValidationError

if TYPE_CHECKING:
    from crewflow.core.executor import Executor


class TaskStatus(Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED})


@dataclass(eq=False)
class Task:
    """A unit of work with declared dependencies and a lifecycle status.

    ``description`` and ``expected_output`` are opaque to the engine and only
    passed through to the executor. ``validator``, if given, is called with the
    result and must return True for the task to complete.

    ``status``, ``result`` and ``error`` are owned by the ``TaskGraph``.
    """

    id: str
    description: str = ""
    expected_output: str = ""
    executor: "Executor | None" = None
    depends_on: list[str] = field(default_factory=list)
    validator: Callable[[Any], bool] | None = None
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: BaseException | None = None

    def validate(self, result: Any) -> None:
        """Raise ``OutputValidationError`` if ``result`` breaks the expected-output contract."""
        if self.validator is None:
            return
        try:
            ok = self.validator(result)
        except Exception as e:
            raise OutputValidationError(f"Validator for task {self.id!r} raised: {e}") from e
        if not ok:
            raise OutputValidationError(
                f"Output of task {self.id!r} does not match expected output"
                + (f" ({self.expected_output})" if self.expected_output else "")
            )

    def __repr__(self) -> str:
        return f"Task({self.id!r}, status={self.status.value})"
