"""Context — task results shared across one crew run."""

import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any

_TEMPLATE_RE = re.compile(r"\{([^{}]+)\}")


def format_template(template: str, values: Mapping[str, Any]) -> str:
    """Replace ``{key}`` placeholders with values from ``values``.

    Dotted keys like ``{research.summary}`` look up ``summary`` inside the
    mapping stored under ``research``. Missing keys are left as-is.
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in values:
            return str(values[key])
        head, _, rest = key.partition(".")
        value = values.get(head)
        for part in rest.split(".") if rest else ():
            if not isinstance(value, Mapping) or part not in value:
                return match.group(0)
            value = value[part]
        if rest and value is not None:
            return str(value)
        return match.group(0)

    return _TEMPLATE_RE.sub(_replace, template)


class Context:
    """Caller inputs plus the result of every completed task, keyed by task id.

    Only the crew coordinator writes (``set``), and only after a task has
    completed. Executors get ``snapshot()`` copies, never the live mapping.
    """

    def __init__(self, inputs: Mapping[str, Any] | None = None) -> None:
        self._inputs: dict[str, Any] = dict(inputs) if inputs else {}
        self._results: dict[str, Any] = {}

    @property
    def inputs(self) -> Mapping[str, Any]:
        return MappingProxyType(self._inputs)

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._results:
            return self._results[key]
        return self._inputs.get(key, default)

    def set(self, task_id: str, result: Any) -> None:
        self._results[task_id] = result

    def snapshot(self, task_ids: Iterable[str] | None = None) -> Mapping[str, Any]:
        """Read-only copy of the inputs plus the results of ``task_ids`` (default: all)."""
        if task_ids is None:
            results = dict(self._results)
        else:
            results = {tid: self._results[tid] for tid in task_ids if tid in self._results}
        return MappingProxyType({**self._inputs, **results})

    def format_template(self, template: str) -> str:
        return format_template(template, self.snapshot())

    def __contains__(self, key: str) -> bool:
        return key in self._results or key in self._inputs

    def __len__(self) -> int:
        return len(self._results)

    def __repr__(self) -> str:
        return f"Context(inputs={self._inputs!r}, results={self._results!r})"
