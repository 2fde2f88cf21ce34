"""ClaudeExecutor — Anthropic SDK-based executor."""

import logging
from collections.abc import Mapping, Sequence
from typing import Any

import anthropic

from crewflow.core.context import format_template
from crewflow.core.executor import Executor
from crewflow.core.task import Task
from crewflow.memory.base import MemoryEntry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"

DELEGATE_PROMPT = """You manage a team. Pick the member best suited for the task below.

## Team
{roster}

## Task
{task}

Answer with the member's role only."""


class ClaudeExecutor(Executor):
    """Perform tasks through the Anthropic Messages API.

    Uses ``AsyncAnthropic`` with lazy client initialization. The task
    description is formatted with the inputs, and results of the task's
    dependencies are appended as sections. With a memory configured, entries
    relevant to the task are included and every result is saved.
    """

    def __init__(
        self,
        name: str,
        *,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 4096,
        **kwargs: Any,
    ) -> None:
        super().__init__(name, **kwargs)
        self.model = model
        self.max_tokens = max_tokens
        self._client: anthropic.AsyncAnthropic | None = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic()
        return self._client

    def _system_prompt(self) -> str:
        parts = [f"You are {self.profile.role}."]
        if self.profile.goal:
            parts.append(f"Your goal: {self.profile.goal}")
        if self.profile.backstory:
            parts.append(self.profile.backstory)
        return "\n".join(parts)

    async def _complete(self, prompt: str) -> str:
        response = await self._get_client().messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=self._system_prompt(),
            messages=[{"role": "user", "content": prompt}],
        )
        logger.debug(
            "%s: %s used %d input / %d output tokens",
            self.name,
            response.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response.content[0].text if response.content else ""

    async def run(self, task: Task, inputs: Mapping[str, Any]) -> str:
        sections = [format_template(task.description, inputs)]
        if task.expected_output:
            sections.append(f"## Expected output\n{task.expected_output}")
        for dep in task.depends_on:
            if dep in inputs:
                sections.append(f"## Result of {dep}\n{inputs[dep]}")

        if self.memory is not None:
            history = await self.memory.load(self.name, query=task.description)
            if history:
                sections.append("## Memory\n" + "\n".join(f"- {e.content}" for e in history))

        text = await self._complete("\n\n".join(sections))

        if self.memory is not None:
            await self.memory.save(self.name, MemoryEntry(text, {"task": task.id}))
        return text

    async def delegate(self, task: Task, candidates: Sequence[Executor]) -> Executor:
        if not self.allow_delegation:
            return await super().delegate(task, candidates)
        roster = "\n".join(
            f"- {c.role}" + (f": {c.profile.goal}" if c.profile.goal else "") for c in candidates
        )
        answer = await self._complete(
            DELEGATE_PROMPT.format(roster=roster, task=task.description)
        )
        wanted = answer.strip().strip(".").lower()
        for candidate in candidates:
            if candidate.role.lower() == wanted:
                return candidate
        logger.info("%s: no member matches %r, using default assignment", self.name, answer)
        return await super().delegate(task, candidates)
