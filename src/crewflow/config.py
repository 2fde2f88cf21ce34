"""Crew definitions — build crews and experiments from YAML files.

Example::

    process: hierarchical
    concurrency: 4
    max_rpm: 30
    resilience: {max_retries: 3, base_delay: 1.0}
    manager: lead
    agents:
      lead: {role: Lead, kind: claude, allow_delegation: true}
      researcher:
        role: Researcher
        goal: Find sources
        memory: {type: window, size: 10}
    tasks:
      - id: research
        description: Research {topic}
        agent: researcher
      - id: write
        description: Write an article
        depends_on: [research]
    experiment:
      name: process-ab
      variants:
        control: {weight: 1}
        parallel: {weight: 1, concurrency: 8}
"""

import logging
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from crewflow.core.crew import DEFAULT_CONCURRENCY, DEFAULT_GRACE_PERIOD, Crew, Process
from crewflow.core.executor import AgentProfile, Executor
from crewflow.core.graph import FailurePolicy, TaskGraph
from crewflow.core.task import Task
from crewflow.errors import CrewConfigError
from crewflow.executors.claude import ClaudeExecutor
from crewflow.executors.function import EchoExecutor
from crewflow.experiment import Experiment, ExperimentRouter
from crewflow.memory.base import MemoryStore
from crewflow.memory.buffer import BufferMemory, WindowMemory
from crewflow.memory.retrieval import RetrievalMemory
from crewflow.memory.summary import SummaryMemory
from crewflow.resilience.invoker import ResilienceConfig, ResilientInvoker

logger = logging.getLogger(__name__)

EXECUTOR_KINDS: dict[str, type[Executor]] = {
    "echo": EchoExecutor,
    "claude": ClaudeExecutor,
}

# crew-level keys a variant may override
VARIANT_KEYS = frozenset({"process", "concurrency", "max_rpm", "failure_policy", "manager"})


def read_definition(path: str | Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as e:
        raise CrewConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise CrewConfigError(f"{path}: expected a mapping at the top level")
    return data


def load_crew(path: str | Path) -> Crew:
    return build_crew(read_definition(path))


def load_experiment(path: str | Path) -> Experiment | None:
    """Return the experiment defined in ``path``, or None if it defines none."""
    data = read_definition(path)
    if "experiment" not in data:
        return None
    return build_experiment(data)


def parse_resilience(raw: Any, base: ResilienceConfig | None = None) -> ResilienceConfig | None:
    """Build a ``ResilienceConfig``; keys missing from ``raw`` fall back to ``base``."""
    if raw is None:
        return base
    if not isinstance(raw, Mapping):
        raise CrewConfigError(f"resilience must be a mapping, got {type(raw).__name__}")
    known = {f.name for f in fields(ResilienceConfig)}
    unknown = set(raw) - known
    if unknown:
        raise CrewConfigError(f"Unknown resilience option(s): {sorted(unknown)}")
    base = base or ResilienceConfig()
    defaults = {f.name: getattr(base, f.name) for f in fields(ResilienceConfig)}
    try:
        return ResilienceConfig(**{**defaults, **raw})
    except (TypeError, ValueError) as e:
        raise CrewConfigError(f"Invalid resilience config: {e}") from e


def _enum(enum_type: Any, value: Any, what: str) -> Any:
    try:
        return enum_type(str(value).lower())
    except ValueError:
        allowed = [m.value for m in enum_type]
        raise CrewConfigError(f"Unknown {what} {value!r} (expected one of {allowed})") from None


def _build_executor(name: str, spec: Mapping[str, Any]) -> Executor:
    kind = spec.get("kind", "echo")
    cls = EXECUTOR_KINDS.get(kind)
    if cls is None:
        raise CrewConfigError(f"Agent {name!r}: unknown kind {kind!r}")

    kwargs: dict[str, Any] = {
        "profile": AgentProfile(
            role=spec.get("role", name),
            goal=spec.get("goal", ""),
            backstory=spec.get("backstory", ""),
        ),
        "allow_delegation": bool(spec.get("allow_delegation", False)),
        "max_iterations": int(spec.get("max_iterations", 15)),
        "max_execution_time": spec.get("max_execution_time"),
        "resilience": parse_resilience(spec.get("resilience")),
    }
    if cls is ClaudeExecutor:
        if "model" in spec:
            kwargs["model"] = spec["model"]
        if "max_tokens" in spec:
            kwargs["max_tokens"] = int(spec["max_tokens"])
    return cls(name, **kwargs)


def _build_memory(
    owner: str,
    spec: Mapping[str, Any],
    agents: Mapping[str, Executor],
    invoker: ResilientInvoker,
) -> MemoryStore:
    kind = spec.get("type", "buffer")
    if kind == "buffer":
        return BufferMemory()
    if kind == "window":
        return WindowMemory(int(spec.get("size", 10)))
    if kind == "retrieval":
        return RetrievalMemory(top_k=int(spec.get("top_k", 5)))
    if kind == "summary":
        summarizer_name = spec.get("summarizer", owner)
        summarizer = agents.get(summarizer_name)
        if summarizer is None:
            raise CrewConfigError(f"Agent {owner!r}: unknown summarizer {summarizer_name!r}")
        return SummaryMemory(
            summarizer,
            invoker=invoker,
            threshold=int(spec.get("threshold", 20)),
            keep_recent=int(spec.get("keep_recent", 4)),
        )
    raise CrewConfigError(f"Agent {owner!r}: unknown memory type {kind!r}")


def build_crew(data: Mapping[str, Any]) -> Crew:
    """Build a fresh crew (new executors, graph and invoker) from a parsed definition."""
    agent_specs = data.get("agents") or {}
    if not isinstance(agent_specs, Mapping) or not agent_specs:
        raise CrewConfigError("A crew needs at least one agent")

    invoker = ResilientInvoker(parse_resilience(data.get("resilience")))
    agents = {name: _build_executor(name, spec or {}) for name, spec in agent_specs.items()}
    for name, spec in agent_specs.items():
        memory_spec = (spec or {}).get("memory")
        if memory_spec:
            if isinstance(memory_spec, str):
                memory_spec = {"type": memory_spec}
            agents[name].memory = _build_memory(name, memory_spec, agents, invoker)

    manager: Executor | None = None
    manager_name = data.get("manager")
    if manager_name is not None:
        manager = agents.get(manager_name)
        if manager is None:
            raise CrewConfigError(f"Unknown manager {manager_name!r}")

    tasks: list[Task] = []
    for raw in data.get("tasks") or []:
        if "id" not in raw:
            raise CrewConfigError(f"Task without id: {raw!r}")
        agent_name = raw.get("agent")
        if agent_name is not None and agent_name not in agents:
            raise CrewConfigError(f"Task {raw['id']!r}: unknown agent {agent_name!r}")
        tasks.append(
            Task(
                id=str(raw["id"]),
                description=raw.get("description", ""),
                expected_output=raw.get("expected_output", ""),
                executor=agents.get(agent_name) if agent_name else None,
                depends_on=[str(d) for d in raw.get("depends_on") or []],
            )
        )

    policy = _enum(FailurePolicy, data.get("failure_policy", "fail_fast"), "failure policy")
    graph = TaskGraph.from_tasks(tasks, failure_policy=policy)
    return Crew(
        graph,
        [a for a in agents.values() if a is not manager],
        process=_enum(Process, data.get("process", "sequential"), "process"),
        manager=manager,
        concurrency=int(data.get("concurrency", DEFAULT_CONCURRENCY)),
        max_rpm=data.get("max_rpm"),
        cancel_grace_period=float(data.get("cancel_grace_period", DEFAULT_GRACE_PERIOD)),
        invoker=invoker,
    )


def build_experiment(data: Mapping[str, Any]) -> Experiment:
    spec = data.get("experiment")
    if not isinstance(spec, Mapping):
        raise CrewConfigError("experiment must be a mapping")
    variants = spec.get("variants") or {}
    if not isinstance(variants, Mapping) or not variants:
        raise CrewConfigError("experiment needs at least one variant")

    splits: dict[str, float] = {}
    crews: dict[str, Crew] = {}
    for name, variant in variants.items():
        variant = dict(variant or {})
        splits[name] = float(variant.pop("weight", 1.0))
        unknown = set(variant) - VARIANT_KEYS
        if unknown:
            raise CrewConfigError(f"Variant {name!r}: cannot override {sorted(unknown)}")
        crews[name] = build_crew({**data, **variant})
        logger.debug("Built crew for variant %s: %r", name, crews[name])

    router = ExperimentRouter(str(spec.get("name", "experiment")), splits)
    return Experiment(router, crews)
