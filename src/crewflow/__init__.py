"""Dependency-aware task orchestration across agent crews."""

from crewflow.core.context import Context
from crewflow.core.crew import Crew, CrewReport, Process, TaskOutcome
from crewflow.core.executor import AgentProfile, Executor, Tool
from crewflow.core.graph import FailurePolicy, TaskGraph
from crewflow.core.task import Task, TaskStatus
from crewflow.experiment import Experiment, ExperimentRouter
from crewflow.resilience import CircuitBreaker, CircuitState, ResilienceConfig, ResilientInvoker

__all__ = [
    "AgentProfile",
    "CircuitBreaker",
    "CircuitState",
    "Context",
    "Crew",
    "CrewReport",
    "Executor",
    "Experiment",
    "ExperimentRouter",
    "FailurePolicy",
    "Process",
    "ResilienceConfig",
    "ResilientInvoker",
    "Task",
    "TaskGraph",
    "TaskOutcome",
    "TaskStatus",
    "Tool",
]
