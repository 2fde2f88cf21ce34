"""Built-in executor types."""

from crewflow.executors.claude import ClaudeExecutor
from crewflow.executors.function import EchoExecutor, FunctionExecutor

__all__ = [
    "ClaudeExecutor",
    "EchoExecutor",
    "FunctionExecutor",
]
