"""Retry, backoff and circuit breaking around external calls."""

from crewflow.resilience.circuit import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from crewflow.resilience.invoker import ResilienceConfig, ResilientInvoker, backoff_delay

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ResilienceConfig",
    "ResilientInvoker",
    "backoff_delay",
]
