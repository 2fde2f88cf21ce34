"""Experiment router — deterministic A/B assignment of callers to crew variants."""

import asyncio
import hashlib
import logging
import threading
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from crewflow.core.crew import Crew, CrewReport
from crewflow.errors import CrewConfigError

logger = logging.getLogger(__name__)

_HASH_SPACE = 2**64


@dataclass
class VariantStats:
    runs: int = 0
    successes: int = 0
    total_duration_ms: float = 0.0

    @property
    def success_rate(self) -> float | None:
        return self.successes / self.runs if self.runs else None

    @property
    def mean_duration_ms(self) -> float | None:
        return self.total_duration_ms / self.runs if self.runs else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "successes": self.successes,
            "success_rate": self.success_rate,
            "mean_duration_ms": self.mean_duration_ms,
        }


class ExperimentRouter:
    """Assign callers to variants by hashing their key into cumulative buckets.

    ``splits`` maps variant name to a positive weight; weights are normalized.
    ``assign`` depends only on the experiment name, the caller key and the
    splits, so it is stable across processes. The first assignment of a key
    is memoized and never changes afterwards.

    ``record_outcome`` only appends to a queue; ``stats`` folds the queue into
    per-variant aggregates when someone asks for them.
    """

    def __init__(self, name: str, splits: Mapping[str, float]) -> None:
        if not splits:
            raise CrewConfigError(f"Experiment {name!r} needs at least one variant")
        bad = [v for v, w in splits.items() if w <= 0]
        if bad:
            raise CrewConfigError(f"Experiment {name!r}: weights must be > 0 (got {bad})")

        self.name = name
        total = float(sum(splits.values()))
        self.splits = {v: w / total for v, w in splits.items()}
        self._buckets: list[tuple[float, str]] = []
        cumulative = 0.0
        for variant, share in self.splits.items():
            cumulative += share
            self._buckets.append((cumulative, variant))

        self._assignments: dict[str, str] = {}
        self._outcomes: deque[tuple[str, bool, float]] = deque()
        self._stats = {v: VariantStats() for v in self.splits}
        self._stats_lock = threading.Lock()

    @property
    def variants(self) -> list[str]:
        return list(self.splits)

    def _bucket(self, caller_key: str) -> str:
        digest = hashlib.sha256(f"{self.name}:{caller_key}".encode()).digest()
        point = int.from_bytes(digest[:8], "big") / _HASH_SPACE
        for bound, variant in self._buckets:
            if point < bound:
                return variant
        # float rounding can leave the last bound a hair below 1.0
        return self._buckets[-1][1]

    def assign(self, caller_key: str) -> str:
        variant = self._assignments.get(caller_key)
        if variant is None:
            variant = self._assignments.setdefault(caller_key, self._bucket(caller_key))
            logger.debug("Experiment %s: %s -> %s", self.name, caller_key, variant)
        return variant

    def assignments(self) -> dict[str, str]:
        return dict(self._assignments)

    def record_outcome(self, variant: str, success: bool, duration_ms: float) -> None:
        if variant not in self._stats:
            raise KeyError(f"Unknown variant {variant!r} for experiment {self.name!r}")
        self._outcomes.append((variant, success, duration_ms))

    def stats(self) -> dict[str, VariantStats]:
        with self._stats_lock:
            while self._outcomes:
                variant, success, duration_ms = self._outcomes.popleft()
                s = self._stats[variant]
                s.runs += 1
                s.successes += int(success)
                s.total_duration_ms += duration_ms
            return {v: replace(s) for v, s in self._stats.items()}


class Experiment:
    """Run each caller on the crew of the variant it is assigned to.

    A ``Crew`` runs one graph at a time, so concurrent callers landing on the
    same variant wait their turn on that variant's lock.
    """

    def __init__(self, router: ExperimentRouter, crews: Mapping[str, Crew]) -> None:
        missing = set(router.variants) - set(crews)
        extra = set(crews) - set(router.variants)
        if missing or extra:
            raise CrewConfigError(
                f"Experiment {router.name!r}: crews do not match variants "
                f"(missing={sorted(missing)}, extra={sorted(extra)})"
            )
        self.router = router
        self.crews = dict(crews)
        self._locks = {variant: asyncio.Lock() for variant in self.crews}

    async def run(
        self,
        caller_key: str,
        inputs: Mapping[str, Any] | None = None,
    ) -> tuple[str, CrewReport]:
        variant = self.router.assign(caller_key)
        logger.info(
            "Experiment %s: running variant %s for %s", self.router.name, variant, caller_key
        )
        async with self._locks[variant]:
            report = await self.crews[variant].run(inputs)
        self.router.record_outcome(variant, report.success, report.duration_ms)
        return variant, report
