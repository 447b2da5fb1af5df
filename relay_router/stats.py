import math
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from .latency import ProbeSample, ProbeStatus
from .relays import Endpoint


def mean(values: Sequence[float]) -> float | None:
    if not values:
        return None
    # fsum is correctly rounded, so the result does not depend on value order
    return math.fsum(values) / len(values)


def median(values: Sequence[float]) -> float | None:
    if not values:
        return None
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[middle]
    return (ordered[middle - 1] + ordered[middle]) / 2


@dataclass(frozen=True)
class EndpointStats:
    endpoint: Endpoint
    samples: tuple[ProbeSample, ...]
    success_count: int
    failure_count: int
    mean_ms: float | None
    median_ms: float | None
    complete: bool = True

    @property
    def reachable(self) -> bool:
        return self.success_count > 0

    @property
    def resolution_failed(self) -> bool:
        """True when the relay never answered because its name never resolved."""
        failures = self.failures_by_status()
        return not self.reachable and set(failures) == {ProbeStatus.RESOLUTION_FAILED}

    def failures_by_status(self) -> Counter:
        """Count failed rounds per failure kind."""
        return Counter(s.outcome.status for s in self.samples if not s.outcome.ok)


def finalize(endpoint: Endpoint, samples: Sequence[ProbeSample],
             rounds: int | None = None) -> EndpointStats:
    """
    Reduce one endpoint's raw samples to summary statistics.

    Mean and median cover successful rounds only and are None when no round
    succeeded; such endpoints are kept and reported as unreachable. When
    ``rounds`` is given, ``complete`` tells whether every round was sampled.
    """
    samples = tuple(samples)
    durations = [s.outcome.duration_ms for s in samples if s.outcome.ok]

    return EndpointStats(
        endpoint=endpoint,
        samples=samples,
        success_count=len(durations),
        failure_count=len(samples) - len(durations),
        mean_ms=mean(durations),
        median_ms=median(durations),
        complete=rounds is None or len(samples) >= rounds,
    )
