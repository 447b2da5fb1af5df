from dataclasses import dataclass

from .errors import ProbeConfigError

DEFAULT_ROUNDS = 4
DEFAULT_TIMEOUT = 0.75      # seconds per connection attempt
DEFAULT_INTERVAL = 0.05     # seconds between rounds against the same relay
DEFAULT_CONCURRENCY = 64


@dataclass(frozen=True)
class ProbeConfig:
    rounds: int = DEFAULT_ROUNDS
    timeout: float = DEFAULT_TIMEOUT
    interval: float = DEFAULT_INTERVAL
    max_concurrency: int = DEFAULT_CONCURRENCY
    deadline: float | None = None  # overall run deadline in seconds

    def __post_init__(self):
        if self.rounds <= 0:
            raise ProbeConfigError(f"Round count must be positive, got {self.rounds}")
        if self.timeout <= 0:
            raise ProbeConfigError(f"Timeout must be positive, got {self.timeout}")
        if self.interval < 0:
            raise ProbeConfigError(f"Interval cannot be negative, got {self.interval}")
        if self.max_concurrency <= 0:
            raise ProbeConfigError(
                f"Max concurrency must be positive, got {self.max_concurrency}"
            )
        if self.deadline is not None and self.deadline <= 0:
            raise ProbeConfigError(f"Deadline must be positive, got {self.deadline}")

    @classmethod
    def from_millis(
        cls,
        rounds: int = DEFAULT_ROUNDS,
        timeout_ms: float = DEFAULT_TIMEOUT * 1000,
        interval_ms: float = DEFAULT_INTERVAL * 1000,
        max_concurrency: int = DEFAULT_CONCURRENCY,
        deadline: float | None = None,
    ) -> "ProbeConfig":
        """Build a config from the millisecond values the CLI takes."""
        return cls(
            rounds=rounds,
            timeout=timeout_ms / 1000.0,
            interval=interval_ms / 1000.0,
            max_concurrency=max_concurrency,
            deadline=deadline,
        )
