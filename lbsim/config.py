"""
Configuration module for the load-balancing simulator.

This module stores the simulation constants and the validated
configuration record used to build a simulation. All tunables that the
policies and the worker model depend on live here, so experiments can
import them instead of repeating magic numbers.

Units:
    - Time is measured in milliseconds of simulated wall clock.
    - Cost is measured in abstract work units; a worker with service
      rate r removes r units per display frame (delta = 1).
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol


# =============================================================================
# Simulation Constants
# =============================================================================

FRAME_MS: float = 1000.0 / 60.0
"""Duration of one display frame. A tick of this length has delta = 1."""

DEFAULT_RPS: float = 5.0
"""Default request rate (items per second)."""

DEFAULT_RATE_VARIANCE: float = 0.0
"""Default jitter fraction applied to the inter-arrival interval."""

DEFAULT_NUM_WORKERS: int = 2
"""Default number of workers behind the dispatcher."""

DEFAULT_QUEUE_CAPACITY: int = 10
"""Default number of items a worker may hold in its queue."""

DEFAULT_POLICY: str = "round-robin"
"""Policy used when none is configured."""

POLICY_NAMES = (
    "round-robin",
    "weighted-random",
    "weighted-round-robin",
    "dynamic-weighted-round-robin",
    "least-connections",
    "peak-ewma",
    "peak-exponentially-weighted-moving-average",
    "random",
)
"""
Registry names accepted by ``lbsim.policies.create_policy``.

Kept here rather than read from ``lbsim.policies.POLICIES``: the policies
module imports this one, and the scenario presets below are validated
while this module is still loading. Must list exactly the registry keys.
"""


# =============================================================================
# Policy Constants
# =============================================================================

PEWMA_SMOOTHING: float = 0.2
"""Smoothing factor (alpha) for the peak latency estimator."""

PEWMA_HISTORY: int = 100
"""Number of smoothed peaks retained per estimator."""

PEWMA_DEFAULT_PEAK: float = 1000.0
"""Peak assumed for a worker that has no latency observations yet."""

DROP_PENALTY_MS: float = 5000.0
"""Latency fed to the peak estimator when an item is dropped."""

LATENCY_HISTORY: int = 3
"""Completions remembered per worker by dynamic weighted round robin."""

DWRR_RANGE: int = 3
"""Maximum consecutive picks dynamic weighted round robin grants a worker."""


class RandomSource(Protocol):
    """Anything with a uniform ``random() -> [0, 1)`` method."""

    def random(self) -> float:
        ...


# =============================================================================
# Ranges
# =============================================================================

@dataclass(frozen=True)
class Range:
    """
    Closed interval [min, max] sampled uniformly.

    Attributes:
        min: Lower bound
        max: Upper bound (must be >= min)
    """
    min: float
    max: float

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError(f"Range min must be <= max, got [{self.min}, {self.max}]")

    def sample(self, rng: RandomSource) -> float:
        return rand_range(self, rng)

    @classmethod
    def fixed(cls, value: float) -> "Range":
        return cls(value, value)


def rand_range(bounds: Range, rng: RandomSource) -> float:
    """
    Draw uniformly from ``bounds``.

    A degenerate range returns its bound without consuming a random
    number, so fixed configurations stay deterministic and do not shift
    the random stream used elsewhere.
    """
    if bounds.min == bounds.max:
        return bounds.min
    return rng.random() * (bounds.max - bounds.min) + bounds.min


def percent_in_range(value: float, bounds: Range) -> float:
    """Position of ``value`` inside ``bounds`` as a fraction (1 when degenerate)."""
    if bounds.min == bounds.max:
        return 1.0
    return (value - bounds.min) / (bounds.max - bounds.min)


DEFAULT_SERVICE_RATE = Range(1.0, 1.0)
DEFAULT_COST = Range(50.0, 50.0)


# =============================================================================
# Simulation Configuration
# =============================================================================

@dataclass
class SimulationConfig:
    """
    Everything needed to build a simulation.

    Attributes:
        requests_per_second: Mean arrival rate; 0 disables generation
        rate_variance: Jitter fraction in [0, 1] applied to each interval
        num_workers: Number of workers behind the dispatcher
        service_rate: Range each worker's service rate is sampled from
        service_rates: Optional explicit rate per worker (overrides the range)
        queue_capacity: Queue slots per worker (0 means no queue)
        cost: Range each item's cost is sampled from
        policy: Registry name of the scheduling policy
    """
    requests_per_second: float = DEFAULT_RPS
    rate_variance: float = DEFAULT_RATE_VARIANCE
    num_workers: int = DEFAULT_NUM_WORKERS
    service_rate: Range = DEFAULT_SERVICE_RATE
    service_rates: Optional[List[float]] = None
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    cost: Range = DEFAULT_COST
    policy: str = DEFAULT_POLICY

    def __post_init__(self) -> None:
        validate_rate(self.requests_per_second, self.rate_variance)
        if self.num_workers < 0:
            raise ValueError(f"Worker count must be >= 0, got {self.num_workers}")
        if self.num_workers == 0 and self.requests_per_second > 0:
            raise ValueError("At least one worker is required when generation is enabled")
        if self.queue_capacity < 0:
            raise ValueError(f"Queue capacity must be >= 0, got {self.queue_capacity}")
        validate_service_rate(self.service_rate)
        validate_cost(self.cost)
        if self.service_rates is not None:
            if len(self.service_rates) != self.num_workers:
                raise ValueError(
                    f"Expected {self.num_workers} service rates, got {len(self.service_rates)}"
                )
            for rate in self.service_rates:
                if rate <= 0:
                    raise ValueError(f"Service rate must be > 0, got {rate}")
        validate_policy_name(self.policy)

    def rate_for_worker(self, index: int) -> Range:
        """Service-rate range for the worker at ``index``."""
        if self.service_rates is not None:
            return Range.fixed(self.service_rates[index])
        return self.service_rate


def validate_rate(requests_per_second: float, rate_variance: float) -> None:
    if requests_per_second < 0:
        raise ValueError(f"Requests per second must be >= 0, got {requests_per_second}")
    if not 0.0 <= rate_variance <= 1.0:
        raise ValueError(f"Rate variance must be within [0, 1], got {rate_variance}")


def validate_policy_name(name: str) -> None:
    if name.lower() not in POLICY_NAMES:
        raise ValueError(f"Unknown policy: {name}. Available: {list(POLICY_NAMES)}")


def validate_service_rate(bounds: Range) -> None:
    if bounds.min <= 0:
        raise ValueError(f"Service rate must be > 0, got range [{bounds.min}, {bounds.max}]")


def validate_cost(bounds: Range) -> None:
    if bounds.min <= 0:
        raise ValueError(f"Item cost must be > 0, got range [{bounds.min}, {bounds.max}]")


# =============================================================================
# Scenario Presets
# =============================================================================
# Walkthrough of increasingly realistic setups: a lone worker without a
# queue, then more workers, variable costs, queues, heterogeneous workers
# and finally the adaptive policies.

SCENARIOS: Dict[str, SimulationConfig] = {
    "single-worker": SimulationConfig(
        num_workers=1, service_rate=Range.fixed(2), requests_per_second=1, queue_capacity=0,
    ),
    "single-worker-overloaded": SimulationConfig(
        num_workers=1, service_rate=Range.fixed(2), requests_per_second=3, queue_capacity=0,
    ),
    "two-workers": SimulationConfig(
        num_workers=2, service_rate=Range.fixed(2), requests_per_second=3, queue_capacity=0,
    ),
    "five-workers": SimulationConfig(
        num_workers=5, service_rate=Range.fixed(2), requests_per_second=5, queue_capacity=0,
    ),
    "variable-cost": SimulationConfig(
        num_workers=5, service_rate=Range.fixed(2), requests_per_second=4,
        cost=Range(30, 200), queue_capacity=0,
    ),
    "variable-cost-queued": SimulationConfig(
        num_workers=5, service_rate=Range.fixed(2), requests_per_second=5,
        cost=Range(30, 200), queue_capacity=3,
    ),
    "heterogeneous": SimulationConfig(
        num_workers=5, service_rates=[1, 3, 5, 6, 8], requests_per_second=5,
        cost=Range(100, 300), queue_capacity=3,
    ),
    "weighted": SimulationConfig(
        num_workers=5, service_rates=[1, 1, 2, 2, 3], requests_per_second=5,
        cost=Range(70, 160), queue_capacity=3, policy="weighted-round-robin",
    ),
    "dynamic-weighted": SimulationConfig(
        num_workers=5, service_rates=[1, 1, 2, 2, 3], requests_per_second=5,
        cost=Range(70, 150), queue_capacity=3, policy="dynamic-weighted-round-robin",
    ),
    "dynamic-weighted-random-rates": SimulationConfig(
        num_workers=6, service_rate=Range(1, 10), requests_per_second=8,
        cost=Range(10, 300), queue_capacity=3, policy="dynamic-weighted-round-robin",
    ),
    "least-connections": SimulationConfig(
        num_workers=5, service_rates=[2, 4, 6, 8, 10], requests_per_second=5,
        cost=Range(100, 300), queue_capacity=3, policy="least-connections",
    ),
    "least-connections-random-rates": SimulationConfig(
        num_workers=6, service_rate=Range(1, 10), requests_per_second=8,
        cost=Range(100, 300), queue_capacity=3, policy="least-connections",
    ),
}


def get_scenario(name: str) -> SimulationConfig:
    """
    Look up a scenario preset by name.

    Raises:
        ValueError: If the scenario is unknown
    """
    if name not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {name}. Available: {list(SCENARIOS.keys())}")
    preset = SCENARIOS[name]
    rates = list(preset.service_rates) if preset.service_rates is not None else None
    return replace(preset, service_rates=rates)
