"""
Scheduling policies for the load-balancing simulator.

A policy decides, for each new work item, which worker receives it. Some
policies are blind (round robin, random), some use static knowledge of
worker capacity (the weighted variants), and some react to what they
observe (least connections, dynamic weighted round robin, peak EWMA).

Policies Implemented:
    1. RoundRobin: cycle through workers in order
    2. WeightedRandom: random pick proportional to service rate
    3. WeightedRoundRobin: consecutive picks proportional to service rate
    4. DynamicWeightedRoundRobin: consecutive picks from observed latency
    5. LeastConnections: fewest in-flight items, random among ties
    6. PeakEWMA: in-flight items scaled by a decaying latency peak
    7. RandomChoice: uniform random pick

Per-worker state is kept in dicts owned by the policy instance and keyed
by worker id, so two simulations never share counters.
"""

from abc import ABC, abstractmethod
from collections import deque
import logging
import math
import random
from typing import TYPE_CHECKING, Deque, Dict, List, Optional, Sequence, Type

from lbsim.config import (
    DROP_PENALTY_MS,
    DWRR_RANGE,
    LATENCY_HISTORY,
    PEWMA_DEFAULT_PEAK,
    PEWMA_SMOOTHING,
    RandomSource,
)
from lbsim.stats import PeakEstimator
from lbsim.worker import Worker
from lbsim.workload import WorkItem

if TYPE_CHECKING:
    from lbsim.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


def _require_workers(workers: Sequence[Worker]) -> None:
    if not workers:
        raise ValueError("Cannot choose a worker from an empty worker list")


def _count_in_flight(dispatcher: "Dispatcher") -> Dict[int, int]:
    """Tally every in-flight item by its destination worker id."""
    counts: Dict[int, int] = {}
    for item in dispatcher.in_flight_items():
        worker_id = item.destination.worker_id
        counts[worker_id] = counts.get(worker_id, 0) + 1
    return counts


class SchedulingPolicy(ABC):
    """
    Abstract base class for scheduling policies.

    Only ``choose`` is required. ``on_completion`` fires once per item,
    whether it was served or dropped. ``on_activate`` fires when the policy
    is installed on a dispatcher and must rebuild any counters the policy
    relies on from the items already in flight.
    """

    @abstractmethod
    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        """
        Pick the worker that receives ``item``.

        Args:
            item: The newly created item
            workers: Live worker list at decision time

        Returns:
            One of ``workers``

        Raises:
            ValueError: If ``workers`` is empty
        """
        pass

    def on_completion(self, item: WorkItem) -> None:
        """React to an item finishing (served or dropped)."""

    def on_activate(self, dispatcher: "Dispatcher") -> None:
        """Resynchronise private state with the dispatcher's in-flight items."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this policy."""
        pass


class RoundRobin(SchedulingPolicy):
    """Hand items to workers in list order, wrapping at the end."""

    def __init__(self) -> None:
        self.cursor = 0

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        if self.cursor >= len(workers):
            self.cursor = 0
        worker = workers[self.cursor]
        self.cursor += 1
        return worker

    @property
    def name(self) -> str:
        return "Round Robin"


class WeightedRandom(SchedulingPolicy):
    """Random pick where each worker's chance is proportional to its service rate."""

    def __init__(self, rng: Optional[RandomSource] = None) -> None:
        self.rng = rng if rng is not None else random.Random()

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        total = sum(worker.service_rate for worker in workers)
        remaining = self.rng.random() * total
        for worker in workers:
            remaining -= worker.service_rate
            if remaining <= 0:
                return worker
        # Rounding can leave a sliver after the last worker.
        return workers[-1]

    @property
    def name(self) -> str:
        return "Weighted Random"


class WeightedRoundRobin(SchedulingPolicy):
    """
    Round robin that gives faster workers several consecutive items.

    The worker under the cursor receives ``ceil(rate / min_rate)`` items
    before the cursor advances, so over a full cycle picks are proportional
    to service rate.
    """

    def __init__(self) -> None:
        self.cursor = 0
        self.sent_to_current = 0

    def quota(self, worker: Worker, workers: Sequence[Worker]) -> int:
        min_rate = min(w.service_rate for w in workers)
        return math.ceil(worker.service_rate / min_rate)

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        if self.cursor >= len(workers):
            self.cursor = 0
            self.sent_to_current = 0

        worker = workers[self.cursor]
        if self.sent_to_current >= self.quota(worker, workers):
            self.cursor = (self.cursor + 1) % len(workers)
            self.sent_to_current = 0
            worker = workers[self.cursor]

        self.sent_to_current += 1
        return worker

    @property
    def name(self) -> str:
        return "Weighted Round Robin"


class DynamicWeightedRoundRobin(WeightedRoundRobin):
    """
    Weighted round robin whose weights come from observed processing time.

    Each worker remembers the processing time of its last few completions.
    A worker's quota shrinks as its mean latency approaches the slowest
    worker's. Workers with no history yet get exactly one item, so every
    worker is sampled before weights settle.
    """

    def __init__(self, history: int = LATENCY_HISTORY, max_quota: int = DWRR_RANGE) -> None:
        super().__init__()
        self.history = history
        self.max_quota = max_quota
        self.latencies: Dict[int, Deque[float]] = {}
        self.average_latencies: Dict[int, float] = {}

    def quota(self, worker: Worker, workers: Sequence[Worker]) -> int:
        if worker.worker_id not in self.latencies:
            return 1

        # Workers without an average take no part in the minimum or maximum.
        min_latency = min(self.average_latencies.get(w.worker_id) or 99999999 for w in workers)
        max_latency = max(self.average_latencies.get(w.worker_id) or 0 for w in workers)
        if max_latency <= 0:
            return self.max_quota

        spread = (self.average_latencies[worker.worker_id] - min_latency) / max_latency
        return self.max_quota - math.ceil(spread * self.max_quota)

    def on_completion(self, item: WorkItem) -> None:
        if item.dropped:
            return
        worker_id = item.destination.worker_id
        samples = self.latencies.setdefault(worker_id, deque(maxlen=self.history))
        samples.append(item.processing_time_ms)
        self.average_latencies[worker_id] = sum(samples) / len(samples)

    @property
    def name(self) -> str:
        return "Dynamic Weighted Round Robin"


class LeastConnections(SchedulingPolicy):
    """Send each item to a worker with the fewest in-flight items."""

    def __init__(self, rng: Optional[RandomSource] = None) -> None:
        self.rng = rng if rng is not None else random.Random()
        self.connections: Dict[int, int] = {}

    def on_activate(self, dispatcher: "Dispatcher") -> None:
        self.connections = _count_in_flight(dispatcher)
        logger.debug("least connections resynchronised: %s", self.connections)

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        for worker in workers:
            self.connections.setdefault(worker.worker_id, 0)

        lowest = min(self.connections[w.worker_id] for w in workers)
        tied = [w for w in workers if self.connections[w.worker_id] == lowest]

        worker = tied[int(self.rng.random() * len(tied))]
        self.connections[worker.worker_id] += 1
        return worker

    def on_completion(self, item: WorkItem) -> None:
        worker_id = item.destination.worker_id
        self.connections[worker_id] = self.connections.get(worker_id, 0) - 1

    @property
    def name(self) -> str:
        return "Least Connections"


class PeakEWMA(SchedulingPolicy):
    """
    Latency-aware policy scoring workers by ``(connections + 1) * peak``.

    The peak is a PEWMA of each worker's end-to-end item age; drops are
    recorded as a fixed large penalty. Workers without observations use a
    default peak. The first worker in list order wins equal scores.
    """

    def __init__(self, smoothing: float = PEWMA_SMOOTHING) -> None:
        self.smoothing = smoothing
        self.connections: Dict[int, int] = {}
        self.estimators: Dict[int, PeakEstimator] = {}

    def on_activate(self, dispatcher: "Dispatcher") -> None:
        self.connections = _count_in_flight(dispatcher)
        logger.debug("peak ewma resynchronised: %s", self.connections)

    def _estimator(self, worker_id: int) -> PeakEstimator:
        if worker_id not in self.estimators:
            self.estimators[worker_id] = PeakEstimator(self.smoothing)
        return self.estimators[worker_id]

    def score(self, worker: Worker) -> float:
        peak = self._estimator(worker.worker_id).peak
        if peak is None:
            peak = PEWMA_DEFAULT_PEAK
        return (self.connections.get(worker.worker_id, 0) + 1) * peak

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        chosen = workers[0]
        lowest = self.score(chosen)
        for worker in workers[1:]:
            current = self.score(worker)
            if current < lowest:
                chosen, lowest = worker, current

        self.connections[chosen.worker_id] = self.connections.get(chosen.worker_id, 0) + 1
        return chosen

    def on_completion(self, item: WorkItem) -> None:
        worker_id = item.destination.worker_id
        self.connections[worker_id] = self.connections.get(worker_id, 0) - 1
        if item.dropped:
            self._estimator(worker_id).update(DROP_PENALTY_MS)
        else:
            self._estimator(worker_id).update(item.age_ms)

    @property
    def name(self) -> str:
        return "Peak EWMA"


class RandomChoice(SchedulingPolicy):
    """Uniform random pick."""

    def __init__(self, rng: Optional[RandomSource] = None) -> None:
        self.rng = rng if rng is not None else random.Random()

    def choose(self, item: WorkItem, workers: Sequence[Worker]) -> Worker:
        _require_workers(workers)
        return workers[int(self.rng.random() * len(workers))]

    @property
    def name(self) -> str:
        return "Random"


# =============================================================================
# Factory function for easy policy creation
# =============================================================================

POLICIES: Dict[str, Type[SchedulingPolicy]] = {
    "round-robin": RoundRobin,
    "weighted-random": WeightedRandom,
    "weighted-round-robin": WeightedRoundRobin,
    "dynamic-weighted-round-robin": DynamicWeightedRoundRobin,
    "least-connections": LeastConnections,
    "peak-ewma": PeakEWMA,
    "peak-exponentially-weighted-moving-average": PeakEWMA,
    "random": RandomChoice,
}

RANDOMIZED_POLICIES = (WeightedRandom, LeastConnections, RandomChoice)


def create_policy(
    policy_type: str,
    rng: Optional[RandomSource] = None,
    **kwargs
) -> SchedulingPolicy:
    """
    Factory function to create policies by name.

    Args:
        policy_type: Registry name, e.g. "round-robin" or "peak-ewma"
        rng: Random source handed to policies that draw randomness
        **kwargs: Arguments passed to the policy constructor

    Returns:
        Configured policy instance

    Raises:
        ValueError: If policy_type is unknown
    """
    key = policy_type.lower()
    if key not in POLICIES:
        raise ValueError(
            f"Unknown policy type: {policy_type}. "
            f"Available: {list(POLICIES.keys())}"
        )

    policy_cls = POLICIES[key]
    if rng is not None and issubclass(policy_cls, RANDOMIZED_POLICIES):
        kwargs.setdefault("rng", rng)
    return policy_cls(**kwargs)


def policy_names() -> List[str]:
    """Canonical registry names, without aliases."""
    seen = set()
    names = []
    for key, policy_cls in POLICIES.items():
        if policy_cls not in seen:
            seen.add(policy_cls)
            names.append(key)
    return names
