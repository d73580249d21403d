"""
Dispatcher for the load-balancing simulator.

The dispatcher owns the worker pool and the active scheduling policy. It
generates work items on a jittered schedule, asks the policy where each one
goes, and wires every item's completion back to the policy and to any
subscribed observers.

Arrival Process:
    The interval until the next item is ``1000 / rps`` milliseconds scaled
    by a uniform draw from [1 - variance, 1 + variance]. At most one item is
    created per tick.
"""

from itertools import count
import logging
from typing import Iterator, List, Optional

from lbsim.config import (
    DEFAULT_COST,
    DEFAULT_RATE_VARIANCE,
    DEFAULT_RPS,
    Range,
    RandomSource,
    rand_range,
    validate_cost,
    validate_rate,
    validate_service_rate,
)
from lbsim.policies import SchedulingPolicy
from lbsim.worker import ArrivalOutcome, Worker
from lbsim.workload import WorkItem

logger = logging.getLogger(__name__)


class ItemObserver:
    """
    Receives item lifecycle notifications.

    Subclass and override the events of interest. The simulation never
    depends on what an observer does.
    """

    def on_created(self, item: WorkItem) -> None:
        pass

    def on_queued(self, item: WorkItem, worker: Worker) -> None:
        pass

    def on_dropped(self, item: WorkItem, worker: Worker) -> None:
        pass

    def on_completed(self, item: WorkItem, worker: Worker) -> None:
        pass


class Dispatcher:
    """
    Generates work items and routes them through the active policy.

    Attributes:
        requests_per_second: Mean arrival rate; 0 pauses generation
        rate_variance: Jitter fraction in [0, 1]
        cost_range: Range item costs are drawn from
        workers: Live worker list, in the order policies see it
        ms_until_next: Countdown to the next item
    """

    def __init__(
        self,
        policy: SchedulingPolicy,
        rng: RandomSource,
        requests_per_second: float = DEFAULT_RPS,
        rate_variance: float = DEFAULT_RATE_VARIANCE,
        cost_range: Range = DEFAULT_COST,
        queue_capacity: int = 0,
    ) -> None:
        validate_rate(requests_per_second, rate_variance)
        validate_cost(cost_range)
        self.rng = rng
        self.requests_per_second = requests_per_second
        self.rate_variance = rate_variance
        self.cost_range = cost_range
        self.queue_capacity = queue_capacity
        self.workers: List[Worker] = []
        self.ms_until_next = 0.0
        self._observers: List[ItemObserver] = []
        self._item_ids = count()
        self._worker_ids = count()
        self._policy = policy
        policy.on_activate(self)

    # =========================================================================
    # Policy
    # =========================================================================

    @property
    def policy(self) -> SchedulingPolicy:
        return self._policy

    @policy.setter
    def policy(self, policy: SchedulingPolicy) -> None:
        logger.debug("switching policy %s -> %s", self._policy.name, policy.name)
        self._policy = policy
        policy.on_activate(self)

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, observer: ItemObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: ItemObserver) -> None:
        self._observers.remove(observer)

    # =========================================================================
    # Workers
    # =========================================================================

    def add_worker(self, rate_range: Range, capacity: Optional[int] = None) -> Worker:
        validate_service_rate(rate_range)
        worker = Worker(
            worker_id=next(self._worker_ids),
            rate_range=rate_range,
            capacity=self.queue_capacity if capacity is None else capacity,
            rng=self.rng,
        )
        self.workers.append(worker)
        logger.debug("added worker %d (rate %.2f)", worker.worker_id, worker.service_rate)
        return worker

    def remove_worker(self, now: float) -> Worker:
        """
        Remove the last worker. Items it still held are dropped.

        Raises:
            ValueError: If there are no workers, or removing the last one
                while generation is enabled
        """
        if not self.workers:
            raise ValueError("No workers to remove")
        if len(self.workers) == 1 and self.requests_per_second > 0:
            raise ValueError("At least one worker is required when generation is enabled")

        worker = self.workers.pop()
        dropped = worker.shutdown(now)
        logger.debug("removed worker %d, dropped %d items", worker.worker_id, len(dropped))
        return worker

    def set_worker_count(self, num_workers: int, rate_range: Range, now: float) -> None:
        """Grow or shrink the pool; new workers sample from ``rate_range``."""
        if num_workers < 0:
            raise ValueError(f"Worker count must be >= 0, got {num_workers}")
        if num_workers == 0 and self.requests_per_second > 0:
            raise ValueError("At least one worker is required when generation is enabled")
        while len(self.workers) < num_workers:
            self.add_worker(rate_range)
        while len(self.workers) > num_workers:
            self.remove_worker(now)

    def in_flight_items(self) -> Iterator[WorkItem]:
        for worker in self.workers:
            yield from worker.items()

    # =========================================================================
    # Generation
    # =========================================================================

    def next_interval(self) -> float:
        """Milliseconds until the following item, with jitter applied."""
        jitter = Range(1 - self.rate_variance, 1 + self.rate_variance)
        return (1000.0 / self.requests_per_second) * rand_range(jitter, self.rng)

    def update(self, elapsed_ms: float, now: float) -> Optional[WorkItem]:
        """
        Advance the arrival countdown by one tick.

        Returns:
            The item dispatched this tick, if any
        """
        if self.requests_per_second == 0:
            return None

        self.ms_until_next -= elapsed_ms
        if self.ms_until_next > 0:
            return None

        self.ms_until_next = self.next_interval()
        if not self.workers:
            logger.debug("item due but no workers are available")
            return None
        return self.dispatch(now)

    def dispatch(self, now: float) -> WorkItem:
        """Create one item and route it through the active policy."""
        item = WorkItem(
            item_id=next(self._item_ids),
            initial_cost=rand_range(self.cost_range, self.rng),
            created_at=now,
        )
        worker = self.policy.choose(item, self.workers)
        item.on_finish(self._finished)
        item.assign(worker)

        for observer in self._observers:
            observer.on_created(item)

        outcome = worker.add_item(item, now)
        if outcome is ArrivalOutcome.QUEUED:
            for observer in self._observers:
                observer.on_queued(item, worker)
        return item

    def _finished(self, item: WorkItem) -> None:
        self.policy.on_completion(item)
        for observer in self._observers:
            if item.dropped:
                observer.on_dropped(item, item.destination)
            else:
                observer.on_completed(item, item.destination)
