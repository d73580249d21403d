"""
Worker model for the load-balancing simulator.

A worker serves one active item at a time and parks further arrivals in a
bounded FIFO queue. Arrivals that find the queue full are dropped on the
spot; nothing is ever retried.

Processing is capacity based: each tick a worker may remove
``service_rate * delta`` cost units. When the active item finishes early the
unused remainder carries over to the next item in the same tick instead of
being wasted.
"""

from collections import deque
from enum import Enum, auto
import logging
from typing import Deque, Iterator, List, Optional

from lbsim.config import Range, RandomSource, percent_in_range
from lbsim.workload import ItemState, WorkItem

logger = logging.getLogger(__name__)


class ArrivalOutcome(Enum):
    """What happened to an item routed to a worker."""
    ACTIVE = auto()
    QUEUED = auto()
    DROPPED = auto()


class BoundedQueue:
    """
    Fixed-capacity FIFO buffer of work items owned by a worker.

    A capacity of 0 is legal and means the worker has no slack at all:
    every arrival that finds the worker busy is dropped.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"Queue capacity must be >= 0, got {capacity}")
        self.capacity = capacity
        self._queue: Deque[WorkItem] = deque()

    def enqueue(self, item: WorkItem, now: Optional[float] = None) -> bool:
        """
        Add an item to the back of the queue.

        Returns:
            False (and leaves the queue untouched) when already at capacity
        """
        if len(self._queue) >= self.capacity:
            return False
        item.queued_at = now
        item.state = ItemState.QUEUED
        self._queue.append(item)
        return True

    def dequeue(self) -> Optional[WorkItem]:
        """Remove and return the oldest item, or None when empty."""
        if not self._queue:
            return None
        return self._queue.popleft()

    def peek(self) -> Optional[WorkItem]:
        return self._queue[0] if self._queue else None

    def drain(self) -> List[WorkItem]:
        """Remove and return every queued item in FIFO order."""
        items = list(self._queue)
        self._queue.clear()
        return items

    def __len__(self) -> int:
        return len(self._queue)

    def __iter__(self) -> Iterator[WorkItem]:
        return iter(self._queue)

    @property
    def is_empty(self) -> bool:
        return len(self._queue) == 0

    @property
    def is_full(self) -> bool:
        return len(self._queue) >= self.capacity


class Worker:
    """
    A processing unit with a fixed service rate and a bounded queue.

    Attributes:
        worker_id: Identifier the policies key their counters by
        service_rate: Cost units removed per display frame
        rate_range: Range the service rate was sampled from
        queue: Items waiting behind the active one
        active: Item currently being processed, if any
    """

    def __init__(
        self,
        worker_id: int,
        rate_range: Range,
        capacity: int,
        rng: RandomSource,
    ) -> None:
        self.worker_id = worker_id
        self.queue = BoundedQueue(capacity)
        self.active: Optional[WorkItem] = None
        self._rng = rng
        self.set_rate_range(rate_range)

    def set_rate_range(self, rate_range: Range) -> None:
        """Sample a new service rate; it stays fixed until the next call."""
        self.rate_range = rate_range
        self.service_rate = rate_range.sample(self._rng)

    @property
    def capacity(self) -> int:
        return self.queue.capacity

    @property
    def in_flight(self) -> int:
        """Items held by this worker: the active one plus the queued ones."""
        return (1 if self.active is not None else 0) + len(self.queue)

    @property
    def utilization(self) -> float:
        """Where the service rate sits inside its configured range."""
        return percent_in_range(self.service_rate, self.rate_range)

    def items(self) -> Iterator[WorkItem]:
        if self.active is not None:
            yield self.active
        yield from self.queue

    def _activate(self, item: WorkItem, now: float) -> None:
        item.state = ItemState.ACTIVE
        if item.started_at is None:
            item.started_at = now
        self.active = item

    def add_item(self, item: WorkItem, now: float) -> ArrivalOutcome:
        """
        Accept an item routed to this worker.

        An idle worker starts on the item immediately. A busy worker queues
        it, and a busy worker with a full queue drops it (the item's finish
        hooks fire before this returns).
        """
        if self.active is None:
            self._activate(item, now)
            return ArrivalOutcome.ACTIVE

        if self.queue.enqueue(item, now):
            return ArrivalOutcome.QUEUED

        logger.debug("worker %d queue full, dropping item %d", self.worker_id, item.item_id)
        item.drop(now)
        return ArrivalOutcome.DROPPED

    def process(self, delta: float, elapsed_ms: float, now: float) -> List[WorkItem]:
        """
        Advance this worker by one tick.

        Args:
            delta: Display-rate-scaled frame count; scales cost removal
            elapsed_ms: Real elapsed milliseconds; feeds the item clocks
            now: Timestamp recorded on items that finish this tick

        Returns:
            Items completed during this tick, in completion order
        """
        for item in self.items():
            item.age_ms += elapsed_ms

        completed: List[WorkItem] = []
        rate = self.service_rate

        while True:
            if self.active is None:
                next_item = self.queue.dequeue()
                if next_item is None:
                    break
                self._activate(next_item, now)

            item = self.active
            item.remaining_cost -= rate * delta
            item.processing_time_ms += elapsed_ms

            if item.remaining_cost > 0:
                break

            # Spend what this item did not need on the next one.
            rate = -item.remaining_cost
            self.active = None
            item.complete(now)
            completed.append(item)

        return completed

    def shutdown(self, now: float) -> List[WorkItem]:
        """Drop every held item, active first, and return them."""
        held = list(self.items())
        self.active = None
        self.queue.drain()
        for item in held:
            item.drop(now)
        return held

    def __repr__(self) -> str:
        return (
            f"Worker(id={self.worker_id}, rate={self.service_rate:.2f}, "
            f"in_flight={self.in_flight}/{self.capacity + 1})"
        )
