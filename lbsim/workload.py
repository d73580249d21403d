"""
Work item model for the load-balancing simulator.

A work item is the unit the dispatcher routes and a worker consumes. It
carries two independent clocks:

    - remaining_cost: work units left, decremented by service rate * delta
    - processing_time_ms / age_ms: real elapsed milliseconds

The latency-aware policies read the millisecond clocks, never the cost,
so changing the display rate does not distort what they observe.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Callable, List, Optional

if TYPE_CHECKING:
    from lbsim.worker import Worker


class ItemState(Enum):
    """Lifecycle states of a work item."""
    CREATED = auto()
    ACTIVE = auto()
    QUEUED = auto()
    COMPLETED = auto()
    DROPPED = auto()


TERMINAL_STATES = (ItemState.COMPLETED, ItemState.DROPPED)


@dataclass(eq=False)
class WorkItem:
    """
    Represents a single unit of simulated work.

    Items are compared by identity: two items with the same cost are still
    different items.

    Attributes:
        item_id: Unique identifier within a simulation
        initial_cost: Cost at creation
        remaining_cost: Work units left to process
        created_at: When the dispatcher created the item (ms)
        queued_at: When the item entered a worker queue (ms)
        started_at: When the item became a worker's active item (ms)
        completed_at: When processing finished (ms)
        dropped_at: When the item was rejected (ms)
        age_ms: Elapsed time since creation, advanced every tick
        processing_time_ms: Elapsed time spent as a worker's active item
        destination: Worker chosen by the scheduling policy
        state: Current lifecycle state
    """
    item_id: int
    initial_cost: float
    remaining_cost: float = field(init=False)
    created_at: Optional[float] = None
    queued_at: Optional[float] = None
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    dropped_at: Optional[float] = None
    age_ms: float = 0.0
    processing_time_ms: float = 0.0
    destination: Optional["Worker"] = field(default=None, repr=False)
    state: ItemState = ItemState.CREATED
    _finish_hooks: List[Callable[["WorkItem"], None]] = field(
        default_factory=list, repr=False
    )

    def __post_init__(self) -> None:
        self.remaining_cost = self.initial_cost

    def assign(self, worker: "Worker") -> None:
        """Record the destination chosen at dispatch time."""
        if self.destination is not None:
            raise RuntimeError(f"Item {self.item_id} already routed to worker {self.destination.worker_id}")
        self.destination = worker

    def on_finish(self, callback: Callable[["WorkItem"], None]) -> None:
        """Register a hook fired once when the item completes or is dropped."""
        self._finish_hooks.append(callback)

    def complete(self, now: float) -> None:
        self._finish(ItemState.COMPLETED, now)

    def drop(self, now: float) -> None:
        self._finish(ItemState.DROPPED, now)

    def _finish(self, state: ItemState, now: float) -> None:
        if self.is_terminal:
            raise RuntimeError(f"Item {self.item_id} already finished as {self.state.name}")
        self.state = state
        if state is ItemState.COMPLETED:
            self.completed_at = now
        else:
            self.dropped_at = now
        for hook in self._finish_hooks:
            hook(self)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def dropped(self) -> bool:
        return self.state is ItemState.DROPPED

    @property
    def progress(self) -> float:
        """Fraction of the initial cost still outstanding (0 when done)."""
        return max(0.0, self.remaining_cost / self.initial_cost)

    @property
    def queue_time_ms(self) -> Optional[float]:
        """Time spent waiting in a queue before becoming active."""
        if self.started_at is not None and self.queued_at is not None:
            return self.started_at - self.queued_at
        return None
