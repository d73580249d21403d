"""
Test suite for the load-balancing simulator.

This module tests:
    1. Configuration validation and scenario presets
    2. Work item lifecycle
    3. Worker queueing, processing and carry-over
    4. Dispatcher arrivals, routing and completion wiring
    5. End-to-end simulation runs and policy comparison
"""

import pytest
import random
from typing import List, Optional, Tuple

# Import modules to test
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from lbsim.config import (
    FRAME_MS,
    SCENARIOS,
    Range,
    SimulationConfig,
    get_scenario,
    percent_in_range,
    rand_range,
)
from lbsim.workload import ItemState, WorkItem
from lbsim.worker import ArrivalOutcome, BoundedQueue, Worker
from lbsim.policies import POLICIES, LeastConnections, PeakEWMA, RoundRobin, policy_names
from lbsim.dispatcher import Dispatcher, ItemObserver
from lbsim.simulator import (
    MetricsCollector,
    Simulation,
    SimulationClock,
    SimulationMetrics,
    compare_policies,
    run_simulation,
)


class ScriptedRandom:
    """Random source returning a fixed sequence of values."""

    def __init__(self, values: List[float]) -> None:
        self.values = list(values)

    def random(self) -> float:
        return self.values.pop(0)


class RecordingObserver(ItemObserver):
    """Observer that logs every event it receives."""

    def __init__(self, events: Optional[List[Tuple[str, int]]] = None) -> None:
        self.events = events if events is not None else []
        self.finished: List[int] = []

    def on_created(self, item: WorkItem) -> None:
        self.events.append(("created", item.item_id))

    def on_queued(self, item: WorkItem, worker: Worker) -> None:
        self.events.append(("queued", item.item_id))

    def on_dropped(self, item: WorkItem, worker: Worker) -> None:
        self.events.append(("dropped", item.item_id))
        self.finished.append(item.item_id)

    def on_completed(self, item: WorkItem, worker: Worker) -> None:
        self.events.append(("completed", item.item_id))
        self.finished.append(item.item_id)


class RecordingRoundRobin(RoundRobin):
    """Round robin that logs completion callbacks into a shared list."""

    def __init__(self, events: List[Tuple[str, int]]) -> None:
        super().__init__()
        self.events = events

    def on_completion(self, item: WorkItem) -> None:
        self.events.append(("policy", item.item_id))


def make_worker(rate: float = 1.0, capacity: int = 5, worker_id: int = 0) -> Worker:
    return Worker(worker_id, Range.fixed(rate), capacity, ScriptedRandom([]))


def make_dispatcher(rps: float = 10.0, capacity: int = 5, policy=None,
                    cost: float = 1000.0, **kwargs) -> Dispatcher:
    return Dispatcher(
        policy=policy if policy is not None else RoundRobin(),
        rng=random.Random(0),
        requests_per_second=rps,
        cost_range=Range.fixed(cost),
        queue_capacity=capacity,
        **kwargs
    )


def assert_conserved(sim: Simulation, collector: MetricsCollector) -> None:
    in_flight = sum(worker.in_flight for worker in sim.workers)
    assert collector.created == collector.completed + collector.dropped + in_flight


# =============================================================================
# Tests for config.py
# =============================================================================

class TestConfig:
    """Tests for configuration and scenario presets."""

    def test_defaults_valid(self) -> None:
        config = SimulationConfig()
        assert config.requests_per_second == 5
        assert config.num_workers == 2
        assert config.queue_capacity == 10
        assert config.policy == "round-robin"

    def test_negative_rate_rejected(self) -> None:
        with pytest.raises(ValueError, match="Requests per second"):
            SimulationConfig(requests_per_second=-1)

    def test_variance_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="Rate variance"):
            SimulationConfig(rate_variance=1.5)

    def test_zero_workers_need_zero_rate(self) -> None:
        with pytest.raises(ValueError, match="At least one worker"):
            SimulationConfig(num_workers=0)
        SimulationConfig(num_workers=0, requests_per_second=0)

    def test_negative_queue_capacity(self) -> None:
        with pytest.raises(ValueError, match="Queue capacity"):
            SimulationConfig(queue_capacity=-1)

    def test_inverted_range(self) -> None:
        with pytest.raises(ValueError, match="min must be <= max"):
            Range(5, 1)

    def test_non_positive_rates_and_costs(self) -> None:
        with pytest.raises(ValueError, match="Service rate"):
            SimulationConfig(service_rate=Range(0, 2))
        with pytest.raises(ValueError, match="Item cost"):
            SimulationConfig(cost=Range(0, 10))

    def test_explicit_rates_match_worker_count(self) -> None:
        with pytest.raises(ValueError, match="Expected 2 service rates"):
            SimulationConfig(num_workers=2, service_rates=[1, 2, 3])

    def test_unknown_policy(self) -> None:
        with pytest.raises(ValueError, match="Unknown policy"):
            SimulationConfig(policy="fastest-first")

    def test_rate_for_worker(self) -> None:
        config = SimulationConfig(num_workers=2, service_rates=[1, 4])
        assert config.rate_for_worker(1) == Range.fixed(4)
        assert SimulationConfig().rate_for_worker(0) == Range(1, 1)

    def test_get_scenario_returns_copy(self) -> None:
        config = get_scenario("heterogeneous")
        config.service_rates[0] = 100
        assert SCENARIOS["heterogeneous"].service_rates[0] == 1

    def test_unknown_scenario(self) -> None:
        with pytest.raises(ValueError, match="Unknown scenario"):
            get_scenario("nope")

    def test_scenario_policies_registered(self) -> None:
        for config in SCENARIOS.values():
            assert config.policy in POLICIES

    def test_degenerate_range_consumes_no_randomness(self) -> None:
        assert rand_range(Range.fixed(3), ScriptedRandom([])) == 3

    def test_rand_range_scales_draw(self) -> None:
        assert rand_range(Range(10, 20), ScriptedRandom([0.25])) == 12.5

    def test_percent_in_range(self) -> None:
        assert percent_in_range(5, Range(0, 10)) == 0.5
        assert percent_in_range(3, Range.fixed(3)) == 1.0


# =============================================================================
# Tests for workload.py
# =============================================================================

class TestWorkItem:
    """Tests for the work item lifecycle."""

    def test_new_item(self) -> None:
        item = WorkItem(item_id=1, initial_cost=50.0, created_at=10.0)
        assert item.remaining_cost == 50.0
        assert item.state is ItemState.CREATED
        assert item.destination is None
        assert item.progress == 1.0

    def test_hooks_fire_once_in_order(self) -> None:
        item = WorkItem(item_id=1, initial_cost=1.0)
        calls = []
        item.on_finish(lambda i: calls.append("first"))
        item.on_finish(lambda i: calls.append("second"))

        item.complete(5.0)
        assert calls == ["first", "second"]
        assert item.completed_at == 5.0
        assert item.is_terminal

    def test_finish_twice_raises(self) -> None:
        item = WorkItem(item_id=1, initial_cost=1.0)
        item.complete(1.0)
        with pytest.raises(RuntimeError, match="already finished"):
            item.drop(2.0)

    def test_drop(self) -> None:
        item = WorkItem(item_id=1, initial_cost=1.0)
        item.drop(3.0)
        assert item.dropped
        assert item.dropped_at == 3.0
        assert item.completed_at is None

    def test_assign_twice_raises(self) -> None:
        item = WorkItem(item_id=1, initial_cost=1.0)
        item.assign(make_worker())
        with pytest.raises(RuntimeError, match="already routed"):
            item.assign(make_worker(worker_id=1))

    def test_items_compared_by_identity(self) -> None:
        assert WorkItem(item_id=1, initial_cost=1.0) != WorkItem(item_id=1, initial_cost=1.0)


# =============================================================================
# Tests for worker.py
# =============================================================================

class TestBoundedQueue:
    """Tests for BoundedQueue."""

    def test_fifo(self) -> None:
        queue = BoundedQueue(3)
        items = [WorkItem(item_id=i, initial_cost=1.0) for i in range(3)]
        for item in items:
            assert queue.enqueue(item, 0.0)
        assert [queue.dequeue() for _ in range(3)] == items
        assert queue.dequeue() is None

    def test_full_queue_rejects_without_change(self) -> None:
        queue = BoundedQueue(1)
        first = WorkItem(item_id=0, initial_cost=1.0)
        second = WorkItem(item_id=1, initial_cost=1.0)
        assert queue.enqueue(first, 0.0)
        assert queue.is_full

        assert not queue.enqueue(second, 1.0)
        assert len(queue) == 1
        assert second.queued_at is None
        assert second.state is ItemState.CREATED

    def test_enqueue_marks_item(self) -> None:
        queue = BoundedQueue(1)
        item = WorkItem(item_id=0, initial_cost=1.0)
        queue.enqueue(item, 7.0)
        assert item.state is ItemState.QUEUED
        assert item.queued_at == 7.0

    def test_zero_capacity(self) -> None:
        queue = BoundedQueue(0)
        assert not queue.enqueue(WorkItem(item_id=0, initial_cost=1.0), 0.0)
        assert queue.is_empty

    def test_negative_capacity(self) -> None:
        with pytest.raises(ValueError, match="capacity"):
            BoundedQueue(-1)


class TestWorker:
    """Tests for Worker arrivals and processing."""

    def test_idle_worker_starts_immediately(self) -> None:
        worker = make_worker()
        item = WorkItem(item_id=0, initial_cost=10.0)

        assert worker.add_item(item, 3.0) is ArrivalOutcome.ACTIVE
        assert worker.active is item
        assert item.state is ItemState.ACTIVE
        assert item.started_at == 3.0

    def test_busy_worker_queues(self) -> None:
        worker = make_worker(capacity=1)
        worker.add_item(WorkItem(item_id=0, initial_cost=10.0), 0.0)

        assert worker.add_item(WorkItem(item_id=1, initial_cost=10.0), 0.0) is ArrivalOutcome.QUEUED
        assert worker.in_flight == 2

    def test_full_worker_drops(self) -> None:
        worker = make_worker(capacity=0)
        worker.add_item(WorkItem(item_id=0, initial_cost=10.0), 0.0)

        late = WorkItem(item_id=1, initial_cost=10.0)
        fired = []
        late.on_finish(fired.append)

        assert worker.add_item(late, 4.0) is ArrivalOutcome.DROPPED
        assert late.dropped
        assert late.dropped_at == 4.0
        assert fired == [late]
        assert worker.in_flight == 1

    def test_completes_after_cost_over_rate_ticks(self) -> None:
        worker = make_worker(rate=2.0)
        item = WorkItem(item_id=0, initial_cost=50.0)
        worker.add_item(item, 0.0)

        for tick in range(1, 25):
            assert worker.process(1.0, 1.0, float(tick)) == []
        assert worker.process(1.0, 1.0, 25.0) == [item]
        assert item.processing_time_ms == 25.0
        assert item.completed_at == 25.0
        assert worker.active is None

    def test_unused_capacity_carries_over(self) -> None:
        worker = make_worker(rate=10.0)
        short = WorkItem(item_id=0, initial_cost=4.0)
        long = WorkItem(item_id=1, initial_cost=20.0)
        worker.add_item(short, 0.0)
        worker.add_item(long, 0.0)

        completed = worker.process(1.0, 5.0, 5.0)
        assert completed == [short]
        assert worker.active is long
        assert long.remaining_cost == 14.0
        assert long.started_at == 5.0
        assert long.processing_time_ms == 5.0

    def test_several_completions_per_tick(self) -> None:
        worker = make_worker(rate=10.0)
        items = [WorkItem(item_id=i, initial_cost=3.0) for i in range(3)]
        for item in items:
            worker.add_item(item, 0.0)

        assert worker.process(1.0, 1.0, 1.0) == items
        assert worker.in_flight == 0

    def test_delta_scales_cost_elapsed_scales_clocks(self) -> None:
        worker = make_worker(rate=2.0, capacity=1)
        active = WorkItem(item_id=0, initial_cost=50.0)
        waiting = WorkItem(item_id=1, initial_cost=50.0)
        worker.add_item(active, 0.0)
        worker.add_item(waiting, 0.0)

        worker.process(2.0, 5.0, 5.0)
        assert active.remaining_cost == 46.0
        assert active.processing_time_ms == 5.0
        assert active.age_ms == 5.0
        assert waiting.age_ms == 5.0
        assert waiting.processing_time_ms == 0.0

    def test_shutdown_drops_everything(self) -> None:
        worker = make_worker(capacity=2)
        items = [WorkItem(item_id=i, initial_cost=10.0) for i in range(3)]
        for item in items:
            worker.add_item(item, 0.0)

        assert worker.shutdown(9.0) == items
        assert all(item.dropped for item in items)
        assert worker.in_flight == 0

    def test_rate_resampled_from_range(self) -> None:
        worker = Worker(0, Range(1, 11), 1, ScriptedRandom([0.5, 0.0]))
        assert worker.service_rate == 6.0
        assert worker.utilization == 0.5

        worker.set_rate_range(Range(2, 4))
        assert worker.service_rate == 2.0


# =============================================================================
# Tests for dispatcher.py
# =============================================================================

class TestDispatcher:
    """Tests for item generation and routing."""

    def test_first_item_on_first_update(self) -> None:
        dispatcher = make_dispatcher()
        dispatcher.add_worker(Range.fixed(1))
        assert dispatcher.update(10.0, 10.0) is not None

    def test_fixed_interval_without_variance(self) -> None:
        dispatcher = make_dispatcher(rps=10)
        dispatcher.add_worker(Range.fixed(1))

        created = [dispatcher.update(10.0, tick * 10.0) for tick in range(1, 101)]
        emitted = [i for i, item in enumerate(created, start=1) if item is not None]
        assert emitted == list(range(1, 101, 10))

    def test_jitter_bounds(self) -> None:
        dispatcher = make_dispatcher(rps=10, rate_variance=0.5)
        dispatcher.rng = ScriptedRandom([0.0, 0.5])
        assert dispatcher.next_interval() == pytest.approx(50.0)
        assert dispatcher.next_interval() == pytest.approx(100.0)

    def test_zero_rate_generates_nothing(self) -> None:
        dispatcher = make_dispatcher(rps=0)
        dispatcher.add_worker(Range.fixed(1))
        assert all(dispatcher.update(100.0, 0.0) is None for _ in range(50))

    def test_no_workers_is_a_no_op(self) -> None:
        dispatcher = make_dispatcher(rps=10)
        assert dispatcher.update(10.0, 0.0) is None
        assert dispatcher.ms_until_next == 100.0

    def test_dispatch_without_workers_raises(self) -> None:
        dispatcher = make_dispatcher()
        with pytest.raises(ValueError, match="empty worker list"):
            dispatcher.dispatch(0.0)

    def test_dispatch_routes_and_notifies(self) -> None:
        dispatcher = make_dispatcher(capacity=1)
        worker = dispatcher.add_worker(Range.fixed(1))
        observer = RecordingObserver()
        dispatcher.subscribe(observer)

        first = dispatcher.dispatch(1.0)
        second = dispatcher.dispatch(2.0)

        assert first.destination is worker
        assert first.created_at == 1.0
        assert observer.events == [("created", 0), ("created", 1), ("queued", 1)]
        assert second.state is ItemState.QUEUED

    def test_completion_reaches_policy_then_observers(self) -> None:
        events: List[Tuple[str, int]] = []
        dispatcher = make_dispatcher(capacity=0, policy=RecordingRoundRobin(events))
        dispatcher.add_worker(Range.fixed(1))
        dispatcher.subscribe(RecordingObserver(events))

        dispatcher.dispatch(0.0)
        dispatcher.dispatch(0.0)  # worker busy, no queue

        assert events == [
            ("created", 0),
            ("created", 1),
            ("policy", 1),
            ("dropped", 1),
        ]

    def test_unsubscribe(self) -> None:
        dispatcher = make_dispatcher()
        dispatcher.add_worker(Range.fixed(1))
        observer = RecordingObserver()
        dispatcher.subscribe(observer)
        dispatcher.unsubscribe(observer)

        dispatcher.dispatch(0.0)
        assert observer.events == []

    def test_policy_switch_rebuilds_counts(self) -> None:
        dispatcher = make_dispatcher(capacity=5)
        dispatcher.add_worker(Range.fixed(1))
        dispatcher.add_worker(Range.fixed(1))
        for _ in range(3):
            dispatcher.dispatch(0.0)  # round robin: 0, 1, 0

        policy = LeastConnections(rng=random.Random(0))
        dispatcher.policy = policy
        assert policy.connections == {0: 2, 1: 1}
        assert dispatcher.dispatch(0.0).destination.worker_id == 1

    def test_remove_worker_drops_held_items(self) -> None:
        dispatcher = make_dispatcher(capacity=5)
        dispatcher.add_worker(Range.fixed(1))
        dispatcher.add_worker(Range.fixed(1))
        items = [dispatcher.dispatch(0.0) for _ in range(4)]

        removed = dispatcher.remove_worker(1.0)
        assert removed.worker_id == 1
        assert [item.dropped for item in items] == [False, True, False, True]

    def test_cannot_remove_last_worker_while_generating(self) -> None:
        dispatcher = make_dispatcher(rps=5)
        dispatcher.add_worker(Range.fixed(1))
        with pytest.raises(ValueError, match="At least one worker"):
            dispatcher.remove_worker(0.0)

        dispatcher.requests_per_second = 0
        dispatcher.remove_worker(0.0)
        with pytest.raises(ValueError, match="No workers"):
            dispatcher.remove_worker(0.0)

    def test_rejected_resize_leaves_pool_intact(self) -> None:
        dispatcher = make_dispatcher(rps=5, capacity=5)
        dispatcher.set_worker_count(3, Range.fixed(1), 0.0)
        items = [dispatcher.dispatch(0.0) for _ in range(3)]

        with pytest.raises(ValueError, match="At least one worker"):
            dispatcher.set_worker_count(0, Range.fixed(1), 1.0)

        assert [w.worker_id for w in dispatcher.workers] == [0, 1, 2]
        assert not any(item.dropped for item in items)

    def test_worker_ids_never_reused(self) -> None:
        dispatcher = make_dispatcher(rps=0)
        dispatcher.set_worker_count(3, Range.fixed(1), 0.0)
        dispatcher.set_worker_count(1, Range.fixed(1), 0.0)
        dispatcher.set_worker_count(2, Range.fixed(1), 0.0)
        assert [w.worker_id for w in dispatcher.workers] == [0, 3]


# =============================================================================
# Tests for simulator.py
# =============================================================================

class TestSimulationClock:
    """Tests for SimulationClock."""

    def test_default_tick_is_one_frame(self) -> None:
        delta, elapsed = SimulationClock().tick()
        assert delta == 1.0
        assert elapsed == FRAME_MS

    def test_speed_scales_delta_only(self) -> None:
        delta, elapsed = SimulationClock(speed=2.0).tick()
        assert delta == 2.0
        assert elapsed == FRAME_MS

    def test_ticks_for_one_second(self) -> None:
        assert SimulationClock().ticks_for(1000.0) == 60
        assert SimulationClock(tick_ms=10.0).ticks_for(25.0) == 3

    def test_invalid_tick(self) -> None:
        with pytest.raises(ValueError):
            SimulationClock(tick_ms=0)


class TestSimulation:
    """Tests for the full simulation."""

    def test_single_worker_at_ms_resolution(self) -> None:
        """One worker, rate 2, cost 50, 1 rps: every item takes 25 ticks, none dropped."""
        sim = Simulation(get_scenario("single-worker"), rng=random.Random(0))
        collector = MetricsCollector()
        sim.subscribe(collector)

        for _ in range(10_000):
            sim.step(delta=1.0, elapsed_ms=1.0)

        assert collector.created == 10
        assert collector.completed == 10
        assert collector.dropped == 0
        assert collector.processing_times.percentile(50) == 25.0
        assert collector.latencies.percentile(99) == 25.0

    def test_overloaded_single_worker_drops(self) -> None:
        metrics = run_simulation("round-robin", get_scenario("single-worker-overloaded"),
                                 duration_ms=10_000, seed=1)
        assert metrics.dropped > 0
        assert metrics.in_flight <= 1

    def test_weighted_round_robin_split(self) -> None:
        """Rates [1, 3] and four arrivals: the fast worker gets three."""
        config = SimulationConfig(num_workers=2, service_rates=[1, 3],
                                  cost=Range.fixed(10_000), queue_capacity=10)
        sim = Simulation(config, policy="weighted-round-robin", rng=random.Random(0))

        items = [sim.dispatcher.dispatch(sim.now()) for _ in range(4)]
        destinations = [item.destination.worker_id for item in items]
        assert destinations.count(0) == 1
        assert destinations.count(1) == 3

    def test_least_connections_single_arrival(self) -> None:
        config = SimulationConfig(num_workers=3, cost=Range.fixed(10_000))
        sim = Simulation(config, policy="least-connections", rng=random.Random(0))
        sim.dispatcher.dispatch(sim.now())

        assert sorted(w.in_flight for w in sim.workers) == [0, 0, 1]
        assert sorted(sim.policy.connections.values()) == [0, 0, 1]

    @pytest.mark.parametrize("policy", policy_names())
    def test_items_conserved(self, policy: str) -> None:
        """Every created item is served, dropped or still held; none finishes twice."""
        sim = Simulation(get_scenario("heterogeneous"), policy=policy, rng=random.Random(3))
        collector = MetricsCollector()
        observer = RecordingObserver()
        sim.subscribe(collector)
        sim.subscribe(observer)

        sim.run(30_000)

        assert collector.created > 100
        assert_conserved(sim, collector)
        assert len(observer.finished) == len(set(observer.finished))

    @pytest.mark.parametrize("policy", ["least-connections", "peak-ewma"])
    def test_connection_counts_track_workers(self, policy: str) -> None:
        sim = Simulation(get_scenario("heterogeneous"), policy="round-robin", rng=random.Random(5))
        sim.run(5_000)

        sim.policy = policy
        for _ in range(300):
            sim.step(1.0, FRAME_MS)
            for worker in sim.workers:
                assert sim.policy.connections.get(worker.worker_id, 0) == worker.in_flight

    def test_policy_by_instance(self) -> None:
        policy = PeakEWMA(smoothing=0.5)
        sim = Simulation(policy=policy, rng=random.Random(0))
        assert sim.policy is policy

    def test_shrinking_pool_keeps_conservation(self) -> None:
        sim = Simulation(get_scenario("heterogeneous"), rng=random.Random(2))
        collector = MetricsCollector()
        sim.subscribe(collector)
        sim.run(5_000)

        held = [item for worker in sim.workers[2:] for item in worker.items()]
        sim.num_workers = 2
        assert sim.num_workers == 2
        assert all(item.dropped for item in held)
        assert_conserved(sim, collector)

        sim.run(5_000)
        assert_conserved(sim, collector)

    def test_growing_pool(self) -> None:
        sim = Simulation(get_scenario("heterogeneous"), rng=random.Random(0))
        sim.num_workers = 7
        assert [w.worker_id for w in sim.workers] == list(range(7))

    def test_zero_workers_rejected_while_generating(self) -> None:
        sim = Simulation(rng=random.Random(0))
        with pytest.raises(ValueError, match="At least one worker"):
            sim.num_workers = 0

    def test_rate_setters(self) -> None:
        sim = Simulation(rng=random.Random(0))
        with pytest.raises(ValueError):
            sim.requests_per_second = -1
        with pytest.raises(ValueError):
            sim.rate_variance = 2.0

        sim.requests_per_second = 0
        collector = MetricsCollector()
        sim.subscribe(collector)
        sim.run(5_000)
        assert collector.created == 0

    def test_cost_setter(self) -> None:
        sim = Simulation(rng=random.Random(0))
        sim.cost_range = Range.fixed(7)
        assert sim.dispatcher.dispatch(sim.now()).initial_cost == 7
        with pytest.raises(ValueError):
            sim.cost_range = Range(0, 1)

    def test_service_rate_setter_resamples_workers(self) -> None:
        sim = Simulation(get_scenario("heterogeneous"), rng=random.Random(0))
        sim.service_rate_range = Range.fixed(7)
        assert [w.service_rate for w in sim.workers] == [7] * 5
        assert sim.service_rate_range == Range.fixed(7)

    def test_time_source_stamps_items(self) -> None:
        sim = Simulation(rng=random.Random(0), time_source=lambda: 42.0)
        sim.step(1.0, FRAME_MS)
        assert sim.workers[0].active.created_at == 42.0
        assert sim.now_ms == FRAME_MS


class TestRunSimulation:
    """Tests for run_simulation and compare_policies."""

    def test_seeded_runs_repeat(self) -> None:
        config = get_scenario("least-connections-random-rates")
        first = run_simulation("least-connections", config, duration_ms=10_000, seed=9)
        second = run_simulation("least-connections", config, duration_ms=10_000, seed=9)
        assert first == second

    def test_metrics_consistent(self) -> None:
        metrics = run_simulation("peak-ewma", get_scenario("heterogeneous"),
                                 duration_ms=20_000, seed=4)
        assert metrics.policy == "Peak EWMA"
        assert metrics.total_created == metrics.completed + metrics.dropped + metrics.in_flight
        assert sum(metrics.served_per_worker.values()) == metrics.completed
        assert metrics.p50_latency_ms <= metrics.p90_latency_ms <= metrics.p99_latency_ms
        assert 0.0 <= metrics.drop_rate <= 1.0

    def test_latency_aware_beats_blind_on_uneven_workers(self) -> None:
        config = get_scenario("heterogeneous")
        blind = run_simulation("round-robin", config, duration_ms=60_000, seed=42)
        aware = run_simulation("least-connections", config, duration_ms=60_000, seed=42)
        assert aware.drop_rate < blind.drop_rate

    def test_empty_summary(self) -> None:
        metrics = MetricsCollector().summarize("Round Robin", 1000.0, 0)
        assert metrics.completed == 0
        assert metrics.throughput == 0.0
        assert metrics.drop_rate == 0.0

    def test_compare_sequential(self) -> None:
        results = compare_policies(
            ["round-robin", "peak-ewma"], [2.0, 4.0],
            config=get_scenario("heterogeneous"),
            duration_ms=5_000, parallel=False,
        )
        assert set(results) == {"round-robin", "peak-ewma"}
        for rps_results in results.values():
            assert set(rps_results) == {2.0, 4.0}
            for metrics in rps_results.values():
                assert isinstance(metrics, SimulationMetrics)
                assert metrics.total_created > 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
