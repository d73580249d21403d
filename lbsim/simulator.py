"""
Core simulation engine for the load-balancing simulator.

This module implements a tick-driven simulation of a load balancer in
front of a pool of workers. The simulation tracks:
    - Simulated wall clock (milliseconds)
    - Dispatcher state (arrival countdown, active policy)
    - Worker state (active item, queue)
    - Per-item metrics (age, processing time, outcome)

Simulation Approach:
    Time advances in fixed ticks. Every tick carries two quantities: a
    display-rate-scaled ``delta`` that scales how much cost a worker
    removes, and the real ``elapsed_ms`` that feeds the item clocks. Within
    a tick the dispatcher runs first, then each worker in list order.
    Completion hooks fire synchronously inside the tick that caused them.
"""

from dataclasses import dataclass, field, replace
import logging
import math
import random
from typing import Callable, Dict, List, Optional, Tuple, Union

from lbsim.config import (
    FRAME_MS,
    Range,
    RandomSource,
    SimulationConfig,
    validate_cost,
    validate_rate,
    validate_service_rate,
)
from lbsim.dispatcher import Dispatcher, ItemObserver
from lbsim.policies import SchedulingPolicy, create_policy
from lbsim.stats import PercentileCalculator
from lbsim.worker import Worker
from lbsim.workload import WorkItem

logger = logging.getLogger(__name__)


class SimulationClock:
    """
    Fixed-step clock.

    Attributes:
        tick_ms: Real milliseconds per tick
        speed: Playback multiplier applied to delta only
    """

    def __init__(self, tick_ms: float = FRAME_MS, speed: float = 1.0) -> None:
        if tick_ms <= 0:
            raise ValueError(f"Tick length must be > 0, got {tick_ms}")
        if speed <= 0:
            raise ValueError(f"Speed must be > 0, got {speed}")
        self.tick_ms = tick_ms
        self.speed = speed

    def tick(self) -> Tuple[float, float]:
        """Return ``(delta, elapsed_ms)`` for one tick."""
        return self.speed * self.tick_ms / FRAME_MS, self.tick_ms

    def ticks_for(self, duration_ms: float) -> int:
        # Tolerate float noise such as 1000 / (1000 / 60) = 60.000000001.
        return max(0, math.ceil(duration_ms / self.tick_ms - 1e-9))


@dataclass
class SimulationMetrics:
    """
    Aggregated metrics from a simulation run.

    Attributes:
        policy: Name of the policy that produced these numbers
        total_created: Items created by the dispatcher
        completed: Items served to completion
        dropped: Items rejected by a full queue (or a removed worker)
        in_flight: Items still held by workers when the run ended
        avg_latency_ms: Mean age of completed items
        p50_latency_ms: Median age of completed items
        p90_latency_ms: 90th percentile age
        p99_latency_ms: 99th percentile age
        avg_processing_ms: Mean time completed items spent being served
        throughput: Completed items per simulated second
        served_per_worker: Completed items keyed by worker id
    """
    policy: str
    total_created: int
    completed: int
    dropped: int
    in_flight: int
    avg_latency_ms: float
    p50_latency_ms: float
    p90_latency_ms: float
    p99_latency_ms: float
    avg_processing_ms: float
    throughput: float
    served_per_worker: Dict[int, int] = field(default_factory=dict)

    @property
    def drop_rate(self) -> float:
        finished = self.completed + self.dropped
        return self.dropped / finished if finished else 0.0

    def __str__(self) -> str:
        return (
            f"{self.policy}: {self.completed}/{self.total_created} served, "
            f"Drop Rate: {self.drop_rate:.1%}, "
            f"P50 Latency: {self.p50_latency_ms:.0f}ms, "
            f"P99 Latency: {self.p99_latency_ms:.0f}ms, "
            f"Throughput: {self.throughput:.2f} items/s"
        )


class MetricsCollector(ItemObserver):
    """Observer that records outcomes and latencies for reporting."""

    def __init__(self) -> None:
        self.created = 0
        self.queued = 0
        self.completed = 0
        self.dropped = 0
        self.latencies = PercentileCalculator()
        self.processing_times = PercentileCalculator()
        self.served_per_worker: Dict[int, int] = {}
        self.dropped_per_worker: Dict[int, int] = {}

    def on_created(self, item: WorkItem) -> None:
        self.created += 1

    def on_queued(self, item: WorkItem, worker: Worker) -> None:
        self.queued += 1

    def on_dropped(self, item: WorkItem, worker: Worker) -> None:
        self.dropped += 1
        self.dropped_per_worker[worker.worker_id] = self.dropped_per_worker.get(worker.worker_id, 0) + 1

    def on_completed(self, item: WorkItem, worker: Worker) -> None:
        self.completed += 1
        self.served_per_worker[worker.worker_id] = self.served_per_worker.get(worker.worker_id, 0) + 1
        self.latencies.add(item.age_ms)
        self.processing_times.add(item.processing_time_ms)

    def summarize(self, policy: str, elapsed_ms: float, in_flight: int) -> SimulationMetrics:
        if not len(self.latencies):
            return SimulationMetrics(
                policy=policy,
                total_created=self.created,
                completed=0,
                dropped=self.dropped,
                in_flight=in_flight,
                avg_latency_ms=0.0,
                p50_latency_ms=0.0,
                p90_latency_ms=0.0,
                p99_latency_ms=0.0,
                avg_processing_ms=0.0,
                throughput=0.0,
                served_per_worker={},
            )

        seconds = elapsed_ms / 1000.0
        return SimulationMetrics(
            policy=policy,
            total_created=self.created,
            completed=self.completed,
            dropped=self.dropped,
            in_flight=in_flight,
            avg_latency_ms=self.latencies.mean(),
            p50_latency_ms=self.latencies.percentile(50),
            p90_latency_ms=self.latencies.percentile(90),
            p99_latency_ms=self.latencies.percentile(99),
            avg_processing_ms=self.processing_times.mean(),
            throughput=self.completed / seconds if seconds > 0 else 0.0,
            served_per_worker=dict(self.served_per_worker),
        )


class Simulation:
    """
    Tick-driven load-balancing simulation.

    Builds a dispatcher and its workers from a ``SimulationConfig`` and
    advances them together. Configuration setters take effect on the next
    tick.

    Attributes:
        config: Configuration the simulation was built from
        rng: Random source shared by jitter, costs, rates and policies
        dispatcher: Owner of the workers and the active policy
        now_ms: Simulated milliseconds since start
        ticks: Number of ticks executed
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        policy: Union[str, SchedulingPolicy, None] = None,
        rng: Optional[RandomSource] = None,
        time_source: Optional[Callable[[], float]] = None,
    ) -> None:
        """
        Initialize the simulation.

        Args:
            config: Simulation parameters (defaults to ``SimulationConfig()``)
            policy: Policy name or instance, overriding ``config.policy``
            rng: Uniform [0, 1) source; seed it for reproducible runs
            time_source: Millisecond clock for item timestamps; defaults to
                the simulated clock
        """
        self.config = config if config is not None else SimulationConfig()
        self.rng = rng if rng is not None else random.Random()
        self.now_ms = 0.0
        self.ticks = 0
        self._time_source = time_source

        self.dispatcher = Dispatcher(
            policy=self._resolve_policy(policy if policy is not None else self.config.policy),
            rng=self.rng,
            requests_per_second=self.config.requests_per_second,
            rate_variance=self.config.rate_variance,
            cost_range=self.config.cost,
            queue_capacity=self.config.queue_capacity,
        )
        for index in range(self.config.num_workers):
            self.dispatcher.add_worker(self.config.rate_for_worker(index))

    def _resolve_policy(self, policy: Union[str, SchedulingPolicy]) -> SchedulingPolicy:
        if isinstance(policy, SchedulingPolicy):
            return policy
        return create_policy(policy, rng=self.rng)

    def now(self) -> float:
        if self._time_source is not None:
            return self._time_source()
        return self.now_ms

    @property
    def workers(self) -> List[Worker]:
        return self.dispatcher.workers

    def subscribe(self, observer: ItemObserver) -> None:
        self.dispatcher.subscribe(observer)

    # =========================================================================
    # Stepping
    # =========================================================================

    def step(self, delta: float, elapsed_ms: float) -> None:
        """
        Execute one tick.

        Args:
            delta: Display-rate-scaled frame count (1.0 per 60 Hz frame)
            elapsed_ms: Real milliseconds covered by this tick
        """
        self.now_ms += elapsed_ms
        self.ticks += 1
        now = self.now()

        self.dispatcher.update(elapsed_ms, now)
        for worker in self.dispatcher.workers:
            worker.process(delta, elapsed_ms, now)

    def run(self, duration_ms: float, clock: Optional[SimulationClock] = None) -> None:
        """Tick until ``duration_ms`` of simulated time has passed."""
        clock = clock if clock is not None else SimulationClock()
        for _ in range(clock.ticks_for(duration_ms)):
            delta, elapsed_ms = clock.tick()
            self.step(delta, elapsed_ms)

    # =========================================================================
    # Configuration setters
    # =========================================================================

    @property
    def policy(self) -> SchedulingPolicy:
        return self.dispatcher.policy

    @policy.setter
    def policy(self, policy: Union[str, SchedulingPolicy]) -> None:
        self.dispatcher.policy = self._resolve_policy(policy)

    @property
    def requests_per_second(self) -> float:
        return self.dispatcher.requests_per_second

    @requests_per_second.setter
    def requests_per_second(self, rps: float) -> None:
        validate_rate(rps, self.dispatcher.rate_variance)
        if rps > 0 and not self.dispatcher.workers:
            raise ValueError("At least one worker is required when generation is enabled")
        self.dispatcher.requests_per_second = rps

    @property
    def rate_variance(self) -> float:
        return self.dispatcher.rate_variance

    @rate_variance.setter
    def rate_variance(self, variance: float) -> None:
        validate_rate(self.dispatcher.requests_per_second, variance)
        self.dispatcher.rate_variance = variance

    @property
    def cost_range(self) -> Range:
        return self.dispatcher.cost_range

    @cost_range.setter
    def cost_range(self, cost: Range) -> None:
        validate_cost(cost)
        self.dispatcher.cost_range = cost

    @property
    def service_rate_range(self) -> Range:
        return self.config.service_rate

    @service_rate_range.setter
    def service_rate_range(self, rate_range: Range) -> None:
        """Re-sample every worker's service rate from ``rate_range``."""
        validate_service_rate(rate_range)
        self.config = replace(self.config, service_rate=rate_range, service_rates=None)
        for worker in self.dispatcher.workers:
            worker.set_rate_range(rate_range)

    @property
    def num_workers(self) -> int:
        return len(self.dispatcher.workers)

    @num_workers.setter
    def num_workers(self, num_workers: int) -> None:
        if num_workers == 0 and self.dispatcher.requests_per_second > 0:
            raise ValueError("At least one worker is required when generation is enabled")
        rate_range = (
            self.dispatcher.workers[0].rate_range
            if self.dispatcher.workers else self.config.service_rate
        )
        self.dispatcher.set_worker_count(num_workers, rate_range, self.now())


def run_simulation(
    policy: Union[str, SchedulingPolicy],
    config: Optional[SimulationConfig] = None,
    duration_ms: float = 60_000.0,
    seed: Optional[int] = None,
    tick_ms: float = FRAME_MS,
) -> SimulationMetrics:
    """
    Convenience function to run a complete simulation.

    Args:
        policy: Policy name or instance to evaluate
        config: Simulation parameters (policy field is ignored)
        duration_ms: Simulated duration in milliseconds
        seed: Random seed for reproducibility
        tick_ms: Tick length in milliseconds

    Returns:
        SimulationMetrics from the simulation
    """
    sim = Simulation(config=config, policy=policy, rng=random.Random(seed))
    collector = MetricsCollector()
    sim.subscribe(collector)
    sim.run(duration_ms, SimulationClock(tick_ms=tick_ms))

    in_flight = sum(worker.in_flight for worker in sim.workers)
    metrics = collector.summarize(sim.policy.name, sim.now_ms, in_flight)
    logger.info("%s", metrics)
    return metrics


def _run_single_experiment(args: tuple) -> tuple:
    """
    Worker function for parallel experiment execution.

    Args:
        args: Tuple of (policy_name, config, rps, duration_ms, seed)

    Returns:
        Tuple of (policy_name, rps, metrics)
    """
    policy_name, config, rps, duration_ms, seed = args
    experiment_config = replace(config, requests_per_second=rps, policy=policy_name)
    metrics = run_simulation(
        policy=policy_name,
        config=experiment_config,
        duration_ms=duration_ms,
        seed=seed,
    )
    return (policy_name, rps, metrics)


def compare_policies(
    policy_names: List[str],
    rps_range: List[float],
    config: Optional[SimulationConfig] = None,
    duration_ms: float = 60_000.0,
    seed: int = 42,
    parallel: bool = True,
    max_workers: Optional[int] = None
) -> Dict[str, Dict[float, SimulationMetrics]]:
    """
    Compare multiple policies across different load levels.

    Every policy sees the same seed at a given load, so differences come
    from the routing decisions rather than from the workload.

    Args:
        policy_names: Registry names of the policies to compare
        rps_range: List of request rates to test
        config: Base configuration (rate and policy are overridden)
        duration_ms: Simulated duration per experiment
        seed: Base random seed (offset for each RPS level)
        parallel: Whether to use parallel execution (default: True)
        max_workers: Max parallel workers (default: CPU count)

    Returns:
        Nested dict: {policy_name: {rps: metrics}}
    """
    base = config if config is not None else SimulationConfig()
    experiments = [
        (name, base, rps, duration_ms, seed + int(rps * 100))
        for name in policy_names
        for rps in rps_range
    ]

    results: Dict[str, Dict[float, SimulationMetrics]] = {name: {} for name in policy_names}

    if parallel and len(experiments) > 1:
        from concurrent.futures import ProcessPoolExecutor, as_completed
        import os

        n_workers = max_workers or min(os.cpu_count() or 4, len(experiments))

        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {executor.submit(_run_single_experiment, exp): exp
                       for exp in experiments}

            for future in as_completed(futures):
                policy_name, rps, metrics = future.result()
                results[policy_name][rps] = metrics
    else:
        for exp in experiments:
            policy_name, rps, metrics = _run_single_experiment(exp)
            results[policy_name][rps] = metrics

    return results
