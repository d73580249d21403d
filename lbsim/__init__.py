"""
Load-Balancing Simulator

A tick-driven simulator for comparing scheduling policies that spread a
stream of work items across workers with finite capacity and bounded
queues.

Key Components:
    - config: Simulation constants, configuration and scenario presets
    - workload: Work items and their lifecycle
    - worker: Workers and their bounded queues
    - stats: Peak EWMA estimator and percentile calculator
    - policies: Scheduling policies (round robin ... peak EWMA)
    - dispatcher: Item generation and routing
    - simulator: Simulation clock, harness and metrics
    - plotter: Visualization utilities

Usage:
    # Run full comparison
    python -m lbsim.main

    # Generate plots
    python -m lbsim.plotter

    # Run tests
    pytest lbsim/tests/
"""

from lbsim.config import (
    FRAME_MS,
    SCENARIOS,
    Range,
    SimulationConfig,
    get_scenario,
)

from lbsim.workload import (
    ItemState,
    WorkItem,
)

from lbsim.worker import (
    ArrivalOutcome,
    BoundedQueue,
    Worker,
)

from lbsim.stats import (
    PeakEstimator,
    PercentileCalculator,
)

from lbsim.policies import (
    SchedulingPolicy,
    RoundRobin,
    WeightedRandom,
    WeightedRoundRobin,
    DynamicWeightedRoundRobin,
    LeastConnections,
    PeakEWMA,
    RandomChoice,
    POLICIES,
    create_policy,
)

from lbsim.dispatcher import (
    Dispatcher,
    ItemObserver,
)

from lbsim.simulator import (
    MetricsCollector,
    Simulation,
    SimulationClock,
    SimulationMetrics,
    run_simulation,
    compare_policies,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "FRAME_MS",
    "SCENARIOS",
    "Range",
    "SimulationConfig",
    "get_scenario",
    # Workload
    "ItemState",
    "WorkItem",
    # Worker
    "ArrivalOutcome",
    "BoundedQueue",
    "Worker",
    # Stats
    "PeakEstimator",
    "PercentileCalculator",
    # Policies
    "SchedulingPolicy",
    "RoundRobin",
    "WeightedRandom",
    "WeightedRoundRobin",
    "DynamicWeightedRoundRobin",
    "LeastConnections",
    "PeakEWMA",
    "RandomChoice",
    "POLICIES",
    "create_policy",
    # Dispatcher
    "Dispatcher",
    "ItemObserver",
    # Simulator
    "MetricsCollector",
    "Simulation",
    "SimulationClock",
    "SimulationMetrics",
    "run_simulation",
    "compare_policies",
]
