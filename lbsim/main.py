"""
Main entry point for the load-balancing simulator.

This script runs comparative experiments between scheduling policies
and prints summary statistics.

Experiment Design:
    - Sweep RPS from under-loaded to saturated
    - Run every selected policy on the same seeded workload
    - Report median latency, tail latency and drop rate at each load level

Expected Results:
    - At low RPS: every policy looks alike (workers are idle most of the time)
    - With heterogeneous workers: blind policies overload the slow workers
    - Latency-aware policies (least connections, peak EWMA) keep the tail
      down and drop less as load grows
"""

import logging
from typing import Dict, List, Optional

from lbsim.config import SCENARIOS, SimulationConfig, get_scenario
from lbsim.policies import policy_names
from lbsim.simulator import SimulationMetrics, compare_policies


def print_header(title: str) -> None:
    """Print a formatted section header."""
    width = 70
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width)


def print_table(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float],
    metric: str = "p50_latency_ms",
    fmt: str = "{:>7.0f}",
) -> None:
    """
    Print a comparison table of policy results.

    Args:
        results: Nested dict from compare_policies
        rps_range: RPS values (column headers)
        metric: SimulationMetrics attribute shown in the cells
        fmt: Format applied to each cell
    """
    header = f"{'Policy':<45} | " + " | ".join(f"{rps:>7.1f}" for rps in rps_range)
    print(header)
    print("-" * len(header))

    for name, rps_results in results.items():
        values = [getattr(rps_results[rps], metric) for rps in rps_range]
        row = f"{name:<45} | " + " | ".join(fmt.format(value) for value in values)
        print(row)


def print_detailed_results(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float]
) -> None:
    """Print detailed metrics for each configuration."""
    for rps in rps_range:
        print_header(f"RPS = {rps}")

        for name, rps_results in results.items():
            metrics = rps_results[rps]
            print(f"\n  {metrics.policy}:")
            print(f"    Created:       {metrics.total_created}")
            print(f"    Completed:     {metrics.completed}")
            print(f"    Dropped:       {metrics.dropped} ({metrics.drop_rate:.1%})")
            print(f"    Avg Latency:   {metrics.avg_latency_ms:.1f}ms")
            print(f"    P50 Latency:   {metrics.p50_latency_ms:.1f}ms")
            print(f"    P99 Latency:   {metrics.p99_latency_ms:.1f}ms")
            print(f"    Avg Service:   {metrics.avg_processing_ms:.1f}ms")
            print(f"    Throughput:    {metrics.throughput:.2f} items/s")
            shares = ", ".join(
                f"{worker_id}:{count}" for worker_id, count in sorted(metrics.served_per_worker.items())
            )
            print(f"    Per Worker:    {shares}")


def run_experiments(
    rps_range: List[float],
    policies: Optional[List[str]] = None,
    config: Optional[SimulationConfig] = None,
    duration_ms: float = 60_000.0,
    seed: int = 42,
    verbose: bool = True,
    parallel: bool = True,
    max_workers: Optional[int] = None
) -> Dict[str, Dict[float, SimulationMetrics]]:
    """
    Run the full experiment suite.

    Args:
        rps_range: List of RPS values to test
        policies: Registry names to compare (default: all)
        config: Base configuration (default: the heterogeneous scenario)
        duration_ms: Simulated duration per experiment
        seed: Random seed for reproducibility
        verbose: Whether to print progress
        parallel: Use multiprocessing for speedup
        max_workers: Number of parallel workers (default: CPU count)

    Returns:
        Results dictionary
    """
    import os
    import time

    policies = policies or policy_names()
    config = config if config is not None else get_scenario("heterogeneous")
    n_experiments = len(policies) * len(rps_range)

    if verbose:
        print_header("Load-Balancing Simulator")
        print(f"\nWorkers: {config.num_workers}, queue capacity: {config.queue_capacity}")
        print(f"Item cost: [{config.cost.min}, {config.cost.max}]")
        print(f"Simulation: {duration_ms / 1000:.0f}s simulated, seed={seed}")
        print(f"RPS range: {rps_range}")
        print(f"Policies: {', '.join(policies)}")
        print(f"Total experiments: {n_experiments}")

        if parallel:
            n_workers = max_workers or min(os.cpu_count() or 4, n_experiments)
            print(f"Parallel execution: {n_workers} workers")
        else:
            print("Sequential execution")

        print("\nRunning simulations...")

    start_time = time.time()

    results = compare_policies(
        policy_names=policies,
        rps_range=rps_range,
        config=config,
        duration_ms=duration_ms,
        seed=seed,
        parallel=parallel,
        max_workers=max_workers
    )

    elapsed = time.time() - start_time
    if verbose:
        print(f"Completed in {elapsed:.1f}s ({n_experiments / max(elapsed, 1e-9):.1f} experiments/sec)")

    return results


def main() -> None:
    """Main entry point with CLI argument parsing."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Load-balancing simulator for scheduling policy comparison"
    )
    parser.add_argument(
        "--policies", "-p", nargs="+", default=None,
        help=f"Policies to compare (default: all of {policy_names()})"
    )
    parser.add_argument(
        "--scenario", default="heterogeneous", choices=sorted(SCENARIOS.keys()),
        help="Worker/cost preset to run (default: heterogeneous)"
    )
    parser.add_argument(
        "--duration", "-d", type=float, default=60.0,
        help="Simulated duration in seconds (default: 60.0)"
    )
    parser.add_argument(
        "--rps-min", type=float, default=1.0,
        help="Minimum RPS to test (default: 1.0)"
    )
    parser.add_argument(
        "--rps-max", type=float, default=8.0,
        help="Maximum RPS to test (default: 8.0)"
    )
    parser.add_argument(
        "--rps-step", type=float, default=1.0,
        help="RPS increment (default: 1.0)"
    )
    parser.add_argument(
        "--seed", "-s", type=int, default=42,
        help="Random seed (default: 42)"
    )
    parser.add_argument(
        "--no-parallel", action="store_true",
        help="Disable parallel execution"
    )
    parser.add_argument(
        "--workers", "-w", type=int, default=None,
        help="Number of parallel workers (default: CPU count)"
    )
    parser.add_argument(
        "--quick", "-q", action="store_true",
        help="Quick mode: shorter duration (10s), fewer RPS points"
    )
    parser.add_argument(
        "--no-details", action="store_true",
        help="Skip detailed per-RPS output"
    )
    parser.add_argument(
        "--log-level", default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for the simulator modules (default: WARNING)"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    # Build RPS range
    if args.quick:
        rps_range = [1.0, 3.0, 5.0, 8.0]
        duration = 10.0
    else:
        rps_range = []
        rps = args.rps_min
        while rps <= args.rps_max + 0.001:  # Small epsilon for float comparison
            rps_range.append(rps)
            rps += args.rps_step
        duration = args.duration

    results = run_experiments(
        rps_range=rps_range,
        policies=args.policies,
        config=get_scenario(args.scenario),
        duration_ms=duration * 1000.0,
        seed=args.seed,
        verbose=True,
        parallel=not args.no_parallel,
        max_workers=args.workers
    )

    print_header("Median Latency (ms) by RPS")
    print_table(results, rps_range)

    print_header("P99 Latency (ms) by RPS")
    print_table(results, rps_range, metric="p99_latency_ms")

    print_header("Drop Rate by RPS")
    print_table(results, rps_range, metric="drop_rate", fmt="{:>7.1%}")

    if not args.no_details:
        print_detailed_results(results, rps_range)

    print("\n" + "=" * 70)
    print(" Simulation Complete!")
    print(" Run 'python -m lbsim.plotter' to generate visualizations in results/")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    main()
