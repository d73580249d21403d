"""
Visualization module for the load-balancing simulator.

This module generates plots comparing policy performance. The key
visualization shows how median and tail latency vary with load for each
scheduling policy.

Expected Visualization Story:
    - At low load: All policies perform similarly
    - As load increases: blind policies pile work onto slow workers
    - Near saturation: latency-aware policies keep the tail and the drop
      rate down
"""

import matplotlib.pyplot as plt
import numpy as np
from typing import Dict, List, Optional
from pathlib import Path

from lbsim.config import DROP_PENALTY_MS, PEWMA_SMOOTHING, SimulationConfig, get_scenario
from lbsim.main import run_experiments
from lbsim.simulator import SimulationMetrics
from lbsim.stats import PeakEstimator


# Style configuration for publication-quality plots
plt.rcParams.update({
    'font.family': 'serif',
    'font.size': 11,
    'axes.titlesize': 14,
    'axes.labelsize': 12,
    'xtick.labelsize': 10,
    'ytick.labelsize': 10,
    'legend.fontsize': 10,
    'figure.titlesize': 16,
    'figure.dpi': 150,
    'savefig.dpi': 300,
    'savefig.bbox': 'tight',
})

# Color palette (colorblind-friendly)
COLORS = {
    'round-robin': '#E69F00',                   # Orange
    'weighted-round-robin': '#56B4E9',          # Sky blue
    'least-connections': '#009E73',             # Green
    'peak-ewma': '#D55E00',                     # Vermillion
    'dynamic-weighted-round-robin': '#0072B2',  # Blue
    'weighted-random': '#CC79A7',               # Pink
    'random': '#999999',                        # Gray
    'grid': '#CCCCCC',                          # Light gray
}

MARKERS = ['o', 's', '^', 'D', 'v', 'P', 'X']


def _color(policy: str) -> str:
    return COLORS.get(policy, '#000000')


def _plot_metric_lines(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float],
    metric: str,
    ylabel: str,
    title: str,
    output_path: str,
    show: bool
) -> None:
    fig, ax = plt.subplots(figsize=(10, 6))

    for idx, (policy, rps_results) in enumerate(results.items()):
        values = [getattr(rps_results[rps], metric) for rps in rps_range]
        ax.plot(
            rps_range, values,
            color=_color(policy),
            marker=MARKERS[idx % len(MARKERS)],
            markersize=8,
            linewidth=2.5,
            label=rps_results[rps_range[0]].policy
        )

    ax.set_xlabel('Input Load (Requests Per Second)', fontweight='bold')
    ax.set_ylabel(ylabel, fontweight='bold')
    ax.set_title(title, fontweight='bold', pad=15)

    ax.legend(loc='upper left', framealpha=0.9)
    ax.grid(True, alpha=0.3, color=COLORS['grid'])
    ax.set_xlim(min(rps_range) - 0.5, max(rps_range) + 0.5)
    ax.set_ylim(bottom=0)

    plt.tight_layout()
    plt.savefig(output_path)
    print(f"Saved: {output_path}")

    if show:
        plt.show()
    plt.close(fig)


def plot_latency_comparison(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float],
    output_path: str = "policy_comparison.png",
    show: bool = False
) -> None:
    """
    Generate the main comparison plot: median latency vs load.

    Args:
        results: Nested dict from compare_policies
        rps_range: RPS values tested
        output_path: Where to save the figure
        show: Whether to display interactively
    """
    _plot_metric_lines(
        results, rps_range,
        metric='p50_latency_ms',
        ylabel='Median Item Latency (ms)',
        title='Load Balancing: Median Latency by Policy',
        output_path=output_path,
        show=show,
    )


def plot_tail_latency_comparison(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float],
    output_path: str = "tail_latency_comparison.png",
    show: bool = False
) -> None:
    """
    Plot P99 latency comparison.

    Tail latency is where routing decisions show: one item parked behind
    an expensive item on a slow worker dominates the P99.
    """
    _plot_metric_lines(
        results, rps_range,
        metric='p99_latency_ms',
        ylabel='P99 Latency (ms)',
        title='Tail Latency Comparison by Policy',
        output_path=output_path,
        show=show,
    )


def plot_drop_rate(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps_range: List[float],
    output_path: str = "drop_rate.png",
    show: bool = False
) -> None:
    """Grouped bars of the fraction of items dropped at each load level."""
    fig, ax = plt.subplots(figsize=(12, 6))

    policies = list(results.keys())
    x = np.arange(len(rps_range))
    width = 0.8 / max(len(policies), 1)

    for idx, policy in enumerate(policies):
        rates = [results[policy][rps].drop_rate * 100 for rps in rps_range]
        offset = width * (idx - (len(policies) - 1) / 2)
        ax.bar(
            x + offset, rates, width,
            label=results[policy][rps_range[0]].policy,
            color=_color(policy), alpha=0.8
        )

    ax.set_xlabel('Input Load (Requests Per Second)', fontweight='bold')
    ax.set_ylabel('Dropped Items (%)', fontweight='bold')
    ax.set_title('Drop Rate by Policy', fontweight='bold', pad=15)
    ax.set_xticks(x)
    ax.set_xticklabels([f'{rps:g}' for rps in rps_range])
    ax.legend(loc='upper left', framealpha=0.9)
    ax.grid(True, alpha=0.3, axis='y', color=COLORS['grid'])
    ax.set_ylim(bottom=0)

    plt.tight_layout()
    plt.savefig(output_path)
    print(f"Saved: {output_path}")

    if show:
        plt.show()
    plt.close(fig)


def plot_worker_share(
    results: Dict[str, Dict[float, SimulationMetrics]],
    rps: float,
    config: SimulationConfig,
    output_path: str = "worker_share.png",
    show: bool = False
) -> None:
    """
    Compare each policy's share of served items per worker with the share
    of total service rate each worker has.
    """
    fig, ax = plt.subplots(figsize=(12, 6))

    policies = list(results.keys())
    # Worker ids are assigned 0..n-1 when a simulation is built.
    worker_ids = list(range(config.num_workers))
    x = np.arange(len(worker_ids))
    width = 0.8 / (len(policies) + 1)

    if config.service_rates is not None:
        rates = np.array(config.service_rates, dtype=float)
        capacity_share = rates / rates.sum() * 100
        ax.bar(x - 0.4 + width / 2, capacity_share, width,
               label='Service rate share', color='black', alpha=0.6)

    for idx, policy in enumerate(policies):
        served = results[policy][rps].served_per_worker
        total = max(sum(served.values()), 1)
        share = np.array([served.get(w, 0) for w in worker_ids], dtype=float) / total * 100
        ax.bar(x - 0.4 + width * (idx + 1.5), share, width,
               label=results[policy][rps].policy, color=_color(policy), alpha=0.8)

    ax.set_xticks(x)
    ax.set_xticklabels([f'W{w}' for w in worker_ids])
    ax.set_xlabel('Worker', fontweight='bold')
    ax.set_ylabel('Served Items (%)', fontweight='bold')
    ax.set_title(f'Work Distribution at {rps:g} RPS', fontweight='bold', pad=15)
    ax.legend(loc='upper left', framealpha=0.9, ncol=2)
    ax.grid(True, alpha=0.3, axis='y', color=COLORS['grid'])

    plt.tight_layout()
    plt.savefig(output_path)
    print(f"Saved: {output_path}")

    if show:
        plt.show()
    plt.close(fig)


def plot_peak_estimator(
    output_path: str = "peak_estimator.png",
    show: bool = False
) -> None:
    """
    Show how the peak estimator reacts to a latency spike.

    A steady 400ms signal is interrupted by a single drop penalty. The
    PEWMA jumps immediately and then decays back, while a plain EWMA with
    the same smoothing moves much less.
    """
    signal = np.full(60, 400.0)
    signal[20] = DROP_PENALTY_MS

    estimator = PeakEstimator(PEWMA_SMOOTHING)
    peaks = [estimator.update(value) for value in signal]

    ewma = []
    prev = 1000.0
    for value in signal:
        prev = PEWMA_SMOOTHING * value + (1 - PEWMA_SMOOTHING) * prev
        ewma.append(prev)

    fig, ax = plt.subplots(figsize=(10, 5))
    ax.plot(signal, color='gray', linewidth=1.0, alpha=0.6, label='Observed latency')
    ax.plot(ewma, '--', color=_color('dynamic-weighted-round-robin'), linewidth=2, label='EWMA')
    ax.plot(peaks, color=_color('peak-ewma'), linewidth=2.5, label='Peak EWMA')

    ax.set_xlabel('Observation', fontweight='bold')
    ax.set_ylabel('Latency (ms)', fontweight='bold')
    ax.set_title('Peak EWMA Reacts to Spikes Immediately', fontweight='bold', pad=15)
    ax.legend(loc='upper right', framealpha=0.9)
    ax.grid(True, alpha=0.3, color=COLORS['grid'])
    ax.set_yscale('log')

    plt.tight_layout()
    plt.savefig(output_path)
    print(f"Saved: {output_path}")

    if show:
        plt.show()
    plt.close(fig)


def generate_all_plots(
    results: Optional[Dict[str, Dict[float, SimulationMetrics]]] = None,
    rps_range: Optional[List[float]] = None,
    config: Optional[SimulationConfig] = None,
    output_dir: str = "results",
    duration_ms: float = 60_000.0,
    show: bool = False
) -> None:
    """
    Generate all visualization plots.

    Args:
        results: Pre-computed results (if None, runs experiments)
        rps_range: RPS values to test
        config: Base configuration (default: the heterogeneous scenario)
        output_dir: Directory to save plots
        duration_ms: Simulated duration per experiment when running
        show: Whether to display plots interactively
    """
    if rps_range is None:
        rps_range = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0]
    if config is None:
        config = get_scenario("heterogeneous")

    if results is None:
        print("Running experiments for plotting...")
        results = run_experiments(
            rps_range, config=config, duration_ms=duration_ms, seed=42, verbose=False
        )

    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    print("\nGenerating plots...")

    plot_latency_comparison(
        results, rps_range,
        str(output_path / "policy_comparison.png"),
        show
    )

    plot_tail_latency_comparison(
        results, rps_range,
        str(output_path / "tail_latency_comparison.png"),
        show
    )

    plot_drop_rate(
        results, rps_range,
        str(output_path / "drop_rate.png"),
        show
    )

    plot_worker_share(
        results, max(rps_range), config,
        str(output_path / "worker_share.png"),
        show
    )

    plot_peak_estimator(
        str(output_path / "peak_estimator.png"),
        show
    )

    print("\nAll plots generated successfully!")


def main() -> None:
    """Main entry point for plotting with CLI arguments."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Generate visualization plots for load-balancing policy comparison"
    )
    parser.add_argument(
        "--output-dir", "-o", type=str, default="results",
        help="Directory to save plots (default: results)"
    )
    parser.add_argument(
        "--show", action="store_true",
        help="Display plots interactively"
    )
    parser.add_argument(
        "--duration", "-d", type=float, default=60.0,
        help="Simulated duration in seconds (default: 60.0)"
    )
    parser.add_argument(
        "--scenario", default="heterogeneous",
        help="Worker/cost preset to run (default: heterogeneous)"
    )

    args = parser.parse_args()

    generate_all_plots(
        config=get_scenario(args.scenario),
        output_dir=args.output_dir,
        duration_ms=args.duration * 1000.0,
        show=args.show,
    )


if __name__ == "__main__":
    main()
