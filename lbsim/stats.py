"""
Streaming statistics used by the simulator.

    - PeakEstimator: peak-sensitive exponentially weighted moving average
      (PEWMA) of a latency signal. It jumps up immediately when an
      observation exceeds the tracked peak and decays like a plain EWMA
      afterwards.
    - PercentileCalculator: percentile queries over an optionally bounded
      window of samples.
"""

from collections import deque
from typing import Deque, Iterable, List, Optional

from lbsim.config import PEWMA_DEFAULT_PEAK, PEWMA_HISTORY, PEWMA_SMOOTHING


class PeakEstimator:
    """
    Decaying peak tracker.

    Each update appends a new smoothed peak. When the observation exceeds
    the previous peak, weight is shifted from the older entries to the
    newest one, so the estimate reacts to the spike at once.

    Attributes:
        alpha: Smoothing factor in (0, 1]
        beta: Spike reweighting factor, alpha / 4
    """

    def __init__(self, alpha: float = PEWMA_SMOOTHING, max_history: int = PEWMA_HISTORY) -> None:
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"Smoothing must be within (0, 1], got {alpha}")
        if max_history < 1:
            raise ValueError(f"History length must be >= 1, got {max_history}")
        self.alpha = alpha
        self.beta = alpha / 4
        self._peaks: Deque[float] = deque(maxlen=max_history)

    def update(self, value: float) -> float:
        """Feed one observation and return the new peak."""
        # A zero peak counts as no peak at all.
        prev_peak = (self._peaks[-1] if self._peaks else 0.0) or PEWMA_DEFAULT_PEAK
        new_peak = self.alpha * value + (1 - self.alpha) * prev_peak
        self._peaks.append(new_peak)

        if value > prev_peak:
            weight_delta = self.beta * (new_peak / prev_peak)
            last = len(self._peaks) - 1
            for i in range(last):
                self._peaks[i] *= 1 - weight_delta
            self._peaks[last] *= 1 + weight_delta

        return self._peaks[-1]

    @property
    def peak(self) -> Optional[float]:
        """Latest smoothed peak, or None before the first update."""
        return self._peaks[-1] if self._peaks else None

    @property
    def history(self) -> List[float]:
        return list(self._peaks)

    def __len__(self) -> int:
        return len(self._peaks)


class PercentileCalculator:
    """
    Percentiles over a stream of samples.

    With ``window`` set, only the most recent ``window`` samples are kept.
    Percentiles interpolate linearly between the two closest ranks.
    """

    def __init__(self, window: Optional[int] = None) -> None:
        if window is not None and window < 1:
            raise ValueError(f"Window must be >= 1, got {window}")
        self.window = window
        self._points: Deque[float] = deque(maxlen=window)

    def add(self, value: float) -> None:
        self._points.append(value)

    def extend(self, values: Iterable[float]) -> None:
        self._points.extend(values)

    def percentile(self, percentile: float) -> float:
        """
        Value below which ``percentile`` percent of the samples fall.

        Raises:
            ValueError: If percentile is not strictly between 0 and 100,
                or no samples have been added
        """
        if percentile <= 0 or percentile >= 100:
            raise ValueError(f"Percentile must be between 0 and 100, got {percentile}")
        if not self._points:
            raise ValueError("No data points to compute a percentile from")

        ordered = sorted(self._points)
        index = (percentile / 100) * (len(ordered) - 1)
        lower_idx = int(index)
        upper_idx = min(lower_idx + 1, len(ordered) - 1)
        fraction = index - lower_idx

        if fraction == 0:
            return ordered[lower_idx]
        return ordered[lower_idx] * (1 - fraction) + ordered[upper_idx] * fraction

    def mean(self) -> float:
        if not self._points:
            raise ValueError("No data points to compute a mean from")
        return sum(self._points) / len(self._points)

    def __len__(self) -> int:
        return len(self._points)
