"""
Fixed-rate pacing for the controller thread and rolling period statistics.

``LoopTimer`` sleeps most of the way to each deadline and spins for the last
``busy_threshold_s``. ``LoopMetrics`` keeps the last few seconds of measured
periods; the marker publisher and subscriber reuse it for their rx/tx rates.
"""

import time

import numpy as np
from numba import njit  # type: ignore[import-untyped]

from welding_demo import config as cfg

# Roughly five seconds of ticks at the control rate
WINDOW_SIZE = max(32, int(cfg.CONTROL_RATE_HZ * 5.0))


@njit(cache=True)
def _period_stats(window: np.ndarray) -> tuple[float, float, float, float, float]:
    """(mean, std, min, max, p99) of ``window``; all zeros when it is empty."""
    n = window.shape[0]
    if n == 0:
        return 0.0, 0.0, 0.0, 0.0, 0.0
    mean = window.mean()
    std = np.sqrt(((window - mean) ** 2).mean())
    if n < 20:
        p99 = window.max()
    else:
        k = int(n * 0.99)
        p99 = np.partition(window.copy(), k)[k]
    return mean, std, window.min(), window.max(), p99


class LoopMetrics:
    """Period samples of a loop and the statistics last computed from them."""

    __slots__ = (
        "loop_count",
        "overrun_count",
        "mean_period_s",
        "std_period_s",
        "min_period_s",
        "max_period_s",
        "p99_period_s",
        "target_period_s",
        "_samples",
        "_next",
        "_filled",
        "_last_log_time",
    )

    def __init__(self, target_period_s: float = 0.0, window: int = WINDOW_SIZE) -> None:
        self.target_period_s = target_period_s
        self.loop_count = 0
        self.overrun_count = 0
        self.mean_period_s = 0.0
        self.std_period_s = 0.0
        self.min_period_s = 0.0
        self.max_period_s = 0.0
        self.p99_period_s = 0.0
        self._samples = np.zeros(window, dtype=np.float64)
        self._next = 0
        self._filled = False
        self._last_log_time = 0.0

    @property
    def sample_count(self) -> int:
        return len(self._samples) if self._filled else self._next

    def record_period(self, period: float) -> None:
        self._samples[self._next] = period
        self._next += 1
        if self._next == len(self._samples):
            self._next = 0
            self._filled = True

    def compute_stats(self) -> None:
        n = self.sample_count
        if n == 0:
            return
        (
            self.mean_period_s,
            self.std_period_s,
            self.min_period_s,
            self.max_period_s,
            self.p99_period_s,
        ) = _period_stats(self._samples[:n])

    def should_log(self, now: float, interval: float) -> bool:
        """True at most once per ``interval`` seconds."""
        if now - self._last_log_time < interval:
            return False
        self._last_log_time = now
        return True


def format_hz_summary(m: LoopMetrics) -> str:
    """e.g. ``125.0Hz σ=0.05ms p99=8.10ms``"""
    hz = 1.0 / m.mean_period_s if m.mean_period_s > 0 else 0.0
    return f"{hz:.1f}Hz σ={m.std_period_s * 1e3:.2f}ms p99={m.p99_period_s * 1e3:.2f}ms"


class LoopTimer:
    """
    Deadline pacing for a fixed-rate loop.

    Call ``start`` before the first iteration and ``wait_for_next_tick`` at
    the end of each one. A missed deadline counts as an overrun and the
    schedule restarts from now. With ``realtime=False`` ticks are counted
    and timed but never waited for.
    """

    def __init__(
        self,
        interval_s: float,
        busy_threshold_s: float | None = None,
        stats_interval: int = 50,
        realtime: bool = True,
    ):
        self.interval = interval_s
        self.realtime = realtime
        if busy_threshold_s is None:
            busy_threshold_s = cfg.BUSY_THRESHOLD_MS / 1000.0
        self._spin_s = busy_threshold_s
        self._stats_every = max(1, stats_interval)
        self._deadline = 0.0
        self._last_tick = 0.0
        self.metrics = LoopMetrics(interval_s)

    def start(self) -> None:
        self._deadline = self._last_tick = time.perf_counter()

    def _sleep_until_deadline(self) -> None:
        self._deadline += self.interval
        remaining = self._deadline - time.perf_counter()
        if remaining <= 0:
            self.metrics.overrun_count += 1
            self._deadline = time.perf_counter()
            return
        if remaining > self._spin_s:
            time.sleep(remaining - self._spin_s)
        while time.perf_counter() < self._deadline:
            pass

    def wait_for_next_tick(self) -> None:
        m = self.metrics
        m.loop_count += 1
        if m.loop_count % self._stats_every == 0:
            m.compute_stats()

        if self.realtime:
            self._sleep_until_deadline()

        now = time.perf_counter()
        m.record_period(now - self._last_tick)
        self._last_tick = now
