"""
JIT warmup for the numba kernels.

Call warmup_jit() on startup so the first control ticks and IK calls do not
pay for compilation. With cache=True this is fast once the cache exists.
"""

import logging
import time

import numpy as np

from welding_demo.runtime.loop_timer import _period_stats
from welding_demo.utils.ik import _Q_MAX, _Q_MIN, _limit_codes

logger = logging.getLogger(__name__)


def warmup_jit() -> float:
    """
    Pre-compile all numba JIT functions by calling them with dummy data.

    Returns the time taken in seconds.
    """
    logger.info("Warming JIT...")
    start = time.perf_counter()

    q = np.zeros(6, dtype=np.float64)
    codes = np.zeros(6, dtype=np.int8)

    # welding_demo/utils/ik.py
    _limit_codes(q, q, _Q_MIN, _Q_MAX, True, True, codes)

    # welding_demo/runtime/loop_timer.py
    _period_stats(np.linspace(0.001, 0.002, 32))
    _period_stats(np.zeros(0, dtype=np.float64))

    elapsed = time.perf_counter() - start
    logger.info("JIT warmup finished in %.2fs", elapsed)
    return elapsed
