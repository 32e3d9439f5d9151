"""
Timing Tools for Covariance Function Capabilities

Measures how long each kernel operation takes for a given input size:
1. Timer: context manager for a single measurement
2. Profiler: named timing series with summary statistics
3. profile_kernel: times the covariance and gradient capabilities of a kernel
"""

from __future__ import annotations

import functools
import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from ..gp.exceptions import UnsupportedCombinationError

logger = logging.getLogger(__name__)


@dataclass
class TimingResult:
    """Summary of a named timing series."""

    name: str
    mean_ms: float
    std_ms: float
    min_ms: float
    max_ms: float
    n_calls: int
    total_ms: float

    def __str__(self) -> str:
        return (
            f"{self.name}: {self.mean_ms:.3f} ± {self.std_ms:.3f} ms "
            f"(min={self.min_ms:.3f}, max={self.max_ms:.3f}, n={self.n_calls})"
        )


class Timer:
    """Context manager measuring wall-clock time in milliseconds."""

    def __init__(self, name: str = "", on_exit: Optional[Callable[[str, float], None]] = None):
        self.name = name
        self.elapsed_ms = 0.0
        self._start = 0.0
        self._on_exit = on_exit

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000
        if self._on_exit is not None:
            self._on_exit(self.name, self.elapsed_ms)


class Profiler:
    """
    Collects timing series by name.

    Example:
        >>> profiler = Profiler()
        >>> with profiler.time("trcov"):
        ...     K = kernel.trcov(X)
        >>> print(profiler.report())
    """

    def __init__(self):
        self._timings: Dict[str, List[float]] = defaultdict(list)

    def time(self, name: str) -> Timer:
        """Timer whose measurement is recorded under ``name``."""
        return Timer(name, on_exit=self.record)

    def record(self, name: str, elapsed_ms: float) -> None:
        self._timings[name].append(elapsed_ms)

    def get_stats(self, name: str) -> Optional[TimingResult]:
        """Statistics of one series, None if nothing was recorded."""
        times = self._timings.get(name)
        if not times:
            return None

        times = np.asarray(times)
        return TimingResult(
            name=name,
            mean_ms=float(np.mean(times)),
            std_ms=float(np.std(times)),
            min_ms=float(np.min(times)),
            max_ms=float(np.max(times)),
            n_calls=len(times),
            total_ms=float(np.sum(times)),
        )

    def get_all_stats(self) -> Dict[str, TimingResult]:
        return {name: self.get_stats(name) for name in self._timings if self._timings[name]}

    def report(self) -> str:
        """Table of series sorted by mean time, slowest first."""
        lines = ["Timing Report", "=" * 60]

        stats = self.get_all_stats()
        if not stats:
            lines.append("No timing data recorded")
            return "\n".join(lines)

        total = sum(s.total_ms for s in stats.values())
        for name, stat in sorted(stats.items(), key=lambda item: item[1].mean_ms, reverse=True):
            share = stat.total_ms / total * 100 if total > 0 else 0.0
            lines.append(f"{name:24s}: {stat.mean_ms:9.3f} ms ({share:5.1f}%) [n={stat.n_calls}]")

        lines.append("=" * 60)
        lines.append(f"Total: {total:.3f} ms")
        return "\n".join(lines)

    def reset(self) -> None:
        self._timings.clear()


def profile_function(profiler: Profiler, name: Optional[str] = None):
    """Decorator recording every call of the wrapped function."""

    def decorator(func: Callable) -> Callable:
        func_name = name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with profiler.time(func_name):
                return func(*args, **kwargs)

        return wrapper

    return decorator


DEFAULT_OPERATIONS = ("trcov", "cov", "trvar", "ghyper", "ginput", "ginput4", "ghypergrad", "ghypergrad2")


def profile_kernel(
    kernel,
    x: NDArray,
    operations: Sequence[str] = DEFAULT_OPERATIONS,
    n_warmup: int = 2,
    n_trials: int = 10,
    profiler: Optional[Profiler] = None,
) -> Profiler:
    """
    Time kernel capabilities at inputs ``x``.

    Operations the kernel does not support in its current configuration
    (e.g. input derivatives with a metric) are skipped.

    Args:
        kernel: Covariance function
        x: (N, D) inputs
        operations: Capability names to time
        n_warmup: Untimed calls per operation
        n_trials: Timed calls per operation
        profiler: Profiler to record into [new one]

    Returns:
        Profiler holding one series per timed operation
    """
    profiler = profiler or Profiler()
    calls: Dict[str, Callable[[], object]] = {
        "trcov": lambda: kernel.trcov(x),
        "cov": lambda: kernel.cov(x, x),
        "trvar": lambda: kernel.trvar(x),
        "ghyper": lambda: kernel.ghyper(x),
        "ginput": lambda: kernel.ginput(x),
        "ginput4": lambda: kernel.ginput4(x),
        "ginput2": lambda: kernel.ginput2(x, x),
        "ginput3": lambda: kernel.ginput3(x, x),
        "ghypergrad": lambda: kernel.ghypergrad(x),
        "ghypergrad2": lambda: kernel.ghypergrad2(x),
    }

    for op in operations:
        if op not in calls:
            raise ValueError(f"Unknown kernel operation: {op}")
        try:
            for _ in range(max(n_warmup, 1)):
                calls[op]()
        except UnsupportedCombinationError as exc:
            logger.info("Skipping %s: %s", op, exc)
            continue

        for _ in range(n_trials):
            with profiler.time(op):
                calls[op]()

    return profiler
