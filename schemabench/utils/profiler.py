"""
Client-side resource sampling.

Wraps a phase of the benchmark (typically data generation and load) and
records wall time, peak resident memory of this process, and CPU usage. The
peak RSS is the evidence that batch generation keeps memory flat regardless of
the scenario's row count.

Usage:
    with profile_block("load") as stats:
        distributor.load(...)

    print(stats.duration_seconds, stats.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Measurements of one profiled phase.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    start_rss_bytes: Optional[int] = field(default=None)
    peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "duration_seconds": round(self.duration_seconds, 3),
            "start_rss_bytes": self.start_rss_bytes,
            "peak_rss_bytes": self.peak_rss_bytes,
            "cpu_percent": round(self.cpu_percent, 1) if self.cpu_percent is not None else None,
        }


@contextlib.contextmanager
def profile_block(label: str, sample_interval_ms: int = 50) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code with a background RSS sampler.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled block.
    sample_interval_ms : int
        Interval in milliseconds between RSS samples.
    """
    stats = ProfileStats(label=label)
    process = psutil.Process()
    stop_sampling = threading.Event()
    peak = process.memory_info().rss
    stats.start_rss_bytes = peak

    def _sample() -> None:
        nonlocal peak
        while not stop_sampling.is_set():
            try:
                peak = max(peak, process.memory_info().rss)
            except psutil.Error:
                return
            stop_sampling.wait(timeout=sample_interval_ms / 1000.0)

    # cpu_percent needs a priming call
    process.cpu_percent(interval=None)
    sampler = threading.Thread(target=_sample, name=f"rss-{label}", daemon=True)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts
        stop_sampling.set()
        sampler.join(timeout=1.0)
        stats.peak_rss_bytes = max(peak, process.memory_info().rss)
        stats.cpu_percent = process.cpu_percent(interval=None)


def host_snapshot() -> Dict[str, Any]:
    """Static description of the benchmarking host."""
    memory = psutil.virtual_memory()
    return {
        "cpu_count_logical": psutil.cpu_count(logical=True),
        "cpu_count_physical": psutil.cpu_count(logical=False),
        "memory_total_bytes": memory.total,
        "memory_available_bytes": memory.available,
    }


__all__ = ["ProfileStats", "host_snapshot", "profile_block"]
