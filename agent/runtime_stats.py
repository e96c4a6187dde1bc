"""
Runtime statistics for the agent process.

Reads process memory from psutil and collector activity from the ``gc``
module, and projects both onto a fixed set of gauge names.
"""
import gc
import os
import sys
import threading
import time
import tracemalloc
from typing import Dict, Optional

import psutil
from loguru import logger

# Gauge names written on every sampling tick, in report order.
RUNTIME_GAUGE_NAMES = (
    "Alloc",
    "BuckHashSys",
    "Frees",
    "GCCPUFraction",
    "GCSys",
    "HeapAlloc",
    "HeapIdle",
    "HeapInuse",
    "HeapObjects",
    "HeapReleased",
    "HeapSys",
    "LastGC",
    "Lookups",
    "MCacheInuse",
    "MCacheSys",
    "MSpanInuse",
    "MSpanSys",
    "Mallocs",
    "NextGC",
    "NumForcedGC",
    "NumGC",
    "OtherSys",
    "PauseTotalNs",
    "StackInuse",
    "StackSys",
    "Sys",
    "TotalAlloc",
)

DEFAULT_THREAD_STACK_BYTES = 8 * 1024 * 1024


class RuntimeStatsError(RuntimeError):
    """Raised when runtime statistics cannot be read."""


class GCPauseTracker:
    """Tracks garbage collector pauses through ``gc.callbacks``."""

    def __init__(self):
        self._lock = threading.Lock()
        self._started_ns: Optional[int] = None
        self.pause_total_ns = 0
        self.last_gc_ns = 0
        self.full_collections = 0
        self.installed = False

    def install(self) -> None:
        if not self.installed:
            gc.callbacks.append(self._on_gc)
            self.installed = True

    def uninstall(self) -> None:
        if self.installed:
            gc.callbacks.remove(self._on_gc)
            self.installed = False

    def _on_gc(self, phase: str, info: Dict[str, int]) -> None:
        if phase == "start":
            self._started_ns = time.perf_counter_ns()
            return
        if self._started_ns is None:
            return
        with self._lock:
            self.pause_total_ns += time.perf_counter_ns() - self._started_ns
            self.last_gc_ns = time.time_ns()
            if info.get("generation") == 2:
                self.full_collections += 1
        self._started_ns = None


_pause_tracker = None


def get_gc_pause_tracker() -> GCPauseTracker:
    """Get the process-wide GC pause tracker, installing it on first use.

    Returns:
        GCPauseTracker instance
    """
    global _pause_tracker
    if _pause_tracker is None:
        _pause_tracker = GCPauseTracker()
        _pause_tracker.install()
        logger.debug("GC pause tracking installed")
    return _pause_tracker


class RuntimeStatsReader:
    """Reads a runtime statistics snapshot for the current process."""

    def __init__(self, process: Optional[psutil.Process] = None,
                 pause_tracker: Optional[GCPauseTracker] = None):
        """Initialize the reader.

        Args:
            process: Process to inspect, defaults to the current process
            pause_tracker: GC pause tracker, defaults to the process-wide one
        """
        self._process = process
        self._pause_tracker = pause_tracker or get_gc_pause_tracker()
        self._peak_rss = 0

    def read(self) -> Dict[str, float]:
        """Read one snapshot.

        Returns:
            Mapping of every name in RUNTIME_GAUGE_NAMES to its value

        Raises:
            RuntimeStatsError: If the process statistics are unavailable
        """
        try:
            if self._process is None:
                self._process = psutil.Process(os.getpid())
            with self._process.oneshot():
                mem = self._process.memory_info()
                cpu = self._process.cpu_times()
                num_threads = self._process.num_threads()
        except (psutil.Error, OSError) as e:
            raise RuntimeStatsError(f"Failed to read process statistics: {e}") from e

        rss = mem.rss
        vms = mem.vms
        shared = getattr(mem, "shared", 0)
        self._peak_rss = max(self._peak_rss, rss)

        generations = gc.get_stats()
        counts = gc.get_count()
        thresholds = gc.get_threshold()
        collections = sum(g.get("collections", 0) for g in generations)
        collected = sum(g.get("collected", 0) for g in generations)
        allocated_blocks = sys.getallocatedblocks()

        if tracemalloc.is_tracing():
            _, traced_peak = tracemalloc.get_traced_memory()
            total_alloc = max(traced_peak, self._peak_rss)
        else:
            total_alloc = self._peak_rss

        stack_bytes = threading.stack_size() or DEFAULT_THREAD_STACK_BYTES
        cpu_ns = (cpu.user + cpu.system) * 1e9
        tracker = self._pause_tracker

        return {
            "Alloc": float(rss),
            "BuckHashSys": float(len(gc.garbage)),
            "Frees": float(collected),
            "GCCPUFraction": tracker.pause_total_ns / cpu_ns if cpu_ns > 0 else 0.0,
            "GCSys": float(tracemalloc.get_tracemalloc_memory()),
            "HeapAlloc": float(rss),
            "HeapIdle": float(max(vms - rss, 0)),
            "HeapInuse": float(max(rss - shared, 0)),
            "HeapObjects": float(allocated_blocks),
            "HeapReleased": 0.0,
            "HeapSys": float(rss),
            "LastGC": float(tracker.last_gc_ns),
            "Lookups": 0.0,
            "MCacheInuse": float(counts[0]),
            "MCacheSys": float(thresholds[0]),
            "MSpanInuse": float(counts[1]),
            "MSpanSys": float(thresholds[1]),
            "Mallocs": float(allocated_blocks + collected),
            "NextGC": float(max(thresholds[0] - counts[0], 0)),
            "NumForcedGC": float(tracker.full_collections),
            "NumGC": float(collections),
            "OtherSys": float(shared),
            "PauseTotalNs": float(tracker.pause_total_ns),
            "StackInuse": float(threading.active_count() * stack_bytes),
            "StackSys": float(num_threads * stack_bytes),
            "Sys": float(vms),
            "TotalAlloc": float(total_alloc),
        }
