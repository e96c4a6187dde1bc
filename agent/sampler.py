"""
Runtime sampler: projects runtime statistics into the metric store.
"""
import random
from typing import Optional

from loguru import logger

from agent.runtime_stats import RUNTIME_GAUGE_NAMES, RuntimeStatsError, RuntimeStatsReader
from agent.store import MetricStore

POLL_COUNT = "PollCount"
RANDOM_VALUE = "RandomValue"
RANDOM_VALUE_LIMIT = 10 ** 15


class RuntimeSampler:
    """Writes one set of runtime gauges into the store per sampling tick."""

    def __init__(self, store: MetricStore, reader: Optional[RuntimeStatsReader] = None,
                 rng: Optional[random.Random] = None):
        """Initialize the sampler.

        Args:
            store: Store to write into
            reader: Source of runtime statistics
            rng: Random generator for the RandomValue gauge
        """
        self.store = store
        self.reader = reader or RuntimeStatsReader()
        self.rng = rng or random.Random()
        self.samples_taken = 0
        self.failed_samples = 0

    def check(self) -> None:
        """Startup probe. Raises RuntimeStatsError if statistics are unreadable."""
        stats = self.reader.read()
        missing = [name for name in RUNTIME_GAUGE_NAMES if name not in stats]
        if missing:
            raise RuntimeStatsError(f"Runtime statistics missing fields: {', '.join(missing)}")
        logger.info(f"Runtime statistics available ({len(stats)} fields, "
                    f"Sys={stats['Sys'] / 1024 / 1024:.2f} MB)")

    def sample(self) -> bool:
        """Take one sample.

        Returns:
            True if the store was updated, False if the statistics read failed
        """
        try:
            stats = self.reader.read()
        except RuntimeStatsError as e:
            self.failed_samples += 1
            logger.error(f"Skipping sample, runtime statistics unavailable: {e}")
            return False

        gauges = {name: float(stats[name]) for name in RUNTIME_GAUGE_NAMES}
        gauges[RANDOM_VALUE] = float(self.rng.randrange(RANDOM_VALUE_LIMIT))

        self.store.record_sample(gauges, {POLL_COUNT: 1})
        self.samples_taken += 1
        logger.debug(f"Sample {self.samples_taken} recorded ({len(gauges)} gauges)")
        return True
