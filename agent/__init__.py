"""
Runtime metrics agent: samples process statistics and reports them to a collector.
"""
from typing import Optional

from loguru import logger

from agent.lifecycle import AgentLifecycle, Clock, LifecycleState, PeriodicSchedule
from agent.runtime_stats import RUNTIME_GAUGE_NAMES, RuntimeStatsError, RuntimeStatsReader
from agent.sampler import POLL_COUNT, RANDOM_VALUE, RuntimeSampler
from agent.store import MetricKind, MetricSnapshot, MetricStore, MetricValue
from agent.transmitter import MetricTransmitter, ReportResult
from utils.config import AgentSettings


def create_agent(settings: AgentSettings, clock: Optional[Clock] = None) -> AgentLifecycle:
    """Wire the store, sampler, transmitter and lifecycle for one agent run.

    Args:
        settings: Validated agent settings
        clock: Optional time source for the schedules

    Returns:
        AgentLifecycle ready to ``run()``
    """
    store = MetricStore()
    sampler = RuntimeSampler(store)
    transmitter = MetricTransmitter(
        settings.address,
        timeout=settings.client_timeout,
        max_connections=settings.max_idle_connections,
    )
    agent = AgentLifecycle(
        store,
        sampler,
        transmitter,
        poll_interval=settings.poll_interval,
        report_interval=settings.report_interval,
        clock=clock,
        shutdown_timeout=settings.shutdown_timeout,
    )
    logger.info(f"Agent created, reporting to {transmitter.base_url}")
    return agent


__all__ = [
    'AgentLifecycle',
    'Clock',
    'LifecycleState',
    'MetricKind',
    'MetricSnapshot',
    'MetricStore',
    'MetricTransmitter',
    'MetricValue',
    'PeriodicSchedule',
    'POLL_COUNT',
    'RANDOM_VALUE',
    'RUNTIME_GAUGE_NAMES',
    'ReportResult',
    'RuntimeSampler',
    'RuntimeStatsError',
    'RuntimeStatsReader',
    'create_agent',
]
