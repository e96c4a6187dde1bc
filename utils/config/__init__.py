"""
Configuration utilities for the agent and the collector.
"""

from .settings import AgentSettings, CollectorSettings, ConfigurationError, split_address

__all__ = ['AgentSettings', 'CollectorSettings', 'ConfigurationError', 'split_address']
