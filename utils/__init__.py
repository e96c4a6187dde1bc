"""
Utilities package for the runtime metrics agent.
"""

from .config import AgentSettings, CollectorSettings, ConfigurationError
from .logging_config import setup_logging

__all__ = [
    'AgentSettings',
    'CollectorSettings',
    'ConfigurationError',
    'setup_logging'
]
