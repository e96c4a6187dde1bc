"""
Minimal collector that accepts agent metric updates.
"""
from collector.update_handler import (
    CollectorServer,
    UpdateHandler,
    create_collector_server,
    start_collector_server,
)

__all__ = ['CollectorServer', 'UpdateHandler', 'create_collector_server', 'start_collector_server']
