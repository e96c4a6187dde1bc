"""
Entry point for the collector stub that receives agent metric updates.
"""
import argparse
import signal
import sys
from typing import Optional, Sequence

from loguru import logger

from collector import start_collector_server
from utils.config import CollectorSettings, ConfigurationError
from utils.logging_config import setup_logging


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Metrics collector (update endpoint only)")
    parser.add_argument("-a", "--address", help="Listen address host:port (env: ADDRESS)")
    parser.add_argument("--log-level", help="Log level (env: LOG_LEVEL)")
    parser.add_argument("--log-file", help="Optional rotating log file (env: LOG_FILE)")
    args = parser.parse_args(argv)

    try:
        settings = CollectorSettings.from_env().with_overrides(
            address=args.address,
            log_level=args.log_level,
            log_file=args.log_file,
        )
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 2

    setup_logging(settings.log_level, settings.log_file)
    # Treat SIGTERM like Ctrl-C so serve_forever unwinds cleanly.
    signal.signal(signal.SIGTERM, _raise_interrupt)

    try:
        start_collector_server(settings.host, settings.port)
    except OSError as e:
        logger.critical(f"Failed to start collector on {settings.address}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
