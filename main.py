"""
Entry point for the runtime metrics agent.

Samples runtime statistics every poll interval and reports them to the
collector every report interval until SIGINT, SIGTERM or SIGQUIT.
"""
import argparse
import asyncio
import sys
from typing import Optional, Sequence

import aiohttp
from loguru import logger

from agent import create_agent
from agent.runtime_stats import RuntimeStatsError
from utils.config import AgentSettings, ConfigurationError
from utils.logging_config import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Runtime metrics agent")
    parser.add_argument("-a", "--address", help="Collector address, host:port or URL (env: ADDRESS)")
    parser.add_argument("-p", "--poll-interval", type=float,
                        help="Seconds between runtime samples (env: POLL_INTERVAL)")
    parser.add_argument("-r", "--report-interval", type=float,
                        help="Seconds between reports to the collector (env: REPORT_INTERVAL)")
    parser.add_argument("--timeout", type=float, dest="client_timeout",
                        help="Per-request timeout in seconds (env: CLIENT_TIMEOUT)")
    parser.add_argument("--log-level", help="Log level (env: LOG_LEVEL)")
    parser.add_argument("--log-file", help="Optional rotating log file (env: LOG_FILE)")
    return parser


def load_settings(argv: Optional[Sequence[str]] = None) -> AgentSettings:
    """Merge environment settings with command line overrides."""
    args = build_parser().parse_args(argv)
    return AgentSettings.from_env().with_overrides(
        address=args.address,
        poll_interval=args.poll_interval,
        report_interval=args.report_interval,
        client_timeout=args.client_timeout,
        log_level=args.log_level,
        log_file=args.log_file,
    )


async def run_agent(settings: AgentSettings) -> None:
    agent = create_agent(settings)
    agent.install_signal_handlers()
    await agent.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        settings = load_settings(argv)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 2

    setup_logging(settings.log_level, settings.log_file)
    logger.info("Starting runtime metrics agent...")

    try:
        asyncio.run(run_agent(settings))
    except RuntimeStatsError as e:
        logger.critical(f"Cannot read runtime statistics: {e}")
        return 1
    except (aiohttp.ClientError, OSError) as e:
        logger.critical(f"Failed to set up HTTP transport: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Received interrupt signal. Agent shut down.")

    logger.info("Agent exited cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
