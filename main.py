#!/usr/bin/env python3
import sys
import argparse
import asyncio
from dotenv import load_dotenv

from activity_poller.config import load_config
from activity_poller.errors import ConfigError, PollerError
from activity_poller.logging_conf import logger, setup_logging
from activity_poller.runner import StateStore, run


def parse_arguments(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Poll Google Workspace activity reports in time windows"
    )
    parser.add_argument(
        "--state-file",
        default="state/collection_state.json",
        help="Where collection state is kept between runs (default: state/collection_state.json)"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional YAML config file; environment variables override it"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single collection round and exit"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)"
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for the script."""
    args = parse_arguments(argv)

    # Load environment variables from .env file
    load_dotenv()
    # Reconfigure now that LOG_LEVEL from .env is visible
    setup_logging(args.log_level)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {str(e)}")
        sys.exit(1)

    logger.info(f"Starting activity collection for {', '.join(config.targets)}")

    try:
        asyncio.run(run(config, StateStore(args.state_file), once=args.once))
    except KeyboardInterrupt:
        logger.info("Process interrupted by user.")
        sys.exit(0)
    except PollerError as e:
        logger.error(f"Error running activity poller: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error running activity poller: {str(e)}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
