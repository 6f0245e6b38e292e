"""Main entry point for the Bedrock Server Wrapper."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .bedrock_server_wrapper import BedrockServerWrapper
from .config.config import load_config, setup_logging
from .utils.constants import DEFAULT_CONFIG_PATH, EXIT_OK, EXIT_UNKNOWN_CRASH


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Minecraft Bedrock Dedicated Server Wrapper",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s
    %(prog)s --config /srv/bedrock/wrapper.toml --verbose
        """
    )

    parser.add_argument(
        "--config",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Load settings and run the wrapper until it stops."""
    settings = load_config(args.config)
    setup_logging(settings.config.paths.logs, logging.DEBUG if args.verbose else logging.INFO)

    wrapper = BedrockServerWrapper(settings)
    return await wrapper.run()


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        exit_code = EXIT_OK
    except Exception as e:
        logging.error(f"Unhandled exception. {type(e).__name__}: {str(e)}")
        exit_code = EXIT_UNKNOWN_CRASH

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
