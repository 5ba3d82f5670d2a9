"""
Command-line entry point.

Usage: pyclat [-c FILE] [-n] [-v | -q] [key=value ...]
"""

import argparse
import logging
import sys

from clat.commands import CommandRunner
from clat.config import DEFAULT_CONFIG_FILE, load_config
from clat.controller import EXIT_FAILURE, RunController
from clat.errors import ConfigError


# ---------------------------------------------------------------------------
# Logging helper
# ---------------------------------------------------------------------------

def setup_logging(verbose: bool = False, quiet: bool = False):
    """Configure logging."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pyclat',
        description='464XLAT CLAT: discover the NAT64 prefix, set up TAYGA and roll back on exit',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Configuration:
  Settings are read from a YAML file (default: {DEFAULT_CONFIG_FILE} if present,
  or CLAT_CONFIG_FILE), then CLAT_<KEY> environment variables, then key=value
  arguments. Keys: clat-dev, clat-v4-addr, clat-v6-addr, dns64-servers,
  cmd-ip, cmd-ip6tables, cmd-sysctl, cmd-tayga, forwarding-enable,
  ip6tables-enable, proxynd-enable, plat-dev, plat-prefix, script-up,
  script-down, tayga-conffile, tayga-v4-addr, v4-conncheck-enable,
  v4-conncheck-delay, v4-defaultroute-enable, v4-defaultroute-replace,
  v4-defaultroute-metric, v4-defaultroute-mtu, v4-defaultroute-advmss.

Examples:
  # Discover everything automatically
  %(prog)s

  # Use a specific DNS64 resolver and uplink
  %(prog)s dns64-servers=2001:db8::53 plat-dev=eth0

  # Static PLAT prefix, replace an existing IPv4 default route
  %(prog)s plat-prefix=64:ff9b::/96 v4-defaultroute-replace=yes

  # Dry run to see what would change
  %(prog)s --dry-run -v
        """
    )
    parser.add_argument(
        'settings',
        nargs='*',
        metavar='key=value',
        help='Configuration overrides'
    )
    parser.add_argument(
        '-c', '--config',
        help=f'Path to YAML configuration file (default: {DEFAULT_CONFIG_FILE} if it exists)'
    )
    parser.add_argument(
        '-n', '--dry-run',
        action='store_true',
        help='Show what would be done without making changes'
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    verbosity.add_argument(
        '-q', '--quiet',
        action='store_true',
        help='Only log warnings and errors'
    )
    return parser


def main(argv=None):
    """Main entry point."""
    args = build_parser().parse_args(argv)

    setup_logging(args.verbose, args.quiet)
    logger = logging.getLogger(__name__)

    try:
        config = load_config(args.config, args.settings)
    except OSError as e:
        logger.error(f"File error: {e}")
        sys.exit(EXIT_FAILURE)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_FAILURE)

    logger.info("=" * 60)
    logger.info("CLAT (464XLAT) setup")
    for key, value in config.summary().items():
        logger.debug(f"{key + ':':26s}{value}")
    if args.dry_run:
        logger.info("*** DRY RUN – no changes will be made ***")
    logger.info("=" * 60)

    try:
        status = RunController(config, CommandRunner(dry_run=args.dry_run)).run()
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        sys.exit(EXIT_FAILURE)

    if args.dry_run:
        logger.info("DRY RUN mode – no changes were made")

    sys.exit(status)


if __name__ == '__main__':
    main()
