"""
=============================================================================
CALCSERVER CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:6789)
    python -m calcserver

    # Listen on all interfaces, custom port
    python -m calcserver --host 0.0.0.0 --port 7000

    # Small queue that makes clients wait instead of rejecting
    python -m calcserver --queue-capacity 16 --overflow-policy block

    # With the interactive admin menu (list clients / shut down)
    python -m calcserver --console

Environment variables (CALC_PORT, CALC_LOG_LEVEL, ...) provide the
defaults; command-line flags override them.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ServerConfig, OVERFLOW_POLICIES, SHUTDOWN_POLICIES
from .console import AdminConsole
from .server import CalcServer


def build_parser(defaults: ServerConfig) -> argparse.ArgumentParser:
    """Command-line parser whose defaults come from the environment config."""
    parser = argparse.ArgumentParser(
        prog="calcserver",
        description="Multi-client line-protocol arithmetic server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calcserver                        # Run with defaults
  python -m calcserver --port 7000            # Custom port
  python -m calcserver --host 0.0.0.0         # Listen on all interfaces
  python -m calcserver --console              # Admin menu on stdin
        """
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--host", "-H",
        default=defaults.host,
        help=f"Host to bind to (default: {defaults.host})"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=defaults.port,
        help=f"Port to listen on (default: {defaults.port})"
    )

    parser.add_argument(
        "--idle-timeout",
        type=float,
        default=defaults.idle_timeout,
        help="Close sessions idle for this many seconds (default: never)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LIMITS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--queue-capacity",
        type=int,
        default=defaults.queue_capacity,
        help=f"Pending calculation limit, 0 = unbounded (default: {defaults.queue_capacity})"
    )

    parser.add_argument(
        "--overflow-policy",
        choices=OVERFLOW_POLICIES,
        default=defaults.overflow_policy,
        help=f"What to do when the queue is full (default: {defaults.overflow_policy})"
    )

    parser.add_argument(
        "--shutdown-policy",
        choices=SHUTDOWN_POLICIES,
        default=defaults.shutdown_policy,
        help=f"Queued calculations on shutdown (default: {defaults.shutdown_policy})"
    )

    parser.add_argument(
        "--max-clients",
        type=int,
        default=defaults.max_clients,
        help="Maximum joined users (default: unbounded)"
    )

    parser.add_argument(
        "--max-outstanding",
        type=int,
        default=defaults.max_outstanding,
        help="Unanswered CALCs allowed per session, 0 = unlimited (default: 0)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # OPERATIONS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=defaults.log_level.upper(),
        help=f"Logging level (default: {defaults.log_level.upper()})"
    )

    parser.add_argument(
        "--console",
        action="store_true",
        help="Run the interactive admin menu on stdin"
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"calcserver {__version__}"
    )

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    try:
        defaults = ServerConfig.from_env()
        args = build_parser(defaults).parse_args(argv)

        config = ServerConfig(
            host=args.host,
            port=args.port,
            idle_timeout=args.idle_timeout,
            queue_capacity=args.queue_capacity,
            overflow_policy=args.overflow_policy,
            shutdown_policy=args.shutdown_policy,
            max_clients=args.max_clients,
            max_outstanding=args.max_outstanding,
            log_level=args.log_level,
        )
        server = CalcServer(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.console:
        AdminConsole(server).start()

    try:
        server.run(show_banner=True)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
