"""
=============================================================================
SYSRELAY CLI ENTRY POINT
=============================================================================

    # Run with defaults (127.0.0.1:9734, fork per connection)
    python -m sysrelay

    # Listen on all interfaces, answer unknown commands with the status report
    python -m sysrelay --host 0.0.0.0 --unknown-policy status

    # Thread per connection, verbose
    python -m sysrelay --isolation thread --debug

    # Load mail credentials from a specific env file first
    python -m sysrelay --env-file /etc/sysrelay/.env

Stop the server with SIGTERM (kill, systemd, docker stop). Ctrl+C is
ignored on purpose.

Exit status: 0 after a graceful shutdown, 1 when the configuration is
invalid or the port cannot be bound.

=============================================================================
"""

import argparse
import dataclasses
import logging
import sys
from typing import Optional

from . import __version__
from .config import ISOLATION_MODES, ListenerConfig, UnknownCommandPolicy
from .core import StartupError
from .env import load_env_file
from .logconfig import LogConfig, setup_logging
from .server import SysRelayServer


logger = logging.getLogger("sysrelay")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sysrelay",
        description="Line-protocol TCP server for system status reports and mail relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sysrelay                          # Run with defaults
  python -m sysrelay --port 9000              # Custom port
  python -m sysrelay --isolation thread       # Thread per connection
  python -m sysrelay --unknown-policy status  # Unknown commands get SYSINFO
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────
    # Defaults are None so unset options fall through to the environment.

    parser.add_argument("--host", "-H", default=None, help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Port to listen on (default: 9734)")
    parser.add_argument("--backlog", type=int, default=None, help="Listen backlog (default: 10)")

    # ─────────────────────────────────────────────────────────────────────
    # PROTOCOL ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--timeout", "-t",
        type=float,
        default=None,
        help="Seconds a client has to send its command (default: 10)",
    )
    parser.add_argument(
        "--max-command-length",
        type=int,
        default=None,
        help="Command line bound in bytes (default: 256)",
    )
    parser.add_argument(
        "--unknown-policy",
        choices=[p.value for p in UnknownCommandPolicy],
        default=None,
        help="What to do with unknown commands (default: close)",
    )
    parser.add_argument(
        "--isolation",
        choices=ISOLATION_MODES,
        default=None,
        help="Worker isolation per connection (default: process)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING AND ENVIRONMENT
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--debug", action="store_true", help="Shortcut for --log-level DEBUG")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Per-connection log format (default: text)",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="KEY=VALUE file merged into the environment before startup (never overrides)",
    )

    parser.add_argument("--version", "-v", action="version", version=f"sysrelay {__version__}")
    return parser


def build_configs(args: argparse.Namespace) -> tuple:
    """
    Merge CLI arguments over environment-derived configuration.

    Raises:
        ValueError: Invalid value in the environment or on the command line.
    """
    config = ListenerConfig.from_env()
    overrides = {
        "host": args.host,
        "port": args.port,
        "backlog": args.backlog,
        "read_timeout": args.timeout,
        "max_command_length": args.max_command_length,
        "isolation": args.isolation,
    }
    if args.unknown_policy is not None:
        overrides["unknown_policy"] = UnknownCommandPolicy.parse(args.unknown_policy)
    config = dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})
    config.validate()

    log_config = LogConfig.from_env()
    log_overrides = {"level": args.log_level, "log_format": args.log_format}
    if args.debug:
        log_overrides["debug"] = True
    log_config = dataclasses.replace(
        log_config, **{k: v for k, v in log_overrides.items() if v is not None}
    )
    log_config.validate()

    return config, log_config


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.env_file:
        try:
            load_env_file(args.env_file)
        except OSError as e:
            print(f"Error: cannot read env file {args.env_file}: {e}", file=sys.stderr)
            return 1

    try:
        config, log_config = build_configs(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    setup_logging(log_config)

    try:
        server = SysRelayServer(config, log_config)
        server.run()
    except StartupError as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(main())
