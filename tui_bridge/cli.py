"""
CLI entrypoint for TUI Bridge.

Usage:
    tui-bridge                                   # Auto-discover .tui-bridge.yaml
    tui-bridge --port 9000 --mode stripped       # Explicit options
    tui-bridge --profile generic -- bash -i      # Bridge another program
    tui-bridge --print-config                    # Print resolved config
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn
from dotenv import load_dotenv

from . import __version__
from .config import Config, load_config
from .discovery import discover_project_config
from .errors import ConfigError
from .process import TRANSPORTS
from .profiles import available_profiles
from .server import create_app
from .session import MODES


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="tui-bridge",
        description="Bridge an interactive terminal program to websocket clients",
    )

    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="Path to config file (default: auto-discover)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        help="Server port (default: 3444)",
    )
    parser.add_argument(
        "--host",
        help="Server host (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--token", "-t",
        help="Auth token (implies --require-token, auto-generated if not set)",
    )
    parser.add_argument(
        "--require-token",
        action="store_true",
        help="Enable token authentication",
    )
    parser.add_argument(
        "--mode", "-m",
        choices=MODES,
        help="Output mode (default: filtered)",
    )
    parser.add_argument(
        "--profile",
        help=f"Noise filter profile: {', '.join(available_profiles())} (default: qwen)",
    )
    parser.add_argument(
        "--transport",
        choices=TRANSPORTS,
        help="Run the program on a pty or on plain pipes (default: pty)",
    )
    parser.add_argument("--cols", type=int, help="Terminal columns (default: 100)")
    parser.add_argument("--rows", type=int, help="Terminal rows (default: 30)")
    parser.add_argument("--cwd", help="Program working directory (default: server cwd)")
    parser.add_argument(
        "--flush-ms",
        type=int,
        help="Debounce window in milliseconds (default: 150)",
    )
    parser.add_argument(
        "--no-discovery",
        action="store_true",
        help="Disable auto-discovery of .tui-bridge.yaml",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print resolved config as YAML and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"tui-bridge {__version__}",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Program and arguments to bridge (after --)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Load config and apply CLI overrides."""
    if args.config:
        config = load_config(args.config)
    elif args.no_discovery:
        config = Config()
    else:
        config = discover_project_config()

    if args.port:
        config.port = args.port
    if args.host:
        config.host = args.host
    if args.token:
        config.token = args.token
        config.no_auth = False  # --token implies auth required
    if args.require_token:
        config.no_auth = False
    if args.mode:
        config.mode = args.mode
    if args.profile:
        config.filter.profile = args.profile
    if args.transport:
        config.transport = args.transport
    if args.cols:
        config.cols = args.cols
    if args.rows:
        config.rows = args.rows
    if args.cwd:
        config.cwd = args.cwd
    if args.flush_ms:
        config.flush_interval = args.flush_ms / 1000

    command = list(args.command or [])
    if command and command[0] == "--":
        command = command[1:]
    if command:
        config.command = command[0]
        config.args = command[1:]

    return config.validate()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint."""
    # Load environment variables from .env file
    load_dotenv()

    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"tui-bridge: {e.message}", file=sys.stderr)
        return 2

    # Print config and exit if requested
    if args.print_config:
        print(config.to_yaml())
        return 0

    log_level = "debug" if args.verbose else "info"
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s"
    )

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=log_level,
    )

    return 0


if __name__ == "__main__":
    sys.exit(main())
