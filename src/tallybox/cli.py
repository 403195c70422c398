"""
tallybox CLI - Command-line interface for the tallybox package.

Provides subcommands:
- tallybox start: Start the contest API server
- tallybox version: Display version information
- tallybox submit: Run a contest through a running server
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import aiohttp

from tallybox import APP_NAME, get_version
from tallybox.client import DEFAULT_CHUNK_SIZE, ContestClient
from tallybox.config import (
    EXPIRE_AFTER_MINUTES,
    HOST,
    HTTP_PORT,
    TABULATOR_CMD,
    get_contests_base_dir,
)
from tallybox.errors import ContestError
from tallybox.server import TallyboxServer


def cmd_version(args):
    """Handle the 'version' subcommand."""
    print(f"{APP_NAME} version {get_version()}")
    print(f"Python {sys.version}")


def cmd_start(args):
    """Handle the 'start' subcommand."""
    if args.contest_dir:
        contests_dir = Path(args.contest_dir).expanduser().resolve()
    else:
        contests_dir = get_contests_base_dir()

    print("=" * 50)
    print(f"tallybox v{get_version()}")
    print(f"HTTP Server:  http://{args.host}:{args.port}")
    print(f"Contest Directory: {contests_dir}")
    print(f"Tabulator: {args.tabulator_cmd or 'not configured'}")
    if args.expire_after_minutes > 0:
        print(f"Idle contests expire after {args.expire_after_minutes}m")
    print("=" * 50)

    server = TallyboxServer(
        contests_dir=contests_dir,
        host=args.host,
        port=args.port,
        tabulator_cmd=args.tabulator_cmd,
        expire_after_minutes=args.expire_after_minutes,
    )
    server.run()


async def _submit(args) -> bytes:
    config = json.loads(Path(args.config).read_text())
    async with ContestClient(args.url, chunk_size=args.chunk_size) as client:
        return await client.submit(config, Path(args.cvr), args.name, keep=args.keep)


def cmd_submit(args):
    """Handle the 'submit' subcommand."""
    try:
        summary = asyncio.run(_submit(args))
    except ContestError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except aiohttp.ClientError as e:
        print(f"Error: could not reach {args.url}: {e}", file=sys.stderr)
        sys.exit(1)
    sys.stdout.write(summary.decode())
    sys.stdout.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tallybox",
        description="tallybox - chunked-upload contest tabulation API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
    )

    # 'start' subcommand
    start_parser = subparsers.add_parser(
        "start",
        help="Start the contest API server",
        description="Start the tallybox HTTP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tallybox start                                   # Start with defaults
  tallybox start --port 9000                       # Custom HTTP port
  tallybox start --contest-dir ./contests          # Custom contest directory
  tallybox start --tabulator-cmd "rctab --cli {config} --name {operator}"
  tallybox start --expire-after-minutes 120        # Clear contests idle for 2h
        """,
    )
    start_parser.add_argument(
        "--port", type=int, default=HTTP_PORT, help=f"HTTP server port (default: {HTTP_PORT})"
    )
    start_parser.add_argument(
        "--host", type=str, default=HOST, help=f"Host to bind to (default: {HOST})"
    )
    start_parser.add_argument(
        "--contest-dir",
        type=str,
        default=None,
        help="Directory holding contest data (default: ~/.tallybox/contests)",
    )
    start_parser.add_argument(
        "--tabulator-cmd",
        type=str,
        default=TABULATOR_CMD,
        help="Tabulator command template; placeholders: {config} {operator} {output_dir} {timestamp}",
    )
    start_parser.add_argument(
        "--expire-after-minutes",
        type=int,
        default=EXPIRE_AFTER_MINUTES,
        help="Clear contests idle this long; 0 disables (default: %(default)s)",
    )
    start_parser.set_defaults(func=cmd_start)

    # 'version' subcommand
    version_parser = subparsers.add_parser(
        "version",
        help="Display version information",
        description="Display tallybox version and Python version",
    )
    version_parser.set_defaults(func=cmd_version)

    # 'submit' subcommand
    submit_parser = subparsers.add_parser(
        "submit",
        help="Upload a contest to a running server and print its summary",
        description="Create a contest, upload the CVR file in chunks, tabulate, and clear",
    )
    submit_parser.add_argument("config", help="Contest configuration JSON file")
    submit_parser.add_argument("cvr", help="Cast vote record file to upload")
    submit_parser.add_argument("--name", required=True, help="Operator name")
    submit_parser.add_argument(
        "--url",
        type=str,
        default=f"http://localhost:{HTTP_PORT}",
        help="Server base URL (default: %(default)s)",
    )
    submit_parser.add_argument(
        "--chunk-size",
        type=int,
        default=DEFAULT_CHUNK_SIZE,
        help="Bytes per uploaded chunk (default: %(default)s)",
    )
    submit_parser.add_argument(
        "--keep", action="store_true", help="Do not clear the contest afterwards"
    )
    submit_parser.set_defaults(func=cmd_submit)

    return parser


def main(argv: list[str] | None = None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
