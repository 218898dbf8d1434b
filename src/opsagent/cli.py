"""Command-line interface for opsagent."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import cast

from .agent.session import build_session
from .config import AppConfig
from .fleet import InventoryError, SshRunner, load_inventory, render_status

LOGGER = logging.getLogger(__name__)


class CLIArgs(argparse.Namespace):
    query: list[str]
    engine: str | None
    working_directory: str | None
    fleet_update: bool
    fleet_status: bool
    inventory: str | None
    concurrency: int | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opsagent",
        description="Operations agent: natural-language shell commands behind a risk gate",
    )
    parser.add_argument(
        "--engine",
        help=(
            "Force a generation engine (gemini, vertex_ai, claude, openai, offline, web). "
            "Unknown names are ignored."
        ),
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help=(
            "Override the starting working directory for command execution. "
            "Takes precedence over config/env cwd values."
        ),
    )
    fleet = parser.add_mutually_exclusive_group()
    fleet.add_argument(
        "--fleet-update",
        action="store_true",
        help="Run the package update for every inventory target over SSH",
    )
    fleet.add_argument(
        "--fleet-status",
        action="store_true",
        help="List inventory targets",
    )
    parser.add_argument("--inventory", help="Path to the fleet inventory JSON file")
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum simultaneous fleet operations",
    )
    parser.add_argument("query", nargs="*", help="One-shot request; omit for interactive mode")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    config = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.concurrency is not None and args.concurrency < 1:
        print("--concurrency must be a positive integer.")
        return 1

    if args.fleet_status or args.fleet_update:
        inventory_path = args.inventory or config.fleet_inventory
        try:
            targets = load_inventory(inventory_path)
        except InventoryError as exc:
            print(f"Inventory error: {exc}")
            return 1
        if args.fleet_status:
            print(render_status(targets))
            return 0

    configured_working_directory = (
        args.working_directory if args.working_directory is not None else config.working_directory
    )
    working_directory: str | None = None
    if configured_working_directory is not None:
        resolved_working_directory = Path(configured_working_directory).expanduser().resolve()
        if not resolved_working_directory.exists() or not resolved_working_directory.is_dir():
            print(f"Invalid configured cwd directory: {configured_working_directory}")
            return 1
        working_directory = str(resolved_working_directory)

    session = build_session(
        config,
        working_directory=working_directory,
        preferred_engine=args.engine,
    )

    if args.fleet_update:
        runner = SshRunner(
            connect_timeout=config.fleet_connect_timeout,
            command_timeout=config.fleet_command_timeout,
        )
        session.fleet_update(
            targets,
            runner,
            concurrency=args.concurrency or config.fleet_concurrency,
        )
        return 0

    query = " ".join(args.query).strip()
    if query:
        session.handle(query)
        session.wrap_up()
        return 0
    return session.repl()


if __name__ == "__main__":
    raise SystemExit(main())
