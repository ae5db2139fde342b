#!/usr/bin/env python3
"""
socctl - SOC-Inteligente SOAR operational CLI

A lightweight CLI for running and checking playbooks offline:
- Run a playbook (socctl run)
- Validate playbook graphs (socctl validate)
- Version info (socctl version)
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from socint import __version__
from socint.config import get_config
from socint.runtime import build_runtime
from socint.soar.errors import PlaybookNotFoundError, PlaybookValidationError
from socint.soar.models import ExecutionStatus
from socint.soar.storage import load_playbooks_from_file


class Colors:
    """ANSI color codes for terminal output."""

    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def colorize(text: str, color: str) -> str:
    """Colorize text if stdout is a TTY."""
    if sys.stdout.isatty():
        return f"{color}{text}{Colors.RESET}"
    return text


async def cmd_run(args) -> int:
    """
    Execute a playbook and print its execution record as JSON.

    Returns:
        Exit code (0 if the run completed, 1 if it failed)
    """
    trigger_source = None
    trigger_entity_id = None
    if args.alert is not None:
        trigger_source, trigger_entity_id = "alert", args.alert
    elif args.incident is not None:
        trigger_source, trigger_entity_id = "incident", args.incident

    runtime = build_runtime(
        playbooks_file=args.playbooks,
        connectors_file=args.connectors,
        entities_file=args.entities,
        db_path=args.db,
        in_memory=args.db is None,
    )

    try:
        record = await runtime.execute(
            args.playbook_id,
            triggered_by=args.triggered_by,
            trigger_entity_id=trigger_entity_id,
            trigger_source=trigger_source,
        )
    except PlaybookNotFoundError as e:
        print(colorize(f"✗ {e}", Colors.RED), file=sys.stderr)
        return 1
    finally:
        await runtime.aclose()

    print(json.dumps(record.to_wire(), indent=2))

    if record.status == ExecutionStatus.COMPLETED:
        return 0
    return 1


def cmd_validate(args) -> int:
    """
    Check every playbook in a file for graph problems.

    Returns:
        Exit code (0 if all playbooks are consistent, 1 otherwise)
    """
    path = Path(args.playbooks or get_config().storage.playbooks_file)

    if args.fail_fast:
        try:
            playbooks = load_playbooks_from_file(path, strict=True)
        except PlaybookValidationError as e:
            print(colorize(f"✗ {e}", Colors.RED))
            return 1
        print(colorize(f"✓ {len(playbooks)} playbook(s) valid", Colors.GREEN))
        return 0

    playbooks = load_playbooks_from_file(path)
    all_ok = True
    for playbook in playbooks:
        problems = playbook.validate_graph()
        if problems:
            all_ok = False
            print(colorize(f"✗ {playbook.id} - {playbook.name}", Colors.RED))
            for problem in problems:
                print(f"    {problem}")
        else:
            print(colorize(f"✓ {playbook.id} - {playbook.name}", Colors.GREEN))

    return 0 if all_ok else 1


def cmd_version(args) -> int:
    """
    Print version information.

    Returns:
        Exit code (always 0)
    """
    print(f"socctl version {__version__}")
    print("SOC-Inteligente SOAR - playbook execution engine")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for socctl."""
    parser = argparse.ArgumentParser(
        description="SOC-Inteligente SOAR operational CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  socctl run 3 --playbooks playbooks.yml --connectors connectors.yml
  socctl run 3 --alert 42 --entities entities.yml
  socctl validate --playbooks playbooks.yml
  socctl version

Environment variables:
  SOAR_PLAYBOOKS_FILE               # Default playbook file
  SOAR_CONNECTORS_FILE              # Default connector file
  SOAR_INTERNAL_API_URL             # Enrichment / AI API (default: http://localhost:5000)
  LOG_LEVEL                         # Logging level (default: INFO)
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # run command
    run_parser = subparsers.add_parser("run", help="Execute a playbook")
    run_parser.add_argument("playbook_id", type=int, help="ID of the playbook to run")
    run_parser.add_argument("--playbooks", help="Playbook definitions (YAML/JSON)")
    run_parser.add_argument("--connectors", help="Connector definitions (YAML/JSON)")
    run_parser.add_argument("--entities", help="Alerts and incidents (YAML/JSON)")
    run_parser.add_argument(
        "--db",
        help="SQLite database for the execution record (default: keep in memory)"
    )
    run_parser.add_argument("--triggered-by", type=int, help="ID of the requesting user")
    trigger = run_parser.add_mutually_exclusive_group()
    trigger.add_argument("--alert", type=int, help="Triggering alert ID")
    trigger.add_argument("--incident", type=int, help="Triggering incident ID")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate playbook graphs")
    validate_parser.add_argument("--playbooks", help="Playbook definitions (YAML/JSON)")
    validate_parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Stop at the first inconsistent playbook"
    )

    # version command
    subparsers.add_parser("version", help="Show version information")

    return parser


def main(argv=None):
    """Main entry point for socctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=get_config().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    # Dispatch to command handlers
    if args.command == "run":
        return asyncio.run(cmd_run(args))
    elif args.command == "validate":
        return cmd_validate(args)
    elif args.command == "version":
        return cmd_version(args)
    else:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
