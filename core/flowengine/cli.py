"""
Command-line interface for flowengine.

Runs flows offline, without a chat host: host capabilities are unavailable
and nodes that need them fail.

Usage:
    flowengine list flows.json
    flowengine validate flows.json
    flowengine run flows.json "My Flow" --input '{"key": "value"}'
    flowengine history --limit 10
"""

import argparse
import asyncio
import json
import sys

from flowengine.config import get_engine_config
from flowengine.graph.builtins import default_registry
from flowengine.graph.validator import FlowValidator
from flowengine.observability import configure_logging
from flowengine.runtime.capabilities import NullCapabilityBag
from flowengine.runtime.commands import run_flow_by_name
from flowengine.runtime.orchestrator import RunOrchestrator
from flowengine.storage.flow_store import load_flows
from flowengine.storage.history_store import HistoryStore


def cmd_list(args: argparse.Namespace) -> int:
    store = load_flows(args.flows)
    for definition in store.all():
        state = "enabled" if definition.enabled else "disabled"
        print(f"{definition.id}\t{definition.name}\t{len(definition.flow.nodes)} nodes\t{state}")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    store = load_flows(args.flows)
    validator = FlowValidator(default_registry())
    failed = 0
    for definition in store.all():
        result = validator.validate(definition.flow, definition.allow_dangerous_execution)
        if result.is_valid:
            print(f"OK      {definition.name}")
        else:
            failed += 1
            print(f"INVALID {definition.name}")
            for error in result.errors:
                print(f"  - {error}")
    return 1 if failed else 0


def cmd_run(args: argparse.Namespace) -> int:
    store = load_flows(args.flows)
    orchestrator = RunOrchestrator(
        flow_store=store,
        registry=default_registry(),
        capabilities=NullCapabilityBag(),
        config=get_engine_config(),
    )
    output = asyncio.run(run_flow_by_name(orchestrator, args.name, args.input))
    print(output)
    return 1 if output.startswith("Error:") else 0


def cmd_history(args: argparse.Namespace) -> int:
    history = HistoryStore.from_config(get_engine_config())
    entries = history.for_flow(args.flow) if args.flow else history.entries
    for entry in entries[: args.limit]:
        error = f"\t{entry.error['message']}" if entry.error else ""
        print(f"{entry.timestamp.isoformat()}\t{entry.flow_name}\t{entry.status}{error}")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    list_parser = subparsers.add_parser("list", help="List flows in a flows file")
    list_parser.add_argument("flows", help="Path to a JSON file of flow definitions")
    list_parser.set_defaults(func=cmd_list)

    validate_parser = subparsers.add_parser("validate", help="Validate every flow in a flows file")
    validate_parser.add_argument("flows", help="Path to a JSON file of flow definitions")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Run a flow by name")
    run_parser.add_argument("flows", help="Path to a JSON file of flow definitions")
    run_parser.add_argument("name", help="Flow display name")
    run_parser.add_argument("--input", default=None, help="Initial input as a JSON object")
    run_parser.set_defaults(func=cmd_run)

    history_parser = subparsers.add_parser("history", help="Show recent runs, newest first")
    history_parser.add_argument("--flow", default=None, help="Only runs of this flow id")
    history_parser.add_argument("--limit", type=int, default=20, help="Maximum entries to show")
    history_parser.set_defaults(func=cmd_history)


def main():
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description="Validate and run flow graphs",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "json", "human"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        try:
            sys.exit(args.func(args))
        except (OSError, json.JSONDecodeError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(2)


if __name__ == "__main__":
    main()
