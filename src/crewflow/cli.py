"""CLI entry point for crewflow."""

import argparse
import asyncio
import logging
import sys

from crewflow.config import build_crew, build_experiment, read_definition
from crewflow.core.crew import CrewReport
from crewflow.errors import CrewflowError


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crewflow",
        description="Dependency-aware task orchestration across agent crews",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Run a crew definition")
    run.add_argument("crew", help="Path to the crew YAML file")
    run.add_argument("--dry-run", action="store_true", help="Print task levels without executing")
    run.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Input visible to every task (repeatable)",
    )
    run.add_argument(
        "--caller",
        default=None,
        help="Caller key; routes the run through the file's experiment section",
    )

    return parser


def _parse_inputs(pairs: list[str]) -> dict[str, str]:
    inputs: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"Invalid --input {pair!r}, expected KEY=VALUE")
        inputs[key] = value
    return inputs


def _print_report(report: CrewReport) -> None:
    print(f"\nDone in {report.duration_ms:.0f}ms")
    for status, count in report.summary()["by_status"].items():
        print(f"  {status}: {count}")
    for task_id, outcome in report.outcomes.items():
        if outcome.error:
            print(f"  {task_id}: {outcome.status.value} ({outcome.error})")
    if report.error is not None:
        print(f"\n{report.error}")


async def _run(args: argparse.Namespace, inputs: dict[str, str]) -> int:
    data = read_definition(args.crew)

    experiment = None
    if args.caller is not None:
        if "experiment" not in data:
            print(f"{args.crew} defines no experiment; ignoring --caller")
        else:
            experiment = build_experiment(data)

    crew = build_crew(data)
    levels = crew.graph.levels
    print(f"Crew: {args.crew}")
    print(f"Process: {crew.process.value}")
    print(f"Tasks: {len(crew.graph)}")
    print(f"Levels: {len(levels)}")
    for i, level in enumerate(levels):
        print(f"  Level {i}: {level}")

    if args.dry_run:
        print("\nDry run, no tasks executed.")
        return 0

    print()
    if experiment is not None:
        variant, report = await experiment.run(args.caller, inputs)
        print(f"Variant: {variant}")
    else:
        report = await crew.run(inputs)

    _print_report(report)
    if report.final_output is not None:
        print(f"\n{report.final_output}")
    return 0 if report.success else 1


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")

    if args.command == "run":
        inputs = _parse_inputs(args.input)
        try:
            code = asyncio.run(_run(args, inputs))
        except CrewflowError as e:
            print(f"Error: {e}", file=sys.stderr)
            code = 2
        sys.exit(code)
    else:
        parser.print_help()
        sys.exit(1)
