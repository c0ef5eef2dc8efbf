from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, TRANSPORTS, load_config
from .errors import ScriptError
from .runner import run_control
from .script import ScriptLoader
from .types import ActionOutcome, OutcomeStatus, RunResult

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_SCRIPT = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a control script against a remote host")
    parser.add_argument("script", type=Path, help="Path to a YAML control script")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to prod-control config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--transport",
        choices=sorted(TRANSPORTS),
        help="SSH backend to use (overrides the config file)",
    )
    parser.add_argument("--host", help="Target host (overrides the script)")
    parser.add_argument("--port", type=int, help="Target SSH port (overrides the script)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        print(colorize(f"Config error: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FAILED
    if args.transport:
        cfg = replace(cfg, transport=args.transport)

    try:
        script = ScriptLoader().load(args.script)
    except ScriptError as exc:
        print(colorize(f"Script validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_INVALID_SCRIPT
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if overrides:
        script = replace(script, **overrides)

    try:
        result = run_control(script, cfg)
    except Exception as exc:  # noqa: BLE001
        if logging.getLogger().isEnabledFor(logging.DEBUG):
            raise
        print(colorize(f"Execution failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FAILED

    summary = Summary()
    for outcome in result.outcomes:
        summary.add(outcome)
        print(format_outcome(outcome))
    if result.aborted:
        print(colorize(f"Aborted: {result.abort_reason}", Ansi.RED), file=sys.stderr)
    print(summary.render(result))
    return EXIT_OK if result.succeeded else EXIT_FAILED


def format_outcome(outcome: ActionOutcome) -> str:
    color = {
        OutcomeStatus.SUCCESS: Ansi.GREEN,
        OutcomeStatus.FAILED: Ansi.RED,
        OutcomeStatus.SKIPPED: Ansi.BLUE,
    }[outcome.status]
    resource = f"[{outcome.resource}]" if outcome.resource else ""
    line = f"{outcome.action}{resource} {outcome.status.value} - {outcome.details}"
    for directive in outcome.directives:
        if directive.status is not OutcomeStatus.SUCCESS:
            line += f"\n    {directive.directive.kind} {directive.directive.match_string!r} {directive.status.value}"
    return colorize(line, color)


class Summary:
    def __init__(self) -> None:
        self.succeeded = 0
        self.skipped = 0
        self.failures = 0

    def add(self, outcome: ActionOutcome) -> None:
        if outcome.status is OutcomeStatus.FAILED:
            self.failures += 1
        elif outcome.status is OutcomeStatus.SKIPPED:
            self.skipped += 1
        else:
            self.succeeded += 1

    def render(self, result: Optional[RunResult] = None) -> str:
        parts = [
            f"Succeeded: {self.succeeded}",
            f"Skipped: {self.skipped}",
            f"Failures: {self.failures}",
        ]
        if result is not None and result.aborted:
            parts.append("Aborted")
        text = " | ".join(parts)
        ok = self.failures == 0 and not (result is not None and result.aborted)
        return colorize(text, Ansi.GREEN if ok else Ansi.RED)


if __name__ == "__main__":
    raise SystemExit(main())
