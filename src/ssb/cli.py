from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from script_sandbox import (
    ExecutionHistoryEntry,
    ExecutionResult,
    Outcome,
    Sandbox,
    SandboxPolicy,
    sandbox_capabilities,
)

_CONSOLE = Console(no_color=False)

_LEVEL_STYLES = {
    "log": "white",
    "info": "cyan",
    "warn": "yellow",
    "error": "bold red",
}

_OUTCOME_STYLES = {
    Outcome.COMPLETED: "green",
    Outcome.THREW: "red",
    Outcome.TIMED_OUT: "yellow",
}


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m ssb")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running scripts in the sandbox.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m ssb",
        description=(
            "script-sandbox CLI\n"
            "Run short scripts against an allow-listed scope and capture their output.\n"
            "Scripts may use log/info/warn/error, set_timeout and top-level await."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m ssb run --code \"log(1); log(2); return 3\"\n"
            "  python -m ssb run script.py other.py --history\n"
            "  cat script.py | python -m ssb run -\n"
            "  python -m ssb policy --policy-file policy.toml\n"
            "  python -m ssb capabilities"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one or more scripts in order.",
        description=(
            "Run scripts one after another in a single sandbox.\n"
            "Each script gets fresh bindings; output is shown per run."
        ),
        epilog=(
            "Examples:\n"
            "  python -m ssb run hello.py\n"
            "  python -m ssb run --code \"raise Exception('boom')\"\n"
            "  python -m ssb run slow.py --timeout-ms 100 --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help="Script files to run; use '-' to read one script from stdin.",
    )
    run_cmd.add_argument(
        "--code",
        action="append",
        default=[],
        help="Inline script source; may be given more than once.",
    )
    run_cmd.add_argument(
        "--timeout-ms",
        type=int,
        help="Per-run deadline in milliseconds (default: policy timeout_ms).",
    )
    run_cmd.add_argument(
        "--policy-file",
        help="TOML file with a [policy] table overriding the bundled defaults.",
    )
    run_cmd.add_argument(
        "--history",
        action="store_true",
        help="Show the sandbox's recent-run history after all scripts finish.",
    )
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON instead of tables.",
    )

    policy_cmd = sub.add_parser(
        "policy",
        help="Show the effective sandbox policy.",
        description="Show limits and allow-lists after applying an optional policy file.",
        formatter_class=_HELP_FORMATTER,
    )
    policy_cmd.add_argument(
        "--policy-file",
        help="TOML file with a [policy] table overriding the bundled defaults.",
    )

    sub.add_parser(
        "capabilities",
        help="Show what the sandbox can and cannot guarantee.",
        description=(
            "Show which interruption and isolation guarantees are provided.\n"
            "The sandbox restricts names, it does not isolate objects."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    return parser


def _read_sources(paths: list[str], inline: list[str]) -> list[tuple[str, str]]:
    """Collect `(label, source)` pairs from files, stdin and `--code` values.

    Example:
        ```python
        sources = _read_sources(["hello.py"], ["log(1)"])
        ```
    """
    sources: list[tuple[str, str]] = []
    for path in paths:
        if path == "-":
            sources.append(("<stdin>", sys.stdin.read()))
        else:
            sources.append((path, Path(path).read_text(encoding="utf-8")))
    for index, code in enumerate(inline, start=1):
        sources.append((f"--code #{index}", code))
    return sources


async def _run_all(
    sandbox: Sandbox,
    sources: list[tuple[str, str]],
    timeout_ms: int | None,
) -> list[tuple[str, ExecutionResult]]:
    """Run every source in order on one sandbox.

    Example:
        ```python
        results = asyncio.run(_run_all(Sandbox(), [("a", "log(1)")], None))
        ```
    """
    results: list[tuple[str, ExecutionResult]] = []
    for label, source in sources:
        results.append((label, await sandbox.run(source, timeout_ms=timeout_ms)))
    return results


def _print_result(label: str, result: ExecutionResult) -> None:
    """Render one run's output lines, errors and summary.

    Example:
        ```python
        _print_result("hello.py", result)
        ```
    """
    if result.output:
        table = Table(title=f"Output: {escape(label)}")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Level")
        table.add_column("Text")
        for line in result.output:
            style = _LEVEL_STYLES.get(line.level.value, "white")
            table.add_row(str(line.sequence), Text(line.level.value, style=style), Text(line.rendered))
        _CONSOLE.print(table)
    if result.truncated:
        _CONSOLE.print(Panel.fit("Output was truncated at the policy line limit.", style="bold yellow"))
    if result.thrown_errors:
        _CONSOLE.print(
            Panel.fit(
                Text("\n".join(result.thrown_errors)),
                title=result.error_kind.value if result.error_kind else "Errors",
                border_style="red",
            )
        )
    summary = Text()
    summary.append(f"{label}: ")
    summary.append(result.outcome.value, style=_OUTCOME_STYLES.get(result.outcome, "white"))
    summary.append(f" in {result.duration_ms:.1f} ms")
    if result.return_value_rendered is not None:
        summary.append(f" -> {result.return_value_rendered}")
    _CONSOLE.print(summary)


def _print_history(entries: Sequence[ExecutionHistoryEntry]) -> None:
    """Render recent runs, newest first.

    Example:
        ```python
        _print_history(sandbox.get_history())
        ```
    """
    table = Table(title="Recent Runs")
    table.add_column("Request", style="cyan")
    table.add_column("Started")
    table.add_column("Outcome")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Source")
    for entry in entries:
        result = entry.result
        first_line = entry.source_snapshot.strip().splitlines()[0] if entry.source_snapshot.strip() else ""
        table.add_row(
            result.request_id,
            entry.started_at.strftime("%H:%M:%S"),
            Text(result.outcome.value, style=_OUTCOME_STYLES.get(result.outcome, "white")),
            f"{result.duration_ms:.1f}",
            Text(first_line),
        )
    _CONSOLE.print(table)


def _policy_payload(policy: SandboxPolicy) -> dict[str, Any]:
    """Convert a policy into a printable mapping.

    Example:
        ```python
        payload = _policy_payload(SandboxPolicy())
        ```
    """
    payload = asdict(policy)
    payload["extra_globals"] = sorted(policy.extra_globals)
    return payload


def _command_run(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    """Handle `ssb run`.

    Example:
        ```python
        code = _command_run(parser.parse_args(["run", "--code", "log(1)"]), parser)
        ```
    """
    if not args.paths and not args.code:
        parser.error("run needs at least one PATH, '-' or --code")
    try:
        sources = _read_sources(args.paths, args.code)
        sandbox = Sandbox(policy_file=args.policy_file)
    except (OSError, ValueError) as exc:
        _CONSOLE.print(Panel.fit(Text(str(exc)), title="Error", border_style="red"))
        return 1

    results = asyncio.run(_run_all(sandbox, sources, args.timeout_ms))

    if args.json:
        payload: dict[str, Any] = {
            "results": [dict(result.to_dict(), label=label) for label, result in results],
        }
        if args.history:
            payload["history"] = [
                {
                    "request_id": entry.result.request_id,
                    "started_at": entry.started_at.isoformat(),
                    "outcome": entry.result.outcome.value,
                    "source": entry.source_snapshot,
                }
                for entry in sandbox.get_history()
            ]
        sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    else:
        for label, result in results:
            _print_result(label, result)
        if args.history:
            _print_history(sandbox.get_history())
    return 0 if all(result.ok for _, result in results) else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `ssb` CLI command handler.

    Example:
        ```python
        code = main(["run", "--code", "log('hi')"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "run":
        return _command_run(args, parser)
    if args.command == "policy":
        try:
            policy = SandboxPolicy.from_file(args.policy_file) if args.policy_file else SandboxPolicy()
        except ValueError as exc:
            _CONSOLE.print(Panel.fit(Text(str(exc)), title="Error", border_style="red"))
            return 1
        _CONSOLE.print(Panel.fit(Pretty(_policy_payload(policy)), title="Sandbox Policy", border_style="cyan"))
        return 0
    if args.command == "capabilities":
        table = Table(title="Sandbox Capabilities")
        table.add_column("Capability", style="cyan")
        table.add_column("Supported")
        for name, supported in sandbox_capabilities().as_rows():
            table.add_row(name, Text("yes", style="green") if supported else Text("no", style="red"))
        _CONSOLE.print(table)
        return 0

    parser.error("Unhandled command")
    return 2
