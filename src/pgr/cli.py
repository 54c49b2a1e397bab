from __future__ import annotations

import argparse
import json
from dataclasses import fields, is_dataclass
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from polyglot_runner import (
    Dispatcher,
    DockerEngine,
    ExecutionRequest,
    ExecutionResult,
    LocalEngine,
    RequestValidationError,
    RunnerPolicy,
    supported_languages,
)

_CONSOLE = Console(no_color=False)


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
        parser = _RichArgumentParser(prog="python -m pgr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _to_jsonable(value: object) -> Any:
    """Convert dataclass return values into printable payloads.

    Example:
        ```python
        payload = _to_jsonable(summary)
        ```
    """
    if not isinstance(value, type) and is_dataclass(value):
        return {field.name: getattr(value, field.name) for field in fields(value)}
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser for running code and managing containers.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m pgr",
        description=(
            "polyglot-runner CLI\n"
            "Run source files in any supported language and manage\n"
            "the disposable containers the Docker engine creates."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m pgr run hello.cpp\n"
            "  python -m pgr run sum.py --input 3 --input 4\n"
            "  python -m pgr run Main.java --docker --json\n"
            "  python -m pgr languages\n"
            "  python -m pgr list containers\n"
            "  python -m pgr kill container <id>\n"
            "  python -m pgr cleanup\n\n"
            "Remote Examples:\n"
            "  python -m pgr --docker-context my-remote-context list containers\n"
            "  python -m pgr --docker-host ssh://ubuntu@server run hello.c --docker"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--docker-context",
        help=(
            "Use an existing Docker context name.\n"
            "Example: --docker-context prod-us-east\n"
            "Mutually exclusive with --docker-host."
        ),
    )
    parser.add_argument(
        "--docker-host",
        help=(
            "Connect directly with DOCKER_HOST.\n"
            "Examples: ssh://user@server, tcp://host:2376"
        ),
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run a source file and show its output.",
        description=(
            "Compile (when needed) and run one source file.\n"
            "The language is taken from --language or the file extension."
        ),
        epilog=(
            "Examples:\n"
            "  python -m pgr run fib.rs --input 30\n"
            "  python -m pgr run app.ts --policy policy.toml --json"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("file", help="Source file to execute.")
    run_cmd.add_argument("--language", "-l", help="Language name (see `pgr languages`).")
    run_cmd.add_argument(
        "--input",
        "-i",
        action="append",
        default=[],
        metavar="LINE",
        help="Line written to stdin; repeat for several lines.",
    )
    run_cmd.add_argument(
        "--docker",
        action="store_true",
        help="Run inside disposable containers instead of on the host.",
    )
    run_cmd.add_argument("--policy", help="Path to a TOML policy file.")
    run_cmd.add_argument(
        "--json",
        action="store_true",
        help="Print the JSON response body instead of a panel.",
    )

    sub.add_parser(
        "languages",
        help="List supported languages.",
        description="Show every supported language with its kind and toolchain.",
        formatter_class=_HELP_FORMATTER,
    )

    list_cmd = sub.add_parser(
        "list",
        help="List managed containers.",
        description=(
            "List containers created and labeled by polyglot-runner.\n"
            "Use this command to spot executions that outlived their run."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    list_cmd_sub = list_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    list_cmd_sub.add_parser(
        "containers",
        help="List managed containers.",
        description=(
            "Show managed containers in running and exited states.\n"
            "Includes id, name, image, state, and status."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    kill_cmd = sub.add_parser(
        "kill",
        help="Force kill managed container resources.",
        description=(
            "Kill commands operate only on managed containers.\n"
            "Use `pgr kill container <id>` for immediate termination."
        ),
        epilog=(
            "Examples:\n"
            "  python -m pgr kill container abc123"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    kill_cmd_sub = kill_cmd.add_subparsers(
        dest="resource",
        required=True,
        parser_class=_RichArgumentParser,
    )
    kill_container = kill_cmd_sub.add_parser(
        "container",
        help="Force kill one managed container by id.",
        description="Force kill a managed container immediately.",
        formatter_class=_HELP_FORMATTER,
    )
    kill_container.add_argument("container_id")

    sub.add_parser(
        "cleanup",
        help="Remove stale managed containers.",
        description="Delete exited managed containers.",
        epilog=(
            "Example:\n"
            "  python -m pgr cleanup"
        ),
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_engine(args: argparse.Namespace, policy: RunnerPolicy | None = None) -> DockerEngine:
    """Create a DockerEngine from global CLI connection flags.

    Example:
        ```python
        engine = build_engine(args)
        ```
    """
    if policy is None:
        return DockerEngine(docker_context=args.docker_context, docker_host=args.docker_host)
    return DockerEngine(
        images=policy.images,
        memory_limit_mb=policy.memory_limit_mb,
        docker_context=args.docker_context,
        docker_host=args.docker_host,
    )


def language_for_file(path: Path) -> str | None:
    """Guess the language name from a file extension.

    Example:
        ```python
        language = language_for_file(Path("main.cpp"))  # "cpp"
        ```
    """
    for spec in supported_languages():
        if path.suffix == spec.extension:
            return spec.name
    return None


def _print_result(result: ExecutionResult) -> None:
    """Render an execution result as Rich panels.

    Example:
        ```python
        _print_result(result)
        ```
    """
    style = "green" if result.ok else "red"
    title = result.status.value
    if result.error_kind is not None:
        title = f"{title}: {result.error_kind.value}"
    if result.stdout:
        _CONSOLE.print(Panel(Text(result.stdout.rstrip("\n")), title="stdout", border_style="cyan"))
    if result.stderr:
        _CONSOLE.print(Panel(Text(result.stderr.rstrip("\n")), title="stderr", border_style="yellow"))
    footer = f"{result.message}\n" if result.message else ""
    footer += f"phases: {', '.join(result.phases) or '-'}  time: {result.duration_ms} ms"
    _CONSOLE.print(Panel.fit(Text(footer), title=title, border_style=style))


def _run_file(args: argparse.Namespace) -> int:
    """Handle `pgr run`.

    Example:
        ```python
        code = _run_file(build_parser().parse_args(["run", "a.py"]))
        ```
    """
    path = Path(args.file)
    language = args.language or language_for_file(path)
    if language is None:
        _CONSOLE.print(
            Panel.fit(f"Cannot infer the language of '{path.name}'; pass --language", style="bold red")
        )
        return 2
    try:
        code = path.read_text(encoding="utf-8")
    except OSError as exc:
        _CONSOLE.print(Panel.fit(f"Cannot read {path}: {exc}", style="bold red"))
        return 2

    policy = RunnerPolicy.from_file(args.policy) if args.policy else RunnerPolicy()
    engine = build_engine(args, policy) if args.docker else LocalEngine()
    try:
        request = ExecutionRequest(code=code, language=language, input=tuple(args.input))
    except RequestValidationError as exc:
        _CONSOLE.print(Panel.fit(str(exc), style="bold red"))
        return 2

    with Dispatcher(engine=engine, policy=policy, start_reaper=False) as dispatcher:
        result = dispatcher.execute(request)
    if args.json:
        _CONSOLE.print_json(json.dumps(result.to_response()))
    else:
        _print_result(result)
    return 0 if result.ok else 1


def _print_languages() -> None:
    """Render the supported language table.

    Example:
        ```python
        _print_languages()
        ```
    """
    table = Table(title="Supported Languages")
    table.add_column("Language", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Extension")
    table.add_column("Toolchain")
    for spec in supported_languages():
        table.add_row(spec.name, spec.kind.value, spec.extension, spec.toolchain)
    _CONSOLE.print(table)


def _print_containers(rows: list[dict[str, Any]]) -> None:
    """Render managed containers in a rich table.

    Example:
        ```python
        _print_containers([{"id": "abc", "name": "polyglot-runner-run-1"}])
        ```
    """
    table = Table(title="Managed Containers")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Image")
    table.add_column("State")
    table.add_column("Status")
    for row in rows:
        table.add_row(row["id"], row["name"], row["image"], row["state"], row["status"])
    _CONSOLE.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `pgr` CLI command handler.

    Example:
        ```python
        code = main(["run", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "run":
        return _run_file(args)
    if args.command == "languages":
        _print_languages()
        return 0

    engine = build_engine(args)
    if args.command == "list" and args.resource == "containers":
        rows = [_to_jsonable(c) for c in engine.list_containers(all_states=True)]
        _print_containers(rows)
        return 0
    if args.command == "kill" and args.resource == "container":
        engine.kill_container(args.container_id)
        _CONSOLE.print(Panel.fit(f"Killed container {args.container_id}", style="bold yellow"))
        return 0
    if args.command == "cleanup":
        summary = _to_jsonable(engine.cleanup_stale())
        _CONSOLE.print(Panel.fit(Pretty(summary), title="Cleanup Summary", border_style="green"))
        return 0

    parser.error("Unhandled command")
