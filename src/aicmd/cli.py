"""Command-line interface for aicmd."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import cast

from .agent.loop import AgentLoop
from .config import AppConfig
from .history import HistoryLog, HistoryLogError
from .llm.backends import create_client
from .llm.client import MalformedSuggestionError, SuggestionError
from .shell import ExecutorStartError, create_shell_adapter
from .ui import TerminalView
from .workspace import list_files

LOGGER = logging.getLogger(__name__)

ASK_PROGRAM = "ask"


class CLIArgs(argparse.Namespace):
    query: list[str]
    ask: bool


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog or "ai",
        description="Turn a plain-language request into shell commands and run them",
    )
    parser.add_argument(
        "--ask",
        action="store_true",
        help="Only suggest the next command; never execute anything.",
    )
    parser.add_argument("query", nargs="*", help="What you want to do")
    return parser


def main(argv: list[str] | None = None, *, prog: str | None = None) -> int:
    program = prog or Path(sys.argv[0]).name or "ai"
    parser = build_parser(program)
    args = cast(CLIArgs, parser.parse_args(argv))
    suggestion_only = args.ask or program == ASK_PROGRAM

    query = " ".join(args.query).strip()
    if not query:
        print(f'Usage: {program} "what you want to do"')
        return 1

    config = AppConfig.from_env()
    _configure_logging(config.log_level)

    try:
        history = HistoryLog.open(
            config.log_file,
            console=sys.stdout if config.console_echo else None,
            color=config.color and sys.stdout.isatty(),
        )
    except HistoryLogError as exc:
        print(f"Failed to initialize logger: {exc}", file=sys.stderr)
        return 1

    try:
        return _run_session(config, history, query, suggestion_only=suggestion_only)
    finally:
        _close_history(history)


def ask_main() -> int:
    return main(prog=ASK_PROGRAM)


def _run_session(
    config: AppConfig,
    history: HistoryLog,
    query: str,
    *,
    suggestion_only: bool,
) -> int:
    try:
        working_directory = os.getcwd()
    except OSError as exc:
        _report_fatal(history, f"failed to get current directory: {exc}")
        return 1
    files = list_files(working_directory, config.max_files)

    try:
        client = create_client(config, history)
    except SuggestionError as exc:
        _report_fatal(history, f"failed to initialize AI client: {exc}")
        return 1

    adapter = create_shell_adapter(config.shell)
    LOGGER.debug("shell_adapter_selected", extra={"shell": adapter.name})

    if suggestion_only:
        history.record("info", f"Ask Mode: {query}")
    else:
        history.record("info", f"User Query: {query}")

    loop = AgentLoop(
        client=client,
        shell=adapter,
        history=history,
        working_directory=working_directory,
        file_inventory=files,
        view=TerminalView(color=config.color),
        suggestion_only=suggestion_only,
        max_turns=config.max_turns,
        history_max_bytes=config.history_max_bytes,
        history_max_lines=config.history_max_lines,
    )

    try:
        result = loop.run(query)
    except MalformedSuggestionError as exc:
        print(f"Raw model response: {exc.raw_text}", file=sys.stderr)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (SuggestionError, ExecutorStartError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    LOGGER.info(
        "session_finished",
        extra={"outcome": result.outcome, "turns": result.state.turn_count},
    )
    if result.outcome == "turn_limit":
        print(f"Stopped after {config.max_turns} turns without completing the request.")
    return 0


def _configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.WARNING,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _report_fatal(history: HistoryLog, message: str) -> None:
    print(f"Error: {message}", file=sys.stderr)
    history.record("error", message)


def _close_history(history: HistoryLog) -> None:
    try:
        history.close()
    except HistoryLogError as exc:
        LOGGER.warning("history_log_close_failed", extra={"error": str(exc)})


if __name__ == "__main__":
    raise SystemExit(main())
