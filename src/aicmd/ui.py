"""Terminal presentation for the interaction loop."""

from __future__ import annotations

import contextlib
import sys
import threading
from collections.abc import Callable, Iterator
from typing import TextIO

from aicmd.agent.models import CommandSuggestion
from aicmd.shell import ExecutionResult

SEPARATOR = "-" * 73

_RESET = "\033[0m"
_RED = "\033[31m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_BLUE = "\033[34m"


class Spinner:
    """Animated "thinking" indicator drawn by a daemon thread."""

    FRAMES = ("|", "/", "-", "\\")

    def __init__(self, stream: TextIO, *, label: str = "Thinking", interval: float = 0.08) -> None:
        self.stream = stream
        self.label = label
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self.stop()
        self._stop.clear()
        self._thread = threading.Thread(target=self._spin, name="aicmd-spinner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

    def _spin(self) -> None:
        clear_len = len(self.label) + 10
        index = 0
        try:
            while not self._stop.is_set():
                frame = self.FRAMES[index % len(self.FRAMES)]
                self.stream.write(f"\r  {frame} {self.label}...")
                self.stream.flush()
                index += 1
                self._stop.wait(self.interval)
            self.stream.write(f"\r{' ' * clear_len}\r")
            self.stream.flush()
        except (OSError, ValueError):
            # Closed or broken terminal; the indicator simply disappears.
            return


class TerminalView:
    """Prints suggestions and command output, and asks for confirmation."""

    def __init__(
        self,
        *,
        stream: TextIO | None = None,
        input_func: Callable[[str], str] | None = None,
        color: bool = True,
        spinner: bool | None = None,
    ) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self.input_func = input_func if input_func is not None else input
        is_tty = bool(getattr(self.stream, "isatty", lambda: False)())
        self.color = color and is_tty
        self.spinner_enabled = is_tty if spinner is None else spinner

    def _paint(self, text: str, color: str) -> str:
        if not self.color:
            return text
        return f"{color}{text}{_RESET}"

    def _print(self, text: str = "") -> None:
        self.stream.write(f"{text}\n")
        self.stream.flush()

    @contextlib.contextmanager
    def thinking(self) -> Iterator[None]:
        if not self.spinner_enabled:
            yield
            return
        spinner = Spinner(self.stream)
        spinner.start()
        try:
            yield
        finally:
            spinner.stop()

    def turn_started(self, turn_number: int) -> None:
        self._print("\n--- Asking for next command... ---\n")

    def show_suggestion(self, suggestion: CommandSuggestion, *, suggestion_only: bool) -> None:
        self._print()
        self._print(self._paint("Suggested Command:", _GREEN))
        self._print(self._paint(suggestion.command, _RED))
        self._print()
        self._print(f"Reason: {suggestion.reason}")
        self._print(f"Safety: {safety_text(suggestion.safe)}")
        self._print()
        self._print(progress_text(suggestion, suggestion_only=suggestion_only, color=self._paint))

    def confirm(self, suggestion: CommandSuggestion) -> bool:
        if suggestion.safe:
            self._print(self._paint("Caution: The command matches a destructive pattern.", _YELLOW))
        else:
            self._print(self._paint("Caution: The command is marked as not safe.", _YELLOW))
        self._print(f"Command: {self._paint(suggestion.command, _RED)}")
        self._print(f"Reason: {suggestion.reason}")
        try:
            answer = self.input_func("Do you want to run this command anyway? (y/n): ")
        except EOFError:
            return False
        return answer.strip().lower() in {"y", "yes"}

    def execution_started(self, command: str) -> None:
        self._print()
        self._print(f"Executing command: {self._paint(command, _RED)}")
        self._print(SEPARATOR)

    def output_line(self, line: str) -> None:
        self.stream.write(line)
        self.stream.flush()

    def execution_finished(self, result: ExecutionResult) -> None:
        self._print(SEPARATOR)
        if not result.succeeded:
            self._print(self._paint(f"Command execution error: {result.failure_detail}", _YELLOW))

    def warning(self, message: str) -> None:
        self._print(self._paint(message, _YELLOW))

    def completed(self) -> None:
        self._print(self._paint("Task completed successfully!", _GREEN))

    def cancelled(self) -> None:
        self._print("Command execution cancelled by user.")


def safety_text(safe: bool) -> str:
    if safe:
        return "Safe to run"
    return "Potentially unsafe (requires confirmation)"


def progress_text(
    suggestion: CommandSuggestion,
    *,
    suggestion_only: bool,
    color: Callable[[str, str], str] = lambda text, _color: text,
) -> str:
    """Describe where the suggestion sits in a multi-step task."""
    if suggestion.is_final:
        return color("This is the final command to complete your request.", _GREEN)
    verb = "would" if suggestion_only else "will"
    if suggestion.needs_output:
        need = "would need" if suggestion_only else "needs"
        return color(
            f"This is an intermediate command. The assistant {need} to see its output"
            " to determine next steps.",
            _BLUE,
        )
    return color(f"This is part of a multi-step process. More commands {verb} follow.", _BLUE)
