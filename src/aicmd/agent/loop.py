"""Suggest/gate/execute/decide loop driving one request to completion."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Sequence
from contextlib import AbstractContextManager
from typing import Protocol

from aicmd.agent.models import (
    CommandSuggestion,
    SessionOutcome,
    SessionResult,
    SessionState,
    SessionTurn,
)
from aicmd.history import (
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_LINES,
    EntryKind,
    HistoryLog,
    HistoryLogError,
)
from aicmd.llm.client import MalformedSuggestionError, SuggestionClient, SuggestionError
from aicmd.shell import ExecutionResult, ExecutorStartError, ShellAdapter

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Command execution cancelled by user."


class SessionView(Protocol):
    """Presentation hooks the loop reports to; none of them affect decisions."""

    def thinking(self) -> AbstractContextManager[object]: ...

    def turn_started(self, turn_number: int) -> None: ...

    def show_suggestion(self, suggestion: CommandSuggestion, *, suggestion_only: bool) -> None: ...

    def confirm(self, suggestion: CommandSuggestion) -> bool: ...

    def execution_started(self, command: str) -> None: ...

    def output_line(self, line: str) -> None: ...

    def execution_finished(self, result: ExecutionResult) -> None: ...

    def warning(self, message: str) -> None: ...

    def completed(self) -> None: ...

    def cancelled(self) -> None: ...


class QuietView:
    """View used when no terminal is attached; unsafe commands are declined."""

    def thinking(self) -> AbstractContextManager[object]:
        return contextlib.nullcontext()

    def turn_started(self, turn_number: int) -> None:
        return None

    def show_suggestion(self, suggestion: CommandSuggestion, *, suggestion_only: bool) -> None:
        return None

    def confirm(self, suggestion: CommandSuggestion) -> bool:
        return False

    def execution_started(self, command: str) -> None:
        return None

    def output_line(self, line: str) -> None:
        return None

    def execution_finished(self, result: ExecutionResult) -> None:
        return None

    def warning(self, message: str) -> None:
        return None

    def completed(self) -> None:
        return None

    def cancelled(self) -> None:
        return None


class AgentLoop:
    """Runs the suggest/execute/report cycle until the model signals the end."""

    def __init__(
        self,
        *,
        client: SuggestionClient,
        shell: ShellAdapter,
        history: HistoryLog,
        working_directory: str,
        file_inventory: Sequence[str] = (),
        view: SessionView | None = None,
        suggestion_only: bool = False,
        max_turns: int = 0,
        history_max_bytes: int = DEFAULT_MAX_BYTES,
        history_max_lines: int = DEFAULT_MAX_LINES,
    ) -> None:
        self.client = client
        self.shell = shell
        self.history = history
        self.working_directory = working_directory
        self.file_inventory = list(file_inventory)
        self.view: SessionView = view if view is not None else QuietView()
        self.suggestion_only = suggestion_only
        self.max_turns = max_turns
        self.history_max_bytes = history_max_bytes
        self.history_max_lines = history_max_lines

    def run(self, goal: str) -> SessionResult:
        state = SessionState(goal=goal, current_query=goal)
        turns: list[SessionTurn] = []

        while True:
            if self.max_turns and state.turn_count >= self.max_turns:
                self._record(
                    "info",
                    f"Turn limit of {self.max_turns} reached before the task completed.",
                )
                return self._finish(state, "turn_limit", turns)

            state.turn_count += 1
            suggestion = self._await_suggestion(state)
            turn = SessionTurn(query=state.current_query, suggestion=suggestion)
            turns.append(turn)

            self.view.show_suggestion(suggestion, suggestion_only=self.suggestion_only)
            if self.suggestion_only:
                return self._finish(state, "suggested", turns)

            if self._requires_confirmation(suggestion) and not self.view.confirm(suggestion):
                self._record("info", CANCELLED_MESSAGE)
                self.view.cancelled()
                return self._finish(state, "cancelled", turns)

            turn.result = self._execute(suggestion)

            if suggestion.is_final and not suggestion.needs_output:
                self._record("info", "Task completed successfully.")
                self.view.completed()
                return self._finish(state, "completed", turns)

            # A final step that still asks for its output gets one more turn.
            state.current_query = fold_query(state.goal, suggestion, turn.result)

    def _await_suggestion(self, state: SessionState) -> CommandSuggestion:
        self._record("info", "Asking for command suggestion...")
        if state.turn_count > 1:
            self.view.turn_started(state.turn_count)
        history_text = self._recent_history()

        try:
            with self.view.thinking():
                suggestion = self.client.suggest(
                    state.current_query,
                    self.working_directory,
                    self.file_inventory,
                    history_text,
                )
        except MalformedSuggestionError as exc:
            self._record("error", f"failed to parse model response: {exc.raw_text}\nError: {exc}")
            raise
        except SuggestionError as exc:
            self._record("error", f"failed to get command suggestion: {exc}")
            raise

        self._record("info", f"Suggested Command: {suggestion.command}")
        self._record("info", f"Reason: {suggestion.reason}")
        self._record("info", f"Safe: {str(suggestion.safe).lower()}")
        self._record("info", f"Is Final: {str(suggestion.is_final).lower()}")
        self._record("info", f"Needs Output: {str(suggestion.needs_output).lower()}")
        return suggestion

    def _recent_history(self) -> str:
        try:
            history_text = self.history.tail(self.history_max_bytes, self.history_max_lines)
        except HistoryLogError as exc:
            self._report_log_failure(exc)
            return ""
        self._record(
            "info",
            f"Including {len(history_text.encode('utf-8'))} bytes of command history for context",
        )
        return history_text

    def _requires_confirmation(self, suggestion: CommandSuggestion) -> bool:
        return not suggestion.safe or self.shell.is_destructive_command(suggestion.command)

    def _execute(self, suggestion: CommandSuggestion) -> ExecutionResult:
        self._record("command", suggestion.command)
        self.view.execution_started(suggestion.command)
        try:
            result = self.shell.run(
                suggestion.command,
                self._forward_line,
                cwd=self.working_directory,
            )
        except ExecutorStartError as exc:
            self._record("error", f"command execution failed: {exc}")
            raise
        self.view.execution_finished(result)
        if not result.succeeded:
            self._record("error", f"command execution failed: {result.failure_detail}")
        return result

    def _forward_line(self, line: str) -> None:
        self.view.output_line(line)
        self._record("output", line)

    def _record(self, kind: EntryKind, text: str) -> None:
        failure = self.history.record(kind, text)
        if failure is not None:
            self.view.warning(f"History log unavailable: {failure}")

    def _report_log_failure(self, exc: HistoryLogError) -> None:
        LOGGER.error("history_log_failure", extra={"error": str(exc)})
        self.view.warning(f"History log unavailable: {exc}")

    @staticmethod
    def _finish(
        state: SessionState, outcome: SessionOutcome, turns: list[SessionTurn]
    ) -> SessionResult:
        state.running = False
        return SessionResult(outcome=outcome, state=state, turns=turns)


def fold_query(goal: str, suggestion: CommandSuggestion, result: ExecutionResult) -> str:
    """Rewrite the next request around the command that just ran."""
    if suggestion.needs_output:
        return (
            f"I ran the command '{suggestion.command}' and got the output:\n"
            f"{result.output}\n"
            f"Please provide the next command to continue with my original request: {goal}"
        )
    if result.succeeded:
        return (
            f"I successfully ran '{suggestion.command}'. "
            f"What's the next command to continue with my original request: {goal}"
        )
    return (
        f"I ran '{suggestion.command}' but it failed ({result.failure_detail}). "
        f"What's the next command to continue with my original request: {goal}"
    )
