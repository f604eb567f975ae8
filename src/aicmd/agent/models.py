"""Data models used by the interaction loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from aicmd.shell import ExecutionResult

SessionOutcome = Literal["completed", "cancelled", "suggested", "turn_limit"]


@dataclass(frozen=True, slots=True)
class CommandSuggestion:
    """A model-proposed command plus the metadata that steers the loop."""

    command: str
    reason: str
    is_final: bool
    needs_output: bool
    safe: bool


@dataclass(slots=True)
class SessionState:
    """Working state of one interaction session."""

    goal: str
    current_query: str
    turn_count: int = 0
    running: bool = True


@dataclass(slots=True)
class SessionTurn:
    """Captured query/suggestion/result data for a single loop cycle."""

    query: str
    suggestion: CommandSuggestion
    result: ExecutionResult | None = None


@dataclass(slots=True)
class SessionResult:
    """How a session ended and what happened along the way."""

    outcome: SessionOutcome
    state: SessionState
    turns: list[SessionTurn] = field(default_factory=list)
