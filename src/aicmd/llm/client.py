"""Shared model-client pieces: the suggestion protocol, prompt and parser."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Protocol

from aicmd.agent.models import CommandSuggestion

LOGGER = logging.getLogger(__name__)

MAX_TOKENS = 2048
TEMPERATURE = 0.5
REQUIRED_FIELDS = ("command", "reason", "safe", "is_final", "needs_output")

_FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)

SYSTEM_PROMPT_HEADER = (
    "You are an AI assistant providing shell commands to execute tasks. Your job is to"
    " translate user requests into the exact commands needed."
)
SYSTEM_PROMPT_FORMAT = "\n".join(
    [
        "Provide the exact command or commands to run in response to the user's request."
        " Format your response as JSON with these fields:",
        "- 'safe': a boolean indicating if the command is safe to run automatically",
        "- 'command': the exact command(s) to run",
        "- 'reason': a brief explanation of what the command does",
        "- 'is_final': a boolean indicating if this is the final command to complete the"
        " user's request (true) or if more commands will be needed (false)",
        "- 'needs_output': a boolean indicating if you need to see the output of this"
        " command to determine the next step",
        "",
        "If you need more information, respond with JSON where 'needs_output' is true and"
        " the 'command' field contains the command needed to gather that information."
        " The output of this command will be shown to you.",
        "",
        "IMPORTANT: Return ONLY the raw JSON data without any markdown formatting like"
        " ```json or ```. Just the plain JSON object.",
    ]
)


class SuggestionError(RuntimeError):
    """Base class for failures to obtain a usable suggestion."""


class SuggestionRequestError(SuggestionError):
    """Raised when the model backend cannot be reached or answers badly."""


class MalformedSuggestionError(SuggestionError):
    """Raised when model text does not decode into a command suggestion."""

    def __init__(self, message: str, raw_text: str) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class SuggestionClient(Protocol):
    """Anything that can turn a request plus context into a suggestion."""

    def suggest(
        self,
        user_query: str,
        working_directory: str,
        files: Sequence[str],
        history: str,
    ) -> CommandSuggestion: ...


def build_system_prompt(
    working_directory: str,
    files: Sequence[str],
    history: str,
    *,
    max_files: int = 1000,
) -> str:
    parts = [
        SYSTEM_PROMPT_HEADER,
        f"Current directory: {working_directory}",
        f"Files in directory (limited to {max_files}): [{' '.join(files[:max_files])}]",
        "",
    ]
    if history:
        parts.extend(["Recent command history (for context):", history, ""])
    parts.append(SYSTEM_PROMPT_FORMAT)
    return "\n".join(parts)


def build_user_messages(user_query: str) -> list[dict[str, object]]:
    return [{"role": "user", "content": [{"type": "text", "text": user_query}]}]


def extract_text(payload: object) -> str:
    """Concatenate the ``text`` blocks of a Messages API response body."""
    if not isinstance(payload, dict):
        raise SuggestionRequestError("Model response parsing error: expected top-level object")
    content = payload.get("content")
    if not isinstance(content, list) or not content:
        raise SuggestionRequestError("empty response from model")
    return "".join(
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def parse_suggestion(text: str) -> CommandSuggestion:
    """Decode model output into a suggestion, accepting optional markdown fences."""
    candidate = _unwrap_payload(text)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise MalformedSuggestionError(f"failed to parse command response: {exc}", text) from exc
    if not isinstance(parsed, dict):
        raise MalformedSuggestionError("command response must be a JSON object", text)

    missing = [key for key in REQUIRED_FIELDS if key not in parsed]
    if missing:
        raise MalformedSuggestionError(
            f"command response is missing fields: {', '.join(missing)}", text
        )

    command = parsed["command"]
    reason = parsed["reason"]
    if not isinstance(command, str) or not command.strip():
        raise MalformedSuggestionError("command must be a non-empty string", text)
    if not isinstance(reason, str):
        raise MalformedSuggestionError("reason must be a string", text)
    for key in ("safe", "is_final", "needs_output"):
        if not isinstance(parsed[key], bool):
            raise MalformedSuggestionError(f"{key} must be a boolean", text)

    return CommandSuggestion(
        command=command.strip(),
        reason=reason,
        is_final=parsed["is_final"],
        needs_output=parsed["needs_output"],
        safe=parsed["safe"],
    )


def _unwrap_payload(text: str) -> str:
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        return fenced.group(1).strip()
    stripped = text.strip()
    if stripped.startswith("{"):
        return stripped
    start = stripped.find("{")
    end = stripped.rfind("}")
    if start >= 0 and end > start:
        return stripped[start : end + 1]
    return stripped
