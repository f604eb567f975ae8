"""Append-only action history with a bounded tail read."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Literal, TextIO

LOGGER = logging.getLogger(__name__)

EntryKind = Literal["command", "output", "info", "error"]

DEFAULT_MAX_BYTES = 5 * 1024
DEFAULT_MAX_LINES = 50
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_COLOR_BLUE = "\033[34m"
_COLOR_YELLOW = "\033[33m"
_COLOR_RESET = "\033[0m"


class HistoryLogError(RuntimeError):
    """Raised when the history file cannot be opened, written or read."""


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One event destined for the history file."""

    kind: EntryKind
    text: str

    def render(self, timestamp: datetime | None = None) -> str:
        if self.kind == "output":
            return self.text if self.text.endswith("\n") else f"{self.text}\n"
        stamp = (timestamp or datetime.now()).strftime(TIMESTAMP_FORMAT)
        if self.kind == "command":
            return f"\n[{stamp}] Command: {self.text}\n"
        label = "Info" if self.kind == "info" else "Error"
        return f"[{stamp}] {label}: {self.text}\n"


class HistoryLog:
    """Flat append-only log file shared by every writer in the process.

    Writes and tail reads are serialized by one lock, so a reader never sees
    half of an entry and entries never interleave.
    """

    def __init__(
        self,
        path: str | Path,
        handle: IO[str],
        *,
        console: TextIO | None = None,
        color: bool = True,
    ) -> None:
        self.path = Path(path)
        self._handle: IO[str] | None = handle
        self._lock = threading.Lock()
        self.console = console
        self.color = color

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        console: TextIO | None = None,
        color: bool = True,
    ) -> HistoryLog:
        log_path = Path(path).expanduser()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handle = log_path.open("a", encoding="utf-8", newline="")
        except OSError as exc:
            raise HistoryLogError(f"failed to open log file {log_path}: {exc}") from exc
        LOGGER.debug("history_log_opened", extra={"path": str(log_path)})
        return cls(log_path, handle, console=console, color=color)

    @property
    def closed(self) -> bool:
        return self._handle is None

    def append(self, entry: HistoryEntry) -> None:
        rendered = entry.render()
        with self._lock:
            if self._handle is None:
                raise HistoryLogError(f"log file {self.path} is closed")
            try:
                self._handle.write(rendered)
                self._handle.flush()
            except OSError as exc:
                raise HistoryLogError(f"failed to write log file {self.path}: {exc}") from exc
            if self.console is not None and entry.kind in ("info", "error"):
                self._echo(entry, rendered)

    def record(self, kind: EntryKind, text: str) -> HistoryLogError | None:
        """Append an entry, logging a failure and returning it instead of raising."""
        try:
            self.append(HistoryEntry(kind, text))
        except HistoryLogError as exc:
            LOGGER.error("history_log_failure", extra={"error": str(exc)})
            return exc
        return None

    def command(self, text: str) -> None:
        self.append(HistoryEntry("command", text))

    def output(self, text: str) -> None:
        self.append(HistoryEntry("output", text))

    def info(self, text: str) -> None:
        self.append(HistoryEntry("info", text))

    def error(self, text: str) -> None:
        self.append(HistoryEntry("error", text))

    def tail(self, max_bytes: int = DEFAULT_MAX_BYTES, max_lines: int = DEFAULT_MAX_LINES) -> str:
        """Return the most recent complete lines within both bounds."""
        if max_bytes <= 0 or max_lines <= 0:
            return ""
        with self._lock:
            try:
                with self.path.open("rb") as reader:
                    size = reader.seek(0, os.SEEK_END)
                    start = max(size - max_bytes, 0)
                    # One extra byte tells whether the window begins on a line boundary.
                    read_from = max(start - 1, 0)
                    reader.seek(read_from)
                    window = reader.read(size - read_from)
            except FileNotFoundError:
                return ""
            except OSError as exc:
                raise HistoryLogError(f"failed to read log file {self.path}: {exc}") from exc

        if start > 0:
            newline = window.find(b"\n")
            window = window[newline + 1 :] if newline >= 0 else b""
        lines = window.decode("utf-8", errors="replace").splitlines(keepends=True)
        return "".join(lines[-max_lines:])

    def close(self) -> None:
        with self._lock:
            if self._handle is None:
                return
            try:
                self._handle.close()
            except OSError as exc:
                raise HistoryLogError(f"failed to close log file {self.path}: {exc}") from exc
            finally:
                self._handle = None

    def __enter__(self) -> HistoryLog:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def _echo(self, entry: HistoryEntry, rendered: str) -> None:
        if not self.color:
            self.console.write(rendered)
        else:
            color = _COLOR_BLUE if entry.kind == "info" else _COLOR_YELLOW
            prefix, _, message = rendered.rstrip("\n").partition(": ")
            self.console.write(f"{prefix}: {color}{message}{_COLOR_RESET}\n")
        self.console.flush()
