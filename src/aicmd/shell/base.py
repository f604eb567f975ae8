"""Base shell adapter with concurrent stdout/stderr streaming."""

from __future__ import annotations

import abc
import locale
import logging
import re
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import IO

LOGGER = logging.getLogger(__name__)

LineHandler = Callable[[str], None]

_DESTRUCTIVE_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\brm\s+-rf\b",
        # del/format only count in command position, not as option values.
        r"(?:^\s*|[;&|(]\s*)del\s+",
        r"(?:^\s*|[;&|(]\s*)format(?:\.com)?\s+[a-z]:",
        r"\bremove-item\b",
        r"\bdrop\s+table\b",
    )
]

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


class ExecutorStartError(RuntimeError):
    """Raised when the command interpreter cannot be launched at all."""

    def __init__(self, command: str, shell: str, reason: str) -> None:
        super().__init__(f"failed to start command with {shell}: {reason}")
        self.command = command
        self.shell = shell
        self.reason = reason


@dataclass(slots=True)
class ExecutionResult:
    """Captured output and exit status of one command run."""

    command: str
    shell: str
    output: str
    succeeded: bool
    returncode: int
    failure_detail: str | None = None
    duration_seconds: float = 0.0


class _MergedOutput:
    """Line sink shared by both stream readers."""

    def __init__(self, on_line: LineHandler | None) -> None:
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._on_line = on_line

    def deliver(self, line: str, *, forward: bool) -> bool:
        with self._lock:
            self._lines.append(line)
            if not forward or self._on_line is None:
                return forward
            try:
                self._on_line(line)
            except Exception:  # noqa: BLE001
                LOGGER.warning("line_handler_failed", exc_info=True)
                return False
            return True

    def text(self) -> str:
        with self._lock:
            return "".join(self._lines)


class ShellAdapter(abc.ABC):
    """Abstract adapter that runs a command string through one interpreter."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Friendly shell adapter name."""

    @abc.abstractmethod
    def build_argv(self, command: str) -> list[str]:
        """Return the interpreter argv that runs ``command`` verbatim."""

    def run(
        self,
        command: str,
        on_line: LineHandler | None = None,
        *,
        cwd: str | None = None,
    ) -> ExecutionResult:
        """Run ``command``, forwarding each output line as it arrives.

        Lines keep their order within stdout and within stderr; the two
        streams interleave in whatever order the reader threads deliver them.
        The returned output holds every captured line whether or not
        ``on_line`` was called for it.
        """
        self.log_request(command, cwd=cwd)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                self.build_argv(command),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            LOGGER.error(
                "command_start_failed",
                extra={"shell": self.name, "cwd": cwd, "error": str(exc)},
            )
            raise ExecutorStartError(command, self.name, str(exc)) from exc

        sink = _MergedOutput(on_line)
        readers = [
            threading.Thread(
                target=_drain_stream,
                args=(process.stdout, sink),
                name=f"{self.name}-stdout",
                daemon=True,
            ),
            threading.Thread(
                target=_drain_stream,
                args=(process.stderr, sink),
                name=f"{self.name}-stderr",
                daemon=True,
            ),
        ]
        try:
            for reader in readers:
                reader.start()
            # Both pipes must hit EOF before the exit status is consulted.
            for reader in readers:
                reader.join()
            returncode = process.wait()
        finally:
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            if process.poll() is None:
                process.kill()
                process.wait()

        result = ExecutionResult(
            command=command,
            shell=self.name,
            output=sink.text(),
            succeeded=returncode == 0,
            returncode=returncode,
            failure_detail=None if returncode == 0 else describe_exit(returncode),
            duration_seconds=self.monotonic_now() - started,
        )
        self.log_result(result)
        return result

    def is_destructive_command(self, command: str) -> bool:
        """Return true when a command matches destructive command heuristics."""
        return any(pattern.search(command) for pattern in _DESTRUCTIVE_PATTERNS)

    def log_request(self, command: str, *, cwd: str | None) -> None:
        LOGGER.info(
            "command_request",
            extra={
                "shell": self.name,
                "command": self._sanitize_command(command),
                "cwd": cwd,
            },
        )

    def log_result(self, result: ExecutionResult) -> None:
        LOGGER.info(
            "command_result",
            extra={
                "shell": result.shell,
                "returncode": result.returncode,
                "succeeded": result.succeeded,
                "duration_seconds": round(result.duration_seconds, 4),
                "output_length": len(result.output),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    def _sanitize_command(self, command: str) -> str:
        sanitized = command
        for pattern in _SECRET_PATTERNS:
            sanitized = pattern.sub(r"\1***", sanitized)
        return sanitized


def describe_exit(returncode: int) -> str:
    if returncode < 0:
        return f"terminated by signal {-returncode}"
    return f"exit status {returncode}"


def _drain_stream(stream: IO[bytes] | None, sink: _MergedOutput) -> None:
    if stream is None:
        return
    forward = True
    for raw in iter(stream.readline, b""):
        line = normalize_output(raw).rstrip("\r\n") + "\n"
        forward = sink.deliver(line, forward=forward)


def normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
