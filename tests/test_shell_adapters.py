from __future__ import annotations

import os
import shutil
import threading

import pytest

from aicmd.shell import (
    BashAdapter,
    ExecutionResult,
    ExecutorStartError,
    PowerShellAdapter,
    create_shell_adapter,
)
from aicmd.shell.base import describe_exit, normalize_output

posix_only = pytest.mark.skipif(
    os.name == "nt" or shutil.which("sh") is None, reason="requires a POSIX sh"
)


@pytest.mark.parametrize(
    ("factory_input", "expected_type"),
    [
        ("powershell", PowerShellAdapter),
        ("pwsh", PowerShellAdapter),
        ("bash", BashAdapter),
        ("sh", BashAdapter),
        ("shell", BashAdapter),
    ],
)
def test_create_shell_adapter(factory_input: str, expected_type: type[object]) -> None:
    adapter = create_shell_adapter(factory_input)
    assert isinstance(adapter, expected_type)


def test_create_shell_adapter_sh_uses_sh_executable() -> None:
    adapter = create_shell_adapter("sh")
    assert adapter.build_argv("echo hi") == ["sh", "-c", "echo hi"]


def test_create_shell_adapter_rejects_unknown() -> None:
    with pytest.raises(ValueError, match="Unsupported shell adapter"):
        create_shell_adapter("cmd")


def test_powershell_adapter_command_formatting() -> None:
    adapter = PowerShellAdapter(executable="pwsh")
    assert adapter.build_argv("Write-Output hi") == [
        "pwsh",
        "-NoProfile",
        "-NonInteractive",
        "-Command",
        "Write-Output hi",
    ]


def test_bash_adapter_passes_command_verbatim() -> None:
    command = "echo 'a  b' | tr a-z A-Z && ls *.txt"
    assert BashAdapter(executable="bash").build_argv(command) == ["bash", "-c", command]


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("rm -rf build", True),
        ("Remove-Item -Recurse foo", True),
        ("psql -c 'DROP TABLE users'", True),
        ("ls -la", False),
        ("echo format", False),
        ("git log -1 --format=%h", False),
        ("docker ps --format '{{.ID}}'", False),
        ("stat --format=%s notes.txt", False),
        ("format C: /q", True),
        ("cd build && del /q *.obj", True),
        ("  del old.txt", True),
        ("git branch --delete topic", False),
    ],
)
def test_destructive_command_heuristics(command: str, expected: bool) -> None:
    assert BashAdapter(executable="sh").is_destructive_command(command) is expected


def test_describe_exit() -> None:
    assert describe_exit(3) == "exit status 3"
    assert describe_exit(-9) == "terminated by signal 9"


def test_normalize_output_decodes_bytes() -> None:
    assert normalize_output(None) == ""
    assert normalize_output("already text") == "already text"
    assert normalize_output(b"caf\xc3\xa9") == "café"


def test_missing_executable_raises_start_error() -> None:
    adapter = BashAdapter(executable="/definitely/missing/shell")

    with pytest.raises(ExecutorStartError) as excinfo:
        adapter.run("echo hi")

    assert excinfo.value.command == "echo hi"
    assert excinfo.value.shell == "bash"


@posix_only
def test_run_streams_lines_and_captures_output() -> None:
    seen: list[str] = []

    result = BashAdapter(executable="sh").run("echo one; echo two", seen.append)

    assert isinstance(result, ExecutionResult)
    assert result.succeeded is True
    assert result.returncode == 0
    assert result.failure_detail is None
    assert seen == ["one\n", "two\n"]
    assert result.output == "one\ntwo\n"


@posix_only
def test_run_keeps_order_within_each_stream() -> None:
    seen: list[str] = []
    command = "for i in 1 2 3; do echo out$i; echo err$i 1>&2; done"

    result = BashAdapter(executable="sh").run(command, seen.append)

    stdout_lines = [line for line in seen if line.startswith("out")]
    stderr_lines = [line for line in seen if line.startswith("err")]
    assert stdout_lines == ["out1\n", "out2\n", "out3\n"]
    assert stderr_lines == ["err1\n", "err2\n", "err3\n"]
    assert sorted(result.output.splitlines()) == sorted(line.strip() for line in seen)


@posix_only
def test_nonzero_exit_keeps_partial_output() -> None:
    result = BashAdapter(executable="sh").run("echo partial; exit 3")

    assert result.succeeded is False
    assert result.returncode == 3
    assert result.failure_detail == "exit status 3"
    assert result.output == "partial\n"


@posix_only
def test_final_line_without_newline_is_delivered() -> None:
    seen: list[str] = []

    result = BashAdapter(executable="sh").run("printf 'no newline'", seen.append)

    assert seen == ["no newline\n"]
    assert result.output == "no newline\n"


@posix_only
def test_crlf_line_endings_are_normalized() -> None:
    result = BashAdapter(executable="sh").run("printf 'a\\r\\nb\\r\\n'")

    assert result.output == "a\nb\n"


@posix_only
def test_failing_line_handler_still_captures_everything() -> None:
    calls: list[str] = []

    def explode(line: str) -> None:
        calls.append(line)
        raise RuntimeError("sink closed")

    result = BashAdapter(executable="sh").run("echo one; echo two; echo three", explode)

    assert calls == ["one\n"]
    assert result.succeeded is True
    assert result.output == "one\ntwo\nthree\n"


@posix_only
def test_command_runs_in_requested_directory(tmp_path) -> None:
    (tmp_path / "marker.txt").write_text("x", encoding="utf-8")

    result = BashAdapter(executable="sh").run("ls", cwd=str(tmp_path))

    assert result.output == "marker.txt\n"


@posix_only
def test_command_does_not_read_from_terminal() -> None:
    result = BashAdapter(executable="sh").run("cat")

    assert result.succeeded is True
    assert result.output == ""


@posix_only
def test_line_handler_runs_off_the_calling_thread() -> None:
    threads: set[str] = set()

    BashAdapter(executable="sh").run(
        "echo a; echo b 1>&2",
        lambda _line: threads.add(threading.current_thread().name),
    )

    assert threading.current_thread().name not in threads
