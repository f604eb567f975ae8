from __future__ import annotations

from pathlib import Path

import pytest

from aicmd import cli
from aicmd.agent.models import CommandSuggestion
from aicmd.history import HistoryLog, HistoryLogError
from aicmd.llm.client import MalformedSuggestionError, SuggestionRequestError
from aicmd.shell import ExecutionResult, ExecutorStartError


def _suggestion(command: str, *, safe: bool = True) -> CommandSuggestion:
    return CommandSuggestion(
        command=command,
        reason="test",
        is_final=True,
        needs_output=False,
        safe=safe,
    )


class FakeClient:
    def __init__(self, response: CommandSuggestion | Exception) -> None:
        self.response = response
        self.queries: list[str] = []
        self.files: list[list[str]] = []

    def suggest(self, user_query, working_directory, files, history) -> CommandSuggestion:
        self.queries.append(user_query)
        self.files.append(list(files))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class FakeShell:
    name = "fake"

    def __init__(self, start_error: ExecutorStartError | None = None) -> None:
        self.commands: list[str] = []
        self.start_error = start_error

    def run(self, command, on_line=None, *, cwd=None) -> ExecutionResult:
        if self.start_error is not None:
            raise self.start_error
        self.commands.append(command)
        if on_line is not None:
            on_line("hi\n")
        return ExecutionResult(
            command=command, shell=self.name, output="hi\n", succeeded=True, returncode=0
        )

    def is_destructive_command(self, command: str) -> bool:
        return False


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in ("AICMD_CONFIG_FILE", "AICMD_LOG_FILE", "AICMD_MAX_TURNS", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("AICMD_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("AICMD_CONSOLE_ECHO", "false")
    work = tmp_path / "work"
    work.mkdir()
    (work / "notes.txt").write_text("", encoding="utf-8")
    monkeypatch.chdir(work)
    return tmp_path


def _install(monkeypatch: pytest.MonkeyPatch, client: FakeClient, shell: FakeShell) -> None:
    monkeypatch.setattr(cli, "create_client", lambda _config, _history: client)
    monkeypatch.setattr(cli, "create_shell_adapter", lambda _name: shell)


def _log_text(workspace: Path) -> str:
    return (workspace / "home" / "action.log").read_text(encoding="utf-8")


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])
    assert args.query == []
    assert args.ask is False


def test_parser_joins_multi_word_query() -> None:
    args = cli.build_parser().parse_args(["--ask", "list", "big", "files"])
    assert args.query == ["list", "big", "files"]
    assert args.ask is True


def test_main_without_query_prints_usage(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main([], prog="ai") == 1
    assert 'Usage: ai "what you want to do"' in capsys.readouterr().out


def test_main_runs_command_to_completion(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    client = FakeClient(_suggestion("echo hi"))
    shell = FakeShell()
    _install(monkeypatch, client, shell)

    assert cli.main(["say", "hi"], prog="ai") == 0

    assert client.queries == ["say hi"]
    assert client.files == [["notes.txt"]]
    assert shell.commands == ["echo hi"]
    out = capsys.readouterr().out
    assert "Executing command: echo hi" in out
    assert "Task completed successfully!" in out
    log = _log_text(workspace)
    assert "Info: User Query: say hi" in log
    assert "Command: echo hi\nhi\n" in log


def test_ask_program_only_suggests(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    shell = FakeShell()
    _install(monkeypatch, FakeClient(_suggestion("du -sh *")), shell)

    assert cli.main(["disk", "usage"], prog="ask") == 0

    assert shell.commands == []
    assert "du -sh *" in capsys.readouterr().out
    assert "Info: Ask Mode: disk usage" in _log_text(workspace)


def test_ask_flag_only_suggests(workspace: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    shell = FakeShell()
    _install(monkeypatch, FakeClient(_suggestion("du -sh *")), shell)

    assert cli.main(["--ask", "disk usage"], prog="ai") == 0

    assert shell.commands == []


def test_ask_main_uses_suggestion_only_mode(
    workspace: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    shell = FakeShell()
    _install(monkeypatch, FakeClient(_suggestion("uptime")), shell)
    monkeypatch.setattr("sys.argv", ["ask", "how", "long", "up"])

    assert cli.ask_main() == 0

    assert shell.commands == []
    assert "Ask Mode: how long up" in _log_text(workspace)


def test_declined_unsafe_command_exits_cleanly(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    shell = FakeShell()
    _install(monkeypatch, FakeClient(_suggestion("rm -rf ./tmp", safe=False)), shell)
    monkeypatch.setattr("builtins.input", lambda _prompt: "n")

    assert cli.main(["clean", "up"], prog="ai") == 0

    assert shell.commands == []
    assert "Command execution cancelled by user." in capsys.readouterr().out
    log = _log_text(workspace)
    assert "] Command: rm" not in log
    assert "Info: Command execution cancelled by user." in log


def test_client_init_failure_exits_with_error(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fail(_config, _history):
        raise SuggestionRequestError("failed to initialize AWS client: no region")

    monkeypatch.setattr(cli, "create_client", fail)

    assert cli.main(["anything"], prog="ai") == 1

    assert "failed to initialize AI client" in capsys.readouterr().err
    assert "Error: failed to initialize AI client" in _log_text(workspace)


def test_malformed_suggestion_exits_with_error(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    error = MalformedSuggestionError("failed to parse command response", "just prose")
    _install(monkeypatch, FakeClient(error), FakeShell())

    assert cli.main(["anything"], prog="ai") == 1

    err = capsys.readouterr().err
    assert "Raw model response: just prose" in err


def test_request_failure_exits_with_error(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    _install(monkeypatch, FakeClient(SuggestionRequestError("status 500")), FakeShell())

    assert cli.main(["anything"], prog="ai") == 1

    assert "status 500" in capsys.readouterr().err


def test_executor_start_failure_exits_with_error(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    shell = FakeShell(start_error=ExecutorStartError("echo hi", "fake", "not found"))
    _install(monkeypatch, FakeClient(_suggestion("echo hi")), shell)

    assert cli.main(["say", "hi"], prog="ai") == 1

    assert "failed to start command with fake" in capsys.readouterr().err


def test_unopenable_log_exits_with_error(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    blocker = workspace / "blocker"
    blocker.write_text("", encoding="utf-8")
    monkeypatch.setenv("AICMD_LOG_FILE", str(blocker / "action.log"))

    assert cli.main(["anything"], prog="ai") == 1

    assert "Failed to initialize logger" in capsys.readouterr().err


def test_turn_limit_exits_cleanly(
    workspace: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    endless = CommandSuggestion(
        command="true", reason="again", is_final=False, needs_output=False, safe=True
    )
    shell = FakeShell()
    _install(monkeypatch, FakeClient(endless), shell)
    monkeypatch.setenv("AICMD_MAX_TURNS", "2")

    assert cli.main(["keep", "going"], prog="ai") == 0

    assert shell.commands == ["true", "true"]
    assert "Stopped after 2 turns" in capsys.readouterr().out


def test_unwritable_history_does_not_stop_the_session(
    workspace: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    def refuse(self, entry):
        raise HistoryLogError("disk full")

    client = FakeClient(_suggestion("echo hi"))
    shell = FakeShell()
    _install(monkeypatch, client, shell)
    monkeypatch.setattr(HistoryLog, "append", refuse)

    assert cli.main(["say", "hi"], prog="ai") == 0

    assert client.queries == ["say hi"]
    assert shell.commands == ["echo hi"]
