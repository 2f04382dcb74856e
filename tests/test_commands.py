from __future__ import annotations

import json
from pathlib import Path

import pytest

import cdxtrace.commands as commands_module
from cdxtrace.config import CdxConfig
from cdxtrace.models import (
    AgentMessageItem,
    AgentProcessError,
    ConfigError,
    ItemCompleted,
    SessionStarted,
    TurnFailed,
)
from cdxtrace.session import SessionRun
from cdxtrace.trace_journal import TraceJournal


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CDX_CONFIG", str(tmp_path / "absent-config.yaml"))
    monkeypatch.delenv("CDX_LOG_FILE", raising=False)


def _install_fake_run(monkeypatch: pytest.MonkeyPatch, events, *, fail_after: Exception | None = None) -> None:
    class _Agent:
        def __init__(self, _config) -> None:
            pass

        def run_streamed(self, _prompt):
            yield from events
            if fail_after is not None:
                raise fail_after

    def _session_run(config):
        return SessionRun(
            config,
            agent_factory=_Agent,
            detect_changes=lambda _workdir: [],
            locate_transcript=lambda _sid, _root: "",
        )

    monkeypatch.setattr(commands_module, "SessionRun", _session_run)


def test_parse_run_args_full_option_set(tmp_path: Path) -> None:
    config = commands_module.parse_run_args(
        [
            "-w",
            str(tmp_path),
            "--session-id",
            "thread-1",
            "-i",
            str(tmp_path / "AGENTS.md"),
            "--trace-file",
            str(tmp_path / "trace.json"),
            "--agent-id",
            "w1",
            "--agent-type",
            "reviewer",
            "-m",
            "gpt-5-codex",
            "--thinking",
            "high",
            "fix",
            "the",
            "build",
        ]
    )
    assert config.workdir == tmp_path.resolve()
    assert config.resume_session_id == "thread-1"
    assert config.instructions_path == (tmp_path / "AGENTS.md").resolve()
    assert config.trace_file == (tmp_path / "trace.json").resolve()
    assert config.agent_id == "w1"
    assert config.agent_type == "reviewer"
    assert config.model == "gpt-5-codex"
    assert config.reasoning_effort == "high"
    assert config.prompt == "fix the build"


def test_parse_run_args_resolves_relative_workdir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    config = commands_module.parse_run_args(["--workdir", ".", "--unknown-flag", "go"])
    assert config.workdir == tmp_path.resolve()
    assert config.workdir.is_absolute()
    assert config.prompt == "go"


def test_parse_run_args_config_file_defaults_and_cli_precedence(tmp_path: Path) -> None:
    defaults = CdxConfig(model="from-config", reasoning_effort="low", agent_type="planner")
    config = commands_module.parse_run_args(["-w", str(tmp_path), "-m", "from-cli", "task"], defaults)
    assert config.model == "from-cli"
    assert config.reasoning_effort == "low"
    assert config.agent_type == "planner"


@pytest.mark.parametrize(
    ("argv", "message"),
    [
        (["do", "it"], "--workdir"),
        (["-w", "/tmp"], "prompt is required"),
        (["-w", "/tmp", "--thinking", "extreme", "task"], "--thinking must be one of low|medium|high|xhigh"),
        (["-w", "/tmp", "task", "--model"], "expected one argument"),
    ],
)
def test_parse_run_args_rejects_invalid_options(argv: list[str], message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        commands_module.parse_run_args(argv)


def test_main_without_command_prints_usage(capsys: pytest.CaptureFixture[str]) -> None:
    assert commands_module.main([]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "usage: cdx" in captured.err
    assert "run" in captured.err


def test_main_help_exits_zero(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        commands_module.main(["--help"])
    assert excinfo.value.code == 0
    assert "usage: cdx" in capsys.readouterr().out


def test_main_unknown_command(capsys: pytest.CaptureFixture[str]) -> None:
    assert commands_module.main(["launch"]) == 1
    assert "invalid choice: 'launch'" in capsys.readouterr().err


def test_main_run_usage_error_exits_one(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert commands_module.main(["run", "-w", str(tmp_path), "task", "--model"]) == 1
    assert "expected one argument" in capsys.readouterr().err
    assert not (tmp_path / ".agent-trace.json").exists()


def test_run_rejects_missing_workdir(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    missing = tmp_path / "nope"
    assert commands_module.main(["run", "-w", str(missing), "task"]) == 1
    assert f"cdx run: ERROR --workdir is not a directory: {missing}" in capsys.readouterr().err


def test_run_configuration_error_exits_one_without_trace(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert commands_module.main(["run", "-w", str(tmp_path)]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "cdx run: ERROR prompt is required" in captured.err
    assert not (tmp_path / ".agent-trace.json").exists()


def test_run_completed_exits_zero_and_prints_result(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_fake_run(monkeypatch, [SessionStarted("thread-1"), ItemCompleted(AgentMessageItem("done"))])
    trace_path = tmp_path / "trace.json"

    exit_code = commands_module.main(["run", "-w", str(tmp_path), "--trace-file", str(trace_path), "ship it"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["session_id"] == "thread-1"
    assert payload["status"] == "completed"
    assert payload["final_response"] == "done"
    assert "error" not in payload
    assert len(TraceJournal(trace_path).read_all().traces) == 1


def test_run_failed_session_exits_one(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_fake_run(monkeypatch, [SessionStarted("thread-2"), TurnFailed("rate limited")])
    trace_path = tmp_path / "trace.json"

    exit_code = commands_module.main(["run", "-w", str(tmp_path), "--trace-file", str(trace_path), "task"])

    assert exit_code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["status"] == "failed"
    assert payload["error"] == "rate limited"
    (entry,) = TraceJournal(trace_path).read_all().traces
    assert entry.error == "rate limited"


def test_run_crash_exits_two_with_observed_session(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_fake_run(
        monkeypatch,
        [SessionStarted("thread-3")],
        fail_after=AgentProcessError("codex exec exited with code 137"),
    )
    trace_path = tmp_path / "trace.json"

    exit_code = commands_module.main(["run", "-w", str(tmp_path), "--trace-file", str(trace_path), "task"])

    assert exit_code == 2
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert payload == {
        "session_id": "thread-3",
        "status": "failed",
        "files_changed": [],
        "final_response": "",
        "error": "codex exec exited with code 137",
        "duration_ms": payload["duration_ms"],
    }
    assert "[cdx] fatal: codex exec exited with code 137" in captured.err
    (entry,) = TraceJournal(trace_path).read_all().traces
    assert entry.session_id == "thread-3"
    assert entry.status == "failed"
    assert entry.files_changed == ()


def test_crash_trace_failure_does_not_mask_original_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    _install_fake_run(monkeypatch, [], fail_after=RuntimeError("agent exploded"))
    trace_path = tmp_path / "trace.json"
    trace_path.write_text("not json", encoding="utf-8")

    exit_code = commands_module.main(["run", "-w", str(tmp_path), "--trace-file", str(trace_path), "task"])

    assert exit_code == 2
    captured = capsys.readouterr()
    payload = json.loads(captured.out)
    assert payload["session_id"] == "unknown"
    assert payload["error"] == "agent exploded"
    assert "could not record crash trace" in captured.err
    assert trace_path.read_text(encoding="utf-8") == "not json"
