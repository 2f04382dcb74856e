from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from cdxtrace.config import CdxConfig, load_cdx_config


def _write_config(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_missing_config_gives_defaults(tmp_path: Path) -> None:
    config = load_cdx_config({"CDX_CONFIG": str(tmp_path / "nope.yaml")})
    assert config == CdxConfig()
    assert config.codex_command == ("codex",)


def test_config_values_are_loaded(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path / "cdx" / "config.yaml",
        {
            "codex_command": "npx -y @openai/codex",
            "model": "gpt-5-codex",
            "reasoning_effort": "HIGH",
            "agent_type": "implementer",
            "skip_git_repo_check": "yes",
            "sessions_dir": str(tmp_path / "sessions"),
            "log_file": str(tmp_path / "logs" / "cdx.log"),
        },
    )
    config = load_cdx_config({"CDX_CONFIG": str(config_path)})
    assert config.codex_command == ("npx", "-y", "@openai/codex")
    assert config.model == "gpt-5-codex"
    assert config.reasoning_effort == "high"
    assert config.agent_type == "implementer"
    assert config.skip_git_repo_check is True
    assert config.sessions_dir == tmp_path / "sessions"
    assert config.log_file == tmp_path / "logs" / "cdx.log"


def test_codex_command_accepts_list(tmp_path: Path) -> None:
    config_path = _write_config(tmp_path / "config.yaml", {"codex_command": ["/opt/codex/bin/codex"]})
    assert load_cdx_config({"CDX_CONFIG": str(config_path)}).codex_command == ("/opt/codex/bin/codex",)


def test_invalid_values_fall_back_with_diagnostic(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = _write_config(
        tmp_path / "config.yaml",
        {"reasoning_effort": "maximum", "codex_command": [], "model": "  "},
    )
    config = load_cdx_config({"CDX_CONFIG": str(config_path)})
    assert config.reasoning_effort is None
    assert config.codex_command == ("codex",)
    assert config.model is None
    assert "ignoring reasoning_effort 'maximum'" in capsys.readouterr().err


@pytest.mark.parametrize("content", ["- just\n- a list\n", "key: [unclosed\n"])
def test_malformed_config_is_ignored(tmp_path: Path, content: str, capsys: pytest.CaptureFixture[str]) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(content, encoding="utf-8")
    assert load_cdx_config({"CDX_CONFIG": str(config_path)}) == CdxConfig()
    assert "ignoring" in capsys.readouterr().err


def test_log_file_from_environment(tmp_path: Path) -> None:
    config = load_cdx_config(
        {"CDX_CONFIG": str(tmp_path / "nope.yaml"), "CDX_LOG_FILE": str(tmp_path / "run.log")}
    )
    assert config.log_file == tmp_path / "run.log"


def test_default_location_under_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    _write_config(tmp_path / ".config" / "cdx" / "config.yaml", {"model": "o4-mini"})
    assert load_cdx_config({}).model == "o4-mini"
