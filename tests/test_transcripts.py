from __future__ import annotations

import os
from datetime import date
from pathlib import Path

import pytest

from cdxtrace.transcripts import default_sessions_root, locate_transcript

SESSION_ID = "0199a213-81c0-7800-8aa1-bbab2a035a53"
TODAY = date(2026, 10, 19)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text('{"type":"session_meta"}\n', encoding="utf-8")
    return path


def test_no_session_id_returns_empty_without_listing(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def _forbidden(*_args, **_kwargs):
        raise AssertionError("filesystem must not be touched")

    monkeypatch.setattr(os, "scandir", _forbidden)
    assert locate_transcript(None, tmp_path) == ""
    assert locate_transcript("", tmp_path) == ""


def test_finds_transcript_in_todays_directory(tmp_path: Path) -> None:
    expected = _touch(tmp_path / "2026" / "10" / "19" / f"rollout-2026-10-19T10-00-00-{SESSION_ID}.jsonl")
    _touch(tmp_path / "2026" / "10" / "19" / "rollout-2026-10-19T09-00-00-other.jsonl")
    assert locate_transcript(SESSION_ID, tmp_path, today=TODAY) == str(expected)


def test_falls_back_to_tree_search_for_older_sessions(tmp_path: Path) -> None:
    expected = _touch(tmp_path / "2026" / "09" / "30" / f"rollout-2026-09-30T23-59-00-{SESSION_ID}.jsonl")
    (tmp_path / "2026" / "10" / "19").mkdir(parents=True)
    assert locate_transcript(SESSION_ID, tmp_path, today=TODAY) == str(expected)


def test_ignores_files_without_jsonl_suffix(tmp_path: Path) -> None:
    _touch(tmp_path / "2026" / "10" / "19" / f"{SESSION_ID}.txt")
    assert locate_transcript(SESSION_ID, tmp_path, today=TODAY) == str(tmp_path)


def test_search_depth_is_bounded(tmp_path: Path) -> None:
    _touch(tmp_path / "a" / "b" / "c" / "d" / "e" / f"rollout-{SESSION_ID}.jsonl")
    assert locate_transcript(SESSION_ID, tmp_path, today=TODAY) == str(tmp_path)

    shallow = _touch(tmp_path / "a" / "b" / "c" / "d" / f"rollout-{SESSION_ID}.jsonl")
    assert locate_transcript(SESSION_ID, tmp_path, today=TODAY) == str(shallow)


def test_missing_root_falls_back_to_root_path(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    root = tmp_path / "never-created"
    assert locate_transcript(SESSION_ID, root, today=TODAY) == str(root)
    assert "not found" in capsys.readouterr().err


def test_default_root_honours_codex_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CODEX_HOME", str(tmp_path / "codex-home"))
    assert default_sessions_root() == tmp_path / "codex-home" / "sessions"

    monkeypatch.delenv("CODEX_HOME")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert default_sessions_root() == tmp_path / "home" / ".codex" / "sessions"
