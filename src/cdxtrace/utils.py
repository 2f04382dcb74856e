"""cdxtrace utility functions — diagnostics, time, JSON I/O, and git helpers."""

from __future__ import annotations

import json
import os
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cdxtrace.constants import LOG_FILE_ENV_VAR, LOG_PREFIX


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    return (
        datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


_log_file: Path | None = None


def _configure_log_file(path: Path | None) -> None:
    global _log_file
    _log_file = path


def _resolve_log_file() -> Path | None:
    if _log_file is not None:
        return _log_file
    raw = os.environ.get(LOG_FILE_ENV_VAR, "").strip()
    if not raw:
        return None
    return Path(raw).expanduser()


def _append_log(log_path: Path, message: str) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(f"{_utc_now()} {message}\n")


def _log(message: str) -> None:
    """Write a progress or diagnostic line to stderr (and the log file, when configured)."""
    print(f"{LOG_PREFIX} {message}", file=sys.stderr, flush=True)
    log_path = _resolve_log_file()
    if log_path is None:
        return
    try:
        _append_log(log_path, message)
    except OSError as exc:
        print(f"{LOG_PREFIX} log file unavailable at {log_path}: {exc}", file=sys.stderr, flush=True)


def _compact_log_text(text: str, limit: int = 240) -> str:
    compact = " ".join(text.strip().split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


# ---------------------------------------------------------------------------
# JSON I/O helpers
# ---------------------------------------------------------------------------


def _render_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(_render_json(payload), encoding="utf-8")
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------


def _run_git(repo_root: Path, args: list[str]) -> subprocess.CompletedProcess[str]:
    command = ["git", "-C", str(repo_root), *args]
    try:
        return subprocess.run(
            command,
            text=True,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as exc:
        return subprocess.CompletedProcess(command, 127, "", f"git not found: {exc}")
    except OSError as exc:
        return subprocess.CompletedProcess(command, 1, "", str(exc))


def _git_output(repo_root: Path, args: list[str]) -> str | None:
    """Return stripped stdout of a git command, or None when it fails."""
    completed = _run_git(repo_root, args)
    if completed.returncode != 0:
        return None
    return completed.stdout.strip()
