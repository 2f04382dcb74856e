"""Best-effort lookup of the codex rollout transcript for a session id."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path

from cdxtrace.constants import (
    CODEX_HOME_ENV_VAR,
    TRANSCRIPT_SEARCH_MAX_DEPTH,
    TRANSCRIPT_SUFFIX,
)
from cdxtrace.utils import _log


def default_sessions_root() -> Path:
    codex_home = os.environ.get(CODEX_HOME_ENV_VAR, "").strip()
    if codex_home:
        return Path(codex_home).expanduser() / "sessions"
    return Path.home() / ".codex" / "sessions"


def _is_transcript_for(entry: os.DirEntry[str], session_id: str) -> bool:
    try:
        is_file = entry.is_file()
    except OSError:
        return False
    return is_file and entry.name.endswith(TRANSCRIPT_SUFFIX) and session_id in entry.name


def _find_in_directory(directory: Path, session_id: str) -> Path | None:
    try:
        with os.scandir(directory) as entries:
            for entry in entries:
                if _is_transcript_for(entry, session_id):
                    return Path(entry.path)
    except OSError:
        return None
    return None


def _search_tree(root: Path, session_id: str, *, max_depth: int) -> Path | None:
    stack: list[tuple[Path, int]] = [(root, 0)]
    while stack:
        directory, depth = stack.pop()
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if _is_transcript_for(entry, session_id):
                        return Path(entry.path)
                    if depth >= max_depth:
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            stack.append((Path(entry.path), depth + 1))
                    except OSError:
                        continue
        except OSError as exc:
            if directory != root:
                _log(f"transcript search skipped {directory}: {exc}")
            continue
    return None


def locate_transcript(
    session_id: str | None,
    root: Path | None = None,
    *,
    today: date | None = None,
    max_depth: int = TRANSCRIPT_SEARCH_MAX_DEPTH,
) -> str:
    """Return the transcript path for ``session_id``.

    Looks in today's ``YYYY/MM/DD`` directory first, then walks ``root`` with an
    explicit stack no deeper than ``max_depth`` levels. Falls back to ``root``
    itself when nothing matches, and to ``""`` when there is no session id.
    """
    if not session_id:
        return ""
    sessions_root = root if root is not None else default_sessions_root()
    day = today if today is not None else date.today()
    dated_dir = sessions_root / f"{day.year:04d}" / f"{day.month:02d}" / f"{day.day:02d}"

    match = _find_in_directory(dated_dir, session_id)
    if match is None:
        match = _search_tree(sessions_root, session_id, max_depth=max_depth)
    if match is None:
        _log(f"transcript for session {session_id} not found under {sessions_root}")
        return str(sessions_root)
    return str(match)
