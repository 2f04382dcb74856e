"""Working-tree change detection and reconciliation with agent-reported changes."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from cdxtrace.models import FileChange
from cdxtrace.utils import _git_output, _log, _run_git


def _status_code_to_kind(status_code: str) -> str:
    if status_code == "D":
        return "delete"
    if status_code in {"??", "A"}:
        return "add"
    return "update"


_GIT_PATH_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\"": "\"",
    "\\": "\\",
}


def _unquote_git_path(path: str) -> str:
    """Undo git's C-style quoting of paths with spaces, quotes or non-ASCII bytes."""
    if len(path) < 2 or not (path.startswith('"') and path.endswith('"')):
        return path
    body = path[1:-1]
    decoded = bytearray()
    index = 0
    while index < len(body):
        char = body[index]
        if char != "\\" or index + 1 >= len(body):
            decoded += char.encode("utf-8")
            index += 1
            continue
        octal = body[index + 1 : index + 4]
        if len(octal) == 3 and all(digit in "01234567" for digit in octal):
            decoded.append(int(octal, 8) & 0xFF)
            index += 4
            continue
        escaped = body[index + 1]
        decoded += _GIT_PATH_ESCAPES.get(escaped, escaped).encode("utf-8")
        index += 2
    return decoded.decode("utf-8", errors="replace")


def parse_git_status(output: str) -> list[FileChange]:
    """Parse ``git status --porcelain`` (v1) text into file changes.

    The status code is the first two columns trimmed and the path starts at
    column 3. Renames and copies collapse to ``update`` on the new path. Quoted
    paths are unquoted so they compare equal to the paths the agent reports.
    """
    changes: list[FileChange] = []
    for raw_line in output.splitlines():
        line = raw_line.rstrip("\r\n")
        if len(line) < 4:
            continue
        status_code = line[:2].strip()
        path = line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        path = _unquote_git_path(path)
        if not path.strip():
            continue
        changes.append(FileChange(path=path, kind=_status_code_to_kind(status_code)))
    return changes


def detect_git_changes(workdir: Path) -> list[FileChange]:
    """Best-effort working-tree status; returns [] when git is unavailable or fails."""
    status = _run_git(workdir, ["status", "--porcelain", "--untracked-files=all"])
    if status.returncode != 0:
        detail = status.stderr.strip().splitlines()[:1]
        _log(
            f"git change detection unavailable in {workdir} "
            f"(exit={status.returncode}{': ' + detail[0] if detail else ''})"
        )
        return []
    return parse_git_status(status.stdout)


def merge_file_changes(
    primary: Iterable[FileChange],
    secondary: Iterable[FileChange],
    excluded: Iterable[str] = (),
) -> list[FileChange]:
    """Agent-reported changes first and verbatim, then unseen, non-excluded detected ones."""
    merged = list(primary)
    seen = {change.path for change in merged}
    excluded_paths = set(excluded)
    for change in secondary:
        if change.path in seen or change.path in excluded_paths:
            continue
        merged.append(change)
        seen.add(change.path)
    return merged


# ---------------------------------------------------------------------------
# Repository roots
# ---------------------------------------------------------------------------


def resolve_git_toplevel(workdir: Path) -> Path | None:
    toplevel = _git_output(workdir, ["rev-parse", "--show-toplevel"])
    if not toplevel:
        return None
    return Path(toplevel)


def resolve_trace_root(workdir: Path) -> Path:
    """Superproject root, else repository top-level, else ``workdir`` itself."""
    superproject = _git_output(workdir, ["rev-parse", "--show-superproject-working-tree"])
    if superproject:
        return Path(superproject)
    toplevel = resolve_git_toplevel(workdir)
    if toplevel is not None:
        return toplevel
    _log(f"no git root found for {workdir}; using it as the trace root")
    return workdir


def excluded_change_paths(workdir: Path, paths: Iterable[Path]) -> set[str]:
    """Spellings under which ``paths`` could appear in the working-tree status of ``workdir``."""
    toplevel = resolve_git_toplevel(workdir)
    excluded: set[str] = set()
    for path in paths:
        excluded.add(str(path))
        if toplevel is None:
            continue
        try:
            relative = Path(path).resolve().relative_to(toplevel.resolve())
        except (OSError, ValueError):
            continue
        excluded.add(relative.as_posix())
    return excluded
