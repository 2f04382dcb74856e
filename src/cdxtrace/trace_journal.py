"""Trace journal — the per-repository `.agent-trace.json` file.

The journal is read in full, extended by one entry and rewritten in full. An
exclusive lock file serializes that cycle across processes, and the rewrite goes
through a temporary sibling plus ``os.replace`` so readers never observe a
partially written document.
"""

from __future__ import annotations

import json
import os
import socket
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from cdxtrace.changes import resolve_trace_root
from cdxtrace.constants import (
    TRACE_FILE_NAME,
    TRACE_LOCK_POLL_SECONDS,
    TRACE_LOCK_RETRY_SECONDS,
    TRACE_LOCK_STALE_SECONDS,
    TRACE_LOCK_SUFFIX,
    TRACE_SCHEMA_VERSION,
)
from cdxtrace.models import TraceEntry, TraceFile, TraceJournalError
from cdxtrace.utils import _log, _utc_now, _write_json_atomic


def resolve_trace_file_path(workdir: Path) -> Path:
    return resolve_trace_root(workdir) / TRACE_FILE_NAME


def trace_lock_path(trace_path: Path) -> Path:
    return trace_path.with_name(f"{trace_path.name}{TRACE_LOCK_SUFFIX}")


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


def _write_lock_payload_exclusive(lock_path: Path, payload: dict[str, Any]) -> None:
    rendered = json.dumps(payload, indent=2) + "\n"
    fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(rendered)


def _lock_is_stale(lock_path: Path, *, stale_seconds: float) -> bool:
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return False
    return age > stale_seconds


def _claim_stale_lock(lock_path: Path, *, owner: str, stale_seconds: float) -> bool:
    """Move a stale lock aside so exactly one waiter can take over.

    The rename is the claim: a second waiter that judged the same lock stale
    finds it gone and retries. If the renamed file turns out to be fresh (another
    waiter already replaced the stale lock), it is linked back into place.
    """
    stale_path = lock_path.with_name(f"{lock_path.name}.stale.{owner}")
    try:
        os.replace(lock_path, stale_path)
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise TraceJournalError(f"failed to replace stale trace lock at {lock_path}: {exc}") from exc
    try:
        if _lock_is_stale(stale_path, stale_seconds=stale_seconds):
            _log(f"replaced stale trace lock at {lock_path}")
            return True
        try:
            os.link(stale_path, lock_path)
        except FileExistsError:
            _log(f"trace lock at {lock_path} was taken over while restoring it")
        except OSError:
            os.replace(stale_path, lock_path)
        return False
    finally:
        stale_path.unlink(missing_ok=True)


@contextmanager
def _exclusive_lock(
    lock_path: Path,
    *,
    timeout_seconds: float = TRACE_LOCK_RETRY_SECONDS,
    stale_seconds: float = TRACE_LOCK_STALE_SECONDS,
) -> Iterator[None]:
    owner = uuid.uuid4().hex
    payload = {
        "pid": os.getpid(),
        "host": socket.gethostname(),
        "owner": owner,
        "started_at": _utc_now(),
    }
    deadline = time.monotonic() + timeout_seconds
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    while True:
        try:
            _write_lock_payload_exclusive(lock_path, payload)
            break
        except FileExistsError:
            if _lock_is_stale(lock_path, stale_seconds=stale_seconds):
                _claim_stale_lock(lock_path, owner=owner, stale_seconds=stale_seconds)
                continue
            if time.monotonic() >= deadline:
                raise TraceJournalError(f"timed out waiting for trace lock at {lock_path}")
            time.sleep(TRACE_LOCK_POLL_SECONDS)
        except OSError as exc:
            raise TraceJournalError(f"failed to acquire trace lock at {lock_path}: {exc}") from exc
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


class TraceJournal:
    """Storage for trace entries with two operations: read everything, append one."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return trace_lock_path(self.path)

    def _load_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"version": TRACE_SCHEMA_VERSION, "traces": []}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise TraceJournalError(f"trace file is not valid JSON: {self.path}: {exc}") from exc
        except OSError as exc:
            raise TraceJournalError(f"trace file could not be read: {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise TraceJournalError(f"trace file must contain an object: {self.path}")
        traces = payload.get("traces")
        if traces is None:
            payload["traces"] = []
        elif not isinstance(traces, list):
            raise TraceJournalError(f"trace file 'traces' must be a list: {self.path}")
        if not str(payload.get("version", "")).strip():
            payload["version"] = TRACE_SCHEMA_VERSION
        return payload

    def read_all(self) -> TraceFile:
        document = self._load_document()
        try:
            return TraceFile.from_payload(document)
        except ValueError as exc:
            raise TraceJournalError(f"trace file has an invalid entry: {self.path}: {exc}") from exc

    def append(self, entry: TraceEntry) -> None:
        with _exclusive_lock(self.lock_path):
            document = self._load_document()
            # Entries already on disk are kept as written, including fields this version does not model.
            document["traces"].append(entry.to_payload())
            try:
                _write_json_atomic(self.path, document)
            except OSError as exc:
                raise TraceJournalError(f"trace file could not be written: {self.path}: {exc}") from exc
        _log(f"trace appended to {self.path} ({len(document['traces'])} entries)")


def append_trace(trace_path: Path, entry: TraceEntry) -> None:
    TraceJournal(trace_path).append(entry)
