"""Session orchestrator: run one agent session, reconcile changes, record a trace.

A run moves through ``starting -> streaming -> reconciling -> persisting -> done``.
Exceptions are not caught here; the caller uses ``crash_result`` and
``crash_entry`` to report whatever was observed before the failure.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from cdxtrace.accumulator import create_accumulator, handle_event
from cdxtrace.agent import CodexAgent
from cdxtrace.changes import detect_git_changes, excluded_change_paths, merge_file_changes
from cdxtrace.constants import (
    INSTRUCTIONS_SEPARATOR,
    RUN_STATUS_FAILED,
    UNKNOWN_SESSION_ID,
)
from cdxtrace.models import (
    FileChange,
    LifecycleEvent,
    RunResult,
    SessionConfig,
    TraceEntry,
)
from cdxtrace.trace_journal import TraceJournal, resolve_trace_file_path
from cdxtrace.transcripts import locate_transcript
from cdxtrace.utils import _log, _utc_now


def build_prompt(config: SessionConfig) -> str:
    if config.instructions_path is None:
        return config.prompt
    instructions = Path(config.instructions_path).read_text(encoding="utf-8")
    return f"{instructions}{INSTRUCTIONS_SEPARATOR}{config.prompt}"


class SessionRun:
    def __init__(
        self,
        config: SessionConfig,
        *,
        agent_factory: Callable[[SessionConfig], Any] = CodexAgent,
        journal_factory: Callable[[Path], Any] = TraceJournal,
        detect_changes: Callable[[Path], Iterable[FileChange]] = detect_git_changes,
        locate_transcript: Callable[..., str] = locate_transcript,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.accumulator = create_accumulator()
        self.phase = "starting"
        self._agent_factory = agent_factory
        self._journal_factory = journal_factory
        self._detect_changes = detect_changes
        self._locate_transcript = locate_transcript
        self._clock = clock
        self._started_at = clock()
        self._trace_path: Path | None = None

    def elapsed_ms(self) -> int:
        return int(round((self._clock() - self._started_at) * 1000))

    @property
    def session_id(self) -> str:
        return self.accumulator.session_id or UNKNOWN_SESSION_ID

    def trace_path(self) -> Path:
        if self._trace_path is None:
            if self.config.trace_file is not None:
                self._trace_path = Path(self.config.trace_file)
            else:
                self._trace_path = resolve_trace_file_path(self.config.workdir)
        return self._trace_path

    def _transcript(self) -> str:
        if not self.accumulator.session_id:
            return ""
        return self._locate_transcript(self.accumulator.session_id, self.config.sessions_root)

    # -- phases --------------------------------------------------------------

    def _start(self) -> Iterator[LifecycleEvent]:
        self.phase = "starting"
        prompt = build_prompt(self.config)
        agent = self._agent_factory(self.config)
        return agent.run_streamed(prompt)

    def _stream(self, events: Iterator[LifecycleEvent]) -> None:
        self.phase = "streaming"
        try:
            for event in events:
                handle_event(self.accumulator, event)
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def _reconcile(self) -> list[FileChange]:
        self.phase = "reconciling"
        trace_path = self.trace_path()
        journal = self._journal_factory(trace_path)
        lock_path = getattr(journal, "lock_path", None)
        own_paths = [trace_path] if lock_path is None else [trace_path, lock_path]
        excluded = excluded_change_paths(self.config.workdir, own_paths)
        detected = list(self._detect_changes(self.config.workdir))
        merged = merge_file_changes(self.accumulator.files_changed, detected, excluded)
        recovered = len(merged) - len(self.accumulator.files_changed)
        if recovered:
            _log(f"working tree shows {recovered} change(s) the agent did not report")
        return merged

    def _persist(self, files_changed: list[FileChange], duration_ms: int) -> RunResult:
        self.phase = "persisting"
        acc = self.accumulator
        result = RunResult(
            session_id=self.session_id,
            status=acc.status,
            files_changed=tuple(files_changed),
            final_response=acc.final_response,
            error=acc.error,
            duration_ms=duration_ms,
        )
        entry = TraceEntry(
            session_id=self.session_id,
            agent_id=self.config.agent_id or "",
            agent_type=self.config.agent_type or "",
            status=acc.status,
            files_changed=tuple(files_changed),
            error=acc.error,
            timestamp=_utc_now(),
            duration_ms=duration_ms,
            transcript=self._transcript(),
        )
        self._journal_factory(self.trace_path()).append(entry)
        return result

    def run(self) -> RunResult:
        events = self._start()
        self._stream(events)
        duration_ms = self.elapsed_ms()
        files_changed = self._reconcile()
        result = self._persist(files_changed, duration_ms)
        self.phase = "done"
        _log(f"session {result.session_id} {result.status} in {result.duration_ms}ms")
        return result

    # -- crash reporting -----------------------------------------------------

    def crash_result(self, exc: BaseException, *, duration_ms: int | None = None) -> RunResult:
        return RunResult(
            session_id=self.session_id,
            status=RUN_STATUS_FAILED,
            files_changed=(),
            final_response="",
            error=_error_text(exc),
            duration_ms=self.elapsed_ms() if duration_ms is None else duration_ms,
        )

    def crash_entry(self, result: RunResult) -> TraceEntry:
        return TraceEntry(
            session_id=result.session_id,
            agent_id=self.config.agent_id or "",
            agent_type=self.config.agent_type or "",
            status=RUN_STATUS_FAILED,
            files_changed=(),
            error=result.error,
            timestamp=_utc_now(),
            duration_ms=result.duration_ms,
            transcript=self._transcript(),
        )

    def record_crash(self, result: RunResult) -> None:
        self._journal_factory(self.trace_path()).append(self.crash_entry(result))


def _error_text(exc: BaseException) -> str:
    return str(exc).strip() or type(exc).__name__


def run_session(config: SessionConfig, **collaborators: Any) -> RunResult:
    return SessionRun(config, **collaborators).run()
