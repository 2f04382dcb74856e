"""cdxtrace data models — exceptions, lifecycle events, and run/trace records."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from cdxtrace.constants import (
    CODING_AGENT_NAME,
    DEFAULT_CODEX_COMMAND,
    FILE_CHANGE_KINDS,
    REASONING_EFFORTS,
    RUN_STATUS_COMPLETED,
    RUN_STATUSES,
    TRACE_SCHEMA_VERSION,
)


def _coerce_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value) if value is not None else default


def _coerce_int(value: Any, *, default: int = 0) -> int:
    try:
        return int(value)
    except Exception:
        return default


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class ConfigError(RuntimeError):
    """Raised when run options are missing or invalid before a session starts."""


class AgentProcessError(RuntimeError):
    """Raised when the agent process cannot be started or exits abnormally."""


class TraceJournalError(RuntimeError):
    """Raised when the trace journal cannot be read or written."""


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionConfig:
    workdir: Path
    prompt: str
    resume_session_id: str | None = None
    instructions_path: Path | None = None
    trace_file: Path | None = None
    agent_id: str | None = None
    agent_type: str | None = None
    model: str | None = None
    reasoning_effort: str | None = None
    codex_command: tuple[str, ...] = DEFAULT_CODEX_COMMAND
    skip_git_repo_check: bool = False
    sessions_root: Path | None = None

    def __post_init__(self) -> None:
        if not Path(self.workdir).is_absolute():
            raise ConfigError(f"workdir must be an absolute path, got '{self.workdir}'")
        if not str(self.prompt).strip():
            raise ConfigError("prompt is required")
        if self.reasoning_effort is not None and self.reasoning_effort not in REASONING_EFFORTS:
            raise ConfigError(
                f"reasoning effort must be one of {'|'.join(REASONING_EFFORTS)}, got '{self.reasoning_effort}'"
            )
        if not self.codex_command:
            raise ConfigError("codex command must not be empty")


# ---------------------------------------------------------------------------
# Lifecycle events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileChange:
    path: str
    kind: str

    def __post_init__(self) -> None:
        if self.kind not in FILE_CHANGE_KINDS:
            raise ValueError(f"unsupported file change kind '{self.kind}' for {self.path}")

    def to_payload(self) -> dict[str, str]:
        return {"path": self.path, "kind": self.kind}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FileChange":
        return cls(path=str(payload.get("path", "")), kind=str(payload.get("kind", "")))


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class FileChangeItem:
    changes: tuple[FileChange, ...]


@dataclass(frozen=True)
class CommandExecutionItem:
    command: str
    exit_code: int | None = None
    status: str = ""


@dataclass(frozen=True)
class AgentMessageItem:
    text: str


@dataclass(frozen=True)
class OtherItem:
    """Item kinds the accumulator has no use for (reasoning, todo lists, tool calls)."""

    item_type: str


ThreadItem = Union[FileChangeItem, CommandExecutionItem, AgentMessageItem, OtherItem]


@dataclass(frozen=True)
class SessionStarted:
    session_id: str


@dataclass(frozen=True)
class TurnStarted:
    pass


@dataclass(frozen=True)
class TurnCompleted:
    usage: Usage


@dataclass(frozen=True)
class TurnFailed:
    message: str


@dataclass(frozen=True)
class ItemStarted:
    item: ThreadItem


@dataclass(frozen=True)
class ItemUpdated:
    item: ThreadItem


@dataclass(frozen=True)
class ItemCompleted:
    item: ThreadItem


@dataclass(frozen=True)
class StreamError:
    message: str


LifecycleEvent = Union[
    SessionStarted,
    TurnStarted,
    TurnCompleted,
    TurnFailed,
    ItemStarted,
    ItemUpdated,
    ItemCompleted,
    StreamError,
]

LIFECYCLE_EVENT_TYPES: tuple[type, ...] = (
    SessionStarted,
    TurnStarted,
    TurnCompleted,
    TurnFailed,
    ItemStarted,
    ItemUpdated,
    ItemCompleted,
    StreamError,
)

THREAD_ITEM_TYPES: tuple[type, ...] = (
    FileChangeItem,
    CommandExecutionItem,
    AgentMessageItem,
    OtherItem,
)


# ---------------------------------------------------------------------------
# Accumulated state and outputs
# ---------------------------------------------------------------------------


@dataclass
class EventAccumulator:
    session_id: str | None = None
    files_changed: list[FileChange] = field(default_factory=list)
    final_response: str = ""
    status: str = RUN_STATUS_COMPLETED
    error: str | None = None
    usage: Usage | None = None


@dataclass(frozen=True)
class RunResult:
    session_id: str
    status: str
    files_changed: tuple[FileChange, ...]
    final_response: str
    duration_ms: int
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "session_id": self.session_id,
            "status": self.status,
            "files_changed": [change.to_payload() for change in self.files_changed],
            "final_response": self.final_response,
        }
        if self.error is not None:
            payload["error"] = self.error
        payload["duration_ms"] = self.duration_ms
        return payload


@dataclass(frozen=True)
class TraceEntry:
    session_id: str
    status: str
    files_changed: tuple[FileChange, ...]
    timestamp: str
    duration_ms: int
    agent_id: str = ""
    agent_type: str = ""
    transcript: str = ""
    error: str | None = None
    coding_agent: str = CODING_AGENT_NAME

    def __post_init__(self) -> None:
        if self.status not in RUN_STATUSES:
            raise ValueError(f"unsupported trace status '{self.status}'")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "coding_agent": self.coding_agent,
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "agent_type": self.agent_type,
            "status": self.status,
            "files_changed": [change.to_payload() for change in self.files_changed],
        }
        if self.error is not None:
            payload["error"] = self.error
        payload["timestamp"] = self.timestamp
        payload["duration_ms"] = self.duration_ms
        payload["transcript"] = self.transcript
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TraceEntry":
        raw_changes = payload.get("files_changed")
        changes = tuple(
            FileChange.from_payload(change)
            for change in (raw_changes if isinstance(raw_changes, list) else [])
            if isinstance(change, dict)
        )
        error = payload.get("error")
        return cls(
            coding_agent=str(payload.get("coding_agent", CODING_AGENT_NAME)),
            session_id=str(payload.get("session_id", "")),
            agent_id=str(payload.get("agent_id", "")),
            agent_type=str(payload.get("agent_type", "")),
            status=str(payload.get("status", "")),
            files_changed=changes,
            error=None if error is None else str(error),
            timestamp=str(payload.get("timestamp", "")),
            duration_ms=_coerce_int(payload.get("duration_ms")),
            transcript=str(payload.get("transcript", "")),
        )


@dataclass(frozen=True)
class TraceFile:
    version: str = TRACE_SCHEMA_VERSION
    traces: tuple[TraceEntry, ...] = ()

    def with_entry(self, entry: TraceEntry) -> "TraceFile":
        return TraceFile(version=self.version, traces=(*self.traces, entry))

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "traces": [entry.to_payload() for entry in self.traces],
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TraceFile":
        raw_traces = payload.get("traces")
        traces = tuple(
            TraceEntry.from_payload(entry)
            for entry in (raw_traces if isinstance(raw_traces, list) else [])
            if isinstance(entry, dict)
        )
        version = str(payload.get("version", "")).strip() or TRACE_SCHEMA_VERSION
        return cls(version=version, traces=traces)
