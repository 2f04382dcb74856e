"""Decode `codex exec --json` output lines into typed lifecycle events."""

from __future__ import annotations

import json
from typing import Any, Callable

from cdxtrace.constants import FILE_CHANGE_KINDS
from cdxtrace.models import (
    AgentMessageItem,
    CommandExecutionItem,
    FileChange,
    FileChangeItem,
    ItemCompleted,
    ItemStarted,
    ItemUpdated,
    LifecycleEvent,
    OtherItem,
    SessionStarted,
    StreamError,
    ThreadItem,
    TurnCompleted,
    TurnFailed,
    TurnStarted,
    Usage,
    _coerce_int,
)


class UnknownEventError(ValueError):
    """Raised for JSON objects whose `type` is not a lifecycle event."""


def _error_message(payload: dict[str, Any]) -> str:
    error = payload.get("error")
    if isinstance(error, dict):
        return str(error.get("message", "")).strip() or "unknown error"
    if error is not None:
        return str(error).strip() or "unknown error"
    return str(payload.get("message", "")).strip() or "unknown error"


def _decode_file_changes(item: dict[str, Any]) -> FileChangeItem:
    raw_changes = item.get("changes")
    changes: list[FileChange] = []
    for raw in raw_changes if isinstance(raw_changes, list) else []:
        if not isinstance(raw, dict):
            continue
        path = str(raw.get("path", "")).strip()
        kind = str(raw.get("kind", "")).strip()
        if not path or kind not in FILE_CHANGE_KINDS:
            continue
        changes.append(FileChange(path=path, kind=kind))
    return FileChangeItem(changes=tuple(changes))


def _decode_command_execution(item: dict[str, Any]) -> CommandExecutionItem:
    exit_code = item.get("exit_code")
    return CommandExecutionItem(
        command=str(item.get("command", "")),
        exit_code=None if exit_code is None else _coerce_int(exit_code),
        status=str(item.get("status", "") or ""),
    )


def decode_item(item: Any) -> ThreadItem:
    if not isinstance(item, dict):
        return OtherItem(item_type="")
    item_type = str(item.get("type", ""))
    if item_type == "file_change":
        return _decode_file_changes(item)
    if item_type == "command_execution":
        return _decode_command_execution(item)
    if item_type == "agent_message":
        return AgentMessageItem(text=str(item.get("text", "") or ""))
    return OtherItem(item_type=item_type)


def _decode_usage(payload: dict[str, Any]) -> Usage:
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        usage = {}
    return Usage(
        input_tokens=_coerce_int(usage.get("input_tokens")),
        cached_input_tokens=_coerce_int(usage.get("cached_input_tokens")),
        output_tokens=_coerce_int(usage.get("output_tokens")),
    )


_EVENT_DECODERS: dict[str, Callable[[dict[str, Any]], LifecycleEvent]] = {
    "thread.started": lambda payload: SessionStarted(session_id=str(payload.get("thread_id", "")).strip()),
    "turn.started": lambda _payload: TurnStarted(),
    "turn.completed": lambda payload: TurnCompleted(usage=_decode_usage(payload)),
    "turn.failed": lambda payload: TurnFailed(message=_error_message(payload)),
    "item.started": lambda payload: ItemStarted(item=decode_item(payload.get("item"))),
    "item.updated": lambda payload: ItemUpdated(item=decode_item(payload.get("item"))),
    "item.completed": lambda payload: ItemCompleted(item=decode_item(payload.get("item"))),
    "error": lambda payload: StreamError(message=_error_message(payload)),
}


def decode_event(payload: dict[str, Any]) -> LifecycleEvent:
    event_type = str(payload.get("type", ""))
    decoder = _EVENT_DECODERS.get(event_type)
    if decoder is None:
        raise UnknownEventError(f"unknown event type '{event_type}'")
    return decoder(payload)


def decode_event_line(line: str) -> LifecycleEvent | None:
    """Decode one stdout line; returns None for blank lines.

    Raises ``json.JSONDecodeError`` for non-JSON text, ``UnknownEventError`` for
    unrecognized event types, and ``ValueError`` for JSON that is not an object.
    """
    text = line.strip()
    if not text:
        return None
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError(f"event line is not a JSON object: {text[:160]}")
    return decode_event(payload)
