"""Fold lifecycle events into an EventAccumulator.

Every event variant in ``LIFECYCLE_EVENT_TYPES`` has exactly one handler in
``_EVENT_HANDLERS``; adding a variant without a handler is caught by the test
suite rather than silently ignored. Once ``status`` is ``failed`` nothing here
sets it back.
"""

from __future__ import annotations

from typing import Callable

from cdxtrace.constants import RUN_STATUS_FAILED
from cdxtrace.models import (
    AgentMessageItem,
    CommandExecutionItem,
    EventAccumulator,
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
)
from cdxtrace.utils import _compact_log_text, _log


def create_accumulator() -> EventAccumulator:
    return EventAccumulator()


def _mark_failed(acc: EventAccumulator, message: str) -> None:
    acc.status = RUN_STATUS_FAILED
    acc.error = message


def _on_session_started(acc: EventAccumulator, event: SessionStarted) -> None:
    if not event.session_id:
        _log("session started without an id")
        return
    if acc.session_id is not None:
        if event.session_id != acc.session_id:
            _log(f"ignoring repeated session id {event.session_id} (keeping {acc.session_id})")
        return
    acc.session_id = event.session_id
    _log(f"session: {event.session_id}")


def _on_turn_started(acc: EventAccumulator, event: TurnStarted) -> None:
    _log("turn started")


def _on_turn_completed(acc: EventAccumulator, event: TurnCompleted) -> None:
    acc.usage = event.usage
    _log(
        f"turn completed (tokens: in={event.usage.input_tokens} out={event.usage.output_tokens})"
    )


def _on_turn_failed(acc: EventAccumulator, event: TurnFailed) -> None:
    _mark_failed(acc, event.message)
    _log(f"turn failed: {event.message}")


def _on_item_progress(acc: EventAccumulator, event: ItemStarted | ItemUpdated) -> None:
    if isinstance(event, ItemStarted) and isinstance(event.item, CommandExecutionItem):
        _log(f"exec: {event.item.command}")


def _on_stream_error(acc: EventAccumulator, event: StreamError) -> None:
    _mark_failed(acc, event.message)
    _log(f"error: {event.message}")


def _on_file_change_completed(acc: EventAccumulator, item: FileChangeItem) -> None:
    acc.files_changed.extend(item.changes)
    for change in item.changes:
        _log(f"file {change.kind}: {change.path}")


def _on_command_completed(acc: EventAccumulator, item: CommandExecutionItem) -> None:
    exit_code = "?" if item.exit_code is None else item.exit_code
    _log(f"exec done: {_compact_log_text(item.command)} (exit={exit_code})")


def _on_agent_message_completed(acc: EventAccumulator, item: AgentMessageItem) -> None:
    acc.final_response = item.text


def _on_other_item_completed(acc: EventAccumulator, item: OtherItem) -> None:
    return None


_ITEM_COMPLETED_HANDLERS: dict[type, Callable[[EventAccumulator, ThreadItem], None]] = {
    FileChangeItem: _on_file_change_completed,
    CommandExecutionItem: _on_command_completed,
    AgentMessageItem: _on_agent_message_completed,
    OtherItem: _on_other_item_completed,
}


def _on_item_completed(acc: EventAccumulator, event: ItemCompleted) -> None:
    _ITEM_COMPLETED_HANDLERS[type(event.item)](acc, event.item)


_EVENT_HANDLERS: dict[type, Callable[[EventAccumulator, LifecycleEvent], None]] = {
    SessionStarted: _on_session_started,
    TurnStarted: _on_turn_started,
    TurnCompleted: _on_turn_completed,
    TurnFailed: _on_turn_failed,
    ItemStarted: _on_item_progress,
    ItemUpdated: _on_item_progress,
    ItemCompleted: _on_item_completed,
    StreamError: _on_stream_error,
}


def handle_event(acc: EventAccumulator, event: LifecycleEvent) -> EventAccumulator:
    _EVENT_HANDLERS[type(event)](acc, event)
    return acc
