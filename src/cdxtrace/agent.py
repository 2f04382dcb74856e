"""Agent capability backed by the `codex exec --json` command line."""

from __future__ import annotations

import json
import os
import subprocess
import threading
from typing import Any, Callable, Iterator

from cdxtrace.constants import (
    AGENT_STDERR_CAPTURE_CHARS,
    CODEX_APPROVAL_POLICY,
    CODEX_SANDBOX_MODE,
)
from cdxtrace.events import UnknownEventError, decode_event_line
from cdxtrace.models import (
    AgentProcessError,
    LifecycleEvent,
    SessionConfig,
    StreamError,
    TurnFailed,
)
from cdxtrace.utils import _compact_log_text, _log


def build_codex_command(config: SessionConfig) -> list[str]:
    command = [
        *config.codex_command,
        "exec",
        "--json",
        "--sandbox",
        CODEX_SANDBOX_MODE,
        "--cd",
        str(config.workdir),
        "--config",
        f'approval_policy="{CODEX_APPROVAL_POLICY}"',
    ]
    if config.model:
        command.extend(["--model", config.model])
    if config.reasoning_effort:
        command.extend(["--config", f'model_reasoning_effort="{config.reasoning_effort}"'])
    if config.skip_git_repo_check:
        command.append("--skip-git-repo-check")
    if config.resume_session_id:
        command.extend(["resume", config.resume_session_id])
    return command


class _StderrTail:
    def __init__(self, limit: int = AGENT_STDERR_CAPTURE_CHARS) -> None:
        self._limit = limit
        self._text = ""
        self._lock = threading.Lock()

    def pump(self, stream: Any) -> None:
        if stream is None:
            return
        try:
            for line in iter(stream.readline, ""):
                with self._lock:
                    self._text = (self._text + line)[-self._limit:]
        finally:
            try:
                stream.close()
            except Exception:
                pass

    def text(self) -> str:
        with self._lock:
            return self._text.strip()


class CodexAgent:
    """Starts or resumes one codex session and streams its lifecycle events."""

    def __init__(
        self,
        config: SessionConfig,
        *,
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self.config = config
        self._popen = popen

    def run_streamed(self, prompt: str) -> Iterator[LifecycleEvent]:
        command = build_codex_command(self.config)
        action = "resuming" if self.config.resume_session_id else "starting"
        _log(f"{action} codex session in {self.config.workdir}")
        try:
            process = self._popen(
                command,
                cwd=str(self.config.workdir),
                shell=False,
                text=True,
                encoding="utf-8",
                errors="replace",
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=1,
                env=os.environ.copy(),
            )
        except FileNotFoundError as exc:
            if exc.filename == str(self.config.workdir):
                raise AgentProcessError(f"working directory does not exist: {self.config.workdir}") from exc
            raise AgentProcessError(f"codex executable not found: {command[0]}") from exc
        except OSError as exc:
            raise AgentProcessError(f"codex process could not be started: {exc}") from exc

        if process.stdin is not None:
            try:
                process.stdin.write(prompt)
                process.stdin.flush()
            except BrokenPipeError:
                pass
            finally:
                try:
                    process.stdin.close()
                except BrokenPipeError:
                    pass
        return self._events(process)

    def _events(self, process: Any) -> Iterator[LifecycleEvent]:
        stderr_tail = _StderrTail()
        stderr_thread = threading.Thread(target=stderr_tail.pump, args=(process.stderr,), daemon=True)
        stderr_thread.start()
        returncode: int | None = None
        failure_reported = False
        try:
            if process.stdout is not None:
                for line in iter(process.stdout.readline, ""):
                    event = _decode_or_skip(line)
                    if event is None:
                        continue
                    if isinstance(event, (TurnFailed, StreamError)):
                        failure_reported = True
                    yield event
            returncode = process.wait()
        finally:
            if returncode is None and process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=2)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            stderr_thread.join(timeout=2)

        if returncode == 0:
            return
        if failure_reported:
            _log(f"codex exec exited with code {returncode} after reporting a failure")
            return
        detail = stderr_tail.text()
        message = f"codex exec exited with code {returncode}"
        if detail:
            message = f"{message}: {_compact_log_text(detail, limit=1000)}"
        raise AgentProcessError(message)


def _decode_or_skip(line: str) -> LifecycleEvent | None:
    try:
        return decode_event_line(line)
    except json.JSONDecodeError:
        _log(f"skipping non-JSON agent output: {_compact_log_text(line, limit=160)}")
    except UnknownEventError as exc:
        _log(f"skipping agent event: {exc}")
    except ValueError as exc:
        _log(f"skipping malformed agent event: {exc}")
    return None
