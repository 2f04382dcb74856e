"""cdxtrace constants — trace schema, file names, agent defaults, and limits."""

from __future__ import annotations

CODING_AGENT_NAME = "codex"
TRACE_SCHEMA_VERSION = "0.1.0"
TRACE_FILE_NAME = ".agent-trace.json"
TRACE_LOCK_SUFFIX = ".lock"
TRACE_LOCK_STALE_SECONDS = 30
TRACE_LOCK_RETRY_SECONDS = 10.0
TRACE_LOCK_POLL_SECONDS = 0.05

UNKNOWN_SESSION_ID = "unknown"

RUN_STATUS_COMPLETED = "completed"
RUN_STATUS_FAILED = "failed"
RUN_STATUSES = (RUN_STATUS_COMPLETED, RUN_STATUS_FAILED)

FILE_CHANGE_KINDS = ("add", "delete", "update")
REASONING_EFFORTS = ("low", "medium", "high", "xhigh")

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_CRASHED = 2

LOG_PREFIX = "[cdx]"

DEFAULT_CODEX_COMMAND = ("codex",)
CODEX_SANDBOX_MODE = "workspace-write"
CODEX_APPROVAL_POLICY = "never"
AGENT_STDERR_CAPTURE_CHARS = 4000

INSTRUCTIONS_SEPARATOR = "\n\n---\n\n"

TRANSCRIPT_SEARCH_MAX_DEPTH = 4
TRANSCRIPT_SUFFIX = ".jsonl"

DEFAULT_CONFIG_RELATIVE_PATH = (".config", "cdx", "config.yaml")
CONFIG_ENV_VAR = "CDX_CONFIG"
LOG_FILE_ENV_VAR = "CDX_LOG_FILE"
CODEX_HOME_ENV_VAR = "CODEX_HOME"
