from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from cdxtrace.constants import (
    CONFIG_ENV_VAR,
    DEFAULT_CODEX_COMMAND,
    DEFAULT_CONFIG_RELATIVE_PATH,
    LOG_FILE_ENV_VAR,
    REASONING_EFFORTS,
)
from cdxtrace.models import _coerce_bool, _optional_text
from cdxtrace.utils import _log


@dataclass(frozen=True)
class CdxConfig:
    codex_command: tuple[str, ...] = DEFAULT_CODEX_COMMAND
    model: str | None = None
    reasoning_effort: str | None = None
    agent_type: str | None = None
    skip_git_repo_check: bool = False
    sessions_dir: Path | None = None
    log_file: Path | None = None


def _resolve_config_path(env: Mapping[str, str]) -> Path:
    override = str(env.get(CONFIG_ENV_VAR, "")).strip()
    if override:
        return Path(override).expanduser()
    return Path.home().joinpath(*DEFAULT_CONFIG_RELATIVE_PATH)


def _load_config_payload(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        _log(f"ignoring unreadable config {config_path}: {exc}")
        return {}
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        _log(f"ignoring config {config_path}: top level must be a mapping")
        return {}
    return loaded


def _parse_codex_command(value: Any) -> tuple[str, ...]:
    if isinstance(value, list):
        parts = tuple(str(part) for part in value if str(part).strip())
    elif isinstance(value, str):
        try:
            parts = tuple(shlex.split(value))
        except ValueError as exc:
            _log(f"ignoring codex_command '{value}': {exc}")
            parts = ()
    else:
        parts = ()
    return parts or DEFAULT_CODEX_COMMAND


def _parse_reasoning_effort(value: Any) -> str | None:
    effort = _optional_text(value)
    if effort is None:
        return None
    effort = effort.lower()
    if effort not in REASONING_EFFORTS:
        _log(f"ignoring reasoning_effort '{effort}' in config; expected one of {'|'.join(REASONING_EFFORTS)}")
        return None
    return effort


def _optional_path(value: Any) -> Path | None:
    text = _optional_text(value)
    if text is None:
        return None
    return Path(text).expanduser()


def load_cdx_config(env: Mapping[str, str] | None = None) -> CdxConfig:
    environ = os.environ if env is None else env
    payload = _load_config_payload(_resolve_config_path(environ))
    log_file = _optional_path(payload.get("log_file"))
    if log_file is None:
        log_file = _optional_path(environ.get(LOG_FILE_ENV_VAR))
    return CdxConfig(
        codex_command=_parse_codex_command(payload.get("codex_command")),
        model=_optional_text(payload.get("model")),
        reasoning_effort=_parse_reasoning_effort(payload.get("reasoning_effort")),
        agent_type=_optional_text(payload.get("agent_type")),
        skip_git_repo_check=_coerce_bool(payload.get("skip_git_repo_check"), default=False),
        sessions_dir=_optional_path(payload.get("sessions_dir")),
        log_file=log_file,
    )
