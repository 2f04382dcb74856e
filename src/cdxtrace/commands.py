from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from cdxtrace.config import CdxConfig, load_cdx_config
from cdxtrace.constants import (
    EXIT_COMPLETED,
    EXIT_CRASHED,
    EXIT_FAILED,
    REASONING_EFFORTS,
    RUN_STATUS_COMPLETED,
)
from cdxtrace.models import ConfigError, RunResult, SessionConfig
from cdxtrace.session import SessionRun
from cdxtrace.utils import _configure_log_file, _log


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--workdir", "-w", default=None, help="Working directory (required)")
    parser.add_argument(
        "--thread-id",
        "--session-id",
        dest="thread_id",
        default=None,
        help="Resume an existing session",
    )
    parser.add_argument("--instructions", "-i", default=None, help="Instructions file prepended to the prompt")
    parser.add_argument(
        "--trace-file",
        dest="trace_file",
        default=None,
        help="Trace output path (default: <git root>/.agent-trace.json)",
    )
    parser.add_argument("--agent-id", dest="agent_id", default=None, help="Agent ID recorded in the trace")
    parser.add_argument("--agent-type", dest="agent_type", default=None, help="Agent type (freeform)")
    parser.add_argument("--model", "-m", default=None, help="Model override")
    parser.add_argument(
        "--thinking",
        "--reasoning-effort",
        dest="reasoning_effort",
        default=None,
        help=f"Model reasoning effort ({'|'.join(REASONING_EFFORTS)})",
    )
    parser.add_argument("prompt", nargs="*", help="Prompt words, joined by spaces")


def _build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cdx run", add_help=False, exit_on_error=False)
    _add_run_arguments(parser)
    return parser


def _resolve_path(value: str | None) -> Path | None:
    if value is None:
        return None
    return Path(value).expanduser().resolve()


def _session_config_from_args(
    args: argparse.Namespace,
    unknown: list[str],
    cdx_config: CdxConfig | None = None,
) -> SessionConfig:
    defaults = cdx_config or CdxConfig()
    # Unrecognized flags are ignored; stray words still belong to the prompt.
    words = [*args.prompt, *(token for token in unknown if not token.startswith("-"))]

    if args.reasoning_effort is not None and args.reasoning_effort not in REASONING_EFFORTS:
        raise ConfigError(f"--thinking must be one of {'|'.join(REASONING_EFFORTS)}")
    if not args.workdir:
        raise ConfigError("--workdir (-w) is required")
    workdir = _resolve_path(args.workdir)
    if not workdir.is_dir():
        raise ConfigError(f"--workdir is not a directory: {workdir}")
    prompt = " ".join(words)
    if not prompt.strip():
        raise ConfigError("prompt is required")

    return SessionConfig(
        workdir=workdir,
        prompt=prompt,
        resume_session_id=args.thread_id or None,
        instructions_path=_resolve_path(args.instructions),
        trace_file=_resolve_path(args.trace_file),
        agent_id=args.agent_id,
        agent_type=args.agent_type or defaults.agent_type,
        model=args.model or defaults.model,
        reasoning_effort=args.reasoning_effort or defaults.reasoning_effort,
        codex_command=defaults.codex_command,
        skip_git_repo_check=defaults.skip_git_repo_check,
        sessions_root=defaults.sessions_dir,
    )


def parse_run_args(argv: list[str], cdx_config: CdxConfig | None = None) -> SessionConfig:
    try:
        args, unknown = _build_run_parser().parse_known_args(argv)
    except argparse.ArgumentError as exc:
        raise ConfigError(str(exc)) from exc
    return _session_config_from_args(args, unknown, cdx_config)


def _emit_result(result: RunResult) -> None:
    sys.stdout.write(json.dumps(result.to_payload(), indent=2, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _handle_crash(run: SessionRun, exc: Exception) -> int:
    _log(f"fatal: {exc}")
    _log(f"crashed during {run.phase}")
    result = run.crash_result(exc)
    _emit_result(result)
    try:
        run.record_crash(result)
    except Exception as trace_exc:
        _log(f"could not record crash trace: {trace_exc}")
    return EXIT_CRASHED


def _cmd_run(args: argparse.Namespace, unknown: list[str]) -> int:
    cdx_config = load_cdx_config()
    _configure_log_file(cdx_config.log_file)
    try:
        config = _session_config_from_args(args, unknown, cdx_config)
    except ConfigError as exc:
        print(f"cdx run: ERROR {exc}", file=sys.stderr)
        return EXIT_FAILED

    run = SessionRun(config)
    try:
        result = run.run()
    except Exception as exc:
        return _handle_crash(run, exc)
    _emit_result(result)
    return EXIT_COMPLETED if result.status == RUN_STATUS_COMPLETED else EXIT_FAILED


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdx",
        description="codex session runner with trace journal",
        exit_on_error=False,
    )
    subparsers = parser.add_subparsers(dest="command")

    run = subparsers.add_parser(
        "run",
        help="Run one codex session and append it to the trace journal",
        exit_on_error=False,
    )
    _add_run_arguments(run)
    run.set_defaults(handler=_cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args, unknown = parser.parse_known_args(argv)
    except argparse.ArgumentError as exc:
        print(f"cdx: ERROR {exc}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return EXIT_FAILED
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help(sys.stderr)
        return EXIT_FAILED
    return int(handler(args, unknown))


if __name__ == "__main__":
    raise SystemExit(main())
