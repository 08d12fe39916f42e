"""Subprocess-based executor for CLI agents."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO, Any

from jobline.orchestrator.backend.base import CancellationToken
from jobline.orchestrator.errors import BackendRunError, TaskAborted
from jobline.orchestrator.models import ConversationState

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.1
_STDERR_TAIL_CHARS = 2_000


class CommandBackend:
    """Run a command template with the conversation state written to a JSON file.

    Supported placeholders: ``{state_file}``, ``{llm_id}``, ``{thread_id}``.
    The command must print a JSON object on stdout; that object becomes the
    job output.
    """

    def __init__(self, *, command_template: str, timeout_seconds: int = 600) -> None:
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds

    def execute(self, state: ConversationState, token: CancellationToken) -> dict[str, Any]:
        with tempfile.TemporaryDirectory(prefix="jobline-") as workdir:
            root = Path(workdir)
            state_file = root / "state.json"
            state_file.write_text(json.dumps(state.to_dict(), ensure_ascii=False), "utf-8")
            stdout_path = root / "stdout.txt"
            stderr_path = root / "stderr.txt"

            run_args = _build_run_args(
                command_template=self.command_template,
                state_file=state_file,
                state=state,
            )
            env = os.environ.copy()
            env["JOBLINE_LLM_ID"] = state.llm_id
            env["JOBLINE_THREAD_ID"] = state.thread_id

            try:
                with (
                    stdout_path.open("w", encoding="utf-8") as stdout_handle,
                    stderr_path.open("w", encoding="utf-8") as stderr_handle,
                ):
                    exit_code = _run_subprocess_with_cancel(
                        run_args=run_args,
                        env=env,
                        timeout_seconds=self.timeout_seconds,
                        stdout_handle=stdout_handle,
                        stderr_handle=stderr_handle,
                        token=token,
                    )
            except FileNotFoundError as error:
                raise BackendRunError(f"Command not found: {run_args[0]}") from error
            except OSError as error:
                raise BackendRunError(f"Command failed to start: {error}") from error

            if exit_code != 0:
                stderr_tail = stderr_path.read_text("utf-8")[-_STDERR_TAIL_CHARS:].strip()
                raise BackendRunError(f"Command exited with code {exit_code}: {stderr_tail}")
            return _parse_output(stdout_path.read_text("utf-8"))


def _build_run_args(
    *,
    command_template: str,
    state_file: Path,
    state: ConversationState,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("Command template is empty.")
    if "{state_file}" not in stripped:
        raise BackendRunError("Command template must include {state_file}.")
    try:
        rendered = stripped.format(
            state_file=shlex.quote(str(state_file)),
            llm_id=shlex.quote(state.llm_id),
            thread_id=shlex.quote(state.thread_id),
        )
    except (KeyError, IndexError) as error:
        raise BackendRunError(f"Unsupported command template placeholder: {error}") from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("Command template rendered empty command.")
    return argv


def _parse_output(stdout: str) -> dict[str, Any]:
    try:
        payload = json.loads(stdout)
    except json.JSONDecodeError as error:
        raise BackendRunError(f"Command output is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise BackendRunError("Command output must be a JSON object.")
    return payload


def _run_subprocess_with_cancel(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
    token: CancellationToken,
) -> int:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    start_monotonic = time.monotonic()

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode

        if token.is_cancelled:
            _terminate_process(process)
            raise TaskAborted(f"Command terminated on cancellation: {run_args[0]}")

        if time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            raise BackendRunError(f"Command timed out after {timeout_seconds}s.")

        token.wait(_POLL_SECONDS)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s ignored SIGTERM; killing", process.pid)
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
