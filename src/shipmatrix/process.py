# process.py
from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from .cancel import CancelToken
from .errors import Cancelled, CommandFailed, CommandTimeout

POLL_INTERVAL = 0.1
OUTPUT_TAIL = 4000

Command = Union[str, Sequence[str]]


@dataclass
class CommandResult:
    cmd: str
    exit_code: int
    stdout: str
    stderr: str
    duration: float


def _display(cmd: Command) -> str:
    return cmd if isinstance(cmd, str) else " ".join(str(c) for c in cmd)


def _signal(proc: subprocess.Popen, sig: int) -> None:
    # Commands run in their own session so shell children die with them.
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, sig)
        else:
            proc.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


def _stop(proc: subprocess.Popen, grace_period: float) -> None:
    """SIGTERM, then SIGKILL once the grace period runs out."""
    if proc.poll() is not None:
        return
    _signal(proc, signal.SIGTERM)
    try:
        proc.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        _signal(proc, getattr(signal, "SIGKILL", signal.SIGTERM))
        proc.wait()


def run_command(
    cmd: Command,
    *,
    token: CancelToken | None = None,
    timeout: float | None = None,
    grace_period: float = 5.0,
    cwd: str | Path | None = None,
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
) -> CommandResult:
    """
    Run an external command, polling the cancel token while it runs.

    - A string runs through the shell, a sequence runs directly.
    - Exceeding `timeout` stops the process and raises CommandTimeout.
    - A fired token stops the process and raises Cancelled.
    - With check=True a non-zero exit raises CommandFailed.
    """
    token = token or CancelToken()
    token.raise_if_cancelled()

    full_env = os.environ.copy()
    full_env.update(env or {})
    shell = isinstance(cmd, str)
    args: Union[str, List[str]] = cmd if shell else [str(c) for c in cmd]

    start = time.monotonic()
    proc = subprocess.Popen(
        args,
        shell=shell,
        cwd=str(cwd) if cwd is not None else None,
        env=full_env,
        text=True,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=hasattr(os, "killpg"),
    )

    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            pass

        if token.cancelled:
            _stop(proc, grace_period)
            proc.communicate()
            raise Cancelled(token.reason or "cancelled")

        if timeout is not None and time.monotonic() - start > timeout:
            _stop(proc, grace_period)
            proc.communicate()
            raise CommandTimeout(cmd=_display(cmd), timeout=timeout)

    result = CommandResult(
        cmd=_display(cmd),
        exit_code=proc.returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        duration=time.monotonic() - start,
    )

    if check and result.exit_code != 0:
        raise CommandFailed(
            cmd=result.cmd,
            exit_code=result.exit_code,
            stdout=result.stdout[-OUTPUT_TAIL:],
            stderr=result.stderr[-OUTPUT_TAIL:],
        )
    return result
