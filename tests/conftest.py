from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from shipmatrix.cancel import CancelToken
from shipmatrix.errors import Cancelled, CommandFailed
from shipmatrix.model import Target
from shipmatrix.ui.console import Console, set_console


def make_script(path: Path, body: str = "echo ok", exit_code: int = 0) -> Path:
    """Write an executable /bin/sh script standing in for a built binary."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\n{body}\nexit {exit_code}\n", encoding="utf-8")
    os.chmod(path, 0o755)
    return path


class FakeBuildBackend:
    """
    Build backend that writes a shell script per target.

    fail:       target ids whose build fails with a toolchain error
    exit_codes: target id -> exit code of the produced binary's smoke run
    delays:     target id -> seconds the build takes (interruptible by the token)
    """

    def __init__(
        self,
        fail=(),
        exit_codes: Optional[Dict[str, int]] = None,
        delays: Optional[Dict[str, float]] = None,
        cache: str = "hit",
    ):
        self.fail = set(fail)
        self.exit_codes = exit_codes or {}
        self.delays = delays or {}
        self.cache = cache
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def invoke(self, target: Target, out_dir: Path, token: CancelToken):
        with self._lock:
            self.calls.append(target.id)

        delay = self.delays.get(target.id, 0.0)
        if delay and token.wait(delay):
            raise Cancelled(token.reason or "cancelled")

        if target.id in self.fail:
            raise CommandFailed(cmd=f"build {target.id}", exit_code=1, stderr="error: linker failed")

        binary = out_dir / "result" / target.install_path.lstrip("/")
        make_script(binary, f'echo "{target.id} $*"', self.exit_codes.get(target.id, 0))
        return binary, {"cache": self.cache}


class FakeFuseTool:
    """Stands in for lipo: writes a script that records its inputs."""

    def __init__(self, error: Optional[Exception] = None, produce: bool = True):
        self.error = error
        self.produce = produce
        self.calls: List[List[Path]] = []

    def __call__(self, inputs: List[Path], output: Path, token: CancelToken) -> None:
        self.calls.append(list(inputs))
        if self.error is not None:
            raise self.error
        if self.produce:
            make_script(output, "echo universal")


class FakeRuntime:
    def __init__(self, exit_code: int = 0):
        self.exit_code = exit_code
        self.loaded: List[Path] = []
        self.ran: List[tuple] = []

    def load_image(self, path: Path, token: CancelToken | None = None) -> str:
        self.loaded.append(path)
        return "loaded:latest"

    def run_image(self, image_ref: str, args, token: CancelToken | None = None) -> int:
        self.ran.append((image_ref, list(args)))
        return self.exit_code


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(quiet=True))
    yield
    set_console(Console())


@pytest.fixture
def token():
    return CancelToken()
