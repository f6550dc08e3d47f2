# backends.py
from __future__ import annotations

import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from .cancel import CancelToken
from .errors import CommandFailed
from .model import Platform, Target
from .process import run_command

TOOL_HINTS = {
    "nix": "Install Nix (https://nixos.org/download) or pass --build-command.",
    "docker": "Install Docker and ensure the daemon is running.",
    "lipo": "lipo ships with the Xcode command line tools (macOS only).",
    "qemu-aarch64": "Install qemu-user (e.g. apt install qemu-user).",
    "wine64": "Install wine64 (e.g. apt install wine64).",
}

# sh reports a missing executable with this status
EXIT_NOT_FOUND = 127


def tool_hint(cmd: str | Sequence[str] | None) -> Optional[str]:
    """Install hint for the executable `cmd` starts with, if it is a known tool."""
    if not cmd:
        return None
    if isinstance(cmd, str):
        words = cmd.split()
        first = words[0] if words else ""
    else:
        first = str(cmd[0])
    return TOOL_HINTS.get(Path(first).name)


# ---------------------------------------------------------------------
# Interfaces consumed by the pipeline
# ---------------------------------------------------------------------

class BuildBackend(Protocol):
    def invoke(self, target: Target, out_dir: Path, token: CancelToken) -> Tuple[Path, Dict[str, Any]]:
        """Build `target` into `out_dir`; return (artifact path, build metadata)."""
        ...


class ContainerRuntime(Protocol):
    def load_image(self, path: Path, token: CancelToken | None = None) -> str:
        ...

    def run_image(self, image_ref: str, args: Sequence[str], token: CancelToken | None = None) -> int:
        ...


# ---------------------------------------------------------------------
# Command build backend (nix by default)
# ---------------------------------------------------------------------

class CommandBuildBackend:
    """
    Runs a shell command template per target.

    Placeholders: {binary} {spec} {triple} {platform} {arch} {target} {out}
    {install_path}. The artifact is found through `artifact_template`
    (default "{out}{install_path}", i.e. result/bin/wash for nix outputs).
    """

    DEFAULT_MISS_MARKERS = ("will be built", "building '")

    def __init__(
        self,
        command: str,
        *,
        binary: str = "app",
        artifact_template: str = "{out}{install_path}",
        cwd: str | Path = ".",
        env: Optional[Dict[str, str]] = None,
        miss_markers: Sequence[str] = DEFAULT_MISS_MARKERS,
        grace_period: float = 5.0,
    ):
        self.command = command
        self.binary = binary
        self.artifact_template = artifact_template
        self.cwd = Path(cwd)
        self.env = env or {}
        self.miss_markers = tuple(miss_markers)
        self.grace_period = grace_period

    def _fields(self, target: Target, out_dir: Path) -> Dict[str, str]:
        return {
            "binary": self.binary,
            "spec": target.spec,
            "triple": target.triple or "",
            "platform": target.platform,
            "arch": target.arch,
            "target": target.id,
            "out": str(out_dir / "result"),
            "install_path": target.install_path,
        }

    def invoke(self, target: Target, out_dir: Path, token: CancelToken) -> Tuple[Path, Dict[str, Any]]:
        fields = self._fields(target, out_dir)
        cmd = self.command.format(**fields)
        try:
            result = run_command(
                cmd,
                token=token,
                cwd=self.cwd,
                env=self.env,
                grace_period=self.grace_period,
            )
        except CommandFailed as e:
            hint = tool_hint(cmd)
            if e.exit_code != EXIT_NOT_FOUND or not hint:
                raise
            raise CommandFailed(cmd=e.cmd, exit_code=e.exit_code, stdout=e.stdout, stderr=e.stderr, hint=hint) from e

        artifact = Path(self.artifact_template.format(**fields))
        if not artifact.exists():
            raise CommandFailed(
                cmd=cmd,
                exit_code=result.exit_code,
                stdout=result.stdout[-4000:],
                stderr=f"build finished but artifact is missing: {artifact}",
            )

        output = result.stdout + result.stderr
        if not self.miss_markers:
            cache = "unknown"
        elif any(m in output for m in self.miss_markers):
            cache = "miss"
        else:
            cache = "hit"
        return artifact, {"cache": cache, "command": cmd, "duration": round(result.duration, 3)}


# ---------------------------------------------------------------------
# Compatibility shims
# ---------------------------------------------------------------------

class ShimRegistry:
    """
    Maps (host platform, target platform) to a wrapper command prefix,
    e.g. linux/amd64 -> linux/arm64 runs under ["qemu-aarch64"].

    A shim is only offered when its executable is on PATH.
    """

    def __init__(self, shims: Optional[Dict[Tuple[Platform, Platform], List[str]]] = None, *, which=shutil.which):
        self._shims: Dict[Tuple[Platform, Platform], List[str]] = dict(shims or {})
        self._which = which

    @classmethod
    def default(cls) -> "ShimRegistry":
        linux_amd64 = Platform("linux", "amd64")
        return cls({
            (linux_amd64, Platform("linux", "arm64")): ["qemu-aarch64"],
            (linux_amd64, Platform("windows", "amd64")): ["wine64"],
            (Platform("linux", "arm64"), Platform("linux", "amd64")): ["qemu-x86_64"],
            (Platform("darwin", "arm64"), Platform("darwin", "amd64")): ["arch", "-x86_64"],
        })

    def register(self, host: Platform, target: Platform, wrapper: Sequence[str]) -> None:
        self._shims[(host, target)] = list(wrapper)

    def shim_for(self, host: Platform, target: Platform) -> Optional[List[str]]:
        wrapper = self._shims.get((host, target))
        if wrapper is None:
            return None
        if wrapper and self._which(wrapper[0]) is None:
            return None
        return list(wrapper)


# ---------------------------------------------------------------------
# Docker runtime
# ---------------------------------------------------------------------

_LOADED_RE = re.compile(r"Loaded image(?: ID)?: (\S+)")


class DockerRuntime:
    """Container runtime backed by the docker CLI."""

    def __init__(self, docker: str = "docker", *, timeout: float = 300.0):
        self.docker = docker
        self.timeout = timeout

    def available(self) -> bool:
        try:
            subprocess.run([self.docker, "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            return False
        return True

    def load_image(self, path: Path, token: CancelToken | None = None) -> str:
        result = run_command([self.docker, "load", "-i", str(path)], token=token, timeout=self.timeout)
        m = _LOADED_RE.search(result.stdout)
        if not m:
            raise CommandFailed(
                cmd=result.cmd,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr="could not find the loaded image reference in docker output",
            )
        return m.group(1)

    def run_image(self, image_ref: str, args: Sequence[str], token: CancelToken | None = None) -> int:
        result = run_command(
            [self.docker, "run", "--rm", image_ref, *args],
            token=token,
            timeout=self.timeout,
            check=False,
        )
        return result.exit_code
