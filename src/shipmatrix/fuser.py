# fuser.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .backends import tool_hint
from .cancel import CancelToken
from .errors import Cancelled, CommandFailed, CommandTimeout, FuseError, FuseErrorReason
from .model import UNIVERSAL_ARCH, Artifact
from .process import run_command

# tool(inputs, output, token) writes one multi-arch binary to `output`
FuseTool = Callable[[List[Path], Path, CancelToken], None]


def lipo_tool(inputs: List[Path], output: Path, token: CancelToken) -> None:
    """lipo -create a b -output out (macOS)."""
    run_command(["lipo", "-create", *[str(p) for p in inputs], "-output", str(output)], token=token)


class Fuser:
    """Combines single-architecture binaries of one OS into a universal binary."""

    def __init__(self, work_dir: str | Path, *, tool: Optional[FuseTool] = None):
        self.work_dir = Path(work_dir)
        self.tool = tool or lipo_tool

    def fuse(self, artifacts: Iterable[Artifact], name: str, token: CancelToken) -> Artifact:
        token.raise_if_cancelled()
        inputs = list(artifacts)

        platforms = sorted({a.platform for a in inputs})
        if len(platforms) > 1:
            raise FuseError(
                kind=FuseErrorReason.ARCHITECTURE_MISMATCH,
                message=f"cannot fuse binaries for different operating systems: {platforms}",
                details={"inputs": [a.target for a in inputs]},
            )

        # one binary per architecture
        by_arch = {}
        for a in inputs:
            by_arch.setdefault(a.arch, a)
        if len(by_arch) < 2:
            raise FuseError(
                kind=FuseErrorReason.INSUFFICIENT_INPUTS,
                message=f"need binaries for at least two architectures, got {sorted(by_arch) or 'none'}",
                details={"inputs": [a.target for a in inputs]},
            )

        ordered = [by_arch[arch] for arch in sorted(by_arch)]
        binary_name = Path(ordered[0].path).name
        out_dir = self.work_dir / "fuse" / name
        out_dir.mkdir(parents=True, exist_ok=True)
        output = out_dir / binary_name

        try:
            self.tool([Path(a.path) for a in ordered], output, token)
        except Cancelled:
            raise
        except (CommandFailed, CommandTimeout, OSError) as e:
            message = str(e)
            hint = tool_hint([e.filename]) if isinstance(e, FileNotFoundError) and e.filename else None
            if hint:
                message = f"{message}; {hint}"
            raise FuseError(
                kind=FuseErrorReason.TOOL_FAILURE,
                message=message,
                details={"inputs": [a.target for a in ordered]},
            ) from e

        if not output.is_file():
            raise FuseError(
                kind=FuseErrorReason.TOOL_FAILURE,
                message=f"fuse tool produced no output at {output}",
            )
        os.chmod(output, 0o755)

        return Artifact(
            path=output,
            target=name,
            platform=platforms[0],
            arch=UNIVERSAL_ARCH,
            kind="binary",
            metadata={"archs": sorted(by_arch), "inputs": [a.target for a in ordered]},
        )
