# validator.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from .backends import ShimRegistry, tool_hint
from .cancel import CancelToken
from .errors import CommandTimeout, ValidationError, ValidationErrorKind
from .model import UNIVERSAL_ARCH, Artifact, Platform, Target, ValidationPolicy, ValidationResult, host_platform
from .process import run_command


class BinaryValidator:
    """
    Smoke-tests a built binary: runs it with the target's smoke args
    (usually --version), natively or under a compatibility shim.
    """

    def __init__(
        self,
        shims: ShimRegistry | None = None,
        *,
        host: Platform | None = None,
        timeout: float = 60.0,
        grace_period: float = 5.0,
    ):
        self.shims = shims if shims is not None else ShimRegistry.default()
        self.host = host or host_platform()
        self.timeout = timeout
        self.grace_period = grace_period

    def runs_natively(self, target: Target) -> bool:
        if target.platform != self.host.os:
            return False
        return target.arch in (self.host.arch, UNIVERSAL_ARCH)

    def wrapper_for(self, target: Target) -> Optional[List[str]]:
        """[] for a native run, a shim prefix, or None when the host can't run it."""
        if self.runs_natively(target):
            return []
        return self.shims.shim_for(self.host, target.as_platform())

    def validate(self, artifact: Artifact, target: Target, token: CancelToken) -> ValidationResult:
        token.raise_if_cancelled()

        wrapper = self.wrapper_for(target)
        if wrapper is None:
            note = f"no compatibility shim for {self.host} -> {target.platform}/{target.arch}"
            if target.validation is ValidationPolicy.REQUIRED:
                raise ValidationError(
                    kind=ValidationErrorKind.SKIPPED,
                    message=note,
                    details={"policy": target.validation.value},
                    target=target.id,
                )
            return ValidationResult(artifact=artifact, validated=False, note=f"validation skipped: {note}")

        binary = Path(artifact.path)
        if not binary.is_file():
            raise ValidationError(
                kind=ValidationErrorKind.UNREACHABLE,
                message=f"binary not found: {binary}",
                target=target.id,
            )

        cmd = [*wrapper, str(binary), *target.smoke_args]
        try:
            result = run_command(
                cmd,
                token=token,
                timeout=self.timeout,
                grace_period=self.grace_period,
                check=False,
            )
        except CommandTimeout as e:
            raise ValidationError(
                kind=ValidationErrorKind.UNREACHABLE,
                message=str(e),
                details={"timeout": self.timeout},
                target=target.id,
            ) from e
        except OSError as e:
            message = f"could not execute {binary}: {e.strerror or e}"
            hint = tool_hint(wrapper) if isinstance(e, FileNotFoundError) else None
            if hint:
                message = f"{message}; {hint}"
            raise ValidationError(
                kind=ValidationErrorKind.UNREACHABLE,
                message=message,
                target=target.id,
            ) from e

        if result.exit_code != 0:
            raise ValidationError(
                kind=ValidationErrorKind.NON_ZERO_EXIT,
                message=f"`{result.cmd}` exited with {result.exit_code}",
                details={"exit_code": result.exit_code, "stderr": result.stderr[-1000:]},
                target=target.id,
            )

        note = f"ran under {' '.join(wrapper)}" if wrapper else None
        return ValidationResult(artifact=artifact, validated=True, shim=wrapper or None, note=note)
