# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


# ----------------------------------------------------------------------
# Graph errors (fatal, raised before anything is scheduled)
# ----------------------------------------------------------------------

class GraphError(ValueError):
    """Malformed or cyclic job graph. Aborts the run before scheduling."""

    def __init__(self, message: str, job_ids: List[str] | None = None):
        super().__init__(message)
        self.job_ids = sorted(job_ids or [])


class MatrixError(GraphError):
    """Target matrix rejected at load time."""


# ----------------------------------------------------------------------
# Job errors (recorded on the failing job, never raised across jobs)
# ----------------------------------------------------------------------

@dataclass
class JobError(Exception):
    """
    Structured job error with enough context for:
      - the per-job report (kind + message)
      - console output without full tracebacks
    """
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class BuildErrorKind:
    TIMEOUT = "timeout"
    TOOLCHAIN_FAILURE = "toolchain-failure"
    RESOURCE_EXHAUSTION = "resource-exhaustion"


class ValidationErrorKind:
    UNREACHABLE = "unreachable"
    NON_ZERO_EXIT = "non-zero-exit"
    SKIPPED = "skipped"


class FuseErrorReason:
    ARCHITECTURE_MISMATCH = "architecture-mismatch"
    INSUFFICIENT_INPUTS = "insufficient-inputs"
    TOOL_FAILURE = "tool-failure"


@dataclass
class BuildError(JobError):
    target: str = ""


@dataclass
class ValidationError(JobError):
    target: str = ""


@dataclass
class PackageError(JobError):
    target: str = ""


@dataclass
class FuseError(JobError):
    @property
    def reason(self) -> str:
        return self.kind


@dataclass
class PublishError(JobError):
    pass


# ----------------------------------------------------------------------
# Process / cancellation
# ----------------------------------------------------------------------

class Cancelled(Exception):
    """Raised at a suspension point once the cancel token has fired."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason


@dataclass
class CommandFailed(Exception):
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    hint: str = ""

    def __str__(self) -> str:
        text = f"command failed (exit={self.exit_code}): {self.cmd}"
        return f"{text}; {self.hint}" if self.hint else text


@dataclass
class CommandTimeout(Exception):
    cmd: str
    timeout: float

    def __str__(self) -> str:
        return f"command timed out after {self.timeout:.1f}s: {self.cmd}"
