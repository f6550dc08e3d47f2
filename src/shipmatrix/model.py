# model.py
from __future__ import annotations

import platform as _platform
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple


class PackagingKind(str, Enum):
    NONE = "none"
    CONTAINER_IMAGE = "container-image"
    ARCHIVE = "archive"


class ValidationPolicy(str, Enum):
    """What a missing compatibility shim means for a target's validate job."""
    BEST_EFFORT = "best-effort"   # report it, gate dependents as if validated
    REQUIRED = "required"         # treat it as a validation failure


class JobKind(str, Enum):
    BUILD = "build"
    VALIDATE = "validate"
    PACKAGE = "package"
    FUSE = "fuse"
    PUBLISH = "publish"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class PipelineState(str, Enum):
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PipelineStatus(str, Enum):
    SUCCESS = "completed-success"
    FAILURE = "completed-failure"
    CANCELLED = "cancelled"


# ----------------------------------------------------------------------
# Platforms
# ----------------------------------------------------------------------

UNIVERSAL_ARCH = "universal"   # arch of fused multi-arch binaries

_ARCH_ALIASES = {
    "x86_64": "amd64",
    "x64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "i386": "386",
    "i686": "386",
}


@dataclass(frozen=True)
class Platform:
    os: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os}/{self.arch}"


def normalize_arch(machine: str) -> str:
    return _ARCH_ALIASES.get(machine.lower(), machine.lower())


def host_platform() -> Platform:
    """Platform of the machine running the pipeline."""
    return Platform(os=_platform.system().lower(), arch=normalize_arch(_platform.machine()))


# ----------------------------------------------------------------------
# Targets
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Target:
    """One (platform, architecture, packaging-kind) build configuration."""
    platform: str
    arch: str
    packaging: PackagingKind = PackagingKind.NONE
    install_path: str = "/bin/app"
    triple: Optional[str] = None      # backend-specific target spec
    name: Optional[str] = None        # defaults to "{platform}-{arch}"
    validation: ValidationPolicy = ValidationPolicy.BEST_EFFORT
    optional: bool = False            # best-effort target
    smoke_args: Tuple[str, ...] = ("--version",)

    @property
    def id(self) -> str:
        return self.name or f"{self.platform}-{self.arch}"

    @property
    def spec(self) -> str:
        return self.triple or self.id

    @property
    def binary_name(self) -> str:
        return Path(self.install_path).name

    def as_platform(self) -> Platform:
        return Platform(os=self.platform, arch=self.arch)


@dataclass(frozen=True)
class FuseDecl:
    """Explicit request to fuse same-OS targets into one universal binary."""
    name: str
    targets: Tuple[str, ...]
    optional: bool = False


# ----------------------------------------------------------------------
# Artifacts
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Artifact:
    """Read-only handle to a job output on disk."""
    path: Path
    target: str
    platform: str
    arch: str
    kind: str = "binary"
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class PackagedUnit:
    path: Path
    kind: PackagingKind
    target: str
    sha256: str
    image_ref: Optional[str] = None


@dataclass(frozen=True)
class PublishedArtifact:
    path: Path
    sha256: str
    source: str


@dataclass(frozen=True)
class ValidationResult:
    artifact: Artifact
    validated: bool
    shim: Optional[List[str]] = field(default=None, hash=False, compare=False)
    note: Optional[str] = None


# ----------------------------------------------------------------------
# Jobs (tagged variant: JobKind + kind-specific payload)
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class BuildSpec:
    target: Target


@dataclass(frozen=True)
class ValidateSpec:
    target: Target
    build_job: str


@dataclass(frozen=True)
class PackageSpec:
    target: Target
    validate_job: str


@dataclass(frozen=True)
class FuseSpec:
    name: str
    platform: str
    validate_jobs: Tuple[str, ...]


@dataclass(frozen=True)
class PublishSpec:
    source_job: str
    name: str


JobPayload = Any  # BuildSpec | ValidateSpec | PackageSpec | FuseSpec | PublishSpec

# runner(inputs, token) -> output; inputs maps predecessor id -> its output
JobRunner = Callable[[Dict[str, Any], Any], Any]


@dataclass
class Job:
    """
    A node in the job graph. Jobs reference predecessors by id only.

    Runtime state (status, output, error) is kept by the coordinator, not here.
    """
    id: str
    kind: JobKind
    runner: JobRunner
    needs: List[str] = field(default_factory=list)
    payload: JobPayload = None
    target: Optional[str] = None
    required: bool = True


@dataclass
class JobOutcome:
    id: str
    kind: JobKind
    target: Optional[str]
    status: JobStatus
    required: bool = True
    duration: float = 0.0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    cache: Optional[str] = None


EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130


@dataclass
class PipelineResult:
    status: PipelineStatus
    jobs: List[JobOutcome]
    outputs: Dict[str, Any] = field(default_factory=dict)
    duration: float = 0.0
    cancel_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is PipelineStatus.SUCCESS

    @property
    def exit_code(self) -> int:
        if self.status is PipelineStatus.SUCCESS:
            return EXIT_SUCCESS
        if self.status is PipelineStatus.CANCELLED:
            return EXIT_CANCELLED
        return EXIT_FAILURE

    def outcome(self, job_id: str) -> JobOutcome:
        for o in self.jobs:
            if o.id == job_id:
                return o
        raise KeyError(job_id)

    def statuses(self) -> Dict[str, JobStatus]:
        return {o.id: o.status for o in self.jobs}
