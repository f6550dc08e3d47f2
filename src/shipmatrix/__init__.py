from .dsl import target, targets, fuse, matrix
from .matrix import TargetMatrix, load_matrix
from .runner import run_pipeline, run_jobs, Coordinator
from .cancel import CancelToken
from .model import (
    Artifact,
    Job,
    JobKind,
    JobStatus,
    PackagingKind,
    PipelineResult,
    PipelineStatus,
    Platform,
    Target,
    ValidationPolicy,
)
from .errors import (
    BuildError,
    Cancelled,
    FuseError,
    GraphError,
    MatrixError,
    PackageError,
    PublishError,
    ValidationError,
)

__all__ = [
    "target", "targets", "fuse", "matrix", "TargetMatrix", "load_matrix",
    "run_pipeline", "run_jobs", "Coordinator", "CancelToken",
    "Artifact", "Job", "JobKind", "JobStatus", "PackagingKind", "PipelineResult",
    "PipelineStatus", "Platform", "Target", "ValidationPolicy",
    "BuildError", "Cancelled", "FuseError", "GraphError", "MatrixError",
    "PackageError", "PublishError", "ValidationError",
]
