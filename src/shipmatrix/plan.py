# plan.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .backends import BuildBackend, ContainerRuntime, ShimRegistry
from .cancel import CancelToken
from .dag import topo_order
from .executor import BuildExecutor
from .fuser import FuseTool, Fuser
from .matrix import TargetMatrix
from .model import (
    UNIVERSAL_ARCH,
    Artifact,
    BuildSpec,
    FuseSpec,
    Job,
    JobKind,
    JobRunner,
    PackageSpec,
    PackagingKind,
    Platform,
    PublishSpec,
    Target,
    ValidateSpec,
    ValidationPolicy,
    ValidationResult,
)
from .packager import Packager
from .publisher import Publisher
from .validator import BinaryValidator


def build_id(target_id: str) -> str:
    return f"build:{target_id}"


def validate_id(target_id: str) -> str:
    return f"validate:{target_id}"


def package_id(target_id: str) -> str:
    return f"package:{target_id}"


def fuse_id(name: str) -> str:
    return f"fuse:{name}"


def publish_id(source_job: str) -> str:
    return f"publish:{source_job}"


# ----------------------------------------------------------------------
# Toolchain: binds a runner to each job kind
# ----------------------------------------------------------------------

class Toolchain:
    """
    The components job runners delegate to. `bind()` turns a job's
    (kind, payload) into a runner(inputs, token).
    """

    def __init__(
        self,
        executor: BuildExecutor,
        validator: BinaryValidator,
        packager: Packager,
        fuser: Fuser,
        publisher: Optional[Publisher] = None,
    ):
        self.executor = executor
        self.validator = validator
        self.packager = packager
        self.fuser = fuser
        self.publisher = publisher
        self._binders: Dict[JobKind, Callable[[Any], JobRunner]] = {
            JobKind.BUILD: self._bind_build,
            JobKind.VALIDATE: self._bind_validate,
            JobKind.PACKAGE: self._bind_package,
            JobKind.FUSE: self._bind_fuse,
            JobKind.PUBLISH: self._bind_publish,
        }

    @classmethod
    def create(
        cls,
        backend: BuildBackend,
        *,
        work_dir: str | Path,
        image_name: str = "app",
        shims: ShimRegistry | None = None,
        runtime: ContainerRuntime | None = None,
        fuse_tool: FuseTool | None = None,
        publish_dir: str | Path | None = None,
        host: Platform | None = None,
        build_timeout: float | None = 3600.0,
        validate_timeout: float = 60.0,
        grace_period: float = 5.0,
    ) -> "Toolchain":
        work = Path(work_dir)
        return cls(
            executor=BuildExecutor(backend, work, timeout=build_timeout),
            validator=BinaryValidator(shims, host=host, timeout=validate_timeout, grace_period=grace_period),
            packager=Packager(work, image_name=image_name, runtime=runtime, host=host),
            fuser=Fuser(work, tool=fuse_tool),
            publisher=Publisher(publish_dir) if publish_dir else None,
        )

    def bind(self, kind: JobKind, payload: Any) -> JobRunner:
        return self._binders[kind](payload)

    # ---- per-kind runners ----

    def _bind_build(self, spec: BuildSpec) -> JobRunner:
        def run(inputs: Dict[str, Any], token: CancelToken) -> Artifact:
            return self.executor.build(spec.target, token)
        return run

    def _bind_validate(self, spec: ValidateSpec) -> JobRunner:
        def run(inputs: Dict[str, Any], token: CancelToken) -> ValidationResult:
            return self.validator.validate(inputs[spec.build_job], spec.target, token)
        return run

    def _bind_package(self, spec: PackageSpec) -> JobRunner:
        def run(inputs: Dict[str, Any], token: CancelToken):
            validated: ValidationResult = inputs[spec.validate_job]
            return self.packager.package(validated.artifact, spec.target, token)
        return run

    def _bind_fuse(self, spec: FuseSpec) -> JobRunner:
        def run(inputs: Dict[str, Any], token: CancelToken) -> Artifact:
            results: List[ValidationResult] = [inputs[v] for v in spec.validate_jobs]
            fused = self.fuser.fuse([r.artifact for r in results], spec.name, token)
            return self._smoke_test_fused(fused, spec, token)
        return run

    def _smoke_test_fused(self, fused: Artifact, spec: FuseSpec, token: CancelToken) -> Artifact:
        universal = Target(
            platform=spec.platform,
            arch=UNIVERSAL_ARCH,
            install_path=f"/bin/{fused.path.name}",
            name=spec.name,
            validation=ValidationPolicy.BEST_EFFORT,
        )
        checked = self.validator.validate(fused, universal, token)
        metadata = dict(fused.metadata)
        metadata["validated"] = checked.validated
        if checked.note:
            metadata["note"] = checked.note
        return Artifact(
            path=fused.path,
            target=fused.target,
            platform=fused.platform,
            arch=fused.arch,
            kind=fused.kind,
            metadata=metadata,
        )

    def _bind_publish(self, spec: PublishSpec) -> JobRunner:
        def run(inputs: Dict[str, Any], token: CancelToken):
            if self.publisher is None:
                raise RuntimeError("publish job planned without a publish destination")
            unit = inputs[spec.source_job]
            if isinstance(unit, ValidationResult):
                unit = unit.artifact
            path = Path(unit.path)
            return self.publisher.publish(path, spec.name or path.name, token)
        return run


# ----------------------------------------------------------------------
# Matrix -> job graph
# ----------------------------------------------------------------------

def plan_jobs(matrix: TargetMatrix, toolchain: Toolchain) -> List[Job]:
    """
    Expand the matrix into the job arena:
      build:<t> -> validate:<t> -> package:<t> (packaging != none)
      validate:<a>, validate:<b> -> fuse:<name>
      package:<t> / fuse:<name> -> publish:<job>   (when publish_dir is set)
      validate:<t> -> publish:validate:<t>          (packaging == none, same condition)

    The returned graph has passed the cycle check.
    """
    jobs: List[Job] = []
    publish = matrix.publish_dir is not None

    def add(job_id: str, kind: JobKind, payload: Any, needs: List[str], target: str | None, required: bool) -> None:
        jobs.append(Job(
            id=job_id,
            kind=kind,
            runner=toolchain.bind(kind, payload),
            needs=needs,
            payload=payload,
            target=target,
            required=required,
        ))

    for t in matrix.expand():
        required = not t.optional
        add(build_id(t.id), JobKind.BUILD, BuildSpec(t), [], t.id, required)
        add(validate_id(t.id), JobKind.VALIDATE, ValidateSpec(t, build_id(t.id)), [build_id(t.id)], t.id, required)
        if t.packaging is not PackagingKind.NONE:
            pkg = package_id(t.id)
            add(pkg, JobKind.PACKAGE, PackageSpec(t, validate_id(t.id)), [validate_id(t.id)], t.id, required)
            if publish:
                add(publish_id(pkg), JobKind.PUBLISH, PublishSpec(pkg, ""), [pkg], t.id, required)
        elif publish:
            # the bare binary is the deliverable
            vid = validate_id(t.id)
            spec_pub = PublishSpec(vid, f"{matrix.binary}-{t.id}{Path(t.install_path).suffix}")
            add(publish_id(vid), JobKind.PUBLISH, spec_pub, [vid], t.id, required)

    by_id = matrix.by_id()
    for decl in matrix.fuses:
        inputs = [by_id[i] for i in decl.targets]
        required = not (decl.optional or any(t.optional for t in inputs))
        needs = [validate_id(t.id) for t in inputs]
        fid = fuse_id(decl.name)
        spec = FuseSpec(name=decl.name, platform=inputs[0].platform, validate_jobs=tuple(needs))
        add(fid, JobKind.FUSE, spec, needs, decl.name, required)
        if publish:
            spec_pub = PublishSpec(fid, f"{matrix.binary}-{decl.name}")
            add(publish_id(fid), JobKind.PUBLISH, spec_pub, [fid], decl.name, required)

    topo_order(jobs)
    return jobs
