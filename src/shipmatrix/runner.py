# runner.py
from __future__ import annotations

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Deque, Dict, Iterable, List, Optional

from . import settings
from .backends import BuildBackend, CommandBuildBackend, ContainerRuntime, ShimRegistry
from .cancel import CancelToken
from .dag import build_dag, dependents_closure, topo_order
from .errors import Cancelled, JobError
from .fuser import FuseTool
from .matrix import TargetMatrix
from .model import (
    Artifact,
    Job,
    JobOutcome,
    JobStatus,
    PipelineResult,
    PipelineState,
    PipelineStatus,
    Platform,
    ValidationResult,
)
from .plan import Toolchain, plan_jobs
from .ui.console import get_console

WAIT_TICK = 0.1


@dataclass
class _JobState:
    status: JobStatus = JobStatus.PENDING
    output: Any = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    cache: Optional[str] = None
    started: Optional[float] = None
    finished: Optional[float] = None

    @property
    def duration(self) -> float:
        if self.started is None:
            return 0.0
        return (self.finished or time.monotonic()) - self.started


def _note_of(output: Any) -> Optional[str]:
    if isinstance(output, ValidationResult):
        return output.note
    if isinstance(output, Artifact):
        return output.metadata.get("note")
    return None


def _cache_of(output: Any) -> Optional[str]:
    if isinstance(output, Artifact):
        return output.metadata.get("cache")
    return None


def _describe(exc: BaseException) -> tuple[str, str]:
    if isinstance(exc, JobError):
        return exc.kind, exc.message
    return type(exc).__name__, str(exc) or type(exc).__name__


class Coordinator:
    """
    Runs a job graph with a concurrency cap.

    - Jobs start only once every predecessor has succeeded.
    - A failure skips every transitive dependent; independent branches go on.
    - Cancellation stops dispatch at once; pending and in-flight jobs end
      `cancelled`, and in-flight runners get `grace_period` seconds to stop.

    The state table is the only shared state; every transition goes through
    `self._lock`. Runners never see it.
    """

    def __init__(
        self,
        jobs: Iterable[Job],
        *,
        max_workers: int | None = None,
        token: CancelToken | None = None,
        grace_period: float = settings.GRACE_PERIOD,
    ):
        self.jobs: List[Job] = list(jobs)
        self.by_id: Dict[str, Job] = {j.id: j for j in self.jobs}
        self.max_workers = max(1, max_workers or settings.default_workers())
        self.token = token or CancelToken()
        self.grace_period = grace_period
        self.state = PipelineState.INITIALIZING

        self._lock = threading.Lock()
        self._table: Dict[str, _JobState] = {j.id: _JobState() for j in self.jobs}
        self._running = 0
        self._cancelled = False
        self.peak_running = 0

    # ------------------------------------------------------------------
    # state transitions (all under self._lock)
    # ------------------------------------------------------------------

    def _mark_running(self, job_id: str) -> bool:
        with self._lock:
            st = self._table[job_id]
            if self.token.cancelled or st.status is not JobStatus.PENDING:
                return False
            st.status = JobStatus.RUNNING
            st.started = time.monotonic()
            self._running += 1
            self.peak_running = max(self.peak_running, self._running)
            return True

    def _mark_complete(self, job_id: str, status: JobStatus, **fields) -> bool:
        with self._lock:
            st = self._table[job_id]
            if st.status is not JobStatus.RUNNING:
                return False
            st.status = status
            st.finished = time.monotonic()
            for k, v in fields.items():
                setattr(st, k, v)
            self._running -= 1
            return True

    def _mark_pending_as(self, job_ids: Iterable[str], status: JobStatus, reason: str) -> List[str]:
        changed: List[str] = []
        with self._lock:
            for job_id in job_ids:
                st = self._table[job_id]
                if st.status is JobStatus.PENDING:
                    st.status = status
                    st.error = reason
                    changed.append(job_id)
        return changed

    def _interrupted(self) -> bool:
        """True while some job is still pending or already ended cancelled."""
        with self._lock:
            return any(st.status in (JobStatus.PENDING, JobStatus.CANCELLED) for st in self._table.values())

    def status_of(self, job_id: str) -> JobStatus:
        with self._lock:
            return self._table[job_id].status

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def _execute(self, job: Job, inputs: Dict[str, Any]) -> Any:
        self.token.raise_if_cancelled()
        return job.runner(inputs, self.token)

    def _inputs_for(self, job: Job) -> Dict[str, Any]:
        with self._lock:
            return {need: self._table[need].output for need in job.needs}

    def run(self) -> PipelineResult:
        console = get_console()

        # GraphError escapes from here, before anything runs.
        order = topo_order(self.jobs)
        adj, indeg = build_dag(self.jobs)
        remaining = dict(indeg)
        position = {job_id: n for n, job_id in enumerate(order)}

        started = time.monotonic()
        self.state = PipelineState.RUNNING
        ready: Deque[str] = deque(sorted((j for j, d in remaining.items() if d == 0), key=position.__getitem__))
        in_flight: Dict[Future, str] = {}

        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="shipmatrix-job")
        try:
            while True:
                # dispatch everything ready, up to the cap
                while ready and len(in_flight) < self.max_workers and not self.token.cancelled:
                    job_id = ready.popleft()
                    job = self.by_id[job_id]
                    inputs = self._inputs_for(job)
                    if not self._mark_running(job_id):
                        if self.token.cancelled:
                            ready.appendleft(job_id)
                            break
                        continue
                    console.print_job_start(job_id)
                    in_flight[pool.submit(self._execute, job, inputs)] = job_id

                if self.token.cancelled and (in_flight or ready or self._interrupted()):
                    self._cancel(in_flight, adj, remaining)
                    break
                if not in_flight and not ready:
                    break

                done, _ = wait(list(in_flight), timeout=WAIT_TICK, return_when=FIRST_COMPLETED)
                for fut in done:
                    job_id = in_flight.pop(fut)
                    newly_ready = self._complete(job_id, fut, adj, remaining)
                    for nxt in sorted(newly_ready, key=position.__getitem__):
                        ready.append(nxt)
        finally:
            # never block shutdown on runners that ignore the token
            pool.shutdown(wait=not self._cancelled, cancel_futures=True)

        self.state = PipelineState.CANCELLED if self._cancelled else PipelineState.COMPLETED
        return self._result(order, time.monotonic() - started)

    def _skip_dependents(self, job_id: str, adj) -> None:
        console = get_console()
        reason = f"dependency {job_id} did not succeed"
        for s in self._mark_pending_as(sorted(dependents_closure(adj, job_id)), JobStatus.SKIPPED, reason):
            console.print_job_skipped(s, reason)

    def _complete(self, job_id: str, fut: Future, adj, remaining: Dict[str, int]) -> List[str]:
        console = get_console()
        try:
            output = fut.result()
        except Exception as e:
            if isinstance(e, Cancelled) or self._cancelled:
                reason = e.reason if isinstance(e, Cancelled) else (self.token.reason or "cancelled")
                self._mark_complete(job_id, JobStatus.CANCELLED, error=reason)
                console.print_job_cancelled(job_id, reason)
                if not self.token.cancelled:
                    # the runner gave up on its own; the pipeline goes on
                    self._skip_dependents(job_id, adj)
                return []
            kind, message = _describe(e)
            self._mark_complete(job_id, JobStatus.FAILED, error_kind=kind, error=message)
            console.print_job_failed(job_id, f"{kind}: {message}", detail=str(e))
            self._skip_dependents(job_id, adj)
            return []

        note, cache = _note_of(output), _cache_of(output)
        self._mark_complete(job_id, JobStatus.SUCCEEDED, output=output, note=note, cache=cache)
        console.print_job_succeeded(job_id, self._table[job_id].duration, note, cache=cache)

        # output is stored before any dependent becomes ready
        newly_ready: List[str] = []
        for nxt in adj[job_id]:
            remaining[nxt] -= 1
            if remaining[nxt] == 0 and self.status_of(nxt) is JobStatus.PENDING:
                newly_ready.append(nxt)
        return newly_ready

    def _cancel(self, in_flight: Dict[Future, str], adj, remaining: Dict[str, int]) -> None:
        console = get_console()
        reason = self.token.reason or "cancelled"
        console.print_info(f"\nCANCELLING: {reason}")

        # jobs that already finished keep their real outcome
        for fut in [f for f in in_flight if f.done()]:
            self._complete(in_flight.pop(fut), fut, adj, remaining)

        self._cancelled = True
        for job_id in self._mark_pending_as(list(self._table), JobStatus.CANCELLED, reason):
            console.print_job_cancelled(job_id, reason)

        # in-flight runners get the grace period to notice the token
        if in_flight:
            wait(list(in_flight), timeout=self.grace_period)
        for fut, job_id in in_flight.items():
            if fut.done():
                # finished within the grace period: record what it returned
                self._complete(job_id, fut, adj, remaining)
                continue
            detail = f"{reason} (still running after the {self.grace_period:g}s grace period)"
            if self._mark_complete(job_id, JobStatus.CANCELLED, error=detail):
                console.print_job_cancelled(job_id, detail)
        in_flight.clear()

    def _result(self, order: List[str], duration: float) -> PipelineResult:
        outcomes: List[JobOutcome] = []
        outputs: Dict[str, Any] = {}
        with self._lock:
            for job_id in order:
                job = self.by_id[job_id]
                st = self._table[job_id]
                outcomes.append(JobOutcome(
                    id=job_id,
                    kind=job.kind,
                    target=job.target,
                    status=st.status,
                    required=job.required,
                    duration=round(st.duration, 3),
                    error_kind=st.error_kind,
                    error=st.error,
                    note=st.note,
                    cache=st.cache,
                ))
                if st.status is JobStatus.SUCCEEDED:
                    outputs[job_id] = st.output

        if self._cancelled:
            status = PipelineStatus.CANCELLED
        elif all(o.status is JobStatus.SUCCEEDED for o in outcomes if o.required):
            status = PipelineStatus.SUCCESS
        else:
            status = PipelineStatus.FAILURE

        return PipelineResult(
            status=status,
            jobs=outcomes,
            outputs=outputs,
            duration=round(duration, 3),
            cancel_reason=self.token.reason if self._cancelled else None,
        )


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def run_jobs(
    jobs: Iterable[Job],
    *,
    max_workers: int | None = None,
    token: CancelToken | None = None,
    grace_period: float = settings.GRACE_PERIOD,
) -> PipelineResult:
    return Coordinator(jobs, max_workers=max_workers, token=token, grace_period=grace_period).run()


def run_pipeline(
    matrix: TargetMatrix,
    max_workers: int | None = None,
    *,
    backend: BuildBackend | None = None,
    toolchain: Toolchain | None = None,
    token: CancelToken | None = None,
    work_dir: str | Path = settings.WORK_DIR,
    build_command: str = settings.BUILD_COMMAND,
    build_timeout: float | None = settings.BUILD_TIMEOUT,
    validate_timeout: float = settings.VALIDATE_TIMEOUT,
    grace_period: float = settings.GRACE_PERIOD,
    shims: ShimRegistry | None = None,
    runtime: ContainerRuntime | None = None,
    fuse_tool: FuseTool | None = None,
    host: Platform | None = None,
) -> PipelineResult:
    """
    The single entry point: matrix + concurrency cap in, PipelineResult out.

    Raises GraphError (before running anything) for a malformed graph.
    Everything else is reported per job in the result.
    """
    if toolchain is None:
        if backend is None:
            backend = CommandBuildBackend(build_command, binary=matrix.binary)
        toolchain = Toolchain.create(
            backend,
            work_dir=work_dir,
            image_name=matrix.image_name or matrix.binary,
            shims=shims,
            runtime=runtime,
            fuse_tool=fuse_tool,
            publish_dir=matrix.publish_dir,
            host=host,
            build_timeout=build_timeout,
            validate_timeout=validate_timeout,
            grace_period=grace_period,
        )

    jobs = plan_jobs(matrix, toolchain)
    return run_jobs(jobs, max_workers=max_workers, token=token, grace_period=grace_period)
