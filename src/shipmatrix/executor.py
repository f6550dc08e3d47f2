# executor.py
from __future__ import annotations

import errno
import time
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

from .backends import BuildBackend
from .cancel import CancelToken
from .errors import BuildError, BuildErrorKind, Cancelled, CommandFailed, CommandTimeout
from .model import Artifact, Target

OOM_EXIT_CODES = (137, -9)
EXHAUSTION_MARKERS = ("No space left on device", "Cannot allocate memory", "out of memory")


class _DeadlineExceeded(Exception):
    pass


def classify_failure(exc: BaseException) -> str:
    """Map a backend exception to a BuildErrorKind."""
    if isinstance(exc, CommandTimeout):
        return BuildErrorKind.TIMEOUT
    if isinstance(exc, MemoryError):
        return BuildErrorKind.RESOURCE_EXHAUSTION
    if isinstance(exc, OSError) and exc.errno in (errno.ENOSPC, errno.ENOMEM):
        return BuildErrorKind.RESOURCE_EXHAUSTION
    if isinstance(exc, CommandFailed):
        if exc.exit_code in OOM_EXIT_CODES:
            return BuildErrorKind.RESOURCE_EXHAUSTION
        text = f"{exc.stdout}\n{exc.stderr}"
        if any(m in text for m in EXHAUSTION_MARKERS):
            return BuildErrorKind.RESOURCE_EXHAUSTION
    return BuildErrorKind.TOOLCHAIN_FAILURE


class BuildExecutor:
    """
    Invokes the hermetic build backend for one target.

    The backend owns caching; its cache hit/miss is copied into
    artifact.metadata["cache"] and never changes control flow.
    """

    def __init__(self, backend: BuildBackend, work_dir: str | Path, *, timeout: float | None = 3600.0):
        self.backend = backend
        self.work_dir = Path(work_dir)
        self.timeout = timeout

    def build(self, target: Target, token: CancelToken) -> Artifact:
        token.raise_if_cancelled()
        out_dir = self.work_dir / "build" / target.id
        out_dir.mkdir(parents=True, exist_ok=True)

        # The backend gets its own token so a timeout can stop it without
        # cancelling the whole pipeline.
        call_token = token.child()
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"build-{target.id}")
        try:
            fut = pool.submit(self.backend.invoke, target, out_dir, call_token)
            try:
                path, metadata = self._await(fut, token)
            except _DeadlineExceeded:
                call_token.cancel("timeout")
                raise BuildError(
                    kind=BuildErrorKind.TIMEOUT,
                    message=f"build exceeded {self.timeout:.0f}s",
                    details={"timeout": self.timeout},
                    target=target.id,
                ) from None
        except (BuildError, Cancelled):
            raise
        except Exception as e:
            raise BuildError(
                kind=classify_failure(e),
                message=str(e).splitlines()[0] if str(e) else type(e).__name__,
                details=_details(e),
                target=target.id,
            ) from e
        finally:
            pool.shutdown(wait=False)

        metadata = dict(metadata or {})
        metadata.setdefault("cache", "unknown")
        return Artifact(
            path=Path(path),
            target=target.id,
            platform=target.platform,
            arch=target.arch,
            kind="binary",
            metadata=metadata,
        )

    def _await(self, fut, token: CancelToken):
        # Poll so a pipeline cancel is noticed even if the backend ignores its token.
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        while True:
            done, _ = wait([fut], timeout=0.1)
            if done:
                return fut.result()
            token.raise_if_cancelled()
            if deadline is not None and time.monotonic() >= deadline:
                raise _DeadlineExceeded()


def _details(exc: BaseException) -> dict:
    if isinstance(exc, CommandFailed):
        d = {"exit_code": exc.exit_code}
        if exc.stderr:
            d["stderr"] = exc.stderr[-1000:]
        return d
    return {"error_type": type(exc).__name__}
