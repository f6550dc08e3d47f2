"""Console output formatting utilities for shipmatrix."""

from __future__ import annotations

import sys
import threading
from typing import List, Optional

from ..model import JobStatus, PipelineResult

_STATUS_LABELS = {
    JobStatus.SUCCEEDED: "SUCCESS",
    JobStatus.FAILED: "FAILED",
    JobStatus.SKIPPED: "SKIPPED",
    JobStatus.CANCELLED: "CANCELLED",
    JobStatus.PENDING: "PENDING",
    JobStatus.RUNNING: "RUNNING",
}


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, suppress per-job progress lines
        """
        self.debug = debug
        self.quiet = quiet
        # job events arrive from the coordinator while workers run
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        matrix: str,
        target_count: int,
        job_count: int,
        workers: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nPIPELINE STARTED",
            f"Matrix: {matrix}",
            f"Targets: {target_count}",
            f"Jobs: {job_count}",
            f"Workers: {workers}",
            "",
        )

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the job graph as parallel stages."""
        for n, level in enumerate(levels, start=1):
            self._out(f"=== Stage {n} ===", *[f"  {job_id}" for job_id in level])

    def print_job_start(self, job_id: str) -> None:
        if not self.quiet:
            self._out(f"JOB STARTED: {job_id}")

    def print_job_succeeded(
        self,
        job_id: str,
        duration: float,
        note: Optional[str] = None,
        cache: Optional[str] = None,
    ) -> None:
        if self.quiet:
            return
        line = f"JOB SUCCEEDED: {job_id} ({duration:.1f}s)"
        if cache:
            line += f" (cache: {cache})"
        if note:
            line += f" [{note}]"
        self._out(line)

    def print_job_failed(self, job_id: str, reason: str, detail: Optional[str] = None) -> None:
        """
        Print failure message.

        Args:
            job_id: Failing job
            reason: One-line "kind: message"
            detail: Full error text, shown in debug mode only
        """
        lines = [f"JOB FAILED: {job_id}", f"Error: {reason}"]
        if self.debug and detail and detail != reason:
            lines.append(f"Error details: {detail}")
        self._out(*lines)

    def print_job_skipped(self, job_id: str, reason: str) -> None:
        if not self.quiet:
            self._out(f"JOB SKIPPED: {job_id} ({reason})")

    def print_job_cancelled(self, job_id: str, reason: str) -> None:
        if not self.quiet:
            self._out(f"JOB CANCELLED: {job_id} ({reason})")

    def print_results(self, result: PipelineResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for o in result.jobs:
            label = _STATUS_LABELS[o.status]
            optional = "" if o.required else " (optional)"
            line = f"  {o.id}: {label}{optional}"
            if o.status is JobStatus.FAILED and o.error:
                line += f" - {o.error_kind}: {o.error}"
            elif o.status in (JobStatus.SKIPPED, JobStatus.CANCELLED) and o.error:
                line += f" - {o.error}"
            elif o.note:
                line += f" - {o.note}"
            if o.cache:
                line += f" (cache: {o.cache})"
            lines.append(line)
        lines.append("")
        lines.append(f"PIPELINE: {result.status.value.upper()} (exit {result.exit_code})")
        if result.cancel_reason:
            lines.append(f"Reason: {result.cancel_reason}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
