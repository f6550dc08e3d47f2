# report.py
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from .model import JobKind, JobStatus, PipelineResult, PipelineStatus

# -------------------- Schemas --------------------

class JobReport(BaseModel):
    id: str
    kind: JobKind
    target: Optional[str] = None
    status: JobStatus
    required: bool = True
    duration: float = 0.0
    error_kind: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    cache: Optional[str] = None


class PipelineReport(BaseModel):
    status: PipelineStatus
    exit_code: int
    duration: float = 0.0
    cancel_reason: Optional[str] = None
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    counts: dict[str, int] = Field(default_factory=dict)
    jobs: List[JobReport] = Field(default_factory=list)


# -------------------- Builders --------------------

def build_report(result: PipelineResult) -> PipelineReport:
    jobs = [
        JobReport(
            id=o.id,
            kind=o.kind,
            target=o.target,
            status=o.status,
            required=o.required,
            duration=o.duration,
            error_kind=o.error_kind,
            error=o.error,
            note=o.note,
            cache=o.cache,
        )
        for o in result.jobs
    ]
    counts: dict[str, int] = {s.value: 0 for s in JobStatus if s.terminal}
    for j in jobs:
        counts[j.status.value] = counts.get(j.status.value, 0) + 1

    return PipelineReport(
        status=result.status,
        exit_code=result.exit_code,
        duration=result.duration,
        cancel_reason=result.cancel_reason,
        counts=counts,
        jobs=jobs,
    )


def write_report(result: PipelineResult, path: str | Path) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(build_report(result).model_dump_json(indent=2), encoding="utf-8")
    return out
