from shipmatrix.model import JobKind, JobOutcome, JobStatus, PipelineResult, PipelineStatus
from shipmatrix.ui.console import Console


def _cancelled_run():
    return PipelineResult(
        status=PipelineStatus.CANCELLED,
        jobs=[
            JobOutcome("build:linux-amd64", JobKind.BUILD, "linux-amd64", JobStatus.SUCCEEDED, cache="hit"),
            JobOutcome(
                "build:linux-arm64", JobKind.BUILD, "linux-arm64", JobStatus.FAILED,
                error_kind="toolchain-failure", error="linker failed",
            ),
            JobOutcome(
                "validate:linux-arm64", JobKind.VALIDATE, "linux-arm64", JobStatus.SKIPPED,
                error="dependency build:linux-arm64 did not succeed",
            ),
            JobOutcome(
                "validate:linux-amd64", JobKind.VALIDATE, "linux-amd64", JobStatus.CANCELLED,
                error="received signal SIGINT",
            ),
        ],
        cancel_reason="received signal SIGINT",
    )


def test_results_show_why_jobs_did_not_run(capsys):
    Console().print_results(_cancelled_run())
    out = capsys.readouterr().out

    assert "build:linux-arm64: FAILED - toolchain-failure: linker failed" in out
    assert "validate:linux-arm64: SKIPPED - dependency build:linux-arm64 did not succeed" in out
    assert "validate:linux-amd64: CANCELLED - received signal SIGINT" in out
    assert "PIPELINE: CANCELLED (exit 130)" in out


def test_results_and_progress_show_cache_status(capsys):
    console = Console()
    console.print_job_succeeded("build:linux-amd64", 2.0, cache="miss")
    console.print_results(_cancelled_run())
    out = capsys.readouterr().out

    assert "JOB SUCCEEDED: build:linux-amd64 (2.0s) (cache: miss)" in out
    assert "build:linux-amd64: SUCCESS (cache: hit)" in out
