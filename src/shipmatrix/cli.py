# cli.py
from __future__ import annotations

import dataclasses
import signal
import sys
from pathlib import Path

import click

from . import settings
from .backends import CommandBuildBackend, DockerRuntime, tool_hint
from .cancel import CancelToken, SupersedeWatch
from .dag import topo_levels
from .errors import GraphError
from .matrix import find_matrix_files, load_matrix
from .plan import Toolchain, plan_jobs
from .report import write_report
from .runner import run_jobs
from .ui.console import Console, get_console, set_console


def discover_matrix(matrix_arg: str | None) -> Path:
    """
    Discover matrix file from argument or default.

    Raises:
        SystemExit: If no matrix file can be found or several exist
    """
    console = get_console()

    if matrix_arg:
        matrix_path = Path(matrix_arg)
        if not matrix_path.exists() and matrix_path.suffix != ".py":
            matrix_path = Path(str(matrix_path) + ".py")
        if not matrix_path.exists():
            console.print_error(
                "Matrix file not found",
                f"Could not find matrix file: {matrix_arg}",
                suggestion="Create a matrix file or specify a different path:\n  shipmatrix run --matrix my_matrix.py",
            )
            sys.exit(1)
        return matrix_path

    matrix_files = find_matrix_files(".")

    if len(matrix_files) == 0:
        console.print_error(
            "No matrix file found",
            "Could not find any target matrix files.",
            details=[
                "Looked for:",
                "  release_matrix.py",
                "  *_matrix.py",
            ],
            suggestion="Create a matrix file:\n  release_matrix.py\n\nOr specify one explicitly:\n  shipmatrix run --matrix my_matrix.py",
        )
        sys.exit(1)

    if len(matrix_files) > 1:
        file_list = "\n".join(f"  {f}" for f in matrix_files)
        console.print_error(
            "Multiple matrix files found",
            "Found multiple matrix files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a matrix explicitly:\n  shipmatrix run --matrix release_matrix.py",
        )
        sys.exit(1)

    return matrix_files[0]


def _load_or_exit(matrix_path: Path, debug: bool):
    console = get_console()
    try:
        return load_matrix(matrix_path)
    except GraphError as e:
        console.print_error(
            "Invalid target matrix",
            str(e),
            details=list(e.job_ids) or None,
        )
        sys.exit(1)
    except Exception as e:
        console.print_error(
            "Failed to load matrix",
            f"Could not load matrix from {matrix_path}",
            details=[str(e)],
        )
        if debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


def _install_signal_handlers(token: CancelToken) -> dict:
    """First SIGINT/SIGTERM cancels the run; a second one aborts. Returns the previous handlers."""
    def handler(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        get_console().print_info(f"\nReceived signal {signum}, cancelling run...")
        token.cancel(f"received signal {signal.Signals(signum).name}")

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    return previous


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print failures and the final summary")
@click.pass_context
def cli(ctx, debug, quiet):
    """shipmatrix: multi-platform release build orchestrator."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--matrix",
    "matrix_arg",
    default=None,
    help="Matrix file path (defaults to release_matrix.py if present)",
)
@click.option("--workers", default=None, type=int, help="Maximum number of jobs running at once")
@click.option("--work-dir", default=settings.WORK_DIR, show_default=True, help="Scratch directory for job outputs")
@click.option("--build-command", default=settings.BUILD_COMMAND, show_default=True, help="Build command template")
@click.option("--build-timeout", default=settings.BUILD_TIMEOUT, type=float, show_default=True, help="Per-build timeout in seconds")
@click.option("--validate-timeout", default=settings.VALIDATE_TIMEOUT, type=float, show_default=True, help="Smoke-test timeout in seconds")
@click.option("--grace-period", default=settings.GRACE_PERIOD, type=float, show_default=True, help="Seconds in-flight jobs get to stop after cancellation")
@click.option("--publish-dir", default=None, help="Publish destination (overrides the matrix)")
@click.option("--docker/--no-docker", default=False, show_default=True, help="Load and smoke-test container images with docker")
@click.option("--group", default=None, help="Concurrency group; a newer run in the same group cancels this one")
@click.option("--report", "report_path", default=None, help="Write a JSON run report to this path")
@click.pass_context
def run(
    ctx,
    matrix_arg,
    workers,
    work_dir,
    build_command,
    build_timeout,
    validate_timeout,
    grace_period,
    publish_dir,
    docker,
    group,
    report_path,
):
    """Build, validate, package and publish every target in a matrix."""
    console = get_console()
    debug = ctx.obj.get("debug", False)

    matrix_path = discover_matrix(matrix_arg)
    matrix = _load_or_exit(matrix_path, debug)
    if publish_dir:
        matrix = dataclasses.replace(matrix, publish_dir=publish_dir)

    runtime = None
    if docker:
        runtime = DockerRuntime()
        if not runtime.available():
            console.print_error(
                "Docker not available",
                "--docker was given but the docker CLI was not found on PATH.",
                suggestion=f"{tool_hint(runtime.docker)} Or run without --docker.",
            )
            sys.exit(1)

    token = CancelToken()
    previous_handlers = _install_signal_handlers(token)
    watch = SupersedeWatch(group, token, settings.STATE_DIR) if group else None

    try:
        backend = CommandBuildBackend(build_command, binary=matrix.binary, grace_period=grace_period)
        toolchain = Toolchain.create(
            backend,
            work_dir=work_dir,
            image_name=matrix.image_name or matrix.binary,
            runtime=runtime,
            publish_dir=matrix.publish_dir,
            build_timeout=build_timeout,
            validate_timeout=validate_timeout,
            grace_period=grace_period,
        )
        jobs = plan_jobs(matrix, toolchain)
        max_workers = workers or settings.default_workers()
        console.print_run_started(
            matrix=matrix_path.name,
            target_count=len(matrix.targets),
            job_count=len(jobs),
            workers=max_workers,
        )
        if watch is not None:
            watch.start()
            console.print_debug(f"Joined concurrency group {group} as run {watch.run_id}")

        result = run_jobs(jobs, max_workers=max_workers, token=token, grace_period=grace_period)

        console.print_results(result)
        if report_path:
            out = write_report(result, report_path)
            console.print_info(f"Report written to {out}")
        sys.exit(result.exit_code)

    except GraphError as e:
        console.print_error("Invalid job graph", str(e), details=list(e.job_ids) or None)
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        if watch is not None:
            watch.stop()
        for sig, handler in previous_handlers.items():
            signal.signal(sig, handler)


@cli.command()
@click.option(
    "--matrix",
    "matrix_arg",
    default=None,
    help="Matrix file path (defaults to release_matrix.py if present)",
)
@click.option("--publish-dir", default=None, help="Plan publish jobs into this destination")
@click.pass_context
def plan(ctx, matrix_arg, publish_dir):
    """Print the job graph as parallel stages without running anything."""
    console = get_console()

    matrix_path = discover_matrix(matrix_arg)
    matrix = _load_or_exit(matrix_path, ctx.obj.get("debug", False))
    if publish_dir:
        matrix = dataclasses.replace(matrix, publish_dir=publish_dir)

    try:
        backend = CommandBuildBackend(settings.BUILD_COMMAND, binary=matrix.binary)
        toolchain = Toolchain.create(
            backend,
            work_dir=settings.WORK_DIR,
            image_name=matrix.image_name or matrix.binary,
            publish_dir=matrix.publish_dir,
        )
        jobs = plan_jobs(matrix, toolchain)
    except GraphError as e:
        console.print_error("Invalid job graph", str(e), details=list(e.job_ids) or None)
        sys.exit(1)

    console.print_header(f"{matrix_path.name}: {len(jobs)} job(s)")
    console.print_plan(topo_levels(jobs))


if __name__ == "__main__":
    cli()
