import json
import textwrap

from click.testing import CliRunner

from shipmatrix.backends import TOOL_HINTS
from shipmatrix.cli import cli

# plan9 has no compatibility shim anywhere, so validation is skipped best-effort
MATRIX = textwrap.dedent("""
    from shipmatrix.dsl import matrix, target

    MATRIX = matrix(
        target("plan9", "amd64", "archive", install_path="/bin/wash"),
        binary="wash",
    )
""")

BUILD = "mkdir -p {out}/bin && echo '#!/bin/sh' > {out}{install_path}"


def test_plan_prints_stages(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "release_matrix.py").write_text(MATRIX)

    result = CliRunner().invoke(cli, ["plan"])
    assert result.exit_code == 0, result.output
    assert "=== Stage 1 ===" in result.output
    assert "build:plan9-amd64" in result.output
    assert "package:plan9-amd64" in result.output


def test_run_writes_report(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "release_matrix.py").write_text(MATRIX)

    result = CliRunner().invoke(cli, [
        "run",
        "--build-command", BUILD,
        "--work-dir", str(tmp_path / "work"),
        "--publish-dir", str(tmp_path / "dist"),
        "--report", str(tmp_path / "report.json"),
        "--workers", "2",
    ])
    assert result.exit_code == 0, result.output
    assert "PIPELINE: COMPLETED-SUCCESS" in result.output

    report = json.loads((tmp_path / "report.json").read_text())
    assert report["status"] == "completed-success"
    assert {j["id"] for j in report["jobs"]} == {
        "build:plan9-amd64",
        "validate:plan9-amd64",
        "package:plan9-amd64",
        "publish:package:plan9-amd64",
    }
    assert (tmp_path / "dist" / "wash-plan9-amd64.tar.gz").exists()


def test_run_failing_build_exits_1(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "release_matrix.py").write_text(MATRIX)

    result = CliRunner().invoke(cli, ["run", "--build-command", "exit 3", "--work-dir", str(tmp_path / "work")])
    assert result.exit_code == 1
    assert "JOB FAILED: build:plan9-amd64" in result.output


def test_missing_matrix(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["run"])
    assert result.exit_code == 1


def test_invalid_matrix(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "bad_matrix.py").write_text(textwrap.dedent("""
        from shipmatrix.dsl import matrix, target

        MATRIX = matrix(target("linux", "amd64"), target("linux", "amd64"))
    """))
    result = CliRunner().invoke(cli, ["plan", "--matrix", "bad_matrix.py"])
    assert result.exit_code == 1


def test_docker_missing_suggests_install(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "release_matrix.py").write_text(MATRIX)
    monkeypatch.setattr("shipmatrix.cli.DockerRuntime.available", lambda self: False)

    result = CliRunner().invoke(cli, ["run", "--docker", "--work-dir", str(tmp_path / "work")])
    assert result.exit_code == 1
    assert TOOL_HINTS["docker"] in result.output
