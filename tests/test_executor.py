import errno

import pytest

from conftest import FakeBuildBackend
from shipmatrix import backends
from shipmatrix.backends import TOOL_HINTS, CommandBuildBackend, tool_hint
from shipmatrix.cancel import CancelToken
from shipmatrix.errors import BuildError, BuildErrorKind, Cancelled, CommandFailed
from shipmatrix.executor import BuildExecutor, classify_failure
from shipmatrix.model import Target


LINUX = Target("linux", "amd64", install_path="/bin/wash")


class RaisingBackend:
    def __init__(self, exc):
        self.exc = exc

    def invoke(self, target, out_dir, token):
        raise self.exc


def test_build_returns_artifact_with_cache_metadata(tmp_path, token):
    backend = FakeBuildBackend(cache="miss")
    art = BuildExecutor(backend, tmp_path).build(LINUX, token)

    assert art.path.is_file()
    assert art.path.name == "wash"
    assert art.target == "linux-amd64"
    assert (art.platform, art.arch) == ("linux", "amd64")
    assert art.metadata["cache"] == "miss"
    assert backend.calls == ["linux-amd64"]


def test_missing_cache_info_is_unknown(tmp_path, token):
    class NoMeta:
        def invoke(self, target, out_dir, token):
            p = out_dir / "wash"
            p.write_text("x")
            return p, {}

    art = BuildExecutor(NoMeta(), tmp_path).build(LINUX, token)
    assert art.metadata["cache"] == "unknown"


def test_timeout(tmp_path, token):
    backend = FakeBuildBackend(delays={"linux-amd64": 5})
    with pytest.raises(BuildError) as exc:
        BuildExecutor(backend, tmp_path, timeout=0.2).build(LINUX, token)
    assert exc.value.kind == BuildErrorKind.TIMEOUT
    assert exc.value.target == "linux-amd64"
    # the pipeline token is untouched by a per-build timeout
    assert not token.cancelled


def test_toolchain_failure(tmp_path, token):
    backend = FakeBuildBackend(fail={"linux-amd64"})
    with pytest.raises(BuildError) as exc:
        BuildExecutor(backend, tmp_path).build(LINUX, token)
    assert exc.value.kind == BuildErrorKind.TOOLCHAIN_FAILURE
    assert exc.value.details["exit_code"] == 1


def test_oom_kill_is_resource_exhaustion(tmp_path, token):
    backend = RaisingBackend(CommandFailed(cmd="nix build", exit_code=137))
    with pytest.raises(BuildError) as exc:
        BuildExecutor(backend, tmp_path).build(LINUX, token)
    assert exc.value.kind == BuildErrorKind.RESOURCE_EXHAUSTION


@pytest.mark.parametrize("exc, kind", [
    (CommandFailed(cmd="x", exit_code=1, stderr="write: No space left on device"), BuildErrorKind.RESOURCE_EXHAUSTION),
    (OSError(errno.ENOSPC, "No space left on device"), BuildErrorKind.RESOURCE_EXHAUSTION),
    (MemoryError(), BuildErrorKind.RESOURCE_EXHAUSTION),
    (CommandFailed(cmd="x", exit_code=2, stderr="undefined reference"), BuildErrorKind.TOOLCHAIN_FAILURE),
    (FileNotFoundError(errno.ENOENT, "nix"), BuildErrorKind.TOOLCHAIN_FAILURE),
])
def test_classify_failure(exc, kind):
    assert classify_failure(exc) == kind


def test_cancelled_token_prevents_build(tmp_path):
    token = CancelToken()
    token.cancel("stop")
    backend = FakeBuildBackend()
    with pytest.raises(Cancelled):
        BuildExecutor(backend, tmp_path).build(LINUX, token)
    assert backend.calls == []


def test_command_backend_reports_cache_miss(tmp_path, token):
    backend = CommandBuildBackend(
        "mkdir -p {out}/bin && echo '#!/bin/sh' > {out}{install_path} && echo \"building '{target}'\"",
        binary="wash",
    )
    path, meta = backend.invoke(LINUX, tmp_path, token)
    assert path == tmp_path / "result" / "bin" / "wash"
    assert meta["cache"] == "miss"
    assert "linux-amd64" in meta["command"]


def test_command_backend_reports_cache_hit(tmp_path, token):
    backend = CommandBuildBackend("mkdir -p {out}/bin && touch {out}{install_path}", binary="wash")
    _, meta = backend.invoke(LINUX, tmp_path, token)
    assert meta["cache"] == "hit"


def test_command_backend_missing_artifact(tmp_path, token):
    backend = CommandBuildBackend("true", binary="wash")
    with pytest.raises(CommandFailed) as exc:
        backend.invoke(LINUX, tmp_path, token)
    assert "artifact is missing" in exc.value.stderr


@pytest.mark.parametrize("cmd, tool", [
    ("nix build -L .#wash-x86_64-unknown-linux-gnu", "nix"),
    (["/usr/bin/docker", "load", "-i", "image.tar"], "docker"),
    (["qemu-aarch64", "./wash", "--version"], "qemu-aarch64"),
])
def test_tool_hint_for_known_tools(cmd, tool):
    assert tool_hint(cmd) == TOOL_HINTS[tool]


def test_tool_hint_unknown_or_empty():
    assert tool_hint("make release") is None
    assert tool_hint("") is None
    assert tool_hint([]) is None


def test_missing_build_tool_carries_install_hint(tmp_path, token, monkeypatch):
    monkeypatch.setitem(backends.TOOL_HINTS, "shipmatrix-no-such-tool", "Install shipmatrix-no-such-tool.")
    backend = CommandBuildBackend("shipmatrix-no-such-tool build {target}", binary="wash")

    with pytest.raises(CommandFailed) as exc:
        backend.invoke(LINUX, tmp_path, token)
    assert exc.value.exit_code == 127
    assert exc.value.hint == "Install shipmatrix-no-such-tool."

    with pytest.raises(BuildError) as build_exc:
        BuildExecutor(backend, tmp_path).build(LINUX, token)
    assert build_exc.value.kind == BuildErrorKind.TOOLCHAIN_FAILURE
    assert "Install shipmatrix-no-such-tool." in build_exc.value.message


def test_other_build_failures_carry_no_hint(tmp_path, token):
    backend = CommandBuildBackend("exit 127", binary="wash")
    with pytest.raises(CommandFailed) as exc:
        backend.invoke(LINUX, tmp_path, token)
    assert exc.value.hint == ""
