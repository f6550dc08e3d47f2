import pytest

from conftest import make_script
from shipmatrix import backends
from shipmatrix.backends import ShimRegistry
from shipmatrix.errors import ValidationError, ValidationErrorKind
from shipmatrix.model import Artifact, Platform, Target, ValidationPolicy
from shipmatrix.validator import BinaryValidator

HOST = Platform("linux", "amd64")


def _artifact(path, target):
    return Artifact(path=path, target=target.id, platform=target.platform, arch=target.arch)


def _validator(shims=None, **kw):
    return BinaryValidator(shims if shims is not None else ShimRegistry({}), host=HOST, **kw)


def test_native_binary_runs(tmp_path, token):
    t = Target("linux", "amd64")
    binary = make_script(tmp_path / "app", 'echo "app 1.0 $1"')
    res = _validator().validate(_artifact(binary, t), t, token)
    assert res.validated
    assert res.shim is None
    assert res.note is None


def test_binary_runs_under_shim(tmp_path, token):
    t = Target("linux", "arm64")
    shims = ShimRegistry({(HOST, Platform("linux", "arm64")): ["/bin/sh"]})
    binary = make_script(tmp_path / "app")
    res = _validator(shims).validate(_artifact(binary, t), t, token)
    assert res.validated
    assert res.shim == ["/bin/sh"]
    assert res.note == "ran under /bin/sh"


def test_shim_not_installed_is_not_offered():
    shims = ShimRegistry(
        {(HOST, Platform("linux", "arm64")): ["qemu-aarch64"]},
        which=lambda name: None,
    )
    assert shims.shim_for(HOST, Platform("linux", "arm64")) is None


def test_missing_shim_best_effort_is_reported_not_failed(tmp_path, token):
    t = Target("windows", "amd64")
    binary = make_script(tmp_path / "app.exe")
    res = _validator().validate(_artifact(binary, t), t, token)
    assert not res.validated
    assert res.note.startswith("validation skipped")
    assert "windows/amd64" in res.note


def test_missing_shim_required_fails(tmp_path, token):
    t = Target("windows", "amd64", validation=ValidationPolicy.REQUIRED)
    binary = make_script(tmp_path / "app.exe")
    with pytest.raises(ValidationError) as exc:
        _validator().validate(_artifact(binary, t), t, token)
    assert exc.value.kind == ValidationErrorKind.SKIPPED


def test_non_zero_exit(tmp_path, token):
    t = Target("linux", "amd64")
    binary = make_script(tmp_path / "app", "echo broken >&2", exit_code=3)
    with pytest.raises(ValidationError) as exc:
        _validator().validate(_artifact(binary, t), t, token)
    assert exc.value.kind == ValidationErrorKind.NON_ZERO_EXIT
    assert exc.value.details["exit_code"] == 3
    assert "broken" in exc.value.details["stderr"]


def test_missing_binary_is_unreachable(tmp_path, token):
    t = Target("linux", "amd64")
    with pytest.raises(ValidationError) as exc:
        _validator().validate(_artifact(tmp_path / "gone", t), t, token)
    assert exc.value.kind == ValidationErrorKind.UNREACHABLE


def test_hanging_binary_is_unreachable(tmp_path, token):
    t = Target("linux", "amd64")
    binary = make_script(tmp_path / "app", "sleep 5")
    with pytest.raises(ValidationError) as exc:
        _validator(timeout=0.3, grace_period=0.1).validate(_artifact(binary, t), t, token)
    assert exc.value.kind == ValidationErrorKind.UNREACHABLE


def test_universal_binary_runs_on_matching_os(tmp_path, token):
    v = BinaryValidator(ShimRegistry({}), host=Platform("darwin", "arm64"))
    assert v.runs_natively(Target("darwin", "universal"))
    assert not v.runs_natively(Target("linux", "universal"))


def test_vanished_shim_carries_install_hint(tmp_path, token, monkeypatch):
    monkeypatch.setitem(backends.TOOL_HINTS, "shipmatrix-missing-shim", "Install the shim.")
    t = Target("linux", "arm64")
    shims = ShimRegistry(
        {(HOST, Platform("linux", "arm64")): ["shipmatrix-missing-shim"]},
        which=lambda name: f"/opt/{name}",
    )
    binary = make_script(tmp_path / "app")
    with pytest.raises(ValidationError) as exc:
        _validator(shims).validate(_artifact(binary, t), t, token)
    assert exc.value.kind == ValidationErrorKind.UNREACHABLE
    assert exc.value.message.endswith("Install the shim.")
