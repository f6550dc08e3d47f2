import textwrap

import pytest

from shipmatrix.dsl import fuse, matrix, target, targets
from shipmatrix.errors import MatrixError
from shipmatrix.matrix import TargetMatrix, find_matrix_files, load_matrix
from shipmatrix.model import PackagingKind, ValidationPolicy


def test_dsl_builds_matrix_in_declaration_order():
    m = matrix(
        target("linux", "amd64", "archive", install_path="/bin/wash"),
        targets("darwin", ["amd64", "arm64"]),
        fuse("universal-darwin", "darwin-amd64", "darwin-arm64"),
        binary="wash",
    )
    assert [t.id for t in m.expand()] == ["linux-amd64", "darwin-amd64", "darwin-arm64"]
    assert m.targets[0].packaging is PackagingKind.ARCHIVE
    assert m.targets[0].validation is ValidationPolicy.BEST_EFFORT
    assert m.fuses[0].targets == ("darwin-amd64", "darwin-arm64")
    assert m.binary == "wash"


def test_expand_is_repeatable():
    m = matrix(targets("linux", ["amd64", "arm64"]))
    assert m.expand() == m.expand()


def test_empty_matrix_rejected():
    with pytest.raises(MatrixError):
        TargetMatrix(targets=[])


def test_duplicate_targets_rejected():
    with pytest.raises(MatrixError) as exc:
        matrix(target("linux", "amd64"), target("linux", "amd64", "archive"))
    assert exc.value.job_ids == ["linux-amd64"]


def test_named_targets_may_share_a_platform():
    m = matrix(
        target("linux", "amd64", "archive", name="linux-amd64-musl"),
        target("linux", "amd64", "container-image", name="linux-amd64-image"),
    )
    assert len(m.targets) == 2


def test_unknown_packaging_rejected():
    with pytest.raises(MatrixError) as exc:
        matrix(target("linux", "amd64", "deb"))
    assert "deb" in str(exc.value)


def test_unknown_validation_policy_rejected():
    with pytest.raises(MatrixError):
        matrix(target("linux", "amd64", validation="sometimes"))


def test_fuse_unknown_target_rejected():
    with pytest.raises(MatrixError) as exc:
        matrix(target("darwin", "amd64"), fuse("u", "darwin-amd64", "darwin-arm64"))
    assert exc.value.job_ids == ["darwin-arm64"]


def test_fuse_mixed_os_rejected():
    with pytest.raises(MatrixError):
        matrix(
            target("darwin", "amd64"),
            target("linux", "arm64"),
            fuse("u", "darwin-amd64", "linux-arm64"),
        )


def test_fuse_needs_two_targets():
    with pytest.raises(MatrixError):
        matrix(target("darwin", "amd64"), fuse("u", "darwin-amd64"))


def test_fuse_repeated_arch_rejected():
    with pytest.raises(MatrixError):
        matrix(
            target("darwin", "amd64", name="a"),
            target("darwin", "amd64", name="b"),
            fuse("u", "a", "b"),
        )


def test_load_matrix_constant(tmp_path):
    path = tmp_path / "release_matrix.py"
    path.write_text(textwrap.dedent("""
        from shipmatrix.dsl import matrix, targets

        MATRIX = matrix(targets("linux", ["amd64", "arm64"]), binary="wash")
    """))
    m = load_matrix(path)
    assert m.binary == "wash"
    assert [t.id for t in m.targets] == ["linux-amd64", "linux-arm64"]


def test_load_matrix_factory(tmp_path):
    path = tmp_path / "nightly_matrix.py"
    path.write_text(textwrap.dedent("""
        from shipmatrix import dsl

        def matrix():
            return dsl.matrix(dsl.target("windows", "amd64", "archive"))
    """))
    assert load_matrix(path).targets[0].id == "windows-amd64"


def test_load_matrix_without_definition(tmp_path):
    path = tmp_path / "empty_matrix.py"
    path.write_text("from shipmatrix.dsl import matrix, target\n")
    with pytest.raises(TypeError):
        load_matrix(path)


def test_load_matrix_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_matrix(tmp_path / "nope.py")


def test_find_matrix_files_prefers_release_matrix(tmp_path):
    for name in ("zeta_matrix.py", "release_matrix.py", "alpha_matrix.py", "other.py"):
        (tmp_path / name).write_text("")
    found = [p.name for p in find_matrix_files(tmp_path)]
    assert found == ["release_matrix.py", "alpha_matrix.py", "zeta_matrix.py"]
