# src/shipmatrix/dsl.py
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Union

from .matrix import TargetMatrix
from .model import FuseDecl, PackagingKind, Target, ValidationPolicy


# ---------------------------------------------------------------------
# Target helper
# ---------------------------------------------------------------------

def target(
    platform: str,
    arch: str,
    packaging: Union[str, PackagingKind] = PackagingKind.NONE,
    *,
    install_path: str = "/bin/app",
    triple: str | None = None,
    name: str | None = None,
    validation: Union[str, ValidationPolicy] = ValidationPolicy.BEST_EFFORT,
    optional: bool = False,
    smoke_args: Sequence[str] = ("--version",),
) -> Target:
    """Create a target. Strings are accepted for packaging/validation and checked by the matrix."""
    return Target(
        platform=platform,
        arch=arch,
        packaging=packaging,  # type: ignore[arg-type]
        install_path=install_path,
        triple=triple,
        name=name,
        validation=validation,  # type: ignore[arg-type]
        optional=optional,
        smoke_args=tuple(smoke_args),
    )


def targets(platform: str, archs: Iterable[str], **kwargs) -> List[Target]:
    """
    Minimal matrix expander.

    Example:
        targets("darwin", ["amd64", "arm64"], packaging="archive")
    """
    return [target(platform, a, **kwargs) for a in archs]


# ---------------------------------------------------------------------
# Fuse helper
# ---------------------------------------------------------------------

def fuse(name: str, *target_ids: str, optional: bool = False) -> FuseDecl:
    """fuse("universal-darwin", "darwin-amd64", "darwin-arm64")"""
    return FuseDecl(name=name, targets=tuple(target_ids), optional=optional)


# ---------------------------------------------------------------------
# Matrix helper (single-file story)
# ---------------------------------------------------------------------

def matrix(
    *items: Union[Target, FuseDecl, Iterable[Target]],
    binary: str = "app",
    image_name: Optional[str] = None,
    publish_dir: Optional[str] = None,
) -> TargetMatrix:
    """
    Matrix definition helper. Targets, lists of targets and fuse declarations
    can be mixed freely:

        from shipmatrix import matrix, target, targets, fuse

        MATRIX = matrix(
            target("linux", "amd64", "archive", install_path="/bin/wash"),
            targets("darwin", ["amd64", "arm64"], install_path="/bin/wash"),
            fuse("universal-darwin", "darwin-amd64", "darwin-arm64"),
            binary="wash",
        )
    """
    ts: List[Target] = []
    fs: List[FuseDecl] = []
    for item in items:
        if isinstance(item, Target):
            ts.append(item)
        elif isinstance(item, FuseDecl):
            fs.append(item)
        else:
            ts.extend(item)
    return TargetMatrix(
        targets=ts,
        fuses=fs,
        binary=binary,
        image_name=image_name,
        publish_dir=publish_dir,
    )
