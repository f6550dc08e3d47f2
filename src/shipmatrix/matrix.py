# matrix.py
from __future__ import annotations

import runpy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .errors import MatrixError
from .model import FuseDecl, PackagingKind, Target, ValidationPolicy


def _coerce_packaging(value, target_id: str) -> PackagingKind:
    try:
        return PackagingKind(value)
    except ValueError:
        known = [k.value for k in PackagingKind]
        raise MatrixError(
            f"Target '{target_id}' has unknown packaging kind {value!r}. Known kinds: {known}",
            [target_id],
        ) from None


def _coerce_policy(value, target_id: str) -> ValidationPolicy:
    try:
        return ValidationPolicy(value)
    except ValueError:
        known = [p.value for p in ValidationPolicy]
        raise MatrixError(
            f"Target '{target_id}' has unknown validation policy {value!r}. Known policies: {known}",
            [target_id],
        ) from None


@dataclass
class TargetMatrix:
    """
    Declarative description of everything a release builds.

    Validated on construction; `expand()` is pure and keeps declaration order.
    """
    targets: List[Target]
    fuses: List[FuseDecl] = field(default_factory=list)
    binary: str = "app"
    image_name: Optional[str] = None
    publish_dir: Optional[str] = None

    def __post_init__(self) -> None:
        self.targets = [self._normalize(t) for t in self.targets]
        self.fuses = list(self.fuses)
        self._validate()

    @staticmethod
    def _normalize(t: Target) -> Target:
        # Targets may be declared with plain strings; coerce them once, here.
        packaging = _coerce_packaging(t.packaging, t.id)
        validation = _coerce_policy(t.validation, t.id)
        if packaging is t.packaging and validation is t.validation:
            return t
        return Target(
            platform=t.platform,
            arch=t.arch,
            packaging=packaging,
            install_path=t.install_path,
            triple=t.triple,
            name=t.name,
            validation=validation,
            optional=t.optional,
            smoke_args=tuple(t.smoke_args),
        )

    def _validate(self) -> None:
        if not self.targets:
            raise MatrixError("Target matrix is empty")

        ids = [t.id for t in self.targets]
        if len(set(ids)) != len(ids):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise MatrixError(f"Duplicate target ids found: {dupes}", dupes)

        by_id = self.by_id()
        fuse_names = [f.name for f in self.fuses]
        if len(set(fuse_names)) != len(fuse_names):
            dupes = sorted({n for n in fuse_names if fuse_names.count(n) > 1})
            raise MatrixError(f"Duplicate fuse names found: {dupes}", dupes)

        for decl in self.fuses:
            missing = [t for t in decl.targets if t not in by_id]
            if missing:
                raise MatrixError(
                    f"Fuse '{decl.name}' references unknown targets {missing}. "
                    f"Known targets: {sorted(by_id)}",
                    missing,
                )
            if len(decl.targets) < 2:
                raise MatrixError(
                    f"Fuse '{decl.name}' needs at least two targets, got {list(decl.targets)}",
                    list(decl.targets),
                )
            inputs = [by_id[t] for t in decl.targets]
            platforms = sorted({t.platform for t in inputs})
            if len(platforms) != 1:
                raise MatrixError(
                    f"Fuse '{decl.name}' mixes operating systems {platforms}",
                    list(decl.targets),
                )
            archs = [t.arch for t in inputs]
            if len(set(archs)) != len(archs):
                raise MatrixError(
                    f"Fuse '{decl.name}' repeats an architecture: {archs}",
                    list(decl.targets),
                )

    def by_id(self) -> Dict[str, Target]:
        return {t.id: t for t in self.targets}

    def expand(self) -> List[Target]:
        return list(self.targets)


# ----------------------------------------------------------------------
# Matrix loading (local python file)
# ----------------------------------------------------------------------

def load_matrix(path: str | Path) -> TargetMatrix:
    """
    Load a target matrix from a python file path.

    The file must define either:
      - matrix() -> TargetMatrix
      - MATRIX = TargetMatrix(...)
    """
    m_path = Path(path).expanduser().resolve()
    if not m_path.exists():
        raise FileNotFoundError(f"Matrix file not found: {m_path}")
    if m_path.suffix != ".py":
        raise ValueError(f"Matrix must be a .py file, got: {m_path.name}")

    module_name = f"shipmatrix_matrix_{m_path.stem}"
    globals_dict = runpy.run_path(str(m_path), run_name=module_name)

    loaded = None
    factory = globals_dict.get("matrix")
    if "MATRIX" in globals_dict:
        loaded = globals_dict["MATRIX"]
    elif callable(factory) and getattr(factory, "__module__", "") != "shipmatrix.dsl":
        # the imported dsl helper is not a matrix definition
        loaded = factory()

    if not isinstance(loaded, TargetMatrix):
        raise TypeError(
            "Matrix file must return/define a TargetMatrix. "
            "Define matrix() -> TargetMatrix or MATRIX = TargetMatrix(...)."
        )
    return loaded


def find_matrix_files(directory: str | Path = ".") -> List[Path]:
    """release_matrix.py first, then any other *_matrix.py, sorted."""
    current = Path(directory)
    found: List[Path] = []
    default = current / "release_matrix.py"
    if default.exists():
        found.append(default)
    for p in sorted(current.glob("*_matrix.py")):
        if p != default:
            found.append(p)
    return found
