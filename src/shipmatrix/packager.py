# packager.py
from __future__ import annotations

import gzip
import hashlib
import io
import json
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Optional

from .backends import ContainerRuntime
from .cancel import CancelToken
from .errors import CommandFailed, CommandTimeout, PackageError
from .model import Artifact, PackagedUnit, PackagingKind, Platform, Target, host_platform

EXEC_MODE = 0o755
DIR_MODE = 0o755


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _install_parts(install_path: str) -> List[str]:
    """'/usr/local/bin/wash' -> ['usr', 'usr/local', 'usr/local/bin']"""
    parts = PurePosixPath(install_path.lstrip("/")).parts[:-1]
    return ["/".join(parts[: n + 1]) for n in range(len(parts))]


def _tar_dir(name: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = DIR_MODE
    info.mtime = 0
    return info


def _tar_bytes(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    info.mtime = 0
    tar.addfile(info, io.BytesIO(data))


class Packager:
    """
    Wraps a validated binary into a distributable unit.

    Only validated binaries reach the packager: package jobs need their
    target's validate job, so no runtime check happens here.
    """

    def __init__(
        self,
        work_dir: str | Path,
        *,
        image_name: str = "app",
        runtime: Optional[ContainerRuntime] = None,
        host: Platform | None = None,
    ):
        self.work_dir = Path(work_dir)
        self.image_name = image_name
        self.runtime = runtime
        self.host = host or host_platform()

    def package(self, artifact: Artifact, target: Target, token: CancelToken) -> PackagedUnit:
        token.raise_if_cancelled()
        binary = Path(artifact.path)
        if not binary.is_file():
            raise PackageError(kind="missing-artifact", message=f"binary not found: {binary}", target=target.id)

        out_dir = self.work_dir / "package" / target.id
        out_dir.mkdir(parents=True, exist_ok=True)

        if target.packaging is PackagingKind.ARCHIVE:
            path = self._archive(binary, target, out_dir)
            return PackagedUnit(path=path, kind=target.packaging, target=target.id, sha256=sha256_file(path))

        if target.packaging is PackagingKind.CONTAINER_IMAGE:
            path, ref = self._image(binary, target, out_dir)
            token.raise_if_cancelled()
            if self.runtime is not None and self._runnable(target):
                self._verify_image(path, target, token)
            return PackagedUnit(
                path=path, kind=target.packaging, target=target.id, sha256=sha256_file(path), image_ref=ref
            )

        raise PackageError(
            kind="unsupported-packaging",
            message=f"nothing to package for packaging kind {target.packaging.value!r}",
            target=target.id,
        )

    # ------------------------------------------------------------------
    # archives
    # ------------------------------------------------------------------

    def _archive(self, binary: Path, target: Target, out_dir: Path) -> Path:
        member = target.install_path.lstrip("/")
        data = binary.read_bytes()

        if target.platform == "windows":
            path = out_dir / f"{self.image_name}-{target.id}.zip"
            with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                info = zipfile.ZipInfo(member, date_time=(1980, 1, 1, 0, 0, 0))
                info.external_attr = (0o100000 | EXEC_MODE) << 16
                zf.writestr(info, data)
            return path

        path = out_dir / f"{self.image_name}-{target.id}.tar.gz"
        with gzip.GzipFile(path, "wb", mtime=0) as gz, tarfile.open(fileobj=gz, mode="w") as tar:
            for d in _install_parts(target.install_path):
                tar.addfile(_tar_dir(d))
            _tar_bytes(tar, member, data, EXEC_MODE)
        return path

    # ------------------------------------------------------------------
    # container images (docker-archive format)
    # ------------------------------------------------------------------

    def _image(self, binary: Path, target: Target, out_dir: Path):
        ref = f"{self.image_name}:{target.id}"

        layer_buf = io.BytesIO()
        with tarfile.open(fileobj=layer_buf, mode="w") as layer:
            for d in _install_parts(target.install_path):
                layer.addfile(_tar_dir(d))
            _tar_bytes(layer, target.install_path.lstrip("/"), binary.read_bytes(), EXEC_MODE)
        layer_bytes = layer_buf.getvalue()
        layer_digest = hashlib.sha256(layer_bytes).hexdigest()

        config = {
            "architecture": target.arch,
            "os": target.platform,
            "config": {
                "Entrypoint": [target.install_path],
                "Env": ["PATH=/bin:/usr/bin:/usr/local/bin"],
            },
            "rootfs": {"type": "layers", "diff_ids": [f"sha256:{layer_digest}"]},
            "history": [{"created_by": f"shipmatrix package {target.id}"}],
        }
        config_bytes = json.dumps(config, sort_keys=True, separators=(",", ":")).encode("utf-8")
        config_digest = hashlib.sha256(config_bytes).hexdigest()

        manifest = [{
            "Config": f"{config_digest}.json",
            "RepoTags": [ref],
            "Layers": [f"{layer_digest}/layer.tar"],
        }]

        path = out_dir / f"{self.image_name}-{target.id}.image.tar"
        with tarfile.open(path, "w") as tar:
            tar.addfile(_tar_dir(layer_digest))
            _tar_bytes(tar, f"{layer_digest}/layer.tar", layer_bytes)
            _tar_bytes(tar, f"{config_digest}.json", config_bytes)
            _tar_bytes(tar, "manifest.json", json.dumps(manifest).encode("utf-8"))
            _tar_bytes(tar, "repositories", json.dumps(
                {self.image_name: {target.id: layer_digest}}
            ).encode("utf-8"))
        return path, ref

    def _runnable(self, target: Target) -> bool:
        return target.platform == "linux" and target.arch == self.host.arch

    def _verify_image(self, path: Path, target: Target, token: CancelToken) -> None:
        try:
            ref = self.runtime.load_image(path, token)
            exit_code = self.runtime.run_image(ref, list(target.smoke_args), token)
        except (CommandFailed, CommandTimeout, OSError) as e:
            raise PackageError(
                kind="image-verification",
                message=f"could not load/run image {path.name}: {e}",
                target=target.id,
            ) from e
        if exit_code != 0:
            raise PackageError(
                kind="image-verification",
                message=f"image {ref} exited with {exit_code}",
                details={"exit_code": exit_code},
                target=target.id,
            )
