# publisher.py
from __future__ import annotations

import shutil
from pathlib import Path

from .cancel import CancelToken
from .errors import PublishError
from .model import PublishedArtifact
from .packager import sha256_file


class Publisher:
    """Copies finished units into the release directory next to a .sha256 file."""

    def __init__(self, destination: str | Path):
        self.destination = Path(destination)

    def publish(self, path: Path, name: str, token: CancelToken) -> PublishedArtifact:
        token.raise_if_cancelled()
        src = Path(path)
        if not src.is_file():
            raise PublishError(kind="missing-source", message=f"nothing to publish at {src}")

        try:
            self.destination.mkdir(parents=True, exist_ok=True)
            dest = self.destination / name
            shutil.copy2(src, dest)
            digest = sha256_file(dest)
            (self.destination / f"{name}.sha256").write_text(f"{digest}  {name}\n", encoding="utf-8")
        except OSError as e:
            raise PublishError(kind="io", message=f"could not publish {name}: {e}") from e

        return PublishedArtifact(path=dest, sha256=digest, source=str(src))
