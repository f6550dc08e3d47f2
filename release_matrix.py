# release_matrix.py
# Release matrix for the wash CLI: every supported platform, packaged and published
from __future__ import annotations
from shipmatrix.dsl import matrix, target, targets, fuse


def release():
    return matrix(
        # Static musl build, shipped as a tarball
        target(
            "linux", "amd64", "archive",
            install_path="/bin/wash",
            triple="x86_64-unknown-linux-musl",
        ),

        # arm64 image; smoke-tested through qemu-aarch64 when it is installed
        target(
            "linux", "arm64", "container-image",
            install_path="/bin/wash",
            triple="aarch64-unknown-linux-musl",
        ),

        # Windows build; validated under wine64 when available
        target(
            "windows", "amd64", "archive",
            install_path="/bin/wash.exe",
            triple="x86_64-pc-windows-gnu",
        ),

        # macOS slices, fused into a single universal binary below
        targets(
            "darwin", ["amd64", "arm64"],
            install_path="/bin/wash",
        ),
        fuse("universal-darwin", "darwin-amd64", "darwin-arm64"),

        binary="wash",
        publish_dir="dist",
    )


MATRIX = release()
