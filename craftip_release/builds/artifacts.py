"""Artifact collection and manifest generation.

This module handles:
- Locating built binaries in the mounted output directory
- Computing checksums
- Generating run manifests
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from craftip_release.builds.runner import profile_dir
from craftip_release.types import Artifact, ArtifactKind, BuildTarget

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB

MANIFEST_FILENAME = "artifacts.json"


class ArtifactNotFoundError(Exception):
    """Raised when a build reported success but its binary is missing."""

    def __init__(self, path: Path, code: str = "artifact_not_found") -> None:
        super().__init__(f"Expected build output not found: {path}")
        self.path = path
        self.code = code


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def binary_path(
    output_dir: Path,
    target: BuildTarget,
    binary: str,
    release: bool,
) -> Path:
    """Return where cargo places a target's binary under the output directory."""
    return output_dir / target.triple / profile_dir(release) / f"{binary}{target.executable_suffix}"


def collect_artifact(
    output_dir: Path,
    target: BuildTarget,
    binary: str,
    release: bool,
) -> Artifact:
    """Build the Artifact record of one target.

    Raises:
        ArtifactNotFoundError: If the binary does not exist.
    """
    path = binary_path(output_dir, target, binary, release)
    if not path.is_file():
        raise ArtifactNotFoundError(path)

    artifact = Artifact(
        target=target.triple,
        binary_path=path,
        kind=ArtifactKind.RAW_BINARY,
        size_bytes=path.stat().st_size,
        sha256=compute_file_hash(path),
    )
    logger.debug(
        "Collected artifact: %s (target=%s, size=%d)",
        path.name,
        target.triple,
        artifact.size_bytes,
    )
    return artifact


def generate_manifest(
    artifacts: list[Artifact],
    release: bool,
    extra_metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Generate a run manifest.

    Args:
        artifacts: Collected artifacts.
        release: Whether the run built release binaries.
        extra_metadata: Optional additional metadata.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "profile": profile_dir(release),
        "artifacts": [
            {
                "target": a.target,
                "path": str(a.binary_path),
                "kind": a.kind.value,
                "size_bytes": a.size_bytes,
                "sha256": a.sha256,
            }
            for a in artifacts
        ],
    }
    if extra_metadata:
        manifest["metadata"] = extra_metadata

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
        "targets": [a.target for a in artifacts],
    }
    return manifest


def write_manifest(
    manifest: dict[str, Any],
    output_path: Path,
) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_FILENAME",
    "ArtifactNotFoundError",
    "binary_path",
    "collect_artifact",
    "compute_file_hash",
    "generate_manifest",
    "write_manifest",
]
