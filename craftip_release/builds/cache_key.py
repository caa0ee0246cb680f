"""Cache key computation for the two-phase server image build.

This module handles:
- Canonical snapshot of the dependency manifests (phase 1 inputs)
- Deterministic hash computation over normalized inputs
- Source tree hashing (phase 2 inputs)

The dependency key covers manifests only, so source-only edits keep the
compiled dependency layer valid while any manifest edit invalidates it.
"""

from __future__ import annotations

import hashlib
import json
import stat
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

MANIFEST_FILENAME = "Cargo.toml"
LOCKFILE_FILENAME = "Cargo.lock"


class ManifestNotFoundError(Exception):
    """Raised when the workspace manifest is missing."""

    def __init__(self, path: Path, code: str = "manifest_not_found") -> None:
        super().__init__(f"Manifest not found: {path}")
        self.path = path
        self.code = code


@dataclass
class DependencyInputs:
    """Canonical representation of the dependency layer inputs.

    Attributes:
        schema_version: Version of cache key schema.
        manifests: Relative manifest path -> SHA-256 of its content.
        lockfile: SHA-256 of Cargo.lock, if present.
        strategy: Dependency pre-build strategy.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    manifests: dict[str, str] = field(default_factory=dict)
    lockfile: str | None = None
    strategy: str = "stub"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def _hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def collect_manifest_paths(workspace_root: Path, members: list[str]) -> list[Path]:
    """List the manifests of the workspace and its members.

    Members without a manifest are skipped.

    Raises:
        ManifestNotFoundError: If the workspace manifest is missing.
    """
    root_manifest = workspace_root / MANIFEST_FILENAME
    if not root_manifest.is_file():
        raise ManifestNotFoundError(root_manifest)

    paths = [root_manifest]
    for member in sorted(members):
        manifest = workspace_root / member / MANIFEST_FILENAME
        if manifest.is_file():
            paths.append(manifest)
    return paths


def create_dependency_inputs(
    workspace_root: Path,
    members: list[str],
    strategy: str = "stub",
) -> DependencyInputs:
    """Create canonical dependency inputs for a workspace."""
    manifests = {
        path.relative_to(workspace_root).as_posix(): _hash_bytes(path.read_bytes())
        for path in collect_manifest_paths(workspace_root, members)
    }
    lockfile_path = workspace_root / LOCKFILE_FILENAME
    lockfile = _hash_bytes(lockfile_path.read_bytes()) if lockfile_path.is_file() else None

    return DependencyInputs(
        schema_version=CACHE_KEY_SCHEMA_VERSION,
        manifests=manifests,
        lockfile=lockfile,
        strategy=strategy,
    )


def compute_cache_key(inputs: DependencyInputs) -> str:
    """Compute a cache key hash from dependency inputs.

    The cache key is a SHA-256 hash of the canonical JSON representation
    of the inputs.

    Returns:
        Cache key as hex string (sha256:...).
    """
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return f"sha256:{_hash_bytes(canonical_json.encode('utf-8'))}"


def compute_manifest_key(
    workspace_root: Path,
    members: list[str],
    strategy: str = "stub",
) -> tuple[str, DependencyInputs]:
    """Compute the dependency layer key of a workspace.

    Returns:
        Tuple of (cache_key, DependencyInputs).
    """
    inputs = create_dependency_inputs(workspace_root, members, strategy)
    return compute_cache_key(inputs), inputs


def compute_tree_hash(directory: Path) -> str:
    """Compute a deterministic hash of a directory tree.

    The hash is computed over:
    - Sorted file paths (relative to directory)
    - File contents
    - File modes (lower 9 bits: rwxrwxrwx)

    Args:
        directory: Directory to hash.

    Returns:
        SHA-256 hex digest of the tree.
    """
    hasher = hashlib.sha256()

    if not directory.exists():
        return hasher.hexdigest()

    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue

        rel_path = path.relative_to(directory).as_posix()
        mode = stat.S_IMODE(path.stat().st_mode)

        # Hash: path\0mode\0content
        hasher.update(rel_path.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(f"{mode:o}".encode())
        hasher.update(b"\0")
        hasher.update(path.read_bytes())
        hasher.update(b"\0")

    return hasher.hexdigest()


def compute_source_key(workspace_root: Path, members: list[str]) -> str:
    """Compute the phase 2 key over the members' src/ trees."""
    hasher = hashlib.sha256()
    for member in sorted(members):
        hasher.update(member.encode("utf-8"))
        hasher.update(b"\0")
        hasher.update(compute_tree_hash(workspace_root / member / "src").encode())
        hasher.update(b"\0")
    return f"sha256:{hasher.hexdigest()}"


def short_key(cache_key: str, length: int = 16) -> str:
    """Return a hex prefix of a cache key, usable as an image tag."""
    return cache_key.split(":", 1)[-1][:length]


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "LOCKFILE_FILENAME",
    "MANIFEST_FILENAME",
    "DependencyInputs",
    "ManifestNotFoundError",
    "collect_manifest_paths",
    "compute_cache_key",
    "compute_manifest_key",
    "compute_source_key",
    "compute_tree_hash",
    "create_dependency_inputs",
    "short_key",
]
