"""Shared type definitions for craftip_release.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ContainerState(str, Enum):
    """Lifecycle state of the ephemeral build container."""

    ABSENT = "absent"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


class ArtifactKind(str, Enum):
    """Kind of a produced artifact."""

    RAW_BINARY = "raw_binary"
    BUNDLE = "bundle"


class OutcomeStatus(str, Enum):
    """Outcome of a pipeline step.

    EXPECTED_NOOP marks a step whose precondition was already satisfied
    (e.g. removing a container that does not exist).
    """

    OK = "ok"
    EXPECTED_NOOP = "expected_noop"
    FATAL = "fatal"


@dataclass(frozen=True)
class BuildTarget:
    """A cross-compilation target with its resolved toolchain.

    Attributes:
        os: Operating system family (linux, windows, macos).
        architecture: CPU architecture (x86_64, aarch64).
        triple: Rust target triple.
        linker_path: Absolute linker path inside the toolchain image.
        archiver_path: Absolute archiver path inside the toolchain image.
    """

    os: str
    architecture: str
    triple: str
    linker_path: str
    archiver_path: str

    @property
    def executable_suffix(self) -> str:
        """File suffix of executables for this target."""
        return ".exe" if self.os == "windows" else ""


@dataclass(frozen=True)
class Mount:
    """A bind mount of the build container."""

    host_path: Path
    container_path: str
    read_only: bool = True

    def to_volume_arg(self) -> str:
        """Render the `-v` argument value (host:container[:ro])."""
        arg = f"{self.host_path}:{self.container_path}"
        if self.read_only:
            arg += ":ro"
        return arg


@dataclass
class OperationResult:
    """Result of a pipeline step (container transition, cache phase, ...)."""

    status: OutcomeStatus
    message: str
    code: str | None = None
    details: dict[str, object] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        """Whether the step left the system in the desired state."""
        return self.status is not OutcomeStatus.FATAL

    @classmethod
    def ok(cls, message: str, **details: object) -> OperationResult:
        return cls(OutcomeStatus.OK, message, details=dict(details))

    @classmethod
    def noop(cls, message: str, **details: object) -> OperationResult:
        return cls(OutcomeStatus.EXPECTED_NOOP, message, details=dict(details))


@dataclass
class Artifact:
    """A binary produced for one target in one run.

    Attributes:
        target: Target triple the binary was built for.
        binary_path: Host path to the produced file.
        kind: Artifact kind.
        size_bytes: File size.
        sha256: SHA-256 hex digest of the file.
    """

    target: str
    binary_path: Path
    kind: ArtifactKind = ArtifactKind.RAW_BINARY
    size_bytes: int = 0
    sha256: str = ""


__all__ = [
    "Artifact",
    "ArtifactKind",
    "BuildTarget",
    "ContainerState",
    "Mount",
    "OperationResult",
    "OutcomeStatus",
]
