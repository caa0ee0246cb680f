"""Errors raised while assembling the macOS bundle.

Assembly errors are fatal: the first one aborts the run and the partial
staging tree is left in place for diagnosis.
"""

from __future__ import annotations

from pathlib import Path


class AssemblyError(Exception):
    """Base class of bundle assembly errors."""

    def __init__(self, message: str, code: str = "assembly_error") -> None:
        super().__init__(message)
        self.code = code


class MissingInputError(AssemblyError):
    """Raised when a required input file does not exist."""

    def __init__(self, path: Path, what: str = "input") -> None:
        super().__init__(f"Missing {what}: {path}", code="missing_input")
        self.path = path


class InvalidBinaryError(AssemblyError):
    """Raised when an input is not a thin Mach-O executable."""

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message, code="invalid_binary")
        self.path = path


class DuplicateArchitectureError(AssemblyError):
    """Raised when two inputs target the same CPU architecture."""

    def __init__(self, architecture: str) -> None:
        super().__init__(
            f"More than one input for architecture {architecture}",
            code="duplicate_architecture",
        )
        self.architecture = architecture


class ToolError(AssemblyError):
    """Raised when an external tool fails or cannot be run."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "tool_failed",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code


class IconGenerationError(ToolError):
    """Raised when resampling or compiling the icon set fails."""


class DiskImageError(ToolError):
    """Raised when the disk image cannot be created."""


__all__ = [
    "AssemblyError",
    "DiskImageError",
    "DuplicateArchitectureError",
    "IconGenerationError",
    "InvalidBinaryError",
    "MissingInputError",
    "ToolError",
]
