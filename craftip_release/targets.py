"""Known target triples.

The pipeline builds for a fixed set of triples. Adding a platform means
adding an entry here and a matching toolchain stanza.
"""

from __future__ import annotations

from dataclasses import dataclass


class UnknownTargetError(Exception):
    """Raised when a triple is not one of the known targets."""

    def __init__(self, triple: str, code: str = "unknown_target") -> None:
        super().__init__(
            f"Unknown target triple: {triple}. "
            f"Known triples: {', '.join(sorted(KNOWN_TARGETS))}"
        )
        self.triple = triple
        self.code = code


@dataclass(frozen=True)
class TargetInfo:
    """Static description of a known triple."""

    triple: str
    os: str
    architecture: str


KNOWN_TARGETS: dict[str, TargetInfo] = {
    info.triple: info
    for info in (
        TargetInfo("x86_64-unknown-linux-gnu", "linux", "x86_64"),
        TargetInfo("x86_64-pc-windows-gnu", "windows", "x86_64"),
        TargetInfo("x86_64-pc-windows-msvc", "windows", "x86_64"),
        TargetInfo("x86_64-apple-darwin", "macos", "x86_64"),
        TargetInfo("aarch64-apple-darwin", "macos", "aarch64"),
    )
}

# Triples built inside the cross-compilation container, in build order
CROSS_TARGETS = [
    "x86_64-pc-windows-gnu",
    "x86_64-apple-darwin",
    "aarch64-apple-darwin",
]

# Architectures of the macOS CI matrix
MACOS_ARCHITECTURES = ["x86_64", "aarch64"]

MACOS_SUFFIX = "apple-darwin"


def get_target_info(triple: str) -> TargetInfo:
    """Look up a known triple.

    Raises:
        UnknownTargetError: If the triple is not known.
    """
    try:
        return KNOWN_TARGETS[triple]
    except KeyError:
        raise UnknownTargetError(triple) from None


def macos_triple(arch: str) -> str:
    """Return the macOS triple for an architecture (e.g. aarch64-apple-darwin)."""
    return get_target_info(f"{arch}-{MACOS_SUFFIX}").triple


__all__ = [
    "CROSS_TARGETS",
    "KNOWN_TARGETS",
    "MACOS_ARCHITECTURES",
    "MACOS_SUFFIX",
    "TargetInfo",
    "UnknownTargetError",
    "get_target_info",
    "macos_triple",
]
