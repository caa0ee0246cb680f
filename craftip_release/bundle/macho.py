"""Universal (fat) Mach-O binaries.

This module handles:
- Reading the header of a thin Mach-O file
- Merging thin slices into a universal binary
- Reading the architecture table of a universal binary

Layout of the universal file (all fields big-endian):

    fat_header  magic (0xCAFEBABE), nfat_arch
    fat_arch    cputype, cpusubtype, offset, size, align   (one per slice)
    slices      each starting at a multiple of 2**align

Slices keep the order of the inputs and are copied byte for byte.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from craftip_release.bundle.errors import (
    DuplicateArchitectureError,
    InvalidBinaryError,
    MissingInputError,
)

logger = logging.getLogger(__name__)

FAT_MAGIC = 0xCAFEBABE
FAT_MAGIC_64 = 0xCAFEBABF
MH_MAGIC = 0xFEEDFACE
MH_MAGIC_64 = 0xFEEDFACF
MH_EXECUTE = 0x2

CPU_ARCH_ABI64 = 0x01000000
CPU_TYPE_X86 = 7
CPU_TYPE_ARM = 12
CPU_TYPE_X86_64 = CPU_TYPE_X86 | CPU_ARCH_ABI64
CPU_TYPE_ARM64 = CPU_TYPE_ARM | CPU_ARCH_ABI64

CPU_NAMES = {
    CPU_TYPE_X86: "i386",
    CPU_TYPE_ARM: "arm",
    CPU_TYPE_X86_64: "x86_64",
    CPU_TYPE_ARM64: "arm64",
}

FAT_HEADER = struct.Struct(">II")
FAT_ARCH = struct.Struct(">IIIII")
# magic, cputype, cpusubtype, filetype
THIN_HEADER_SIZE = 16

ARM64_ALIGN = 14
DEFAULT_ALIGN = 12


def cpu_name(cputype: int) -> str:
    return CPU_NAMES.get(cputype, f"cputype-{cputype:#x}")


def slice_alignment(cputype: int) -> int:
    """Power-of-two alignment of a slice (page size of the architecture)."""
    return ARM64_ALIGN if cputype == CPU_TYPE_ARM64 else DEFAULT_ALIGN


@dataclass(frozen=True)
class ThinSlice:
    """One single-architecture Mach-O image."""

    cputype: int
    cpusubtype: int
    data: bytes
    source: Path | None = None

    @property
    def architecture(self) -> str:
        return cpu_name(self.cputype)

    @property
    def align(self) -> int:
        return slice_alignment(self.cputype)


@dataclass(frozen=True)
class FatArch:
    """One entry of the architecture table of a universal binary."""

    cputype: int
    cpusubtype: int
    offset: int
    size: int
    align: int

    @property
    def architecture(self) -> str:
        return cpu_name(self.cputype)


def parse_thin(data: bytes, source: Path | None = None) -> ThinSlice:
    """Parse the header of a thin Mach-O executable.

    Raises:
        InvalidBinaryError: If the data is a universal binary, not Mach-O,
            or not an executable.
    """
    label = str(source) if source else "input"
    if len(data) < THIN_HEADER_SIZE:
        raise InvalidBinaryError(f"{label} is too small to be a Mach-O file", source)

    (magic_be,) = struct.unpack_from(">I", data)
    if magic_be in (FAT_MAGIC, FAT_MAGIC_64):
        raise InvalidBinaryError(f"{label} is already a universal binary", source)

    for endian in ("<", ">"):
        (magic,) = struct.unpack_from(endian + "I", data)
        if magic in (MH_MAGIC, MH_MAGIC_64):
            break
    else:
        raise InvalidBinaryError(f"{label} is not a Mach-O file", source)

    cputype, cpusubtype, filetype = struct.unpack_from(endian + "III", data, 4)
    if filetype != MH_EXECUTE:
        raise InvalidBinaryError(
            f"{label} is not an executable (Mach-O file type {filetype})", source
        )
    return ThinSlice(cputype=cputype, cpusubtype=cpusubtype, data=data, source=source)


def read_thin(path: Path) -> ThinSlice:
    """Read and parse a thin Mach-O executable.

    Raises:
        MissingInputError: If the file does not exist.
        InvalidBinaryError: If it is not a thin Mach-O executable.
    """
    if not path.is_file():
        raise MissingInputError(path, what="binary")
    return parse_thin(path.read_bytes(), source=path)


def _align_up(offset: int, align: int) -> int:
    step = 1 << align
    return (offset + step - 1) // step * step


def merge_slices(slices: Sequence[ThinSlice]) -> bytes:
    """Build a universal binary from thin slices.

    Raises:
        InvalidBinaryError: If no slice is given.
        DuplicateArchitectureError: If two slices share a CPU type.
    """
    if not slices:
        raise InvalidBinaryError("No input binaries to merge")

    seen: set[int] = set()
    for s in slices:
        if s.cputype in seen:
            raise DuplicateArchitectureError(s.architecture)
        seen.add(s.cputype)

    offset = FAT_HEADER.size + FAT_ARCH.size * len(slices)
    table = []
    for s in slices:
        offset = _align_up(offset, s.align)
        table.append(FatArch(s.cputype, s.cpusubtype, offset, len(s.data), s.align))
        offset += len(s.data)

    out = bytearray(FAT_HEADER.pack(FAT_MAGIC, len(slices)))
    for arch in table:
        out += FAT_ARCH.pack(arch.cputype, arch.cpusubtype, arch.offset, arch.size, arch.align)
    for arch, s in zip(table, slices):
        out += b"\0" * (arch.offset - len(out))
        out += s.data
    return bytes(out)


def read_fat_archs(data: bytes) -> list[FatArch]:
    """Read the architecture table of a universal binary.

    Raises:
        InvalidBinaryError: If the data is not a 32-bit universal binary.
    """
    if len(data) < FAT_HEADER.size:
        raise InvalidBinaryError("File is too small to be a universal binary")
    magic, count = FAT_HEADER.unpack_from(data)
    if magic != FAT_MAGIC:
        raise InvalidBinaryError(f"Not a universal binary (magic {magic:#x})")
    if len(data) < FAT_HEADER.size + FAT_ARCH.size * count:
        raise InvalidBinaryError("Truncated architecture table")
    return [
        FatArch(*FAT_ARCH.unpack_from(data, FAT_HEADER.size + i * FAT_ARCH.size))
        for i in range(count)
    ]


def create_universal(inputs: Sequence[Path], output: Path) -> list[FatArch]:
    """Merge thin executables into a universal binary at `output`.

    Args:
        inputs: Thin executables of distinct architectures, in slice order.
        output: Destination file (overwritten).

    Returns:
        The architecture table that was written.

    Raises:
        MissingInputError: If an input does not exist.
        InvalidBinaryError: If an input is not a thin Mach-O executable.
        DuplicateArchitectureError: If two inputs share an architecture.
    """
    slices = [read_thin(path) for path in inputs]
    data = merge_slices(slices)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    archs = read_fat_archs(data)
    logger.info(
        "Created universal binary %s (%s, %d bytes)",
        output,
        ", ".join(a.architecture for a in archs),
        len(data),
    )
    return archs


__all__ = [
    "CPU_TYPE_ARM64",
    "CPU_TYPE_X86_64",
    "FAT_MAGIC",
    "FatArch",
    "ThinSlice",
    "create_universal",
    "merge_slices",
    "parse_thin",
    "read_fat_archs",
    "read_thin",
    "slice_alignment",
]
