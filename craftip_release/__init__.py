"""CraftIP release pipeline - cross builds, CI matrix and macOS packaging.

This package provides orchestration around a containerized Rust cross
toolchain for building the CraftIP workspace for several target triples
and assembling the macOS outputs into a universal, distributable disk image.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
