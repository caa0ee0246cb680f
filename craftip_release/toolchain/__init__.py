"""Cross-compilation toolchain module.

This module handles:
- Per-triple linker/archiver configuration
- Provisioning of the toolchain container image
"""

from craftip_release.toolchain.config import (
    ToolchainConfig,
    ToolchainConfigError,
    ToolchainEntry,
)

__all__ = ["ToolchainConfig", "ToolchainConfigError", "ToolchainEntry"]
