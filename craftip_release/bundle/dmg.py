"""Compressed, read-only disk image creation with hdiutil."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from craftip_release.bundle.errors import DiskImageError
from craftip_release.bundle.tools import run_tool

logger = logging.getLogger(__name__)

DMG_FORMAT = "UDZO"
APPLICATIONS_DIR = Path("/Applications")
APPLICATIONS_LINK = "Applications"


def link_applications(staging_dir: Path) -> Path:
    """Add the drag-to-install `/Applications` symlink to the staging folder."""
    link = staging_dir / APPLICATIONS_LINK
    if link.is_symlink() or link.exists():
        link.unlink()
    os.symlink(APPLICATIONS_DIR, link)
    return link


def hdiutil_command(volume_name: str, source_folder: Path, output: Path) -> list[str]:
    return [
        "hdiutil",
        "create",
        "-volname",
        volume_name,
        "-srcfolder",
        str(source_folder),
        "-ov",
        "-format",
        DMG_FORMAT,
        str(output),
    ]


def create_dmg(
    volume_name: str,
    source_folder: Path,
    output: Path,
    timeout: int | None = None,
) -> Path:
    """Create a compressed disk image of a folder, overwriting any existing one.

    Raises:
        DiskImageError: If hdiutil fails.
    """
    logger.info("Creating DMG: %s", output)
    output.parent.mkdir(parents=True, exist_ok=True)
    run_tool(
        hdiutil_command(volume_name, source_folder, output),
        error_cls=DiskImageError,
        timeout=timeout,
    )
    return output


__all__ = [
    "APPLICATIONS_LINK",
    "DMG_FORMAT",
    "create_dmg",
    "hdiutil_command",
    "link_applications",
]
