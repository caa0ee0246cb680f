"""Application icon set generation.

The master image is resampled with `sips` into the ten fixed slots of an
`.iconset` directory, compiled into an `.icns` file with `iconutil`, and
the intermediate directory is removed.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from craftip_release.bundle.errors import IconGenerationError, MissingInputError
from craftip_release.bundle.tools import run_tool

logger = logging.getLogger(__name__)

MASTER_ICON_FILENAME = "logo-mac.png"
ICON_BASENAME = "logo"


@dataclass(frozen=True)
class IconSlot:
    """One entry of the icon set: a point size, optionally at 2x density."""

    point_size: int
    is_2x: bool = False

    @property
    def pixel_size(self) -> int:
        return self.point_size * 2 if self.is_2x else self.point_size

    @property
    def filename(self) -> str:
        suffix = "@2x" if self.is_2x else ""
        return f"icon_{self.point_size}x{self.point_size}{suffix}.png"


ICON_LADDER: tuple[IconSlot, ...] = tuple(
    IconSlot(size, is_2x) for size in (16, 32, 128, 256, 512) for is_2x in (False, True)
)


def resample_command(master: Path, slot: IconSlot, iconset_dir: Path) -> list[str]:
    size = str(slot.pixel_size)
    return ["sips", "-z", size, size, str(master), "--out", str(iconset_dir / slot.filename)]


def build_iconset(master: Path, iconset_dir: Path) -> list[Path]:
    """Resample the master image into every slot of the ladder.

    Raises:
        MissingInputError: If the master image does not exist.
        IconGenerationError: If a resample fails.
    """
    if not master.is_file():
        raise MissingInputError(master, what="master icon")
    if iconset_dir.exists():
        shutil.rmtree(iconset_dir)
    iconset_dir.mkdir(parents=True)

    paths = []
    for slot in ICON_LADDER:
        run_tool(resample_command(master, slot, iconset_dir), error_cls=IconGenerationError)
        paths.append(iconset_dir / slot.filename)
    logger.debug("Resampled %d icon slots into %s", len(paths), iconset_dir)
    return paths


def generate_icns(master: Path, resources_dir: Path, basename: str = ICON_BASENAME) -> Path:
    """Generate `<resources_dir>/<basename>.icns` from a master image.

    Returns:
        Path of the compiled icon file.

    Raises:
        MissingInputError: If the master image does not exist.
        IconGenerationError: If resampling or compiling fails.
    """
    iconset_dir = resources_dir / f"{basename}.iconset"
    icns_path = resources_dir / f"{basename}.icns"

    logger.info("Building icon from %s", master)
    build_iconset(master, iconset_dir)
    run_tool(
        ["iconutil", "-c", "icns", str(iconset_dir), "-o", str(icns_path)],
        error_cls=IconGenerationError,
    )
    shutil.rmtree(iconset_dir)
    return icns_path


__all__ = [
    "ICON_BASENAME",
    "ICON_LADDER",
    "MASTER_ICON_FILENAME",
    "IconSlot",
    "build_iconset",
    "generate_icns",
    "resample_command",
]
