"""macOS application bundle and disk image assembly.

This module handles:
- Clearing stale staging output
- Laying out `<App>.app/Contents/{MacOS,Resources}`
- Installing the universal executable, Info.plist and icon
- Sealing the staging folder into a compressed disk image

Steps run in order and stop at the first failure; the partial staging
tree is kept so the failure can be inspected.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path

from craftip_release.builds.artifacts import compute_file_hash
from craftip_release.bundle import dmg, icons, macho
from craftip_release.bundle.errors import MissingInputError
from craftip_release.config import BundleConfig
from craftip_release.targets import MACOS_SUFFIX
from craftip_release.types import Artifact, ArtifactKind

logger = logging.getLogger(__name__)

INFO_PLIST_FILENAME = "Info.plist"
EXECUTABLE_MODE = 0o755
UNIVERSAL_TARGET = f"universal-{MACOS_SUFFIX}"


@dataclass
class AssemblyResult:
    """Result of a bundle assembly.

    Attributes:
        app_dir: The .app bundle directory.
        executable: The universal executable inside the bundle.
        architectures: Architectures of the executable, in slice order.
        icns_path: Compiled icon file.
        dmg_path: Created disk image.
        started_at: Assembly start time.
        finished_at: Assembly finish time.
        artifact: The disk image as a bundle artifact.
        steps: Names of the completed steps.
    """

    app_dir: Path
    executable: Path
    architectures: list[str]
    icns_path: Path
    dmg_path: Path
    started_at: datetime
    finished_at: datetime
    artifact: Artifact
    steps: list[str] = field(default_factory=list)


def find_info_plist(resources_dir: Path) -> Path:
    """Return the Info.plist template to install.

    A template in the resources directory takes precedence over the one
    shipped with the package.
    """
    override = resources_dir / INFO_PLIST_FILENAME
    if override.is_file():
        return override
    packaged = resources.files("craftip_release") / "resources" / INFO_PLIST_FILENAME
    with resources.as_file(packaged) as path:
        if not path.is_file():
            raise MissingInputError(path, what="Info.plist template")
        return Path(path)


def clean_staging(config: BundleConfig) -> None:
    """Remove the staging folder and any previous disk image."""
    logger.info("Cleaning up %s", config.staging_dir)
    if config.staging_dir.exists():
        shutil.rmtree(config.staging_dir)
    if config.dmg_output_path.is_file() or config.dmg_output_path.is_symlink():
        config.dmg_output_path.unlink()


def create_layout(config: BundleConfig) -> tuple[Path, Path]:
    """Create the bundle skeleton; returns (MacOS dir, Resources dir)."""
    contents = config.app_dir / "Contents"
    macos_dir = contents / "MacOS"
    resources_dir = contents / "Resources"
    macos_dir.mkdir(parents=True)
    resources_dir.mkdir(parents=True)
    return macos_dir, resources_dir


def assemble(config: BundleConfig) -> AssemblyResult:
    """Assemble the .app bundle and the disk image.

    Args:
        config: Resolved bundle configuration.

    Returns:
        AssemblyResult describing the outputs.

    Raises:
        MissingInputError: If a binary, the icon or the template is missing.
        InvalidBinaryError: If an input is not a thin Mach-O executable.
        DuplicateArchitectureError: If both inputs share an architecture.
        IconGenerationError: If the icon cannot be built.
        DiskImageError: If hdiutil fails.
    """
    started_at = datetime.now(timezone.utc)
    steps: list[str] = []

    slices = [macho.read_thin(config.x86_64_binary), macho.read_thin(config.aarch64_binary)]
    universal = macho.merge_slices(slices)
    master_icon = config.resources_dir / icons.MASTER_ICON_FILENAME
    if not master_icon.is_file():
        raise MissingInputError(master_icon, what="master icon")
    info_plist = find_info_plist(config.resources_dir)

    clean_staging(config)
    macos_dir, resources_dir = create_layout(config)
    steps.append("layout")

    logger.info("Building universal binary for %s.app", config.app_name)
    executable = macos_dir / config.executable_name
    executable.write_bytes(universal)
    executable.chmod(EXECUTABLE_MODE)
    steps.append("universal_binary")

    logger.info("Copying resources")
    shutil.copy2(info_plist, config.app_dir / "Contents" / INFO_PLIST_FILENAME)
    steps.append("info_plist")

    icns_path = icons.generate_icns(master_icon, resources_dir)
    steps.append("icon")

    dmg.link_applications(config.staging_dir)
    dmg_path = dmg.create_dmg(config.app_name, config.staging_dir, config.dmg_output_path)
    steps.append("disk_image")
    artifact = Artifact(
        target=UNIVERSAL_TARGET,
        binary_path=dmg_path,
        kind=ArtifactKind.BUNDLE,
        size_bytes=dmg_path.stat().st_size,
        sha256=compute_file_hash(dmg_path),
    )
    logger.info("Sealed %s (%d bytes)", dmg_path, artifact.size_bytes)

    return AssemblyResult(
        app_dir=config.app_dir,
        executable=executable,
        architectures=[s.architecture for s in slices],
        icns_path=icns_path,
        dmg_path=dmg_path,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        artifact=artifact,
        steps=steps,
    )


__all__ = [
    "AssemblyResult",
    "assemble",
    "clean_staging",
    "create_layout",
    "find_info_plist",
]
