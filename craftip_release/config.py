"""Configuration settings for craftip_release.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Two settings sources exist:
- Settings: pipeline settings with the CRAFTIP_ prefix.
- BundleSettings: the unprefixed variables read by the macOS bundle
  assembler (X86_64_APPLE_DARWIN, AARCH64_APPLE_DARWIN, BUILD_FOLDER,
  DMG_OUTPUT_PATH).

Both are read once at process start and resolved into explicit objects
that are passed into every component.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_BUILD_FOLDER = Path("/tmp/mac-build")
DEFAULT_WORKSPACE_MEMBERS = ["shared", "client", "client-gui", "server"]


def _default_workspace_root() -> Path:
    """Return the default workspace root (current directory)."""
    return Path.cwd()


class Settings(BaseSettings):
    """Pipeline settings.

    Settings are loaded from environment variables with the CRAFTIP_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CRAFTIP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Workspace layout
    workspace_root: Path = Field(
        default_factory=_default_workspace_root,
        description="Root of the Cargo workspace",
    )
    workspace_members: list[str] = Field(
        default_factory=lambda: list(DEFAULT_WORKSPACE_MEMBERS),
        description="Workspace member crates (mounted read-only into the container)",
    )
    output_dir: Path | None = Field(
        default=None,
        description="Host directory for cross build output (default: <workspace>/target-cross)",
    )

    # Binaries
    gui_package: str = Field(
        default="client-gui",
        description="Package directory the cross build runs in",
    )
    gui_binary: str = Field(default="client-gui", description="GUI binary name")
    server_binary: str = Field(default="server", description="Server binary name")
    app_name: str = Field(default="CraftIP", description="macOS application name")

    # Container runtime
    container_runtime: str = Field(
        default="docker",
        description="Container CLI executable",
    )
    toolchain_image: str = Field(
        default="dscso/rust-crosscompiler:latest",
        description="Image holding the cross-compilation toolchain",
    )
    container_name: str = Field(
        default="crosscompiler",
        description="Reserved name of the ephemeral build container",
    )
    container_workdir: str = Field(
        default="/build",
        description="Workspace mount point inside the build container",
    )
    toolchain_config_path: str = Field(
        default="/root/.cargo/config",
        description="Toolchain config path inside the build container",
    )
    toolchain_config_file: Path | None = Field(
        default=None,
        description="Host copy of the toolchain config (default: built-in table)",
    )

    # Server image
    deps_repository: str = Field(
        default="craftip-deps",
        description="Repository for cached dependency layers",
    )
    server_image: str = Field(
        default="craftip-server",
        description="Repository for the server runtime image",
    )
    cache_strategy: Literal["stub", "manifest-only"] = Field(
        default="stub",
        description="Dependency pre-build strategy",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Per-target build timeout in seconds (None = no timeout)",
    )
    max_parallel_jobs: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Maximum parallel CI matrix jobs when run locally",
    )

    def effective_output_dir(self) -> Path:
        """Return the host output directory for cross builds."""
        if self.output_dir is not None:
            return self.output_dir
        return self.workspace_root / "target-cross"


class BundleSettings(BaseSettings):
    """Raw environment input of the macOS bundle assembler.

    Every variable is optional; unset or empty values are replaced with
    literal defaults by resolve_bundle_config().
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        env_ignore_empty=True,
        extra="ignore",
    )

    x86_64_apple_darwin: Path | None = None
    aarch64_apple_darwin: Path | None = None
    build_folder: Path | None = None
    dmg_output_path: Path | None = None


@dataclass(frozen=True)
class BundleConfig:
    """Resolved input of one bundle assembly.

    Attributes:
        app_name: Application name (also the volume name and executable name).
        x86_64_binary: Thin x86_64 binary.
        aarch64_binary: Thin aarch64 binary.
        build_folder: Root of the staging area.
        dmg_output_path: Output disk image path.
        resources_dir: Directory holding Info.plist and logo-mac.png.
    """

    app_name: str
    x86_64_binary: Path
    aarch64_binary: Path
    build_folder: Path
    dmg_output_path: Path
    resources_dir: Path

    @property
    def staging_dir(self) -> Path:
        """Directory whose content becomes the disk image."""
        return self.build_folder / "dmg"

    @property
    def app_dir(self) -> Path:
        """The .app bundle directory."""
        return self.staging_dir / f"{self.app_name}.app"

    @property
    def executable_name(self) -> str:
        """Name of the executable inside Contents/MacOS."""
        return self.app_name


def default_binary_path(workspace_root: Path, triple: str, binary: str) -> Path:
    """Return the default release binary location for a triple."""
    return workspace_root / "target" / triple / "release" / binary


def resolve_bundle_config(
    settings: Settings | None = None,
    bundle_settings: BundleSettings | None = None,
    x86_64_binary: Path | None = None,
    aarch64_binary: Path | None = None,
    build_folder: Path | None = None,
    dmg_output_path: Path | None = None,
    resources_dir: Path | None = None,
) -> BundleConfig:
    """Resolve the bundle assembler configuration.

    Explicit arguments win over environment variables, which win over
    literal defaults. Every fallback to a default is logged.

    Args:
        settings: Pipeline settings; loaded from environment if None.
        bundle_settings: Assembler environment; loaded if None.
        x86_64_binary: Override for X86_64_APPLE_DARWIN.
        aarch64_binary: Override for AARCH64_APPLE_DARWIN.
        build_folder: Override for BUILD_FOLDER.
        dmg_output_path: Override for DMG_OUTPUT_PATH.
        resources_dir: Override for the resources directory.

    Returns:
        Resolved BundleConfig.

    Raises:
        ValueError: If the application name is empty.
    """
    if settings is None:
        settings = get_settings()
    if bundle_settings is None:
        bundle_settings = BundleSettings()

    if not settings.app_name.strip():
        raise ValueError("app_name must not be empty")

    root = settings.workspace_root

    x86 = x86_64_binary or bundle_settings.x86_64_apple_darwin
    if x86 is None:
        logger.info("X86_64_APPLE_DARWIN not set, using default.")
        x86 = default_binary_path(root, "x86_64-apple-darwin", settings.gui_binary)

    arm = aarch64_binary or bundle_settings.aarch64_apple_darwin
    if arm is None:
        logger.info("AARCH64_APPLE_DARWIN not set, using default.")
        arm = default_binary_path(root, "aarch64-apple-darwin", settings.gui_binary)

    folder = build_folder or bundle_settings.build_folder
    if folder is None:
        logger.info("BUILD_FOLDER not set, using default.")
        folder = DEFAULT_BUILD_FOLDER

    dmg = dmg_output_path or bundle_settings.dmg_output_path
    if dmg is None:
        logger.info("DMG_OUTPUT_PATH not set, using default.")
        dmg = folder / f"{settings.app_name}.dmg"

    return BundleConfig(
        app_name=settings.app_name,
        x86_64_binary=x86,
        aarch64_binary=arm,
        build_folder=folder,
        dmg_output_path=dmg,
        resources_dir=resources_dir or root / "build" / "resources",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_BUILD_FOLDER",
    "BundleConfig",
    "BundleSettings",
    "Settings",
    "default_binary_path",
    "get_settings",
    "print_settings_json",
    "resolve_bundle_config",
]
