"""Toolchain image provisioning.

This module handles:
- Rendering the Dockerfile of the cross-compilation toolchain image
- Rendering the entrypoint that exports per-triple CC/AR variables
- Writing the per-triple linker config into the build context
- Building (or pulling) the toolchain image

The image pre-registers every configured triple with rustup so later
`cargo build --target=<triple>` invocations need no further setup.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from craftip_release.container.runtime import (
    DEFAULT_RUNTIME,
    ContainerCommandError,
    compose_build_command,
    pull_image,
    run_runtime,
)
from craftip_release.targets import get_target_info
from craftip_release.toolchain.config import OSXCROSS_BIN, ToolchainConfig

logger = logging.getLogger(__name__)

DOCKERFILE_NAME = "Dockerfile"
CONFIG_FILENAME = "cargo-config.toml"
ENTRYPOINT_FILENAME = "entrypoint.sh"

MINGW_PACKAGES = ["gcc-mingw-w64-x86-64"]
OSXCROSS_PACKAGES = [
    "clang",
    "cmake",
    "cpio",
    "libbz2-dev",
    "libssl-dev",
    "libxml2-dev",
    "lzma-dev",
    "patch",
    "python3",
    "xz-utils",
    "zlib1g-dev",
]


class ToolchainProvisionError(Exception):
    """Raised when the toolchain image cannot be provisioned."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "provision_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class ProvisionOptions:
    """Options of the toolchain image.

    Attributes:
        base_image: Rust base image.
        config_path: Where the linker config lands inside the image.
        osxcross_repo: osxcross git repository.
        sdk_archive: Host path of the packaged macOS SDK (needed for darwin triples).
        workdir: Working directory of the image.
    """

    base_image: str = "rust:1.67"
    config_path: str = "/root/.cargo/config"
    osxcross_repo: str = "https://github.com/tpoechtrager/osxcross"
    sdk_archive: Path | None = None
    workdir: str = "/build"


@dataclass
class ProvisionResult:
    """Result of a toolchain provisioning run."""

    success: bool
    image: str
    context_dir: Path
    config_file: Path
    log_path: Path | None = None
    triples: list[str] = field(default_factory=list)
    error_message: str | None = None


def _needs_osxcross(config: ToolchainConfig) -> bool:
    return any(get_target_info(t).os == "macos" for t in config.triples)


def _needs_mingw(config: ToolchainConfig) -> bool:
    return any(t.endswith("windows-gnu") for t in config.triples)


def _env_suffix(triple: str) -> str:
    return triple.replace("-", "_")


def render_entrypoint(config: ToolchainConfig) -> str:
    """Render the entrypoint sourced before every cross build."""
    lines = ["#!/bin/bash", ""]
    if _needs_osxcross(config):
        lines.append(f'export PATH="{OSXCROSS_BIN}:$PATH"')
    for triple in config.triples:
        entry = config.get(triple)
        if entry is None:
            continue
        suffix = _env_suffix(triple)
        lines.append(f'export CC_{suffix}="{entry.linker}"')
        lines.append(f'export AR_{suffix}="{entry.ar}"')
    lines.append("")
    return "\n".join(lines)


def render_toolchain_dockerfile(
    config: ToolchainConfig,
    options: ProvisionOptions | None = None,
) -> str:
    """Render the Dockerfile of the toolchain image.

    Args:
        config: Triples and their linkers.
        options: Image options.

    Returns:
        Dockerfile text.
    """
    options = options or ProvisionOptions()
    packages: list[str] = []
    if _needs_mingw(config):
        packages.extend(MINGW_PACKAGES)
    if _needs_osxcross(config):
        packages.extend(OSXCROSS_PACKAGES)

    lines = [f"FROM {options.base_image}", ""]
    if packages:
        lines.append(
            "RUN apt-get update && apt-get install -y --no-install-recommends "
            + " ".join(sorted(set(packages)))
            + " && rm -rf /var/lib/apt/lists/*"
        )

    if _needs_osxcross(config):
        sdk_name = options.sdk_archive.name if options.sdk_archive else "MacOSX.sdk.tar.xz"
        lines.extend(
            [
                f"RUN git clone --depth 1 {options.osxcross_repo} /opt/osxcross",
                f"COPY {sdk_name} /opt/osxcross/tarballs/{sdk_name}",
                "RUN cd /opt/osxcross && UNATTENDED=1 ./build.sh",
                f"ENV PATH={OSXCROSS_BIN}:$PATH",
            ]
        )

    if config.triples:
        lines.append("RUN rustup target add " + " ".join(config.triples))

    lines.extend(
        [
            f"COPY {CONFIG_FILENAME} {options.config_path}",
            f"COPY {ENTRYPOINT_FILENAME} /entrypoint.sh",
            "RUN chmod +x /entrypoint.sh",
            f"WORKDIR {options.workdir}",
            "",
        ]
    )
    return "\n".join(lines)


def prepare_context(
    config: ToolchainConfig,
    context_dir: Path,
    options: ProvisionOptions | None = None,
) -> Path:
    """Write the build context of the toolchain image.

    Returns:
        Path to the written linker config.

    Raises:
        ToolchainProvisionError: If a darwin triple is requested without SDK.
    """
    options = options or ProvisionOptions()
    if _needs_osxcross(config):
        if options.sdk_archive is None or not options.sdk_archive.is_file():
            raise ToolchainProvisionError(
                "A packaged macOS SDK archive is required for apple-darwin triples",
                code="missing_sdk",
            )

    context_dir.mkdir(parents=True, exist_ok=True)
    (context_dir / DOCKERFILE_NAME).write_text(
        render_toolchain_dockerfile(config, options), encoding="utf-8"
    )
    entrypoint = context_dir / ENTRYPOINT_FILENAME
    entrypoint.write_text(render_entrypoint(config), encoding="utf-8")
    entrypoint.chmod(0o755)
    config_file = config.write(context_dir / CONFIG_FILENAME)

    if options.sdk_archive is not None and _needs_osxcross(config):
        shutil.copy2(options.sdk_archive, context_dir / options.sdk_archive.name)

    return config_file


def provision_toolchain(
    config: ToolchainConfig,
    context_dir: Path,
    image: str,
    options: ProvisionOptions | None = None,
    runtime: str = DEFAULT_RUNTIME,
    timeout: int | None = None,
) -> ProvisionResult:
    """Build the toolchain image.

    Args:
        config: Triples and their linkers.
        context_dir: Directory for the build context and log.
        image: Tag of the produced image.
        options: Image options.
        runtime: Container CLI executable.
        timeout: Build timeout in seconds.

    Returns:
        ProvisionResult.

    Raises:
        ToolchainProvisionError: If the context cannot be prepared, the
            build cannot start, or the build fails.
    """
    config_file = prepare_context(config, context_dir, options)
    log_path = context_dir / "provision.log"
    args = compose_build_command(
        context_dir,
        tag=image,
        labels={"org.craftip.triples": ",".join(config.triples)},
    )

    logger.info("Building toolchain image %s for %s", image, ", ".join(config.triples))
    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Started: {datetime.now(timezone.utc).isoformat()}\n")
            log_file.flush()
            result = run_runtime(args, runtime=runtime, timeout=timeout, log_file=log_file)
    except ContainerCommandError as e:
        raise ToolchainProvisionError(str(e), exit_code=e.exit_code, code=e.code) from e

    if result.returncode != 0:
        message = f"Toolchain image build failed with exit code {result.returncode}"
        logger.error("%s. See log: %s", message, log_path)
        raise ToolchainProvisionError(message, exit_code=result.returncode, code="build_failed")

    return ProvisionResult(
        success=True,
        image=image,
        context_dir=context_dir,
        config_file=config_file,
        log_path=log_path,
        triples=config.triples,
    )


def pull_toolchain_image(image: str, runtime: str = DEFAULT_RUNTIME) -> None:
    """Pull a prebuilt toolchain image.

    Raises:
        ToolchainProvisionError: If the pull fails.
    """
    try:
        pull_image(image, runtime=runtime)
    except ContainerCommandError as e:
        raise ToolchainProvisionError(str(e), exit_code=e.exit_code, code=e.code) from e


__all__ = [
    "CONFIG_FILENAME",
    "ProvisionOptions",
    "ProvisionResult",
    "ToolchainProvisionError",
    "prepare_context",
    "provision_toolchain",
    "pull_toolchain_image",
    "render_entrypoint",
    "render_toolchain_dockerfile",
]
