"""Cross-build orchestration.

This module provides the high-level cross build API:
- run_cross_build(): build several triples in one ephemeral container
- Default bind mounts for the workspace

Targets are built strictly one after another inside a single container so
that the compiled dependency cache in the mounted target directory is
reused across target switches. The first failing target aborts the run;
the container is torn down on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from craftip_release.builds.artifacts import (
    MANIFEST_FILENAME,
    collect_artifact,
    generate_manifest,
    write_manifest,
)
from craftip_release.builds.cache_key import LOCKFILE_FILENAME, MANIFEST_FILENAME as CARGO_MANIFEST
from craftip_release.builds.runner import BuildExecutionError, BuildResult, run_target_build
from craftip_release.container.lifecycle import BuildContainer
from craftip_release.types import Artifact, Mount

if TYPE_CHECKING:
    from craftip_release.config import Settings
    from craftip_release.toolchain.config import ToolchainConfig

logger = logging.getLogger(__name__)


@dataclass
class CrossBuildRun:
    """Outcome of a successful orchestrator run."""

    artifacts: list[Artifact] = field(default_factory=list)
    results: list[BuildResult] = field(default_factory=list)
    manifest_path: Path | None = None


def default_mounts(
    workspace_root: Path,
    members: Sequence[str],
    output_dir: Path,
    workdir: str = "/build",
) -> list[Mount]:
    """Return the bind mounts of a cross build.

    The output directory is the only writable mount; manifests and member
    sources are mounted read-only.
    """
    mounts = [
        Mount(output_dir, f"{workdir}/target", read_only=False),
        Mount(workspace_root / CARGO_MANIFEST, f"{workdir}/{CARGO_MANIFEST}"),
    ]
    lockfile = workspace_root / LOCKFILE_FILENAME
    if lockfile.is_file():
        mounts.append(Mount(lockfile, f"{workdir}/{LOCKFILE_FILENAME}"))
    for member in members:
        mounts.append(Mount(workspace_root / member, f"{workdir}/{member}"))
    return mounts


def run_cross_build(
    triples: Sequence[str],
    mounts: Sequence[Mount],
    release: bool,
    *,
    settings: Settings,
    toolchain: ToolchainConfig,
    features: list[str] | None = None,
    container: BuildContainer | None = None,
) -> CrossBuildRun:
    """Cross-compile the GUI binary for each triple, in order.

    Args:
        triples: Ordered target triples.
        mounts: Bind mounts of the build container.
        release: Build with optimizations.
        settings: Pipeline settings.
        toolchain: Toolchain config used to resolve every triple.
        features: Cargo features to enable.
        container: Container to use (default: one built from settings).

    Returns:
        CrossBuildRun with one artifact per triple.

    Raises:
        ToolchainConfigError: If a triple has no linker/archiver entry
            (raised before any container command runs).
        BuildExecutionError: If a target build fails.
        ArtifactNotFoundError: If a build succeeded without output.
        ContainerCommandError: If the container cannot be started.
    """
    targets = toolchain.require(triples)

    output_dir = settings.effective_output_dir()
    output_dir.mkdir(parents=True, exist_ok=True)
    log_dir = output_dir / "logs"

    if container is None:
        container = BuildContainer(
            name=settings.container_name,
            image=settings.toolchain_image,
            mounts=mounts,
            runtime=settings.container_runtime,
        )

    run = CrossBuildRun()
    mode = "release" if release else "debug"
    logger.info(
        "Cross building %s (%s) for: %s",
        settings.gui_binary,
        mode,
        ", ".join(t.triple for t in targets),
    )

    with container.running():
        for target in targets:
            result = run_target_build(
                container,
                target,
                binary=settings.gui_binary,
                package_dir=settings.gui_package,
                log_dir=log_dir,
                config_path=settings.toolchain_config_path,
                release=release,
                features=features,
                timeout=settings.build_timeout,
            )
            run.results.append(result)
            if not result.success:
                raise BuildExecutionError(
                    result.error_message or f"Build for {target.triple} failed",
                    exit_code=result.exit_code,
                    code="build_failed",
                )

        for target in targets:
            run.artifacts.append(
                collect_artifact(output_dir, target, settings.gui_binary, release)
            )

    manifest = generate_manifest(
        run.artifacts,
        release=release,
        extra_metadata={"container": container.name, "image": container.image},
    )
    run.manifest_path = write_manifest(manifest, output_dir / MANIFEST_FILENAME)
    logger.info("Cross build finished: %d artifact(s)", len(run.artifacts))
    return run


__all__ = [
    "CrossBuildRun",
    "default_mounts",
    "run_cross_build",
]
