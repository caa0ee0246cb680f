"""Local execution of the release matrix.

Runs the same graph as the hosted workflow on the current machine: one
producer per macOS architecture compiles the GUI client with the host
cargo into its own target directory, and the join assembles the disk
image from the downloaded artifacts.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from craftip_release.builds.runner import BuildExecutionError
from craftip_release.bundle.assembler import assemble
from craftip_release.ci.graph import (
    ArtifactStore,
    JoinJob,
    MatrixResult,
    ProducerJob,
    run_matrix,
)
from craftip_release.config import Settings, resolve_bundle_config
from craftip_release.targets import MACOS_ARCHITECTURES, MACOS_SUFFIX, macos_triple

logger = logging.getLogger(__name__)

JOIN_JOB_NAME = "universal-binary"


def host_cargo_build(
    settings: Settings,
    triple: str,
    workdir: Path,
    timeout: int | None = None,
) -> Path:
    """Build the GUI binary for a triple with the host toolchain.

    Output goes to `<workdir>/target`, so concurrent builds share nothing.

    Returns:
        Path of the built binary.

    Raises:
        BuildExecutionError: If cargo fails, times out or cannot start.
    """
    target_dir = workdir / "target"
    cmd = [
        "cargo",
        "build",
        "--release",
        f"--target={triple}",
        "--bin",
        settings.gui_binary,
        "--target-dir",
        str(target_dir),
    ]
    cmd_str = shlex.join(cmd)
    log_path = workdir / f"build-{triple}.log"
    started_at = datetime.now(timezone.utc)
    logger.info("Building %s for %s in %s", settings.gui_binary, triple, workdir)

    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()
            result = subprocess.run(
                cmd,
                cwd=settings.workspace_root / settings.gui_package,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                check=False,
            )
            log_file.write(f"\n# Exit code: {result.returncode}\n")
    except subprocess.TimeoutExpired as e:
        raise BuildExecutionError(
            f"Build for {triple} timed out after {timeout} seconds", code="build_timeout"
        ) from e
    except OSError as e:
        raise BuildExecutionError(
            f"Failed to execute build for {triple}: {e}", code="execution_error"
        ) from e

    if result.returncode != 0:
        raise BuildExecutionError(
            f"Build for {triple} failed with exit code {result.returncode}. See log: {log_path}",
            exit_code=result.returncode,
            code="build_failed",
        )
    return target_dir / triple / "release" / settings.gui_binary


def build_release_matrix(settings: Settings) -> tuple[list[ProducerJob], JoinJob]:
    """Create the producer jobs and the disk image join of the release."""

    def producer(triple: str):
        def action(workdir: Path) -> Path:
            return host_cargo_build(settings, triple, workdir, timeout=settings.build_timeout)

        return action

    producers = [
        ProducerJob(
            name=f"build-macos-{arch}",
            arch=arch,
            os=MACOS_SUFFIX,
            action=producer(macos_triple(arch)),
        )
        for arch in MACOS_ARCHITECTURES
    ]

    x86_key = macos_triple("x86_64")
    arm_key = macos_triple("aarch64")

    def join_action(inputs: dict[str, Path], workdir: Path) -> Path:
        config = resolve_bundle_config(
            settings,
            x86_64_binary=inputs[x86_key],
            aarch64_binary=inputs[arm_key],
            build_folder=workdir,
            dmg_output_path=workdir / f"{settings.app_name}.dmg",
        )
        return assemble(config).dmg_path

    join = JoinJob(name=JOIN_JOB_NAME, needs=(x86_key, arm_key), action=join_action)
    return producers, join


def run_local_matrix(settings: Settings, work_root: Path) -> MatrixResult:
    """Run the release matrix locally under `work_root`."""
    producers, join = build_release_matrix(settings)
    store = ArtifactStore(work_root / "artifacts")
    return run_matrix(
        producers,
        join,
        store,
        work_root / "jobs",
        max_workers=settings.max_parallel_jobs,
    )


__all__ = [
    "build_release_matrix",
    "host_cargo_build",
    "run_local_matrix",
]
