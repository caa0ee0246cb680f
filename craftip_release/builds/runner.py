"""Build runner for executing cross builds inside the build container.

This module handles:
- Composing `cargo build` commands for one target triple
- Executing them in the running build container
- Capturing stdout/stderr to per-target log files
- Enforcing build timeouts
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from craftip_release.container.runtime import ContainerCommandError

if TYPE_CHECKING:
    from craftip_release.container.lifecycle import BuildContainer
    from craftip_release.types import BuildTarget

logger = logging.getLogger(__name__)

ENTRYPOINT = "/entrypoint.sh"


class BuildExecutionError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Result of one target build.

    Attributes:
        success: Whether the build succeeded.
        exit_code: Process exit code.
        triple: Target triple.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
        command: The command that was executed.
        error_message: Error message if build failed.
    """

    success: bool
    exit_code: int
    triple: str
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None


def profile_dir(release: bool) -> str:
    """Cargo output profile directory name."""
    return "release" if release else "debug"


def compose_cargo_command(
    triple: str,
    binary: str,
    config_path: str,
    release: bool = False,
    features: list[str] | None = None,
) -> list[str]:
    """Compose the cross-compile invocation for one triple.

    Args:
        triple: Target triple.
        binary: Binary name.
        config_path: Toolchain config path inside the container.
        release: Build with optimizations.
        features: Cargo features to enable.

    Returns:
        Command as list of strings.
    """
    cmd = ["cargo", "build", f"--target={triple}", "--bin", binary]
    if features:
        cmd.extend(["--features", ",".join(features)])
    if release:
        cmd.append("--release")
    cmd.extend(["--config", config_path])
    return cmd


def compose_container_command(cargo_cmd: list[str], package_dir: str) -> list[str]:
    """Wrap a cargo command so it runs with the toolchain environment loaded."""
    script = f"source {ENTRYPOINT} && cd {shlex.quote(package_dir)} && {shlex.join(cargo_cmd)}"
    return ["/bin/bash", "-c", script]


def run_target_build(
    container: BuildContainer,
    target: BuildTarget,
    binary: str,
    package_dir: str,
    log_dir: Path,
    config_path: str,
    release: bool = False,
    features: list[str] | None = None,
    timeout: int | None = None,
) -> BuildResult:
    """Execute the cross build of one target in the running container.

    Args:
        container: Running build container.
        target: Resolved target.
        binary: Binary name.
        package_dir: Package directory (relative to the container workdir).
        log_dir: Directory for the log file.
        config_path: Toolchain config path inside the container.
        release: Build with optimizations.
        features: Cargo features to enable.
        timeout: Build timeout in seconds (None = no timeout).

    Returns:
        BuildResult with execution details.

    Raises:
        BuildExecutionError: If the build cannot start or times out.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"build-{target.triple}.log"

    cargo_cmd = compose_cargo_command(
        target.triple,
        binary,
        config_path,
        release=release,
        features=features,
    )
    cmd = compose_container_command(cargo_cmd, package_dir)
    cmd_str = shlex.join(cargo_cmd)

    logger.info("Building %s for %s", binary, target.triple)
    logger.debug("Executing in %s: %s", container.name, cmd_str)

    started_at = datetime.now(timezone.utc)
    error_message: str | None = None

    try:
        with log_path.open("w") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# Container: {container.name}\n")
            log_file.write(f"# Linker: {target.linker_path}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            result = container.exec(cmd, log_file=log_file, timeout=timeout)

        exit_code = result.returncode
        success = exit_code == 0
        if not success:
            error_message = f"Build for {target.triple} failed with exit code {exit_code}"
            logger.error("%s. See log: %s", error_message, log_path)

    except ContainerCommandError as e:
        if e.code == "timeout":
            error_message = f"Build for {target.triple} timed out after {timeout} seconds"
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
            code = "build_timeout"
        else:
            error_message = f"Failed to execute build for {target.triple}: {e}"
            code = "execution_error"
        logger.error(error_message)
        raise BuildExecutionError(error_message, exit_code=e.exit_code, code=code) from e

    finished_at = datetime.now(timezone.utc)

    with log_path.open("a") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return BuildResult(
        success=success,
        exit_code=exit_code,
        triple=target.triple,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )


__all__ = [
    "BuildExecutionError",
    "BuildResult",
    "compose_cargo_command",
    "compose_container_command",
    "profile_dir",
    "run_target_build",
]
