"""Thin wrapper around the container CLI.

This module handles:
- Executing container CLI commands with subprocess
- Mapping launch failures and timeouts to ContainerCommandError
- Querying container and image state

Commands that legitimately fail (inspecting an absent container) are run
with check=False and interpreted by the caller.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from craftip_release.types import ContainerState

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME = "docker"

_NOT_FOUND_MARKERS = ("no such container", "no such object", "not found")

_STATUS_MAP = {
    "running": ContainerState.RUNNING,
    "restarting": ContainerState.RUNNING,
    "paused": ContainerState.RUNNING,
    "created": ContainerState.STOPPED,
    "exited": ContainerState.STOPPED,
    "dead": ContainerState.STOPPED,
    "removing": ContainerState.STOPPED,
}


class ContainerCommandError(Exception):
    """Raised when a container CLI command cannot be executed or fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "container_command_error",
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.stderr = stderr


def run_runtime(
    args: Sequence[str],
    runtime: str = DEFAULT_RUNTIME,
    timeout: int | None = None,
    log_file: IO[str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a container CLI command.

    Args:
        args: Arguments after the runtime executable.
        runtime: Container CLI executable.
        timeout: Timeout in seconds (None = no timeout).
        log_file: If given, stdout and stderr are written to it instead
            of being captured.

    Returns:
        The completed process (non-zero exit codes are not raised).

    Raises:
        ContainerCommandError: If the command cannot start or times out.
    """
    cmd = [runtime, *args]
    cmd_str = shlex.join(cmd)
    logger.debug("Running: %s", cmd_str)

    try:
        if log_file is not None:
            return subprocess.run(
                cmd,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                check=False,
            )
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise ContainerCommandError(
            f"{cmd_str} timed out after {timeout} seconds",
            exit_code=-1,
            code="timeout",
        ) from e
    except OSError as e:
        raise ContainerCommandError(
            f"Failed to run {runtime}: {e}",
            code="execution_error",
        ) from e


def is_not_found(result: subprocess.CompletedProcess[str]) -> bool:
    """Whether a failed command reported a missing object."""
    stderr = (result.stderr or "").lower()
    return result.returncode != 0 and any(m in stderr for m in _NOT_FOUND_MARKERS)


def inspect_container_state(name: str, runtime: str = DEFAULT_RUNTIME) -> ContainerState:
    """Return the lifecycle state of a named container.

    Raises:
        ContainerCommandError: If the runtime reports an unexpected error.
    """
    result = run_runtime(
        ["container", "inspect", "--format", "{{.State.Status}}", name],
        runtime=runtime,
    )
    if result.returncode != 0:
        if is_not_found(result):
            return ContainerState.ABSENT
        raise ContainerCommandError(
            f"Failed to inspect container {name}: {result.stderr.strip()}",
            exit_code=result.returncode,
            code="inspect_failed",
            stderr=result.stderr,
        )

    status = result.stdout.strip().lower()
    state = _STATUS_MAP.get(status)
    if state is None:
        logger.warning("Unknown container status '%s' for %s, treating as stopped", status, name)
        return ContainerState.STOPPED
    return state


def image_exists(reference: str, runtime: str = DEFAULT_RUNTIME) -> bool:
    """Whether an image reference exists locally."""
    result = run_runtime(["image", "inspect", reference], runtime=runtime)
    return result.returncode == 0


def pull_image(reference: str, runtime: str = DEFAULT_RUNTIME) -> None:
    """Pull an image.

    Raises:
        ContainerCommandError: If the pull fails.
    """
    logger.info("Pulling image %s", reference)
    result = run_runtime(["pull", reference], runtime=runtime)
    if result.returncode != 0:
        raise ContainerCommandError(
            f"Failed to pull {reference}: {result.stderr.strip()}",
            exit_code=result.returncode,
            code="pull_failed",
            stderr=result.stderr,
        )


def compose_build_command(
    context_dir: Path,
    tag: str,
    dockerfile: Path | None = None,
    target: str | None = None,
    cache_from: Sequence[str] = (),
    labels: dict[str, str] | None = None,
    build_args: dict[str, str] | None = None,
) -> list[str]:
    """Compose the arguments of an image build.

    Returns:
        Arguments after the runtime executable.
    """
    args = ["build", "--tag", tag]
    if dockerfile is not None:
        args.extend(["--file", str(dockerfile)])
    if target:
        args.extend(["--target", target])
    for ref in cache_from:
        args.extend(["--cache-from", ref])
    for key, value in sorted((labels or {}).items()):
        args.extend(["--label", f"{key}={value}"])
    for key, value in sorted((build_args or {}).items()):
        args.extend(["--build-arg", f"{key}={value}"])
    args.append(str(context_dir))
    return args


__all__ = [
    "DEFAULT_RUNTIME",
    "ContainerCommandError",
    "compose_build_command",
    "image_exists",
    "inspect_container_state",
    "is_not_found",
    "pull_image",
    "run_runtime",
]
