"""Invocation of the macOS command line tools (sips, iconutil, hdiutil)."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence

from craftip_release.bundle.errors import ToolError

logger = logging.getLogger(__name__)


def run_tool(
    command: Sequence[str],
    error_cls: type[ToolError] = ToolError,
    timeout: int | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run a tool to completion.

    Args:
        command: Command and arguments.
        error_cls: ToolError subclass raised on failure.
        timeout: Timeout in seconds (None = no timeout).

    Returns:
        The completed process.

    Raises:
        ToolError: (as error_cls) on a non-zero exit, a timeout, or if the
            tool cannot be executed.
    """
    cmd_str = shlex.join(command)
    logger.debug("Running: %s", cmd_str)
    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as e:
        raise error_cls(f"{command[0]} timed out after {timeout} seconds", code="timeout") from e
    except OSError as e:
        raise error_cls(f"Failed to run {command[0]}: {e}", code="execution_error") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise error_cls(
            f"{cmd_str} failed with exit code {result.returncode}: {stderr}",
            exit_code=result.returncode,
        )
    return result


__all__ = ["run_tool"]
