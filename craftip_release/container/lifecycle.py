"""Lifecycle of the ephemeral build container.

The container moves through absent -> running -> stopped -> removed and
back to absent. Every transition is idempotent: asking for a state the
container is already in yields an EXPECTED_NOOP result instead of an error,
so teardown may run any number of times.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import IO

from craftip_release.container.runtime import (
    DEFAULT_RUNTIME,
    ContainerCommandError,
    inspect_container_state,
    is_not_found,
    run_runtime,
)
from craftip_release.types import ContainerState, Mount, OperationResult, OutcomeStatus

logger = logging.getLogger(__name__)

KEEP_ALIVE_COMMAND = ("sleep", "infinity")


class ContainerStateError(Exception):
    """Raised when an operation needs a state the container is not in."""

    def __init__(
        self, message: str, state: ContainerState, code: str = "invalid_container_state"
    ) -> None:
        super().__init__(message)
        self.state = state
        self.code = code


class BuildContainer:
    """One named, long-lived container holding the toolchain and mounted source.

    Attributes:
        name: Reserved container name.
        image: Toolchain image reference.
        mounts: Ordered bind mounts.
        runtime: Container CLI executable.
        state: Last known lifecycle state.
    """

    def __init__(
        self,
        name: str,
        image: str,
        mounts: Sequence[Mount] = (),
        runtime: str = DEFAULT_RUNTIME,
    ) -> None:
        self.name = name
        self.image = image
        self.mounts = list(mounts)
        self.runtime = runtime
        self.state = ContainerState.ABSENT

    def __repr__(self) -> str:
        return f"BuildContainer(name={self.name!r}, state={self.state.value})"

    @property
    def is_absent(self) -> bool:
        return self.state in (ContainerState.ABSENT, ContainerState.REMOVED)

    def refresh(self) -> ContainerState:
        """Query the runtime for the current state."""
        self.state = inspect_container_state(self.name, runtime=self.runtime)
        return self.state

    def compose_run_command(self) -> list[str]:
        """Compose the `run` arguments (detached, named, keep-alive entry)."""
        args = ["run", "--detach", "--name", self.name]
        for mount in self.mounts:
            args.extend(["--volume", mount.to_volume_arg()])
        args.append(self.image)
        args.extend(KEEP_ALIVE_COMMAND)
        return args

    def stop(self) -> OperationResult:
        """Stop the container.

        Returns:
            OK if it was stopped, EXPECTED_NOOP if absent.

        Raises:
            ContainerCommandError: If the runtime reports another failure.
        """
        result = run_runtime(["stop", self.name], runtime=self.runtime)
        if result.returncode == 0:
            previous = self.state
            self.state = ContainerState.STOPPED
            if previous is ContainerState.STOPPED:
                return OperationResult.noop(f"Container {self.name} already stopped")
            logger.info("Stopped container %s", self.name)
            return OperationResult.ok(f"Stopped container {self.name}")
        if is_not_found(result):
            self.state = ContainerState.ABSENT
            return OperationResult.noop(f"Container {self.name} does not exist")
        raise ContainerCommandError(
            f"Failed to stop container {self.name}: {result.stderr.strip()}",
            exit_code=result.returncode,
            code="stop_failed",
            stderr=result.stderr,
        )

    def remove(self) -> OperationResult:
        """Remove the container.

        Returns:
            OK if it was removed, EXPECTED_NOOP if absent.

        Raises:
            ContainerCommandError: If the runtime reports another failure.
        """
        result = run_runtime(["rm", self.name], runtime=self.runtime)
        if result.returncode == 0:
            self.state = ContainerState.REMOVED
            logger.info("Removed container %s", self.name)
            return OperationResult.ok(f"Removed container {self.name}")
        if is_not_found(result):
            self.state = ContainerState.ABSENT
            return OperationResult.noop(f"Container {self.name} does not exist")
        raise ContainerCommandError(
            f"Failed to remove container {self.name}: {result.stderr.strip()}",
            exit_code=result.returncode,
            code="remove_failed",
            stderr=result.stderr,
        )

    def teardown(self) -> list[OperationResult]:
        """Best-effort stop and remove.

        Runtime errors are logged and reported as FATAL results, never raised.
        """
        results: list[OperationResult] = []
        for step in (self.stop, self.remove):
            try:
                results.append(step())
            except ContainerCommandError as e:
                logger.warning("Ignoring teardown failure for %s: %s", self.name, e)
                results.append(OperationResult(OutcomeStatus.FATAL, str(e), code=e.code))
        return results

    def ensure_absent(self) -> OperationResult:
        """Tear down any prior instance holding the reserved name.

        Returns:
            EXPECTED_NOOP if nothing held the name, OK once it was torn down,
            FATAL with the first failure code if the runtime failed.
        """
        logger.info("Removing old container %s (if any)", self.name)
        results = self.teardown()
        failures = [r for r in results if r.status is OutcomeStatus.FATAL]
        if failures:
            logger.error("Could not tear down previous container %s", self.name)
            return OperationResult(
                OutcomeStatus.FATAL,
                f"Failed to tear down previous container {self.name}: {failures[0].message}",
                code=failures[0].code,
            )
        if all(r.status is OutcomeStatus.EXPECTED_NOOP for r in results):
            return OperationResult.noop(f"Container {self.name} already absent")
        return OperationResult.ok(f"Tore down previous container {self.name}")

    def start(self) -> OperationResult:
        """Create and start the container.

        Returns:
            OK when started, EXPECTED_NOOP if this instance is already running.

        Raises:
            ContainerStateError: If the container is stopped but not removed.
            ContainerCommandError: If the runtime fails to start it.
        """
        if self.state is ContainerState.RUNNING:
            return OperationResult.noop(f"Container {self.name} already running")
        if not self.is_absent:
            raise ContainerStateError(
                f"Container {self.name} must be absent before start (is {self.state.value})",
                state=self.state,
            )

        logger.info("Starting container %s from %s", self.name, self.image)
        result = run_runtime(self.compose_run_command(), runtime=self.runtime)
        if result.returncode != 0:
            raise ContainerCommandError(
                f"Failed to start container {self.name}: {result.stderr.strip()}",
                exit_code=result.returncode,
                code="start_failed",
                stderr=result.stderr,
            )
        self.state = ContainerState.RUNNING
        return OperationResult.ok(
            f"Started container {self.name}", container_id=result.stdout.strip()
        )

    def exec(
        self,
        command: Sequence[str],
        log_file: IO[str] | None = None,
        timeout: int | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run a command inside the running container.

        Raises:
            ContainerStateError: If the container is not running.
            ContainerCommandError: If the command cannot start or times out.
        """
        if self.state is not ContainerState.RUNNING:
            raise ContainerStateError(
                f"Container {self.name} is not running (is {self.state.value})",
                state=self.state,
            )
        return run_runtime(
            ["exec", self.name, *command],
            runtime=self.runtime,
            timeout=timeout,
            log_file=log_file,
        )

    @contextmanager
    def running(self) -> Iterator[BuildContainer]:
        """Run the container for the duration of a block.

        Teardown runs on every exit path, including exceptions.

        Raises:
            ContainerCommandError: If a prior instance cannot be torn down.
        """
        cleared = self.ensure_absent()
        if not cleared.success:
            raise ContainerCommandError(cleared.message, code=cleared.code or "teardown_failed")
        try:
            self.start()
            yield self
        finally:
            self.teardown()


__all__ = [
    "KEEP_ALIVE_COMMAND",
    "BuildContainer",
    "ContainerStateError",
]
