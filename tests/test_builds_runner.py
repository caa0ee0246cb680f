"""Tests for builds/runner.py module.

Tests cross build command composition and execution.
Uses mocked subprocess for build execution tests.
"""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from craftip_release.builds.runner import (
    BuildExecutionError,
    BuildResult,
    compose_cargo_command,
    compose_container_command,
    profile_dir,
    run_target_build,
)
from craftip_release.container.lifecycle import BuildContainer
from craftip_release.types import BuildTarget, ContainerState


@pytest.fixture
def darwin_target() -> BuildTarget:
    return BuildTarget(
        os="macos",
        architecture="aarch64",
        triple="aarch64-apple-darwin",
        linker_path="/opt/osxcross/target/bin/aarch64-apple-darwin21.4-clang",
        archiver_path="/opt/osxcross/target/bin/aarch64-apple-darwin21.4-ar",
    )


@pytest.fixture
def running_container() -> BuildContainer:
    container = BuildContainer("crosscompiler", "dscso/rust-crosscompiler:latest")
    container.state = ContainerState.RUNNING
    return container


class TestComposeCargoCommand:
    """Tests for compose_cargo_command function."""

    def test_minimal_command(self):
        """Should compose a debug build."""
        cmd = compose_cargo_command("x86_64-apple-darwin", "client-gui", "/root/.cargo/config")
        assert cmd == [
            "cargo",
            "build",
            "--target=x86_64-apple-darwin",
            "--bin",
            "client-gui",
            "--config",
            "/root/.cargo/config",
        ]

    def test_release(self):
        cmd = compose_cargo_command("x86_64-apple-darwin", "client-gui", "/cfg", release=True)
        assert "--release" in cmd

    def test_features_joined(self):
        """Features should be passed as one comma separated list."""
        cmd = compose_cargo_command(
            "x86_64-apple-darwin", "client-gui", "/cfg", features=["tray", "updater"]
        )
        assert cmd[cmd.index("--features") + 1] == "tray,updater"

    def test_profile_dir(self):
        assert profile_dir(True) == "release"
        assert profile_dir(False) == "debug"


class TestComposeContainerCommand:
    """Tests for compose_container_command function."""

    def test_sources_entrypoint(self):
        cmd = compose_container_command(["cargo", "build"], "client-gui")
        assert cmd[:2] == ["/bin/bash", "-c"]
        assert cmd[2] == "source /entrypoint.sh && cd client-gui && cargo build"


class TestRunTargetBuild:
    """Tests for run_target_build function (mocked)."""

    def _run(self, container, target, tmp_path, **kwargs) -> BuildResult:
        return run_target_build(
            container,
            target,
            binary="client-gui",
            package_dir="client-gui",
            log_dir=tmp_path / "logs",
            config_path="/root/.cargo/config",
            **kwargs,
        )

    def test_successful_build(self, running_container, darwin_target, tmp_path):
        """Should run cargo through docker exec."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            result = self._run(running_container, darwin_target, tmp_path, release=True)

        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["docker", "exec", "crosscompiler"]
        assert "--target=aarch64-apple-darwin" in cmd[-1]
        assert result.success is True
        assert result.exit_code == 0
        assert result.triple == "aarch64-apple-darwin"

    def test_failed_build(self, running_container, darwin_target, tmp_path):
        """Non-zero exit should produce a failed result."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=101)
            result = self._run(running_container, darwin_target, tmp_path)

        assert result.success is False
        assert result.exit_code == 101
        assert "aarch64-apple-darwin" in result.error_message

    def test_timeout(self, running_container, darwin_target, tmp_path):
        """Timeouts should raise BuildExecutionError."""
        with patch("subprocess.run") as mock_run:
            mock_run.side_effect = subprocess.TimeoutExpired(cmd="docker", timeout=60)
            with pytest.raises(BuildExecutionError) as exc_info:
                self._run(running_container, darwin_target, tmp_path, timeout=60)

        assert exc_info.value.code == "build_timeout"
        log = (tmp_path / "logs" / "build-aarch64-apple-darwin.log").read_text()
        assert "TIMEOUT" in log

    def test_log_file_content(self, running_container, darwin_target, tmp_path):
        """Log should carry command, start and exit code headers."""
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0)
            result = self._run(running_container, darwin_target, tmp_path)

        content = result.log_path.read_text()
        assert "# Command: cargo build --target=aarch64-apple-darwin" in content
        assert "# Started:" in content
        assert "# Exit code: 0" in content
        assert f"# Linker: {darwin_target.linker_path}" in content
