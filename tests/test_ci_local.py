"""Tests for ci/local.py module.

cargo and the macOS tools are mocked at subprocess.run; the mock writes a
synthetic thin Mach-O binary where cargo would put the real one.
"""

import struct
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from craftip_release.builds.runner import BuildExecutionError
from craftip_release.bundle.macho import (
    CPU_TYPE_ARM64,
    CPU_TYPE_X86_64,
    MH_EXECUTE,
    MH_MAGIC_64,
    read_fat_archs,
)
from craftip_release.ci.local import (
    JOIN_JOB_NAME,
    build_release_matrix,
    host_cargo_build,
    run_local_matrix,
)
from craftip_release.config import Settings

CPU_TYPES = {
    "x86_64-apple-darwin": CPU_TYPE_X86_64,
    "aarch64-apple-darwin": CPU_TYPE_ARM64,
}


def fake_tools(cmd, **kwargs):
    if cmd[0] == "cargo":
        triple = cmd[3].split("=", 1)[1]
        binary = Path(cmd[-1]) / triple / "release" / cmd[5]
        binary.parent.mkdir(parents=True, exist_ok=True)
        header = struct.pack("<IIII", MH_MAGIC_64, CPU_TYPES[triple], 3, MH_EXECUTE)
        binary.write_bytes(header + triple.encode() * 64)
    elif cmd[0] in ("sips", "iconutil", "hdiutil"):
        Path(cmd[-1]).write_bytes(cmd[0].encode())
    return MagicMock(returncode=0, stdout="", stderr="")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    workspace = tmp_path / "workspace"
    resources = workspace / "build" / "resources"
    resources.mkdir(parents=True)
    (resources / "logo-mac.png").write_bytes(b"png")
    return Settings(workspace_root=workspace)


class TestHostCargoBuild:
    """Tests for host_cargo_build function."""

    def test_command_and_output_path(self, settings: Settings, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=0)) as mock_run:
            path = host_cargo_build(settings, "aarch64-apple-darwin", tmp_path)

        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "cargo",
            "build",
            "--release",
            "--target=aarch64-apple-darwin",
            "--bin",
            "client-gui",
            "--target-dir",
            str(tmp_path / "target"),
        ]
        assert mock_run.call_args.kwargs["cwd"] == settings.workspace_root / "client-gui"
        assert path == tmp_path / "target" / "aarch64-apple-darwin" / "release" / "client-gui"

    def test_log_file(self, settings: Settings, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=0)):
            host_cargo_build(settings, "x86_64-apple-darwin", tmp_path)

        log = (tmp_path / "build-x86_64-apple-darwin.log").read_text()
        assert "# Command: cargo build --release --target=x86_64-apple-darwin" in log
        assert "# Exit code: 0" in log

    def test_failure(self, settings: Settings, tmp_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=101)):
            with pytest.raises(BuildExecutionError) as exc_info:
                host_cargo_build(settings, "x86_64-apple-darwin", tmp_path)
        assert exc_info.value.code == "build_failed"
        assert exc_info.value.exit_code == 101

    def test_timeout(self, settings: Settings, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=subprocess.TimeoutExpired("cargo", 60)):
            with pytest.raises(BuildExecutionError) as exc_info:
                host_cargo_build(settings, "x86_64-apple-darwin", tmp_path, timeout=60)
        assert exc_info.value.code == "build_timeout"

    def test_cargo_missing(self, settings: Settings, tmp_path: Path) -> None:
        with patch("subprocess.run", side_effect=FileNotFoundError("cargo")):
            with pytest.raises(BuildExecutionError) as exc_info:
                host_cargo_build(settings, "x86_64-apple-darwin", tmp_path)
        assert exc_info.value.code == "execution_error"


class TestBuildReleaseMatrix:
    """Tests for build_release_matrix function."""

    def test_jobs(self, settings: Settings) -> None:
        producers, join = build_release_matrix(settings)
        assert [p.name for p in producers] == ["build-macos-x86_64", "build-macos-aarch64"]
        assert [p.artifact_key for p in producers] == [
            "x86_64-apple-darwin",
            "aarch64-apple-darwin",
        ]
        assert join.name == JOIN_JOB_NAME
        assert join.needs == ("x86_64-apple-darwin", "aarch64-apple-darwin")


class TestRunLocalMatrix:
    """Tests for run_local_matrix function."""

    def test_end_to_end(self, settings: Settings, tmp_path: Path) -> None:
        work_root = tmp_path / "ci"
        with patch("subprocess.run", side_effect=fake_tools):
            result = run_local_matrix(settings, work_root)

        assert result.success, result.failed_jobs
        join_dir = work_root / "jobs" / JOIN_JOB_NAME
        assert result.join.output == join_dir / "CraftIP.dmg"
        assert (join_dir / "x86_64-apple-darwin" / "client-gui").is_file()
        assert (join_dir / "aarch64-apple-darwin" / "client-gui").is_file()

        executable = join_dir / "dmg" / "CraftIP.app" / "Contents" / "MacOS" / "CraftIP"
        archs = read_fat_archs(executable.read_bytes())
        assert [a.architecture for a in archs] == ["x86_64", "arm64"]

    def test_failed_build_skips_bundle(self, settings: Settings, tmp_path: Path) -> None:
        def tools(cmd, **kwargs):
            if cmd[0] == "cargo" and "--target=aarch64-apple-darwin" in cmd:
                return MagicMock(returncode=101)
            return fake_tools(cmd, **kwargs)

        with patch("subprocess.run", side_effect=tools):
            result = run_local_matrix(settings, tmp_path / "ci")

        assert not result.success
        assert result.join.skipped
        assert result.failed_jobs == ["build-macos-aarch64"]
        assert not (tmp_path / "ci" / "jobs" / JOIN_JOB_NAME).exists()
