"""Tests for builds/orchestrator.py module.

The container CLI is mocked at subprocess.run; a fake `exec` writes the
binary cargo would have produced into the mounted output directory.
"""

import json
import re
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from craftip_release.builds.artifacts import ArtifactNotFoundError
from craftip_release.builds.orchestrator import default_mounts, run_cross_build
from craftip_release.builds.runner import BuildExecutionError
from craftip_release.config import Settings
from craftip_release.targets import CROSS_TARGETS
from craftip_release.toolchain.config import (
    ToolchainConfig,
    ToolchainConfigError,
    default_toolchain_config,
)

NO_SUCH_CONTAINER = "Error: No such container: crosscompiler"


class FakeDocker:
    """Container CLI double that simulates cargo output on exec."""

    def __init__(self, output_dir: Path, fail_triple: str | None = None,
                 produce: bool = True) -> None:
        self.output_dir = output_dir
        self.fail_triple = fail_triple
        self.produce = produce
        self.exists = False
        self.calls: list[list[str]] = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        verb = cmd[1]
        if verb == "run":
            self.exists = True
            return MagicMock(returncode=0, stdout="id\n", stderr="")
        if verb in ("stop", "rm"):
            if not self.exists:
                return MagicMock(returncode=1, stdout="", stderr=NO_SUCH_CONTAINER)
            if verb == "rm":
                self.exists = False
            return MagicMock(returncode=0, stdout="", stderr="")
        if verb == "exec":
            script = cmd[-1]
            triple = re.search(r"--target=(\S+)", script).group(1)
            if triple == self.fail_triple:
                return MagicMock(returncode=101)
            if self.produce:
                profile = "release" if "--release" in script else "debug"
                suffix = ".exe" if "windows" in triple else ""
                binary = self.output_dir / triple / profile / f"client-gui{suffix}"
                binary.parent.mkdir(parents=True, exist_ok=True)
                binary.write_bytes(triple.encode())
            return MagicMock(returncode=0)
        raise AssertionError(f"unexpected command: {cmd}")

    def verbs(self) -> list[str]:
        return [c[1] for c in self.calls]

    def exec_triples(self) -> list[str]:
        return [
            re.search(r"--target=(\S+)", c[-1]).group(1)
            for c in self.calls
            if c[1] == "exec"
        ]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    (tmp_path / "Cargo.toml").write_text("[workspace]\n")
    return Settings(workspace_root=tmp_path)


def _run(settings: Settings, toolchain: ToolchainConfig, triples=CROSS_TARGETS, release=True):
    mounts = default_mounts(
        settings.workspace_root,
        settings.workspace_members,
        settings.effective_output_dir(),
    )
    return run_cross_build(
        triples, mounts, release, settings=settings, toolchain=toolchain
    )


class TestDefaultMounts:
    """Tests for default_mounts function."""

    def test_only_output_is_writable(self, tmp_path: Path) -> None:
        (tmp_path / "Cargo.toml").write_text("")
        mounts = default_mounts(tmp_path, ["shared", "client-gui"], tmp_path / "out")

        assert mounts[0].container_path == "/build/target"
        assert mounts[0].read_only is False
        assert all(m.read_only for m in mounts[1:])
        assert [m.container_path for m in mounts[1:]] == [
            "/build/Cargo.toml",
            "/build/shared",
            "/build/client-gui",
        ]

    def test_lockfile_mounted_when_present(self, tmp_path: Path) -> None:
        (tmp_path / "Cargo.lock").write_text("")
        mounts = default_mounts(tmp_path, [], tmp_path / "out")
        assert "/build/Cargo.lock" in [m.container_path for m in mounts]


class TestRunCrossBuild:
    """Tests for run_cross_build function."""

    def test_builds_all_targets_in_order(self, settings: Settings) -> None:
        fake = FakeDocker(settings.effective_output_dir())
        with patch("subprocess.run", side_effect=fake):
            run = _run(settings, default_toolchain_config())

        assert fake.exec_triples() == CROSS_TARGETS
        assert [a.target for a in run.artifacts] == CROSS_TARGETS
        assert run.artifacts[0].binary_path.name == "client-gui.exe"
        assert all(a.sha256 for a in run.artifacts)
        assert fake.exists is False

    def test_single_container_for_all_targets(self, settings: Settings) -> None:
        """Targets share one container, started once."""
        fake = FakeDocker(settings.effective_output_dir())
        with patch("subprocess.run", side_effect=fake):
            _run(settings, default_toolchain_config())
        assert fake.verbs().count("run") == 1
        assert fake.verbs()[-2:] == ["stop", "rm"]

    def test_unresolved_triple_fails_before_container(self, settings: Settings) -> None:
        """A missing toolchain entry is a configuration error, raised first."""
        toolchain = ToolchainConfig()
        toolchain.add("x86_64-pc-windows-gnu", "/usr/bin/gcc", "/usr/bin/ar")

        with patch("subprocess.run") as mock_run:
            with pytest.raises(ToolchainConfigError) as exc_info:
                _run(settings, toolchain)
        assert exc_info.value.code == "unresolved_triple"
        mock_run.assert_not_called()

    def test_failure_stops_run_and_cleans_up(self, settings: Settings) -> None:
        """The first failing target aborts the run; teardown still happens."""
        fake = FakeDocker(settings.effective_output_dir(), fail_triple="x86_64-apple-darwin")
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(BuildExecutionError) as exc_info:
                _run(settings, default_toolchain_config())

        assert exc_info.value.code == "build_failed"
        assert exc_info.value.exit_code == 101
        assert fake.exec_triples() == ["x86_64-pc-windows-gnu", "x86_64-apple-darwin"]
        assert fake.verbs()[-2:] == ["stop", "rm"]
        assert fake.exists is False

    def test_missing_output_is_an_error(self, settings: Settings) -> None:
        fake = FakeDocker(settings.effective_output_dir(), produce=False)
        with patch("subprocess.run", side_effect=fake):
            with pytest.raises(ArtifactNotFoundError):
                _run(settings, default_toolchain_config())
        assert fake.exists is False

    def test_debug_build_paths(self, settings: Settings) -> None:
        fake = FakeDocker(settings.effective_output_dir())
        with patch("subprocess.run", side_effect=fake):
            run = _run(
                settings, default_toolchain_config(), ["aarch64-apple-darwin"], release=False
            )
        assert run.artifacts[0].binary_path.parent.name == "debug"

    def test_writes_manifest(self, settings: Settings) -> None:
        fake = FakeDocker(settings.effective_output_dir())
        with patch("subprocess.run", side_effect=fake):
            run = _run(settings, default_toolchain_config())

        assert run.manifest_path == settings.effective_output_dir() / "artifacts.json"
        data = json.loads(run.manifest_path.read_text())
        assert data["summary"]["targets"] == CROSS_TARGETS
        assert data["metadata"]["container"] == "crosscompiler"
