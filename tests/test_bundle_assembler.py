"""Tests for bundle/assembler.py and bundle/dmg.py modules.

sips, iconutil and hdiutil are mocked at subprocess.run; the mock creates
the files the real tools would write.
"""

import hashlib
import os
import struct
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from craftip_release.bundle.assembler import assemble, find_info_plist
from craftip_release.bundle.dmg import APPLICATIONS_LINK, hdiutil_command, link_applications
from craftip_release.bundle.errors import (
    DiskImageError,
    DuplicateArchitectureError,
    MissingInputError,
)
from craftip_release.bundle.macho import (
    CPU_TYPE_ARM64,
    CPU_TYPE_X86_64,
    MH_EXECUTE,
    MH_MAGIC_64,
    read_fat_archs,
)
from craftip_release.config import BundleConfig
from craftip_release.types import ArtifactKind


def thin_binary(cputype: int, payload: bytes) -> bytes:
    return struct.pack("<IIII", MH_MAGIC_64, cputype, 3, MH_EXECUTE) + payload


def fake_tools(cmd, **kwargs):
    if cmd[0] in ("sips", "iconutil", "hdiutil"):
        Path(cmd[-1]).write_bytes(cmd[0].encode())
    return MagicMock(returncode=0, stdout="", stderr="")


@pytest.fixture
def config(tmp_path: Path) -> BundleConfig:
    resources = tmp_path / "build" / "resources"
    resources.mkdir(parents=True)
    (resources / "logo-mac.png").write_bytes(b"png")

    x86 = tmp_path / "x86_64" / "client-gui"
    arm = tmp_path / "aarch64" / "client-gui"
    for path, cputype in ((x86, CPU_TYPE_X86_64), (arm, CPU_TYPE_ARM64)):
        path.parent.mkdir()
        path.write_bytes(thin_binary(cputype, path.parent.name.encode() * 100))

    return BundleConfig(
        app_name="CraftIP",
        x86_64_binary=x86,
        aarch64_binary=arm,
        build_folder=tmp_path / "mac-build",
        dmg_output_path=tmp_path / "CraftIP.dmg",
        resources_dir=resources,
    )


def snapshot(root: Path) -> dict[str, bytes | str]:
    """Relative path -> content (files) or link target (symlinks)."""
    tree: dict[str, bytes | str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            rel = str(path.relative_to(root))
            if path.is_symlink():
                tree[rel] = os.readlink(path)
            elif path.is_file():
                tree[rel] = path.read_bytes()
    return tree


class TestAssemble:
    """Tests for assemble function."""

    def test_bundle_layout(self, config: BundleConfig) -> None:
        with patch("subprocess.run", side_effect=fake_tools):
            result = assemble(config)

        contents = config.app_dir / "Contents"
        assert sorted(os.listdir(config.staging_dir)) == ["Applications", "CraftIP.app"]
        assert (contents / "MacOS" / "CraftIP").is_file()
        assert (contents / "Info.plist").is_file()
        assert [p.name for p in (contents / "Resources").iterdir()] == ["logo.icns"]
        assert result.steps == ["layout", "universal_binary", "info_plist", "icon", "disk_image"]
        assert result.dmg_path == config.dmg_output_path

    def test_executable_is_universal(self, config: BundleConfig) -> None:
        with patch("subprocess.run", side_effect=fake_tools):
            result = assemble(config)

        data = result.executable.read_bytes()
        archs = read_fat_archs(data)
        assert [a.architecture for a in archs] == ["x86_64", "arm64"]
        assert result.architectures == ["x86_64", "arm64"]
        assert data[archs[1].offset : archs[1].offset + archs[1].size] == (
            config.aarch64_binary.read_bytes()
        )
        assert result.executable.stat().st_mode & 0o777 == 0o755

    def test_applications_link(self, config: BundleConfig) -> None:
        with patch("subprocess.run", side_effect=fake_tools):
            assemble(config)
        link = config.staging_dir / APPLICATIONS_LINK
        assert link.is_symlink()
        assert os.readlink(link) == "/Applications"

    def test_disk_image_command(self, config: BundleConfig) -> None:
        with patch("subprocess.run", side_effect=fake_tools) as mock_run:
            assemble(config)
        assert mock_run.call_args_list[-1].args[0] == [
            "hdiutil",
            "create",
            "-volname",
            "CraftIP",
            "-srcfolder",
            str(config.staging_dir),
            "-ov",
            "-format",
            "UDZO",
            str(config.dmg_output_path),
        ]

    def test_disk_image_artifact(self, config: BundleConfig) -> None:
        """The sealed disk image is reported as a bundle artifact."""
        with patch("subprocess.run", side_effect=fake_tools):
            result = assemble(config)

        artifact = result.artifact
        assert artifact.kind is ArtifactKind.BUNDLE
        assert artifact.target == "universal-apple-darwin"
        assert artifact.binary_path == config.dmg_output_path
        assert artifact.size_bytes == len(b"hdiutil")
        assert artifact.sha256 == hashlib.sha256(b"hdiutil").hexdigest()

    def test_rerun_is_identical(self, config: BundleConfig) -> None:
        """A second run replaces stale output and yields the same tree."""
        with patch("subprocess.run", side_effect=fake_tools):
            assemble(config)
            first = snapshot(config.staging_dir)
            (config.staging_dir / "stale.txt").write_text("old")
            assemble(config)
            second = snapshot(config.staging_dir)

        assert first == second

    def test_info_plist_override(self, config: BundleConfig) -> None:
        (config.resources_dir / "Info.plist").write_text("<plist>custom</plist>")
        with patch("subprocess.run", side_effect=fake_tools):
            assemble(config)
        installed = config.app_dir / "Contents" / "Info.plist"
        assert installed.read_text() == "<plist>custom</plist>"

    def test_packaged_info_plist(self, tmp_path: Path) -> None:
        text = find_info_plist(tmp_path).read_text()
        assert "<string>CraftIP</string>" in text
        assert "CFBundleIconFile" in text

    def test_missing_icon(self, config: BundleConfig) -> None:
        (config.resources_dir / "logo-mac.png").unlink()
        with patch("subprocess.run") as mock_run:
            with pytest.raises(MissingInputError) as exc_info:
                assemble(config)
        assert exc_info.value.code == "missing_input"
        mock_run.assert_not_called()
        assert not config.staging_dir.exists()

    def test_missing_binary(self, config: BundleConfig) -> None:
        config.aarch64_binary.unlink()
        with pytest.raises(MissingInputError) as exc_info:
            assemble(config)
        assert exc_info.value.path == config.aarch64_binary

    def test_same_architecture_twice(self, config: BundleConfig) -> None:
        config.aarch64_binary.write_bytes(config.x86_64_binary.read_bytes())
        with pytest.raises(DuplicateArchitectureError):
            assemble(config)
        assert not config.staging_dir.exists()

    def test_disk_image_failure(self, config: BundleConfig) -> None:
        def tools(cmd, **kwargs):
            if cmd[0] == "hdiutil":
                return MagicMock(returncode=1, stdout="", stderr="hdiutil: create failed")
            return fake_tools(cmd, **kwargs)

        with patch("subprocess.run", side_effect=tools):
            with pytest.raises(DiskImageError):
                assemble(config)
        assert (config.app_dir / "Contents" / "Resources" / "logo.icns").is_file()


class TestDmgHelpers:
    """Tests for bundle/dmg.py helpers."""

    def test_link_replaces_existing(self, tmp_path: Path) -> None:
        (tmp_path / "Applications").write_text("not a link")
        link = link_applications(tmp_path)
        assert link.is_symlink()

    def test_hdiutil_command(self, tmp_path: Path) -> None:
        cmd = hdiutil_command("CraftIP", tmp_path / "dmg", tmp_path / "CraftIP.dmg")
        assert cmd[:3] == ["hdiutil", "create", "-volname"]
        assert "UDZO" in cmd
