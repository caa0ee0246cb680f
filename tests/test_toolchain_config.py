"""Tests for toolchain/config.py module."""

from pathlib import Path

import pytest

from craftip_release.targets import UnknownTargetError
from craftip_release.toolchain.config import (
    OSXCROSS_BIN,
    ToolchainConfig,
    ToolchainConfigError,
    default_toolchain_config,
    load_toolchain_config,
)

SAMPLE_CONFIG = """\
[target.x86_64-apple-darwin]
linker = "/opt/osxcross/target/bin/x86_64-apple-darwin21.4-clang"
ar = "/opt/osxcross/target/bin/x86_64-apple-darwin21.4-ar"

[target.x86_64-pc-windows-gnu]
linker = "/usr/bin/x86_64-w64-mingw32-gcc"
ar = "/usr/bin/x86_64-w64-mingw32-ar"
"""


class TestToolchainConfig:
    """Tests for ToolchainConfig mapping."""

    def test_add_and_resolve(self) -> None:
        """Resolved targets carry the registered paths."""
        config = ToolchainConfig()
        config.add("x86_64-pc-windows-gnu", "/usr/bin/gcc", "/usr/bin/ar")

        target = config.resolve("x86_64-pc-windows-gnu")
        assert target.os == "windows"
        assert target.architecture == "x86_64"
        assert target.linker_path == "/usr/bin/gcc"
        assert target.archiver_path == "/usr/bin/ar"

    def test_relative_path_rejected(self) -> None:
        """Tool paths must be absolute inside the toolchain image."""
        config = ToolchainConfig()
        with pytest.raises(ToolchainConfigError) as exc_info:
            config.add("x86_64-pc-windows-gnu", "gcc", "/usr/bin/ar")
        assert exc_info.value.code == "relative_tool_path"

    def test_unknown_triple_rejected(self) -> None:
        config = ToolchainConfig()
        with pytest.raises(UnknownTargetError):
            config.add("mips-unknown-linux-gnu", "/usr/bin/gcc", "/usr/bin/ar")

    def test_resolve_unregistered_triple(self) -> None:
        """An unresolved triple is a configuration error."""
        config = ToolchainConfig()
        with pytest.raises(ToolchainConfigError) as exc_info:
            config.resolve("aarch64-apple-darwin")
        assert exc_info.value.code == "unresolved_triple"

    def test_require_lists_all_missing(self) -> None:
        """require should report every missing triple at once."""
        config = ToolchainConfig()
        config.add("x86_64-pc-windows-gnu", "/usr/bin/gcc", "/usr/bin/ar")

        with pytest.raises(ToolchainConfigError) as exc_info:
            config.require(
                ["x86_64-pc-windows-gnu", "x86_64-apple-darwin", "aarch64-apple-darwin"]
            )
        message = str(exc_info.value)
        assert "x86_64-apple-darwin" in message
        assert "aarch64-apple-darwin" in message

    def test_require_preserves_order(self) -> None:
        config = default_toolchain_config()
        targets = config.require(["aarch64-apple-darwin", "x86_64-pc-windows-gnu"])
        assert [t.triple for t in targets] == ["aarch64-apple-darwin", "x86_64-pc-windows-gnu"]


class TestRenderParse:
    """Tests for config file text."""

    def test_render_stanzas(self) -> None:
        config = ToolchainConfig()
        config.add("x86_64-pc-windows-gnu", "/usr/bin/gcc", "/usr/bin/ar")
        text = config.render()
        assert "[target.x86_64-pc-windows-gnu]" in text
        assert 'linker = "/usr/bin/gcc"' in text
        assert 'ar = "/usr/bin/ar"' in text

    def test_parse_sample(self) -> None:
        config = ToolchainConfig.parse(SAMPLE_CONFIG)
        assert config.triples == ["x86_64-apple-darwin", "x86_64-pc-windows-gnu"]
        assert "aarch64-apple-darwin" not in config

    def test_parse_render_preserves_entries(self) -> None:
        """A rendered default config parses back to the same entries."""
        original = default_toolchain_config()
        parsed = ToolchainConfig.parse(original.render())
        assert parsed.triples == original.triples
        for triple in original.triples:
            assert parsed.get(triple) == original.get(triple)

    def test_parse_skips_incomplete_stanza(self) -> None:
        """A stanza without ar leaves the triple unresolved."""
        text = '[target.aarch64-apple-darwin]\nlinker = "/opt/clang"\n'
        config = ToolchainConfig.parse(text)
        assert len(config) == 0

    def test_parse_skips_unknown_triple(self) -> None:
        text = '[target.mips-unknown-linux-gnu]\nlinker = "/a"\nar = "/b"\n'
        assert len(ToolchainConfig.parse(text)) == 0

    def test_parse_invalid_toml(self) -> None:
        with pytest.raises(ToolchainConfigError) as exc_info:
            ToolchainConfig.parse("[target.x86_64-apple-darwin\n")
        assert exc_info.value.code == "invalid_config"


class TestLoad:
    """Tests for loading config files."""

    def test_load_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.toml"
        path.write_text(SAMPLE_CONFIG)
        config = load_toolchain_config(path)
        assert "x86_64-apple-darwin" in config

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ToolchainConfigError) as exc_info:
            ToolchainConfig.load(tmp_path / "missing.toml")
        assert exc_info.value.code == "config_not_found"

    def test_load_default(self) -> None:
        """No file configured should yield the built-in table."""
        config = load_toolchain_config(None)
        assert config.triples == [
            "x86_64-pc-windows-gnu",
            "x86_64-apple-darwin",
            "aarch64-apple-darwin",
        ]

    def test_write(self, tmp_path: Path) -> None:
        path = default_toolchain_config().write(tmp_path / "nested" / "config")
        assert path.is_file()
        assert OSXCROSS_BIN in path.read_text()


class TestDefaultToolchainConfig:
    """Tests for the built-in toolchain table."""

    def test_darwin_uses_osxcross(self) -> None:
        config = default_toolchain_config()
        entry = config.get("aarch64-apple-darwin")
        assert entry is not None
        assert entry.linker.startswith(OSXCROSS_BIN)
        assert entry.linker.endswith("-clang")

    def test_windows_uses_mingw(self) -> None:
        entry = default_toolchain_config().get("x86_64-pc-windows-gnu")
        assert entry is not None
        assert "mingw32" in entry.linker
