"""Per-triple linker configuration.

The toolchain config is a Cargo config file with one stanza per target:

    [target.x86_64-apple-darwin]
    linker = "/opt/osxcross/target/bin/x86_64-apple-darwin21.4-clang"
    ar = "/opt/osxcross/target/bin/x86_64-apple-darwin21.4-ar"

It is the single source of truth for which triples can be cross-linked.
A triple without a complete stanza cannot be built.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from craftip_release.targets import KNOWN_TARGETS, get_target_info
from craftip_release.types import BuildTarget

logger = logging.getLogger(__name__)

OSXCROSS_BIN = "/opt/osxcross/target/bin"
DARWIN_VERSION = "21.4"
MINGW_BIN = "/usr/bin"


class ToolchainConfigError(Exception):
    """Raised when the toolchain config cannot satisfy a request."""

    def __init__(self, message: str, code: str = "toolchain_config_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ToolchainEntry:
    """Linker and archiver of one triple."""

    linker: str
    ar: str


class ToolchainConfig:
    """Mapping of target triples to linker/archiver pairs."""

    def __init__(self, entries: dict[str, ToolchainEntry] | None = None) -> None:
        self._entries: dict[str, ToolchainEntry] = {}
        for triple, entry in (entries or {}).items():
            self.add(triple, entry.linker, entry.ar)

    def add(self, triple: str, linker: str, ar: str) -> None:
        """Register a triple.

        Raises:
            UnknownTargetError: If the triple is not a known target.
            ToolchainConfigError: If a path is not absolute.
        """
        get_target_info(triple)
        for label, value in (("linker", linker), ("ar", ar)):
            if not PurePosixPath(value).is_absolute():
                raise ToolchainConfigError(
                    f"{label} for {triple} must be an absolute path, got '{value}'",
                    code="relative_tool_path",
                )
        self._entries[triple] = ToolchainEntry(linker=linker, ar=ar)

    @property
    def triples(self) -> list[str]:
        """Registered triples in registration order."""
        return list(self._entries)

    def __contains__(self, triple: object) -> bool:
        return triple in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, triple: str) -> ToolchainEntry | None:
        return self._entries.get(triple)

    def resolve(self, triple: str) -> BuildTarget:
        """Resolve a triple into a BuildTarget.

        Raises:
            ToolchainConfigError: If the triple has no entry.
        """
        entry = self._entries.get(triple)
        if entry is None:
            raise ToolchainConfigError(
                f"No linker/archiver registered for {triple}; "
                "provision the toolchain or add a [target.<triple>] stanza",
                code="unresolved_triple",
            )
        info = get_target_info(triple)
        return BuildTarget(
            os=info.os,
            architecture=info.architecture,
            triple=triple,
            linker_path=entry.linker,
            archiver_path=entry.ar,
        )

    def require(self, triples: Iterable[str]) -> list[BuildTarget]:
        """Resolve every triple, failing before any build starts.

        Raises:
            ToolchainConfigError: Listing every unresolved triple.
        """
        triples = list(triples)
        missing = [t for t in triples if t not in self._entries]
        if missing:
            raise ToolchainConfigError(
                f"No linker/archiver registered for: {', '.join(missing)}",
                code="unresolved_triple",
            )
        return [self.resolve(t) for t in triples]

    def render(self) -> str:
        """Render the config file text."""
        stanzas = []
        for triple, entry in self._entries.items():
            stanzas.append(
                f"[target.{triple}]\n"
                f"linker = {json.dumps(entry.linker)}\n"
                f"ar = {json.dumps(entry.ar)}\n"
            )
        return "\n".join(stanzas)

    def write(self, path: Path) -> Path:
        """Write the config file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(), encoding="utf-8")
        logger.info("Wrote toolchain config for %d triple(s) to %s", len(self), path)
        return path

    @classmethod
    def parse(cls, text: str) -> ToolchainConfig:
        """Parse config text.

        Stanzas for triples outside the known set, and stanzas lacking a
        linker or archiver, are skipped; those triples stay unresolved.

        Raises:
            ToolchainConfigError: If the text is not valid TOML.
        """
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ToolchainConfigError(
                f"Invalid toolchain config: {e}", code="invalid_config"
            ) from e

        config = cls()
        for triple, table in data.get("target", {}).items():
            if triple not in KNOWN_TARGETS:
                logger.debug("Ignoring stanza for unknown triple: %s", triple)
                continue
            if not isinstance(table, dict):
                continue
            linker = table.get("linker")
            ar = table.get("ar")
            if not linker or not ar:
                logger.warning("Incomplete toolchain stanza for %s (needs linker and ar)", triple)
                continue
            config.add(triple, linker, ar)
        return config

    @classmethod
    def load(cls, path: Path) -> ToolchainConfig:
        """Load a config file.

        Raises:
            ToolchainConfigError: If the file is missing or invalid.
        """
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise ToolchainConfigError(
                f"Toolchain config not found: {path}", code="config_not_found"
            ) from None
        return cls.parse(text)


def default_toolchain_config() -> ToolchainConfig:
    """Return the config matching the default toolchain image."""
    config = ToolchainConfig()
    config.add(
        "x86_64-pc-windows-gnu",
        f"{MINGW_BIN}/x86_64-w64-mingw32-gcc",
        f"{MINGW_BIN}/x86_64-w64-mingw32-ar",
    )
    for arch in ("x86_64", "aarch64"):
        prefix = f"{OSXCROSS_BIN}/{arch}-apple-darwin{DARWIN_VERSION}"
        config.add(f"{arch}-apple-darwin", f"{prefix}-clang", f"{prefix}-ar")
    return config


def load_toolchain_config(path: Path | None) -> ToolchainConfig:
    """Load the host copy of the config, or the built-in default if unset."""
    if path is None:
        logger.debug("No toolchain config file configured, using built-in table")
        return default_toolchain_config()
    return ToolchainConfig.load(path)


__all__ = [
    "DARWIN_VERSION",
    "OSXCROSS_BIN",
    "ToolchainConfig",
    "ToolchainConfigError",
    "ToolchainEntry",
    "default_toolchain_config",
    "load_toolchain_config",
]
