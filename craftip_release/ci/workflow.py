"""Hosted CI workflow generation.

This module renders the GitHub Actions workflow of the release pipeline:
- build-macos: matrix over the macOS architectures, each on a native
  runner, one artifact each
- windows: MSVC build of the GUI client
- universal-binary: joins both macOS artifacts into the disk image

The workflow is generated, never edited by hand; `check_workflow` tells
whether the committed file is up to date.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from craftip_release.config import Settings, get_settings
from craftip_release.targets import MACOS_ARCHITECTURES, MACOS_SUFFIX

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_PATH = Path(".github") / "workflows" / "compile.yml"
GENERATED_HEADER = (
    "# This file was generated by running `craftip-release ci workflow`"
    " - it should not be manually modified\n\n"
)
MACOS_RUNNER = "macos-latest"
# Each architecture builds on a host of its own kind
MACOS_NATIVE_RUNNERS = {
    "x86_64": "macos-15-intel",
    "aarch64": "macos-latest",
}
WINDOWS_RUNNER = "windows-latest"
WINDOWS_TRIPLE = "x86_64-pc-windows-msvc"
RUSTUP_INSTALL = "curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | bash -s -- -y"

checkout = {"uses": "actions/checkout@v4"}


# Don't generate anchors, the output is meant to be read
class NoAliasDumper(yaml.SafeDumper):
    def ignore_aliases(self, data: Any) -> bool:
        return True


def upload(name: str, path: str) -> dict[str, Any]:
    return {
        "name": f"Upload {name}",
        "uses": "actions/upload-artifact@v4",
        "with": {
            "name": name,
            "path": path,
            "if-no-files-found": "error",
        },
    }


def download(name: str, path: str) -> dict[str, Any]:
    return {
        "name": f"Download {name}",
        "uses": "actions/download-artifact@v4",
        "with": {
            "name": name,
            "path": path,
        },
    }


def build_macos_job(settings: Settings) -> dict[str, Any]:
    """Matrix job producing one thin macOS binary per architecture."""
    triple = "${{ matrix.arch }}-" + MACOS_SUFFIX
    return {
        "strategy": {
            "matrix": {
                "arch": list(MACOS_ARCHITECTURES),
                "include": [
                    {"arch": arch, "runner": MACOS_NATIVE_RUNNERS[arch]}
                    for arch in MACOS_ARCHITECTURES
                ],
            }
        },
        "name": "${{ matrix.arch }}",
        "runs-on": "${{ matrix.runner }}",
        "steps": [
            {"run": RUSTUP_INSTALL},
            {
                "name": "Add architecture ${{ matrix.arch }}",
                "run": f"rustup target add {triple}",
            },
            checkout,
            {
                "name": "Build application",
                "shell": "bash",
                "run": (
                    f"cd {settings.gui_package}\n"
                    f"cargo build --release --target={triple}\n"
                ),
            },
            upload(triple, f"target/{triple}/release/{settings.gui_binary}"),
        ],
    }


def windows_job(settings: Settings) -> dict[str, Any]:
    """Job producing the Windows executable."""
    return {
        "runs-on": WINDOWS_RUNNER,
        "steps": [
            checkout,
            {
                "name": "Build",
                "run": (
                    f"rustup target add {WINDOWS_TRIPLE}\n"
                    f"cd {settings.gui_package}\n"
                    f"cargo build --release --target {WINDOWS_TRIPLE}\n"
                ),
            },
            upload(
                WINDOWS_TRIPLE,
                f"target/{WINDOWS_TRIPLE}/release/{settings.gui_binary}.exe",
            ),
        ],
    }


def universal_binary_job(settings: Settings) -> dict[str, Any]:
    """Join job: download the macOS artifacts and assemble the disk image."""
    dmg_name = f"{settings.app_name}.dmg"
    steps: list[dict[str, Any]] = [checkout]
    env: dict[str, str] = {}
    for arch in MACOS_ARCHITECTURES:
        triple = f"{arch}-{MACOS_SUFFIX}"
        steps.append(download(triple, arch))
        env[triple.upper().replace("-", "_")] = f"{arch}/{settings.gui_binary}"
    env["DMG_OUTPUT_PATH"] = dmg_name

    steps.extend(
        [
            {"uses": "actions/setup-python@v5", "with": {"python-version": "3.12"}},
            {"name": "Install release tooling", "run": "pip install ."},
            {
                "name": "Combine app bundles",
                "shell": "bash",
                "env": env,
                "run": "craftip-release bundle assemble",
            },
            upload(dmg_name, dmg_name),
        ]
    )
    return {
        "name": "Build DMG",
        "needs": ["build-macos"],
        "runs-on": MACOS_RUNNER,
        "steps": steps,
    }


def render_workflow(
    settings: Settings | None = None,
    branches: tuple[str, ...] = ("main",),
) -> dict[str, Any]:
    """Build the workflow document."""
    if settings is None:
        settings = get_settings()
    return {
        "name": "Compile",
        "on": {"push": {"branches": list(branches)}},
        "jobs": {
            "build-macos": build_macos_job(settings),
            "windows": windows_job(settings),
            "universal-binary": universal_binary_job(settings),
        },
    }


def dump_workflow(workflow: dict[str, Any]) -> str:
    """Serialize a workflow document, generated header included."""
    return GENERATED_HEADER + yaml.dump(workflow, sort_keys=False, Dumper=NoAliasDumper)


def write_workflow(path: Path, settings: Settings | None = None) -> Path:
    """Render the workflow and write it to a file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        f.write(dump_workflow(render_workflow(settings)))
    logger.info("Wrote workflow to %s", path)
    return path


def check_workflow(path: Path, settings: Settings | None = None) -> bool:
    """Whether the file on disk matches the rendered workflow."""
    if not path.is_file():
        logger.warning("Workflow %s does not exist", path)
        return False
    current = path.read_text(encoding="utf-8")
    up_to_date = current == dump_workflow(render_workflow(settings))
    if not up_to_date:
        logger.warning("Workflow %s is out of date", path)
    return up_to_date


__all__ = [
    "DEFAULT_WORKFLOW_PATH",
    "build_macos_job",
    "check_workflow",
    "download",
    "dump_workflow",
    "render_workflow",
    "universal_binary_job",
    "upload",
    "windows_job",
    "write_workflow",
]
