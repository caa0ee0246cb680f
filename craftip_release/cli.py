"""Thin CLI wrapper for craftip_release.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from craftip_release import __version__
from craftip_release.config import get_settings, print_settings_json

app = typer.Typer(
    name="craftip-release",
    help="CraftIP release pipeline - cross builds, server image and macOS bundle",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"craftip-release version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through Rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """CraftIP release pipeline - cross builds, server image and macOS bundle."""
    configure_logging((log_level or get_settings().log_level).upper())


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{message}[/red]")
    return typer.Exit(code=1)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        config_file = (
            str(settings.toolchain_config_file)
            if settings.toolchain_config_file
            else "(built-in)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Workspace:[/bold]")
        console.print(f"  Root:                {settings.workspace_root}")
        console.print(f"  Members:             {', '.join(settings.workspace_members)}")
        console.print(f"  Output directory:    {settings.effective_output_dir()}")
        console.print(f"  GUI package:         {settings.gui_package}")
        console.print(f"  App name:            {settings.app_name}")
        console.print()
        console.print("[bold]Container:[/bold]")
        console.print(f"  Runtime:             {settings.container_runtime}")
        console.print(f"  Toolchain image:     {settings.toolchain_image}")
        console.print(f"  Container name:      {settings.container_name}")
        console.print(f"  Toolchain config:    {config_file}")
        console.print()
        console.print("[bold]Server image:[/bold]")
        console.print(f"  Image:               {settings.server_image}")
        console.print(f"  Dependency layers:   {settings.deps_repository}")
        console.print(f"  Cache strategy:      {settings.cache_strategy}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  Max parallel jobs:   {settings.max_parallel_jobs}")


toolchain_app = typer.Typer(help="Manage the cross-compilation toolchain")
app.add_typer(toolchain_app, name="toolchain")


@toolchain_app.command("show")
def toolchain_show(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the linker and archiver of every configured triple."""
    from craftip_release.toolchain.config import ToolchainConfigError, load_toolchain_config

    settings = get_settings()
    try:
        toolchain = load_toolchain_config(settings.toolchain_config_file)
    except ToolchainConfigError as e:
        raise _fail(f"Error: {e}") from None

    if json_output:
        output = {
            triple: {"linker": entry.linker, "ar": entry.ar}
            for triple in toolchain.triples
            if (entry := toolchain.get(triple)) is not None
        }
        console.print(json.dumps(output, indent=2))
        return

    table = Table(title="Toolchain")
    table.add_column("Triple", style="green")
    table.add_column("Linker")
    table.add_column("Archiver")
    for triple in toolchain.triples:
        entry = toolchain.get(triple)
        if entry is not None:
            table.add_row(triple, entry.linker, entry.ar)
    console.print(table)


@toolchain_app.command("render")
def toolchain_render(
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the config to this file"),
    ] = None,
) -> None:
    """Render the toolchain config file."""
    from craftip_release.toolchain.config import ToolchainConfigError, load_toolchain_config

    settings = get_settings()
    try:
        toolchain = load_toolchain_config(settings.toolchain_config_file)
    except ToolchainConfigError as e:
        raise _fail(f"Error: {e}") from None

    if output is None:
        console.print(toolchain.render(), markup=False, highlight=False)
    else:
        toolchain.write(output)
        console.print(f"[green]Wrote toolchain config to {output}[/green]")


@toolchain_app.command("provision")
def toolchain_provision(
    context_dir: Annotated[
        Path,
        typer.Option("--context-dir", help="Directory for the image build context"),
    ] = Path("build/toolchain"),
    sdk: Annotated[
        Path | None,
        typer.Option("--sdk", help="Packaged macOS SDK archive"),
    ] = None,
    image: Annotated[
        str | None,
        typer.Option("--image", help="Tag of the toolchain image"),
    ] = None,
) -> None:
    """Build the toolchain image."""
    from craftip_release.toolchain.config import ToolchainConfigError, load_toolchain_config
    from craftip_release.toolchain.provisioner import (
        ProvisionOptions,
        ToolchainProvisionError,
        provision_toolchain,
    )

    settings = get_settings()
    try:
        toolchain = load_toolchain_config(settings.toolchain_config_file)
        result = provision_toolchain(
            toolchain,
            context_dir,
            image or settings.toolchain_image,
            options=ProvisionOptions(
                config_path=settings.toolchain_config_path,
                sdk_archive=sdk,
                workdir=settings.container_workdir,
            ),
            runtime=settings.container_runtime,
            timeout=settings.build_timeout,
        )
    except (ToolchainConfigError, ToolchainProvisionError) as e:
        raise _fail(f"Provisioning failed: {e}") from None

    console.print(f"[green]Built toolchain image {result.image}[/green]")
    console.print(f"  Triples: {', '.join(result.triples)}")
    console.print(f"  Log: {result.log_path}")


@toolchain_app.command("pull")
def toolchain_pull(
    image: Annotated[
        str | None,
        typer.Option("--image", help="Toolchain image reference"),
    ] = None,
) -> None:
    """Pull a prebuilt toolchain image."""
    from craftip_release.toolchain.provisioner import (
        ToolchainProvisionError,
        pull_toolchain_image,
    )

    settings = get_settings()
    reference = image or settings.toolchain_image
    try:
        pull_toolchain_image(reference, runtime=settings.container_runtime)
    except ToolchainProvisionError as e:
        raise _fail(f"Pull failed: {e}") from None
    console.print(f"[green]Pulled {reference}[/green]")


image_app = typer.Typer(help="Build the server container image")
app.add_typer(image_app, name="image")


@image_app.command("dockerfile")
def image_dockerfile(
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", help="Dependency strategy: stub or manifest-only"),
    ] = None,
) -> None:
    """Print the multi-stage server Dockerfile."""
    from craftip_release.builds.cache_key import LOCKFILE_FILENAME
    from craftip_release.builds.image import ImageBuildOptions, render_dockerfile

    settings = get_settings()
    options = ImageBuildOptions(
        members=list(settings.workspace_members),
        binary=settings.server_binary,
        strategy=strategy or settings.cache_strategy,
        has_lockfile=(settings.workspace_root / LOCKFILE_FILENAME).is_file(),
    )
    try:
        console.print(render_dockerfile(options), markup=False, highlight=False)
    except ValueError as e:
        raise _fail(f"Error: {e}") from None


@image_app.command("key")
def image_key(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the dependency and source cache keys of the workspace."""
    from craftip_release.builds.cache_key import (
        ManifestNotFoundError,
        compute_manifest_key,
        compute_source_key,
    )

    settings = get_settings()
    try:
        manifest_key, inputs = compute_manifest_key(
            settings.workspace_root,
            settings.workspace_members,
            settings.cache_strategy,
        )
    except ManifestNotFoundError as e:
        raise _fail(f"Error: {e}") from None
    source_key = compute_source_key(settings.workspace_root, settings.workspace_members)

    if json_output:
        output = {
            "manifest_key": manifest_key,
            "source_key": source_key,
            "inputs": inputs.to_dict(),
        }
        console.print(json.dumps(output, indent=2))
    else:
        console.print(f"Manifest key: {manifest_key}")
        console.print(f"Source key:   {source_key}")
        for path in sorted(inputs.manifests):
            console.print(f"  {path}")


@image_app.command("build")
def image_build(
    tag: Annotated[
        str,
        typer.Option("--tag", "-t", help="Tag of the server image"),
    ] = "latest",
    strategy: Annotated[
        str | None,
        typer.Option("--strategy", help="Dependency strategy: stub or manifest-only"),
    ] = None,
    build_dir: Annotated[
        Path | None,
        typer.Option("--build-dir", help="Directory for the Dockerfile and log"),
    ] = None,
) -> None:
    """Build the server image (cached dependency layer, then sources)."""
    from craftip_release.builds.cache_key import ManifestNotFoundError
    from craftip_release.builds.image import ImageBuildError, build_server_image

    settings = get_settings()
    try:
        result = build_server_image(
            settings.workspace_root,
            settings.workspace_members,
            build_dir or settings.effective_output_dir() / "image",
            deps_repository=settings.deps_repository,
            image_repository=settings.server_image,
            tag=tag,
            binary=settings.server_binary,
            strategy=strategy or settings.cache_strategy,
            runtime=settings.container_runtime,
            timeout=settings.build_timeout,
        )
    except (ManifestNotFoundError, ImageBuildError, ValueError) as e:
        raise _fail(f"Image build failed: {e}") from None

    console.print(f"[green]Built {result.image}[/green]")
    console.print(f"  Dependency layer: {result.deps_image} ({result.deps_phase.status.value})")
    console.print(f"  Log: {result.log_path}")


cross_app = typer.Typer(help="Cross-compile the GUI client")
app.add_typer(cross_app, name="cross")


@cross_app.command("build")
def cross_build(
    release: Annotated[
        bool,
        typer.Option("--release", help="Build with optimizations"),
    ] = False,
    targets: Annotated[
        list[str] | None,
        typer.Option("--target", "-t", help="Target triple (can be repeated)"),
    ] = None,
    features: Annotated[
        list[str] | None,
        typer.Option("--features", "-F", help="Cargo feature (can be repeated)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Cross-compile for each target in one ephemeral build container."""
    from craftip_release.builds.artifacts import ArtifactNotFoundError
    from craftip_release.builds.orchestrator import default_mounts, run_cross_build
    from craftip_release.builds.runner import BuildExecutionError
    from craftip_release.container.lifecycle import ContainerStateError
    from craftip_release.container.runtime import ContainerCommandError
    from craftip_release.targets import CROSS_TARGETS
    from craftip_release.toolchain.config import ToolchainConfigError, load_toolchain_config

    settings = get_settings()
    mounts = default_mounts(
        settings.workspace_root,
        settings.workspace_members,
        settings.effective_output_dir(),
        settings.container_workdir,
    )
    try:
        toolchain = load_toolchain_config(settings.toolchain_config_file)
        run = run_cross_build(
            targets or CROSS_TARGETS,
            mounts,
            release,
            settings=settings,
            toolchain=toolchain,
            features=features,
        )
    except ToolchainConfigError as e:
        raise _fail(f"Configuration error: {e}") from None
    except (
        BuildExecutionError,
        ArtifactNotFoundError,
        ContainerCommandError,
        ContainerStateError,
    ) as e:
        raise _fail(f"Build failed: {e}") from None

    if json_output:
        output = [
            {
                "target": a.target,
                "path": str(a.binary_path),
                "size_bytes": a.size_bytes,
                "sha256": a.sha256,
            }
            for a in run.artifacts
        ]
        console.print(json.dumps(output, indent=2))
        return

    console.print(f"[green]Built {len(run.artifacts)} artifact(s):[/green]")
    for a in run.artifacts:
        console.print(f"  {a.target}: {a.binary_path} ({a.size_bytes} bytes)")
    console.print(f"  Manifest: {run.manifest_path}")


container_app = typer.Typer(help="Inspect and clean up the build container")
app.add_typer(container_app, name="container")


@container_app.command("status")
def container_status() -> None:
    """Show the state of the build container."""
    from craftip_release.container.runtime import ContainerCommandError, inspect_container_state

    settings = get_settings()
    try:
        state = inspect_container_state(settings.container_name, runtime=settings.container_runtime)
    except ContainerCommandError as e:
        raise _fail(f"Error: {e}") from None
    console.print(f"{settings.container_name}: {state.value}")


@container_app.command("clean")
def container_clean() -> None:
    """Stop and remove a leftover build container."""
    from craftip_release.container.lifecycle import BuildContainer
    from craftip_release.types import OutcomeStatus

    settings = get_settings()
    container = BuildContainer(
        settings.container_name,
        settings.toolchain_image,
        runtime=settings.container_runtime,
    )
    results = container.teardown()
    for r in results:
        color = {"ok": "green", "expected_noop": "yellow"}.get(r.status.value, "red")
        console.print(f"[{color}]{r.message}[/{color}]")
    if any(r.status is OutcomeStatus.FATAL for r in results):
        raise typer.Exit(code=1)


bundle_app = typer.Typer(help="Assemble the macOS application bundle")
app.add_typer(bundle_app, name="bundle")


@bundle_app.command("assemble")
def bundle_assemble(
    x86_64: Annotated[
        Path | None,
        typer.Option("--x86-64", help="Thin x86_64 binary (X86_64_APPLE_DARWIN)"),
    ] = None,
    aarch64: Annotated[
        Path | None,
        typer.Option("--aarch64", help="Thin aarch64 binary (AARCH64_APPLE_DARWIN)"),
    ] = None,
    build_folder: Annotated[
        Path | None,
        typer.Option("--build-folder", help="Staging root (BUILD_FOLDER)"),
    ] = None,
    dmg_path: Annotated[
        Path | None,
        typer.Option("--dmg", help="Output disk image (DMG_OUTPUT_PATH)"),
    ] = None,
    resources_dir: Annotated[
        Path | None,
        typer.Option("--resources", help="Directory with Info.plist and logo-mac.png"),
    ] = None,
) -> None:
    """Build the universal .app and seal it into a disk image."""
    from craftip_release.bundle.assembler import assemble
    from craftip_release.bundle.errors import AssemblyError
    from craftip_release.config import resolve_bundle_config

    try:
        bundle_config = resolve_bundle_config(
            x86_64_binary=x86_64,
            aarch64_binary=aarch64,
            build_folder=build_folder,
            dmg_output_path=dmg_path,
            resources_dir=resources_dir,
        )
        result = assemble(bundle_config)
    except (AssemblyError, ValueError) as e:
        raise _fail(f"Assembly failed: {e}") from None

    console.print(f"[green]Built {result.app_dir}[/green]")
    console.print(f"  Architectures: {', '.join(result.architectures)}")
    console.print(f"  Disk image: {result.dmg_path}")
    console.print(f"  SHA-256: {result.artifact.sha256}")


@bundle_app.command("icons")
def bundle_icons() -> None:
    """List the slots of the application icon set."""
    from craftip_release.bundle.icons import ICON_LADDER

    table = Table(title="Icon set")
    table.add_column("File", style="green")
    table.add_column("Pixels", justify="right")
    for slot in ICON_LADDER:
        table.add_row(slot.filename, str(slot.pixel_size))
    console.print(table)


@bundle_app.command("lipo")
def bundle_lipo(
    inputs: Annotated[
        list[Path],
        typer.Argument(help="Thin Mach-O executables"),
    ],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Universal binary to write"),
    ],
) -> None:
    """Merge thin Mach-O executables into a universal binary."""
    from craftip_release.bundle.errors import AssemblyError
    from craftip_release.bundle.macho import create_universal

    try:
        archs = create_universal(inputs, output)
    except AssemblyError as e:
        raise _fail(f"Merge failed: {e}") from None

    console.print(f"[green]Wrote {output}[/green]")
    for arch in archs:
        console.print(f"  {arch.architecture}: offset={arch.offset} size={arch.size}")


ci_app = typer.Typer(help="CI matrix and workflow")
app.add_typer(ci_app, name="ci")


@ci_app.command("workflow")
def ci_workflow(
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Workflow file"),
    ] = None,
    check: Annotated[
        bool,
        typer.Option("--check", help="Fail if the file is not up to date"),
    ] = False,
) -> None:
    """Generate the hosted CI workflow."""
    from craftip_release.ci.workflow import (
        DEFAULT_WORKFLOW_PATH,
        check_workflow,
        write_workflow,
    )

    settings = get_settings()
    path = output or settings.workspace_root / DEFAULT_WORKFLOW_PATH
    if check:
        if not check_workflow(path, settings):
            raise _fail(f"{path} is out of date, run `craftip-release ci workflow`")
        console.print(f"[green]{path} is up to date[/green]")
        return
    write_workflow(path, settings)
    console.print(f"[green]Wrote {path}[/green]")


@ci_app.command("run")
def ci_run(
    work_dir: Annotated[
        Path | None,
        typer.Option("--work-dir", help="Root of the job work directories"),
    ] = None,
) -> None:
    """Run the release matrix locally (macOS host)."""
    from craftip_release.ci.graph import MatrixError
    from craftip_release.ci.local import run_local_matrix

    settings = get_settings()
    root = work_dir or settings.effective_output_dir() / "ci"
    try:
        result = run_local_matrix(settings, root)
    except MatrixError as e:
        raise _fail(f"Error: {e}") from None

    for name, outcome in sorted(result.producers.items()):
        if outcome.success:
            console.print(f"  [green]{name}[/green]: {outcome.artifact_key}")
        else:
            console.print(f"  [red]{name}[/red]: {outcome.error}")
    if result.join is not None:
        if result.join.skipped:
            console.print(f"  [yellow]{result.join.name}[/yellow]: skipped")
        elif result.join.success:
            console.print(f"  [green]{result.join.name}[/green]: {result.join.output}")
        else:
            console.print(f"  [red]{result.join.name}[/red]: {result.join.error}")

    if not result.success:
        raise _fail(f"Failed jobs: {', '.join(result.failed_jobs)}")


if __name__ == "__main__":
    app()
