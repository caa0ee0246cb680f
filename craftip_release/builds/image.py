"""Two-phase, cache-aware server image build.

This module handles:
- Rendering a multi-stage Dockerfile (deps -> builder -> runtime)
- Building the dependency layer once per manifest key
- Building the server image on top of the cached dependency layer

Phase 1 (the `deps` stage) sees only the dependency manifests, so its
layer is reused until a manifest changes. Phase 2 adds the real sources
and is invalidated by source changes only.

Two phase 1 strategies are supported:
- stub: each member gets a throwaway entry point that aborts at runtime;
  compiling it compiles every dependency, then the stubs are discarded.
- manifest-only: each member gets an empty placeholder library so cargo
  can load the workspace, dependencies are fetched with `cargo fetch`
  (resolution and network failures abort the build), then a release build
  compiles them. A declared binary whose source is still missing fails
  after the dependencies are compiled; only that failure is recognised and
  recorded in a sentinel file. Any other failure aborts the build.

Phase 2 builds its `builder` stage from the image named by the
`DEPS_IMAGE` build argument, which is set to the tag phase 1 produced.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from craftip_release.builds.cache_key import (
    LOCKFILE_FILENAME,
    compute_manifest_key,
    compute_source_key,
    short_key,
)
from craftip_release.container.runtime import (
    DEFAULT_RUNTIME,
    ContainerCommandError,
    compose_build_command,
    image_exists,
    run_runtime,
)
from craftip_release.types import OperationResult

logger = logging.getLogger(__name__)

DEPS_STAGE = "deps"
BUILDER_STAGE = "builder"
RUNTIME_STAGE = "runtime"

STUB_MAIN = 'fn main() { panic!("dependency cache stub") }'
EXPECTED_FAILURE_SENTINEL = ".deps-prebuild-expected-failure"
DEPS_IMAGE_ARG = "DEPS_IMAGE"
# Extended regexes of the cargo error raised by a binary declared with an
# explicit path whose source is not copied yet; it is emitted once every
# dependency is compiled
EXPECTED_FAILURE_PATTERNS = [
    "couldn.t read .*src/(main|bin/.*)\\.rs",
]
MANIFEST_KEY_LABEL = "org.craftip.manifest-key"
SOURCE_KEY_LABEL = "org.craftip.source-key"


class ImageBuildError(Exception):
    """Raised when a phase of the server image build fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "image_build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class ImageBuildOptions:
    """Options of the server image.

    Attributes:
        members: Workspace member directories.
        binary: Binary installed into the runtime image.
        strategy: Phase 1 strategy ("stub" or "manifest-only").
        has_lockfile: Whether Cargo.lock is copied with the manifests.
        base_image: Rust build image.
        runtime_image: Slim runtime image.
        user: Unprivileged user of both stages.
        uid: User id.
    """

    members: list[str] = field(default_factory=list)
    binary: str = "server"
    strategy: str = "stub"
    has_lockfile: bool = False
    base_image: str = "rust:1.67"
    runtime_image: str = "debian:bullseye-slim"
    user: str = "craftip"
    uid: int = 1001

    @property
    def home(self) -> str:
        return f"/{self.user}"


@dataclass
class ImageBuildResult:
    """Result of a server image build."""

    image: str
    deps_image: str
    manifest_key: str
    source_key: str
    deps_phase: OperationResult
    dockerfile: Path
    log_path: Path
    started_at: datetime
    finished_at: datetime


def _crate_ident(member: str) -> str:
    return member.replace("-", "_")


def _cleanup_command(options: ImageBuildOptions) -> str:
    # Drop the placeholder sources and their build outputs; dependencies stay compiled
    paths = []
    for member in options.members:
        ident = _crate_ident(member)
        paths.extend(
            [
                f"{member}/src",
                f"target/release/.fingerprint/{member}-*",
                f"target/release/deps/{ident}-*",
                f"target/release/deps/lib{ident}-*",
            ]
        )
    return "RUN rm -rf " + " ".join(paths)


def _stub_commands(options: ImageBuildOptions) -> list[str]:
    lines = []
    for member in options.members:
        lines.append(
            f"RUN mkdir -p {member}/src"
            f" && echo '{STUB_MAIN}' > {member}/src/main.rs"
            f" && touch {member}/src/lib.rs"
        )
    lines.append(f"RUN chown -R {options.user}:{options.user} {options.home}")
    lines.append(f"USER {options.user}")
    lines.append("RUN cargo build --release")
    lines.append(_cleanup_command(options))
    return lines


def _manifest_only_commands(options: ImageBuildOptions) -> list[str]:
    patterns = "|".join(EXPECTED_FAILURE_PATTERNS)
    lines = []
    # cargo refuses to load a member without any target
    for member in options.members:
        lines.append(f"RUN mkdir -p {member}/src && touch {member}/src/lib.rs")
    lines.extend(
        [
            f"RUN chown -R {options.user}:{options.user} {options.home}",
            f"USER {options.user}",
            "RUN cargo fetch",
            "RUN cargo build --release 2> /tmp/deps-build.log"
            " || (cat /tmp/deps-build.log >&2"
            f" && grep -Eq '{patterns}' /tmp/deps-build.log"
            f" && touch {EXPECTED_FAILURE_SENTINEL})",
            _cleanup_command(options),
        ]
    )
    return lines


def render_dockerfile(options: ImageBuildOptions) -> str:
    """Render the multi-stage server Dockerfile.

    Raises:
        ValueError: If the strategy is unknown.
    """
    if options.strategy == "stub":
        phase1 = _stub_commands(options)
    elif options.strategy == "manifest-only":
        phase1 = _manifest_only_commands(options)
    else:
        raise ValueError(f"Unknown dependency strategy: {options.strategy}")

    manifests = ["Cargo.toml"]
    if options.has_lockfile:
        manifests.append(LOCKFILE_FILENAME)

    lines = [
        f"ARG {DEPS_IMAGE_ARG}={DEPS_STAGE}",
        "",
        f"FROM {options.base_image} AS {DEPS_STAGE}",
        f"RUN useradd -d {options.home} -s /bin/bash -u {options.uid} {options.user}",
        f"WORKDIR {options.home}",
        f"COPY {' '.join(manifests)} ./",
    ]
    for member in options.members:
        lines.append(f"COPY {member}/Cargo.toml {member}/Cargo.toml")
    lines.extend(phase1)
    lines.append("")

    # Defaults to the local stage; phase 2 points it at the tagged layer
    lines.append(f"FROM ${{{DEPS_IMAGE_ARG}}} AS {BUILDER_STAGE}")
    for member in options.members:
        lines.append(f"COPY --chown={options.user}:{options.user} {member}/src {member}/src")
    lines.append(f"RUN cargo build --release --bin {options.binary}")
    lines.append("")

    lines.extend(
        [
            f"FROM {options.runtime_image} AS {RUNTIME_STAGE}",
            f"RUN useradd -d {options.home} -s /bin/bash -u {options.uid} {options.user}",
            f"USER {options.user}",
            f"COPY --from={BUILDER_STAGE} {options.home}/target/release/{options.binary}"
            f" /usr/local/bin/{options.binary}",
            f'CMD ["{options.binary}"]',
            "",
        ]
    )
    return "\n".join(lines)


def _run_phase(
    args: list[str],
    log_path: Path,
    phase: str,
    runtime: str,
    timeout: int | None,
) -> None:
    with log_path.open("a") as log_file:
        log_file.write(f"\n# Phase: {phase}\n# Command: {runtime} {' '.join(args)}\n")
        log_file.flush()
        try:
            result = run_runtime(args, runtime=runtime, timeout=timeout, log_file=log_file)
        except ContainerCommandError as e:
            raise ImageBuildError(str(e), exit_code=e.exit_code, code=e.code) from e
        log_file.write(f"\n# Exit code: {result.returncode}\n")

    if result.returncode != 0:
        message = f"{phase} phase failed with exit code {result.returncode}"
        logger.error("%s. See log: %s", message, log_path)
        raise ImageBuildError(message, exit_code=result.returncode, code=f"{phase}_phase_failed")


def build_server_image(
    workspace_root: Path,
    members: list[str],
    build_dir: Path,
    deps_repository: str,
    image_repository: str,
    tag: str = "latest",
    binary: str = "server",
    strategy: str = "stub",
    runtime: str = DEFAULT_RUNTIME,
    timeout: int | None = None,
) -> ImageBuildResult:
    """Build the server image in two cached phases.

    Args:
        workspace_root: Cargo workspace (the build context).
        members: Workspace member directories.
        build_dir: Directory for the rendered Dockerfile and log.
        deps_repository: Repository of the dependency layer image.
        image_repository: Repository of the final image.
        tag: Tag of the final image.
        binary: Binary to build and install.
        strategy: Phase 1 strategy.
        runtime: Container CLI executable.
        timeout: Per-phase timeout in seconds.

    Returns:
        ImageBuildResult.

    Raises:
        ManifestNotFoundError: If the workspace manifest is missing.
        ImageBuildError: If either phase fails.
    """
    manifest_key, _ = compute_manifest_key(workspace_root, members, strategy)
    source_key = compute_source_key(workspace_root, members)

    options = ImageBuildOptions(
        members=list(members),
        binary=binary,
        strategy=strategy,
        has_lockfile=(workspace_root / LOCKFILE_FILENAME).is_file(),
    )
    build_dir.mkdir(parents=True, exist_ok=True)
    dockerfile = build_dir / "Dockerfile"
    dockerfile.write_text(render_dockerfile(options), encoding="utf-8")
    log_path = build_dir / "image-build.log"
    log_path.write_text(f"# Started: {datetime.now(timezone.utc).isoformat()}\n")

    started_at = datetime.now(timezone.utc)
    deps_image = f"{deps_repository}:{short_key(manifest_key)}"

    if image_exists(deps_image, runtime=runtime):
        logger.info("Dependency layer %s is cached, skipping phase 1", deps_image)
        deps_phase = OperationResult.noop(
            f"Dependency layer {deps_image} already built", manifest_key=manifest_key
        )
    else:
        logger.info("Building dependency layer %s", deps_image)
        _run_phase(
            compose_build_command(
                workspace_root,
                tag=deps_image,
                dockerfile=dockerfile,
                target=DEPS_STAGE,
                labels={MANIFEST_KEY_LABEL: manifest_key},
            ),
            log_path,
            "dependency",
            runtime,
            timeout,
        )
        deps_phase = OperationResult.ok(
            f"Built dependency layer {deps_image}", manifest_key=manifest_key
        )

    image = f"{image_repository}:{tag}"
    logger.info("Building server image %s", image)
    _run_phase(
        compose_build_command(
            workspace_root,
            tag=image,
            dockerfile=dockerfile,
            cache_from=[deps_image],
            build_args={DEPS_IMAGE_ARG: deps_image},
            labels={MANIFEST_KEY_LABEL: manifest_key, SOURCE_KEY_LABEL: source_key},
        ),
        log_path,
        "source",
        runtime,
        timeout,
    )

    return ImageBuildResult(
        image=image,
        deps_image=deps_image,
        manifest_key=manifest_key,
        source_key=source_key,
        deps_phase=deps_phase,
        dockerfile=dockerfile,
        log_path=log_path,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
    )


__all__ = [
    "DEPS_IMAGE_ARG",
    "EXPECTED_FAILURE_SENTINEL",
    "ImageBuildError",
    "ImageBuildOptions",
    "ImageBuildResult",
    "build_server_image",
    "render_dockerfile",
]
