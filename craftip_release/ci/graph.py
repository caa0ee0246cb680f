"""Dataflow model of the CI build matrix.

This module handles:
- Producer jobs that each emit one named artifact
- A content-addressed artifact store shared by producers and the join
- Running producers in parallel and the join once all of them succeeded

Producers share nothing: each gets its own work directory and hands its
output over only through the store. The join job is the single
synchronization point; it receives every artifact it needs downloaded into
a distinct local directory, so same-named files never collide.
"""

from __future__ import annotations

import concurrent.futures
import hashlib
import logging
import shutil
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ProducerAction = Callable[[Path], Path]
JoinAction = Callable[[dict[str, Path], Path], Path | None]


class MatrixError(Exception):
    """Raised when the job graph itself is invalid."""

    def __init__(self, message: str, code: str = "invalid_matrix") -> None:
        super().__init__(message)
        self.code = code


class ArtifactStoreError(Exception):
    """Raised on an invalid upload or download."""

    def __init__(self, message: str, code: str = "artifact_store_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class ProducerJob:
    """A matrix leg building one artifact.

    The action receives the job's isolated work directory and returns the
    path of the file it produced.
    """

    name: str
    arch: str
    os: str
    action: ProducerAction

    @property
    def artifact_key(self) -> str:
        return f"{self.arch}-{self.os}"


@dataclass(frozen=True)
class JoinJob:
    """A job consuming the artifacts of several producers.

    Attributes:
        name: Job name.
        needs: Artifact keys the job consumes.
        action: Called with {artifact_key: local_path} and the job's work
            directory; returns the path of the joined output, if any.
    """

    name: str
    needs: tuple[str, ...]
    action: JoinAction


@dataclass(frozen=True)
class StoredArtifact:
    key: str
    filename: str
    digest: str
    size_bytes: int


class ArtifactStore:
    """Content-addressed store of named artifacts.

    Blobs live under `objects/<sha256>`; a name maps to exactly one blob and
    can be uploaded only once per run.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._objects = root / "objects"
        self._objects.mkdir(parents=True, exist_ok=True)
        self._index: dict[str, StoredArtifact] = {}
        self._lock = threading.Lock()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._index

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._index)

    def get(self, key: str) -> StoredArtifact | None:
        with self._lock:
            return self._index.get(key)

    def upload(self, key: str, path: Path) -> StoredArtifact:
        """Store a file under an artifact name.

        Raises:
            ArtifactStoreError: If the file is missing or the name is taken.
        """
        if not path.is_file():
            raise ArtifactStoreError(
                f"Artifact {key}: no file at {path}", code="artifact_missing"
            )

        sha256 = hashlib.sha256()
        with path.open("rb") as f:
            while chunk := f.read(64 * 1024):
                sha256.update(chunk)
        digest = sha256.hexdigest()

        with self._lock:
            if key in self._index:
                raise ArtifactStoreError(
                    f"Artifact {key} was already uploaded", code="duplicate_artifact"
                )
            blob = self._objects / digest
            if not blob.exists():
                shutil.copy2(path, blob)
            stored = StoredArtifact(
                key=key,
                filename=path.name,
                digest=digest,
                size_bytes=blob.stat().st_size,
            )
            self._index[key] = stored

        logger.info("Uploaded artifact %s (%s, %d bytes)", key, digest[:12], stored.size_bytes)
        return stored

    def download(self, key: str, destination: Path) -> Path:
        """Copy an artifact into a directory under its original file name.

        Raises:
            ArtifactStoreError: If no artifact has that name.
        """
        stored = self.get(key)
        if stored is None:
            raise ArtifactStoreError(f"Artifact {key} not found", code="artifact_not_found")
        destination.mkdir(parents=True, exist_ok=True)
        target = destination / stored.filename
        shutil.copy2(self._objects / stored.digest, target)
        logger.debug("Downloaded artifact %s to %s", key, target)
        return target


@dataclass
class JobOutcome:
    """Outcome of one job of the matrix."""

    name: str
    success: bool
    skipped: bool = False
    artifact_key: str | None = None
    output: Path | None = None
    error: str | None = None


@dataclass
class MatrixResult:
    """Outcome of a whole matrix run."""

    producers: dict[str, JobOutcome] = field(default_factory=dict)
    join: JobOutcome | None = None

    @property
    def success(self) -> bool:
        return (
            all(o.success for o in self.producers.values())
            and self.join is not None
            and self.join.success
        )

    @property
    def failed_jobs(self) -> list[str]:
        names = sorted(n for n, o in self.producers.items() if not o.success)
        if self.join is not None and not self.join.success and not self.join.skipped:
            names.append(self.join.name)
        return names


def validate_matrix(producers: Sequence[ProducerJob], join: JoinJob) -> None:
    """Check job names, artifact keys and join inputs.

    Raises:
        MatrixError: If names or keys collide, or the join needs an
            artifact no producer emits.
    """
    names = [p.name for p in producers] + [join.name]
    if len(set(names)) != len(names):
        raise MatrixError(f"Duplicate job names: {names}", code="duplicate_job")

    keys = [p.artifact_key for p in producers]
    if len(set(keys)) != len(keys):
        raise MatrixError(f"Duplicate artifact keys: {keys}", code="duplicate_artifact")

    missing = [need for need in join.needs if need not in keys]
    if missing:
        raise MatrixError(
            f"Job {join.name} needs artifacts no producer emits: {', '.join(missing)}",
            code="unknown_need",
        )


def _run_producer(job: ProducerJob, work_root: Path, store: ArtifactStore) -> JobOutcome:
    workdir = work_root / job.name
    workdir.mkdir(parents=True, exist_ok=True)
    logger.info("Running job %s (%s)", job.name, job.artifact_key)
    output = job.action(workdir)
    store.upload(job.artifact_key, output)
    return JobOutcome(
        name=job.name, success=True, artifact_key=job.artifact_key, output=output
    )


def run_matrix(
    producers: Sequence[ProducerJob],
    join: JoinJob,
    store: ArtifactStore,
    work_root: Path,
    max_workers: int | None = None,
) -> MatrixResult:
    """Run all producers in parallel, then the join if every producer succeeded.

    Args:
        producers: Matrix legs.
        join: Job consuming the producers' artifacts.
        store: Artifact store for the run.
        work_root: Parent of the per-job work directories.
        max_workers: Thread pool size (default: one per producer).

    Returns:
        MatrixResult with one outcome per job.

    Raises:
        MatrixError: If the job graph is invalid.
    """
    validate_matrix(producers, join)
    result = MatrixResult()

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers or max(len(producers), 1)
    ) as executor:
        futures = {
            executor.submit(_run_producer, job, work_root, store): job for job in producers
        }
        for future in concurrent.futures.as_completed(futures):
            job = futures[future]
            try:
                result.producers[job.name] = future.result()
            except Exception as e:
                logger.error("Job %s failed: %s", job.name, e)
                result.producers[job.name] = JobOutcome(
                    name=job.name,
                    success=False,
                    artifact_key=job.artifact_key,
                    error=str(e),
                )

    failed = [n for n, o in result.producers.items() if not o.success]
    if failed:
        logger.error("Skipping %s: failed dependencies %s", join.name, ", ".join(sorted(failed)))
        result.join = JobOutcome(
            name=join.name,
            success=False,
            skipped=True,
            error=f"Dependencies failed: {', '.join(sorted(failed))}",
        )
        return result

    workdir = work_root / join.name
    inputs = {key: store.download(key, workdir / key) for key in join.needs}
    logger.info("Running job %s with %s", join.name, ", ".join(join.needs))
    try:
        output = join.action(inputs, workdir)
    except Exception as e:
        logger.error("Job %s failed: %s", join.name, e)
        result.join = JobOutcome(name=join.name, success=False, error=str(e))
    else:
        result.join = JobOutcome(name=join.name, success=True, output=output)
    return result


__all__ = [
    "ArtifactStore",
    "ArtifactStoreError",
    "JobOutcome",
    "JoinJob",
    "MatrixError",
    "MatrixResult",
    "ProducerJob",
    "StoredArtifact",
    "run_matrix",
    "validate_matrix",
]
