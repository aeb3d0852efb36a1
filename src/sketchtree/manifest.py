from __future__ import annotations

import sys
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

from sketchtree import __version__
from sketchtree.paths import MANIFEST_FILENAME
from sketchtree.utils.io import write_json

RunStatus = Literal["running", "dry-run", "completed", "failed"]

TRACKED_PACKAGES = ("numpy", "biopython", "typer", "pydantic", "rich")


@dataclass(slots=True)
class RunManifest:
    """Record of one sketchtree run, kept in the working directory."""

    command: str
    argv: list[str]
    started_at: str
    status: RunStatus
    cwd: str
    workdir: str
    dry_run: bool
    threads: int
    config_path: str | None
    versions: dict[str, str]
    input_paths: list[str]
    ended_at: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    outliers: list[dict[str, Any]] = field(default_factory=list)
    output_paths: list[str] = field(default_factory=list)
    planned_steps: list[str] = field(default_factory=list)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def library_versions() -> dict[str, str]:
    versions = {"sketchtree": __version__, "python": sys.version.split()[0]}
    for package_name in TRACKED_PACKAGES:
        try:
            versions[package_name] = version(package_name)
        except PackageNotFoundError:
            versions[package_name] = "unknown"
    return versions


def create_run_manifest(
    *,
    command: str,
    argv: Sequence[str],
    workdir: Path,
    dry_run: bool,
    threads: int,
    config_path: Path | None,
    input_paths: Sequence[Path],
    planned_steps: Sequence[str],
    parameters: Mapping[str, Any] | None = None,
) -> RunManifest:
    return RunManifest(
        command=command,
        argv=list(argv),
        started_at=_timestamp(),
        status="running",
        cwd=str(Path.cwd()),
        workdir=str(workdir),
        dry_run=dry_run,
        threads=threads,
        config_path=None if config_path is None else str(config_path),
        versions=library_versions(),
        input_paths=[str(path) for path in input_paths],
        parameters=dict(parameters or {}),
        planned_steps=list(planned_steps),
    )


def record_outliers(manifest: RunManifest, outliers: Sequence[tuple[str, int]], *, policy: str) -> RunManifest:
    manifest.outliers = [
        {"genome_id": genome_id, "sequence_length": size, "policy": policy} for genome_id, size in outliers
    ]
    return manifest


def finalize_manifest(
    manifest: RunManifest,
    *,
    status: RunStatus,
    output_paths: Sequence[Path | str] = (),
) -> RunManifest:
    manifest.status = status
    manifest.ended_at = _timestamp()
    manifest.output_paths = [str(path) for path in output_paths]
    return manifest


def write_manifest(workdir: Path, manifest: RunManifest) -> Path:
    """(Re)write ``sketchtree_manifest.json``; called at every status change."""

    return write_json(workdir / MANIFEST_FILENAME, asdict(manifest), force=True)
