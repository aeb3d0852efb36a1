from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from sketchtree.exceptions import SketchTreeUsageError

COMPRESSION_SUFFIXES = (".gz", ".bz2", ".xz")

DEFAULT_WORKDIR = Path("sketchtree_tmp")
SKETCH_DIRNAME = "sketches"
PHYLIP_FILENAME = "distance.phylip"
MANIFEST_FILENAME = "sketchtree_manifest.json"


@dataclass(frozen=True, slots=True)
class WorkLayout:
    """Working directory of one run and which parts of it the run created."""

    root: Path
    sketch_dir: Path
    created_root: bool = True
    created_sketch_dir: bool = True

    @property
    def phylip_path(self) -> Path:
        return self.root / PHYLIP_FILENAME

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILENAME


def _strip_compression(name: str) -> str:
    lowered = name.lower()
    for suffix in COMPRESSION_SUFFIXES:
        if lowered.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


def canonical_identifier(value: str | Path) -> str:
    """Return the display name of a genome: the file stem, ignoring a compression suffix.

    ``dir/E_coli.fna.gz`` and ``E_coli.fna`` both become ``E_coli``. Distinct
    paths sharing a stem map to the same identifier and end up as a single
    taxon.
    """

    name = _strip_compression(Path(value).name)
    return Path(name).stem


def create_work_layout(workdir: Path, *, force: bool = False) -> WorkLayout:
    if workdir.exists() and not workdir.is_dir():
        raise SketchTreeUsageError(f"Working directory path is not a directory: {workdir}")
    if workdir.is_dir() and any(workdir.iterdir()) and not force:
        raise SketchTreeUsageError(
            f"Working directory already contains files: {workdir}. Use --force to reuse it."
        )

    sketch_dir = workdir / SKETCH_DIRNAME
    created_root = not workdir.exists()
    created_sketch_dir = not sketch_dir.exists()
    sketch_dir.mkdir(parents=True, exist_ok=True)

    return WorkLayout(
        root=workdir,
        sketch_dir=sketch_dir,
        created_root=created_root,
        created_sketch_dir=created_sketch_dir,
    )


def remove_work_layout(layout: WorkLayout) -> None:
    """Remove what the run created; files that were already in a reused directory stay."""

    if layout.created_root:
        shutil.rmtree(layout.root, ignore_errors=True)
        return
    if layout.created_sketch_dir:
        shutil.rmtree(layout.sketch_dir, ignore_errors=True)
    layout.manifest_path.unlink(missing_ok=True)
