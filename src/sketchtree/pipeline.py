"""Genome-distance pipeline shared by the CLI commands.

Stages run in a fixed order: input validation, outlier detection and k-mer
selection, sketching, pairwise distance estimation, then matrix assembly.
Parallel stages return owned, ordered results; the matrix is assembled only
after every distance is known.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

from rich import box
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from sketchtree.config import SketchConfig
from sketchtree.core.distances import PairwiseDistance, estimate_distances
from sketchtree.core.kmer_size import select_k
from sketchtree.core.matrix import DistanceMatrix, distance_to_matrix
from sketchtree.core.outliers import Outlier, detect_outliers
from sketchtree.core.sketching import SketchParams, Signature, get_sketcher, sketch_genomes
from sketchtree.exceptions import InsufficientInputs, OutlierDetected
from sketchtree.paths import WorkLayout, create_work_layout, remove_work_layout
from sketchtree.utils.validation import MIN_GENOMES, GenomeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ParameterPlan:
    genomes: tuple[GenomeRecord, ...]
    outliers: tuple[Outlier, ...]
    kmer_length: int
    kmer_source: str
    mean_genome_size: float


@dataclass(frozen=True, slots=True)
class PipelineResult:
    plan: ParameterPlan
    signatures: tuple[Signature, ...]
    distances: tuple[PairwiseDistance, ...]
    matrix: DistanceMatrix


def _mean_size(genomes: Sequence[GenomeRecord]) -> float:
    return sum(genome.sequence_length for genome in genomes) / len(genomes)


def plan_parameters(records: Sequence[GenomeRecord], cfg: SketchConfig) -> ParameterPlan:
    """Apply the outlier policy and resolve the k-mer length.

    Outliers never contribute to the mean size used for k selection. With the
    ``exclude`` policy they are also left out of the tree, with ``abort`` the
    run stops.
    """

    outliers = detect_outliers(records, epsilon=cfg.outlier_epsilon)
    flagged = {genome_id for genome_id, _ in outliers}
    for genome_id, size in outliers:
        logger.warning(
            "Genome %s (%d bp) is a size outlier (policy: %s).",
            genome_id,
            size,
            cfg.outlier_policy,
            extra={"genome_id": genome_id, "stage": "outliers"},
        )

    if outliers and cfg.outlier_policy == "abort":
        raise OutlierDetected(outliers)

    genomes = tuple(records)
    if cfg.outlier_policy == "exclude":
        genomes = tuple(record for record in records if record.genome_id not in flagged)
        if len(genomes) < MIN_GENOMES:
            raise InsufficientInputs(
                f"Only {len(genomes)} genomes remain after excluding outliers; "
                f"at least {MIN_GENOMES} are required."
            )

    basis = [record for record in records if record.genome_id not in flagged] or list(records)
    mean_size = _mean_size(basis)

    if cfg.kmer_size is not None:
        kmer_length = cfg.kmer_size
        kmer_source = "pinned"
    else:
        kmer_length = select_k(mean_size, cfg.target_probability)
        kmer_source = "selected"
        logger.info(
            "Selected k=%d from mean genome size %.0f bp (p=%g).", kmer_length, mean_size, cfg.target_probability
        )

    return ParameterPlan(
        genomes=genomes,
        outliers=outliers,
        kmer_length=kmer_length,
        kmer_source=kmer_source,
        mean_genome_size=mean_size,
    )


def sketch_params(plan: ParameterPlan, cfg: SketchConfig) -> SketchParams:
    return SketchParams(
        kmer_length=plan.kmer_length,
        sketch_size=cfg.sketch_size,
        oversketch=cfg.oversketch,
        seed=cfg.seed,
        min_abundance=cfg.min_abundance,
    )


def print_plan(console: Console, title: str, steps: Sequence[str]) -> None:
    console.print(f"[bold]{title}[/bold]")
    for idx, step in enumerate(steps, start=1):
        console.print(f"  {idx}. {step}")


def print_parameters(console: Console, plan: ParameterPlan, cfg: SketchConfig) -> None:
    table = Table(
        title="[bold]Sketch parameters[/bold]",
        box=box.SIMPLE_HEAVY,
        show_header=False,
        expand=False,
    )
    table.add_column("Key", style="bold cyan")
    table.add_column("Value", style="white")
    table.add_row("Genomes", str(len(plan.genomes)))
    table.add_row("Mean genome size", f"{plan.mean_genome_size:.0f}")
    table.add_row("k-mer length", f"{plan.kmer_length} ({plan.kmer_source})")
    table.add_row("Sketch size", str(cfg.sketch_size))
    table.add_row("Oversketch", str(cfg.oversketch))
    table.add_row("Seed", str(cfg.seed))
    table.add_row("Backend", cfg.backend)
    table.add_row("Threads", str(cfg.threads))
    table.add_row("Working directory", f"{cfg.workdir} ({'kept' if cfg.keep else 'removed after the run'})")
    table.add_row("Outliers", ", ".join(genome_id for genome_id, _ in plan.outliers) or "none")
    console.print(table)


def _progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def compute_distance_matrix(
    plan: ParameterPlan,
    cfg: SketchConfig,
    layout: WorkLayout,
    *,
    console: Console,
) -> PipelineResult:
    sketcher = get_sketcher(cfg.backend)
    params = sketch_params(plan, cfg)

    with _progress(console) as progress:
        sketch_task = progress.add_task("Sketching genomes", total=len(plan.genomes))
        signatures = sketch_genomes(
            plan.genomes,
            sketcher,
            params,
            threads=cfg.threads,
            outdir=layout.sketch_dir,
            on_progress=lambda: progress.advance(sketch_task),
        )

        n_signatures = len(signatures)
        distance_task = progress.add_task("Estimating distances", total=n_signatures * (n_signatures + 1) // 2)
        distances = estimate_distances(
            signatures,
            sketcher,
            threads=cfg.threads,
            on_progress=lambda: progress.advance(distance_task),
        )

    matrix = distance_to_matrix(distances)
    logger.info("Assembled a %d x %d distance matrix.", matrix.size, matrix.size)
    return PipelineResult(plan=plan, signatures=signatures, distances=distances, matrix=matrix)


@contextmanager
def working_directory(cfg: SketchConfig) -> Iterator[WorkLayout]:
    """Create the working directory and remove it afterwards unless it is kept."""

    layout = create_work_layout(cfg.workdir, force=cfg.force)
    try:
        yield layout
    finally:
        if not cfg.keep:
            remove_work_layout(layout)
