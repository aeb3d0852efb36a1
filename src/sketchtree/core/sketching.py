from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence

import numpy as np

from sketchtree.core.fasta import read_sequence
from sketchtree.core.kmer import MAX_KMER_LENGTH, bottom_sketch, mash_distance
from sketchtree.exceptions import InvalidParameter, SketchFailure, SketchTreeUsageError
from sketchtree.runners.mash import MashRunner, parse_mash_dist_output
from sketchtree.utils.io import write_json
from sketchtree.utils.validation import GenomeRecord

logger = logging.getLogger(__name__)

BACKENDS = ("builtin", "mash")


@dataclass(frozen=True, slots=True)
class SketchParams:
    kmer_length: int
    sketch_size: int = 1000
    oversketch: int = 200
    seed: int = 42
    min_abundance: int = 1


@dataclass(frozen=True, slots=True, eq=False)
class Signature:
    """Sketch of one genome; holds hashes in memory or points at a sketch file."""

    name: str
    source_path: Path
    kmer_length: int
    seed: int
    hashes: np.ndarray | None = None
    sketch_file: Path | None = None


class Sketcher(Protocol):
    name: str
    max_kmer_length: int

    def sketch(self, genome: GenomeRecord, params: SketchParams, out_prefix: Path | None) -> Signature:
        ...

    def distance(self, left: Signature, right: Signature) -> float:
        ...


def check_sketch_params(sketcher: Sketcher, params: SketchParams) -> None:
    if not 1 <= params.kmer_length <= sketcher.max_kmer_length:
        raise InvalidParameter(
            f"k-mer length must be between 1 and {sketcher.max_kmer_length} for the "
            f"{sketcher.name} backend, got {params.kmer_length}"
        )
    if params.sketch_size < 1 or params.oversketch < 1:
        raise InvalidParameter("Sketch size and oversketch factor must be positive.")


def write_signature(signature: Signature, path: Path) -> Path:
    hashes = signature.hashes if signature.hashes is not None else np.empty(0, dtype=np.uint64)
    return write_json(
        path,
        {
            "name": signature.name,
            "source_path": str(signature.source_path),
            "kmer_length": signature.kmer_length,
            "seed": signature.seed,
            "hashes": [int(value) for value in hashes],
        },
        force=True,
    )


class MinHashSketcher:
    """In-process bottom-s MinHash sketches with Mash distances."""

    name = "builtin"
    max_kmer_length = MAX_KMER_LENGTH

    def sketch(self, genome: GenomeRecord, params: SketchParams, out_prefix: Path | None) -> Signature:
        sequence = read_sequence(genome.source_path)
        hashes = bottom_sketch(
            sequence,
            k=params.kmer_length,
            sketch_size=params.sketch_size,
            seed=params.seed,
            oversketch=params.oversketch,
            min_abundance=params.min_abundance,
        )
        hashes.flags.writeable = False
        signature = Signature(
            name=genome.genome_id,
            source_path=genome.source_path,
            kmer_length=params.kmer_length,
            seed=params.seed,
            hashes=hashes,
        )
        if out_prefix is not None:
            write_signature(signature, Path(f"{out_prefix}.sketch.json"))
        return signature

    def distance(self, left: Signature, right: Signature) -> float:
        if left.hashes is None or right.hashes is None:
            raise ValueError("builtin distances need in-memory sketches")
        if left.kmer_length != right.kmer_length or left.seed != right.seed:
            raise ValueError(
                f"incompatible sketches (k={left.kmer_length}/{right.kmer_length}, "
                f"seed={left.seed}/{right.seed})"
            )
        return mash_distance(left.hashes, right.hashes, k=left.kmer_length)


class MashSketcher:
    """Sketches and distances computed by the external `mash` binary."""

    name = "mash"
    max_kmer_length = 32

    def __init__(self, runner: MashRunner | None = None) -> None:
        self.runner = runner or MashRunner()

    def sketch(self, genome: GenomeRecord, params: SketchParams, out_prefix: Path | None) -> Signature:
        if out_prefix is None:
            raise ValueError("mash sketches need an output directory")
        if params.oversketch != 1 or params.min_abundance > 1:
            logger.debug("mash backend ignores oversketch and abundance filtering for %s", genome.genome_id)
        sketch_file = self.runner.sketch(
            input_fasta=genome.source_path,
            out_prefix=out_prefix,
            kmer_size=params.kmer_length,
            sketch_size=params.sketch_size,
            seed=params.seed,
        )
        return Signature(
            name=genome.genome_id,
            source_path=genome.source_path,
            kmer_length=params.kmer_length,
            seed=params.seed,
            sketch_file=sketch_file,
        )

    def distance(self, left: Signature, right: Signature) -> float:
        if left.sketch_file is None or right.sketch_file is None:
            raise ValueError("mash distances need sketch files")
        result = self.runner.dist(query=left.sketch_file, reference=right.sketch_file)
        return parse_mash_dist_output(result.stdout)


def get_sketcher(backend: str) -> Sketcher:
    if backend == "builtin":
        return MinHashSketcher()
    if backend == "mash":
        sketcher = MashSketcher()
        if not sketcher.runner.is_available():
            raise SketchTreeUsageError(
                "Required external tool not found in PATH: mash. Install mash or use --backend builtin."
            )
        return sketcher
    raise SketchTreeUsageError(f"Unknown sketch backend {backend!r}; choose one of {', '.join(BACKENDS)}.")


def _sketch_prefixes(genomes: Sequence[GenomeRecord], outdir: Path | None) -> list[Path | None]:
    if outdir is None:
        return [None] * len(genomes)

    prefixes: list[Path | None] = []
    used: dict[str, int] = {}
    for genome in genomes:
        stem = genome.source_path.name
        used[stem] = used.get(stem, 0) + 1
        suffix = "" if used[stem] == 1 else f"-{used[stem]}"
        prefixes.append(outdir / f"{stem}{suffix}")
    return prefixes


def _sketch_one(
    sketcher: Sketcher,
    genome: GenomeRecord,
    params: SketchParams,
    out_prefix: Path | None,
) -> Signature:
    try:
        return sketcher.sketch(genome, params, out_prefix)
    except Exception as exc:
        raise SketchFailure(genome.source_path, str(exc) or type(exc).__name__) from exc


def sketch_genomes(
    genomes: Sequence[GenomeRecord],
    sketcher: Sketcher,
    params: SketchParams,
    *,
    threads: int = 1,
    outdir: Path | None = None,
    on_progress: Callable[[], None] | None = None,
) -> tuple[Signature, ...]:
    """Sketch every genome, one task per genome; signatures keep input order.

    The first failure cancels pending tasks and is re-raised as SketchFailure.
    """

    check_sketch_params(sketcher, params)
    prefixes = _sketch_prefixes(genomes, outdir)
    signatures: list[Signature | None] = [None] * len(genomes)

    with ThreadPoolExecutor(max_workers=max(threads, 1)) as pool:
        futures = {
            pool.submit(_sketch_one, sketcher, genome, params, prefix): idx
            for idx, (genome, prefix) in enumerate(zip(genomes, prefixes))
        }
        try:
            for future in as_completed(futures):
                signatures[futures[future]] = future.result()
                if on_progress is not None:
                    on_progress()
        except SketchFailure:
            for future in futures:
                future.cancel()
            raise

    logger.debug("Sketched %d genomes with k=%d", len(genomes), params.kmer_length)
    return tuple(signature for signature in signatures if signature is not None)
