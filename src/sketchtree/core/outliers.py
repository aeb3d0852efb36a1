"""Genome-size outlier detection.

Genome sizes feed the k-mer length estimate, so a single assembly that is far
larger or smaller than the rest can pull k away from what suits the bulk of
the data. Small samples use leave-one-out influence on the mean; larger
samples use Tukey's interquartile-range fences.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from sketchtree.utils.validation import GenomeRecord

DEFAULT_EPSILON = 0.05
IQR_MIN_SAMPLES = 4
IQR_MULTIPLIER = 1.5

Outlier = tuple[str, int]


def _sizes(genomes: Iterable[GenomeRecord]) -> list[Outlier]:
    return [(genome.genome_id, genome.sequence_length) for genome in genomes]


def leave_one_out_outliers(
    genomes: Sequence[GenomeRecord],
    *,
    epsilon: float = DEFAULT_EPSILON,
) -> tuple[Outlier, ...]:
    """Flag the genome whose removal shifts the mean size the most, if the shift exceeds epsilon * mean."""

    samples = _sizes(genomes)
    n = len(samples)
    if n < 2:
        return ()

    total = sum(size for _, size in samples)
    global_mean = total / n

    candidate: Outlier | None = None
    largest_shift = -1.0
    for genome_id, size in samples:
        shift = abs((total - size) / (n - 1) - global_mean)
        if shift > largest_shift:
            largest_shift = shift
            candidate = (genome_id, size)

    if candidate is not None and largest_shift > epsilon * global_mean:
        return (candidate,)
    return ()


def iqr_outliers(
    genomes: Sequence[GenomeRecord],
    *,
    multiplier: float = IQR_MULTIPLIER,
) -> tuple[Outlier, ...]:
    """Flag every genome outside [Q1 - m*IQR, Q3 + m*IQR]; the lower fence never drops below 0."""

    samples = _sizes(genomes)
    n = len(samples)
    if n == 0:
        return ()

    ordered = sorted(size for _, size in samples)
    q1 = ordered[n // 4]
    q3 = ordered[(3 * n) // 4]
    iqr = q3 - q1
    lower = max(q1 - multiplier * iqr, 0.0)
    upper = q3 + multiplier * iqr

    return tuple((genome_id, size) for genome_id, size in samples if size < lower or size > upper)


def detect_outliers(
    genomes: Sequence[GenomeRecord],
    *,
    epsilon: float = DEFAULT_EPSILON,
    iqr_min_samples: int = IQR_MIN_SAMPLES,
    iqr_multiplier: float = IQR_MULTIPLIER,
) -> tuple[Outlier, ...]:
    """Return the (identifier, size) pairs of influential genomes; empty when none.

    The result is advisory: callers decide whether to warn, drop or abort.
    """

    if len(genomes) < iqr_min_samples:
        return leave_one_out_outliers(genomes, epsilon=epsilon)
    return iqr_outliers(genomes, multiplier=iqr_multiplier)
