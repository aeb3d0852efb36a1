from __future__ import annotations

from pathlib import Path

import pytest

from sketchtree.core.kmer_size import select_k
from sketchtree.core.outliers import detect_outliers, iqr_outliers, leave_one_out_outliers
from sketchtree.exceptions import InvalidParameter
from sketchtree.utils.validation import GenomeRecord


def _genomes(*sizes: int) -> list[GenomeRecord]:
    return [
        GenomeRecord(genome_id=f"g{idx}", sequence_length=size, source_path=Path(f"g{idx}.fna"))
        for idx, size in enumerate(sizes, start=1)
    ]


def test_select_k_for_bacterial_genome() -> None:
    assert select_k(5_000_000, 0.01) == 15


def test_select_k_is_monotone_in_genome_size() -> None:
    sizes = [10, 1_000, 50_000, 1_000_000, 5_000_000, 3_000_000_000]
    ks = [select_k(size) for size in sizes]

    assert ks == sorted(ks)
    assert ks[0] < ks[-1]


def test_select_k_is_monotone_in_probability() -> None:
    assert select_k(1_000_000, 0.001) >= select_k(1_000_000, 0.01) >= select_k(1_000_000, 0.5)


def test_select_k_floors_at_one() -> None:
    assert select_k(1, 0.99) == 1


@pytest.mark.parametrize("probability", [0.0, 1.0, -0.5, 2.0])
def test_select_k_rejects_probability_out_of_range(probability: float) -> None:
    with pytest.raises(InvalidParameter):
        select_k(1_000_000, probability)


def test_select_k_rejects_empty_genomes() -> None:
    with pytest.raises(InvalidParameter):
        select_k(0)


def test_no_outliers_for_equal_sizes() -> None:
    assert detect_outliers(_genomes(1000, 1000, 1000)) == ()
    assert detect_outliers(_genomes(1000, 1000, 1000, 1000, 1000)) == ()


def test_leave_one_out_flags_the_most_influential_genome() -> None:
    outliers = leave_one_out_outliers(_genomes(1000, 1000, 5000), epsilon=0.05)

    assert outliers == (("g3", 5000),)


def test_leave_one_out_respects_epsilon() -> None:
    genomes = _genomes(1000, 1010, 1020)

    assert leave_one_out_outliers(genomes, epsilon=0.05) == ()
    assert len(leave_one_out_outliers(genomes, epsilon=0.001)) == 1


def test_leave_one_out_needs_two_genomes() -> None:
    assert leave_one_out_outliers(_genomes(1000)) == ()


def test_iqr_flags_extreme_genome() -> None:
    genomes = _genomes(1000, 1000, 1000, 1000, 1_000_000)

    assert detect_outliers(genomes) == (("g5", 1_000_000),)


def test_iqr_flags_undersized_genome() -> None:
    genomes = _genomes(10, 4_000_000, 4_100_000, 4_200_000, 4_300_000, 4_400_000)

    flagged = dict(iqr_outliers(genomes))

    assert set(flagged) == {"g1"}
