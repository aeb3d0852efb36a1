from __future__ import annotations

import gzip
import random
from pathlib import Path

import pytest

from sketchtree.exceptions import (
    InputValidationError,
    InsufficientInputs,
    InvalidFormat,
    MultiRecordNotAllowed,
    SketchTreeUsageError,
)
from sketchtree.paths import canonical_identifier
from sketchtree.utils.validation import validate_inputs


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def _three_genomes(tmp_path: Path) -> list[Path]:
    return [
        _write(tmp_path / "g1.fna", ">g1 first\nACGTACGT\nACGT\n"),
        _write(tmp_path / "g2.fa", ">g2\nACGTTT\n"),
        _write(tmp_path / "g3.fasta", "\n>g3\nAC\n\nGT\n"),
    ]


def test_validate_inputs_collects_sizes_and_identifiers(tmp_path: Path) -> None:
    records = validate_inputs(_three_genomes(tmp_path))

    assert [record.genome_id for record in records] == ["g1", "g2", "g3"]
    assert [record.sequence_length for record in records] == [12, 6, 4]
    assert records[0].header_id == "g1"


def test_validate_inputs_reads_gzip(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)[:2]
    gz_path = tmp_path / "g4.fna.gz"
    with gzip.open(gz_path, "wt", encoding="utf-8") as handle:
        handle.write(">g4\nACGTACGTAC\n")

    records = validate_inputs([*paths, gz_path])

    assert records[-1].genome_id == "g4"
    assert records[-1].sequence_length == 10


def test_validate_inputs_requires_three_genomes(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)[:2]

    with pytest.raises(InsufficientInputs):
        validate_inputs(paths)


def test_validate_inputs_reports_missing_files(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)[:2]

    with pytest.raises(SketchTreeUsageError, match="missing.fna"):
        validate_inputs([*paths, tmp_path / "missing.fna"])


def test_validate_inputs_rejects_non_fasta(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)
    bad = _write(tmp_path / "bad.fna", "ACGTACGT\n")

    with pytest.raises(InvalidFormat) as excinfo:
        validate_inputs([*paths, bad])

    assert excinfo.value.offenders == [bad]
    assert excinfo.value.exit_code == 2


def test_validate_inputs_rejects_multi_record(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)
    multi = _write(tmp_path / "multi.fna", ">a\nACGT\n>b\nACGT\n")

    with pytest.raises(MultiRecordNotAllowed) as excinfo:
        validate_inputs([*paths, multi])

    assert excinfo.value.offenders == [multi]


def test_validate_inputs_reports_every_offender(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)
    bad_one = _write(tmp_path / "bad1.txt", "not fasta\n")
    bad_two = _write(tmp_path / "bad2.txt", "still not fasta\n")
    multi = _write(tmp_path / "multi.fna", ">a\nACGT\n>b\nACGT\n")

    with pytest.raises(InvalidFormat) as excinfo:
        validate_inputs([*paths, bad_one, bad_two])
    assert excinfo.value.offenders == [bad_one, bad_two]

    with pytest.raises(InputValidationError) as excinfo:
        validate_inputs([*paths, bad_one, multi])
    assert type(excinfo.value) is InputValidationError
    assert excinfo.value.offenders == [bad_one, multi]
    assert "bad1.txt" in str(excinfo.value)
    assert "multi.fna" in str(excinfo.value)


def test_validate_inputs_reports_corrupt_gzip(tmp_path: Path) -> None:
    paths = _three_genomes(tmp_path)
    rng = random.Random(11)
    payload = (">broken\n" + "".join(rng.choice("ACGT") for _ in range(20000)) + "\n").encode("ascii")
    data = bytearray(gzip.compress(payload))
    for index in range(20, 60):
        data[index] ^= 0xFF
    broken = tmp_path / "broken.fna.gz"
    broken.write_bytes(bytes(data))

    with pytest.raises(InvalidFormat) as excinfo:
        validate_inputs([*paths, broken])

    assert excinfo.value.offenders == [broken]


def test_canonical_identifier_takes_file_stem() -> None:
    assert canonical_identifier("data/genomes/E_coli.fna") == "E_coli"
    assert canonical_identifier(Path("/tmp/sample.fasta.gz")) == "sample"
    assert canonical_identifier("strain.v2.fa.bz2") == "strain.v2"
    assert canonical_identifier("dir/genome.txt") == "genome"
    assert canonical_identifier("x.fq") == "x"
    assert canonical_identifier("a.fna.gz") == "a"
    assert canonical_identifier("plain") == "plain"
