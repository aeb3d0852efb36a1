from __future__ import annotations

import logging
import lzma
import zlib
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from sketchtree.core.fasta import scan_fasta
from sketchtree.exceptions import (
    InputValidationError,
    InsufficientInputs,
    InvalidFormat,
    MultiRecordNotAllowed,
    SketchTreeUsageError,
)
from sketchtree.paths import canonical_identifier

MIN_GENOMES = 3

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GenomeRecord:
    genome_id: str
    sequence_length: int
    source_path: Path
    header_id: str | None = None


def _missing_files(paths: Sequence[Path]) -> list[Path]:
    return [path for path in paths if not path.is_file()]


def validate_inputs(paths: Sequence[Path | str]) -> list[GenomeRecord]:
    """Check every input is a single-record FASTA file and collect its size.

    All files are scanned before anything is raised so that one run reports
    every offending input.
    """

    resolved = [Path(path) for path in paths]
    if len(resolved) < MIN_GENOMES:
        raise InsufficientInputs(
            f"At least {MIN_GENOMES} genomes are required to build a tree, got {len(resolved)}."
        )

    missing = _missing_files(resolved)
    if missing:
        listed = "\n".join(f"  - {path}" for path in missing)
        raise SketchTreeUsageError(f"Input files do not exist or are not files:\n{listed}")

    bad_format: list[Path] = []
    multi_record: list[Path] = []
    records: list[GenomeRecord] = []

    for path in resolved:
        try:
            scan = scan_fasta(path)
        except (OSError, UnicodeDecodeError, EOFError, zlib.error, lzma.LZMAError) as exc:
            logger.debug("Unable to read %s: %s", path, exc)
            bad_format.append(path)
            continue

        if not scan.starts_with_header:
            bad_format.append(path)
            continue
        if scan.header_count > 1:
            multi_record.append(path)
            continue

        records.append(
            GenomeRecord(
                genome_id=canonical_identifier(path),
                sequence_length=scan.sequence_length,
                source_path=path,
                header_id=scan.header_id,
            )
        )

    if bad_format and multi_record:
        raise InputValidationError(
            "Inputs must be single-record FASTA files; offending files "
            f"({len(bad_format)} not FASTA, {len(multi_record)} with several records):",
            [*bad_format, *multi_record],
        )
    if bad_format:
        raise InvalidFormat("Inputs are not FASTA formatted (first line must start with '>'):", bad_format)
    if multi_record:
        raise MultiRecordNotAllowed(
            "Inputs contain more than one FASTA record (one genome per file is required):",
            multi_record,
        )

    collisions = sorted(
        genome_id for genome_id, count in Counter(record.genome_id for record in records).items() if count > 1
    )
    for genome_id in collisions:
        sources = ", ".join(str(record.source_path) for record in records if record.genome_id == genome_id)
        logger.warning(
            "Inputs share the identifier %s and will be merged into one taxon: %s",
            genome_id,
            sources,
            extra={"genome_id": genome_id, "stage": "validation"},
        )

    return records
