from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from sketchtree.utils.io import open_text

HEADER_MARKER = ">"


@dataclass(frozen=True, slots=True)
class FastaScan:
    """Shape of one FASTA file as seen by input validation."""

    path: Path
    starts_with_header: bool
    header_count: int
    header_id: str | None
    sequence_length: int


def scan_fasta(path: Path) -> FastaScan:
    """Count headers and residues without keeping the sequence in memory.

    Scanning stops at the first non-blank line when it is not a header.
    """

    starts_with_header = False
    seen_content = False
    header_count = 0
    header_id: str | None = None
    sequence_length = 0

    with open_text(path) as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line:
                continue
            if not seen_content:
                seen_content = True
                starts_with_header = line.startswith(HEADER_MARKER)
                if not starts_with_header:
                    break
            if line.startswith(HEADER_MARKER):
                header_count += 1
                if header_id is None:
                    tokens = line[1:].split()
                    header_id = tokens[0] if tokens else ""
            else:
                sequence_length += len(line)

    return FastaScan(
        path=path,
        starts_with_header=starts_with_header,
        header_count=header_count,
        header_id=header_id,
        sequence_length=sequence_length,
    )


def read_sequence(path: Path) -> str:
    """Read the residues of a single-record FASTA file, upper-cased."""

    chunks: list[str] = []
    with open_text(path) as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line or line.startswith(HEADER_MARKER):
                continue
            chunks.append(line)
    return "".join(chunks).upper()
