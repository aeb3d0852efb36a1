from __future__ import annotations

from pathlib import Path

from sketchtree.runners.base import ToolRunner
from sketchtree.utils.subprocess import CommandExecutionError, CommandResult


class MashRunner(ToolRunner):
    """Wrapper around the Mash commands used for sketching and pairwise distances."""

    def __init__(self, executable: str = "mash") -> None:
        super().__init__(executable)

    def sketch(
        self,
        *,
        input_fasta: Path,
        out_prefix: Path,
        kmer_size: int,
        sketch_size: int,
        seed: int,
    ) -> Path:
        self.run(
            [
                "sketch",
                "-k",
                str(kmer_size),
                "-s",
                str(sketch_size),
                "-S",
                str(seed),
                "-o",
                str(out_prefix),
                str(input_fasta),
            ]
        )
        return Path(f"{out_prefix}.msh")

    def dist(self, *, query: Path, reference: Path) -> CommandResult:
        return self.run(["dist", str(query), str(reference)])


def parse_mash_dist_output(stdout: str) -> float:
    """Distance column of a single-pair `mash dist` table."""

    for raw_line in stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        fields = line.split("\t")
        if len(fields) < 3:
            continue
        try:
            return float(fields[2])
        except ValueError as exc:
            raise CommandExecutionError(f"Unable to parse Mash distance from line: {line!r}") from exc

    raise CommandExecutionError("mash dist returned no distance rows")
