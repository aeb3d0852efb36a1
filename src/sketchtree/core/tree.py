"""Neighbor-joining tree construction and Newick serialization.

Two solver modes are available: the canonical Biopython implementation, and
the chunked solver in :mod:`sketchtree.core.nj` whose Q-criterion search is
split across worker threads.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from io import StringIO
from pathlib import Path

from Bio import Phylo
from Bio.Phylo.BaseTree import Tree
from Bio.Phylo.TreeConstruction import DistanceMatrix as BioDistanceMatrix
from Bio.Phylo.TreeConstruction import DistanceTreeConstructor

from sketchtree.core.matrix import DistanceMatrix
from sketchtree.core.nj import ChunkedNeighborJoining
from sketchtree.exceptions import SolverFailure
from sketchtree.utils.io import write_text

logger = logging.getLogger(__name__)

MIN_TAXA = 3


class SolverMode(str, Enum):
    """Neighbor-joining solver mode."""

    CANONICAL = "canonical"
    RAPID = "rapid"


def solver_chunk_size(matrix_size: int, workers: int) -> int:
    """Rows per Q-search chunk; at least one even with more workers than taxa."""

    return max(matrix_size // max(workers, 1), 1)


def _canonical_tree(matrix: DistanceMatrix) -> Tree:
    bio_matrix = BioDistanceMatrix(list(matrix.names), matrix.lower_triangle())
    return DistanceTreeConstructor().nj(bio_matrix)


def build_tree(matrix: DistanceMatrix, *, canonical: bool = False, threads: int = 1) -> Tree:
    """Run neighbor joining over a complete distance matrix.

    Raises:
        SolverFailure: with the solver's own message when no tree can be built.
    """

    if matrix.size < MIN_TAXA:
        raise SolverFailure(f"Neighbor joining needs at least {MIN_TAXA} taxa, got {matrix.size}.")

    mode = SolverMode.CANONICAL if canonical else SolverMode.RAPID
    try:
        if mode is SolverMode.CANONICAL:
            tree = _canonical_tree(matrix)
        else:
            chunk_size = solver_chunk_size(matrix.size, threads)
            logger.debug("Rapid neighbor joining with chunk size %d on %d threads", chunk_size, threads)
            tree = ChunkedNeighborJoining(matrix, chunk_size=chunk_size, threads=threads).solve()
    except (ValueError, TypeError, IndexError, ZeroDivisionError) as exc:
        raise SolverFailure(str(exc)) from exc

    for clade in tree.get_nonterminals():
        clade.name = None
    return tree


def to_newick(tree: Tree) -> str:
    handle = StringIO()
    Phylo.write(tree, handle, "newick")
    return handle.getvalue().strip()


def compute_newick_tree(matrix: DistanceMatrix, *, canonical: bool = False, threads: int = 1) -> str:
    return to_newick(build_tree(matrix, canonical=canonical, threads=threads))


def write_newick(newick: str, output: Path | None, *, force: bool = False) -> Path | None:
    """Write the tree to ``output``, or to stdout when no path is given."""

    if output is None:
        sys.stdout.write(f"{newick}\n")
        sys.stdout.flush()
        return None
    return write_text(output, f"{newick}\n", force=force)
