"""Assembly of pairwise distances into a dense, symmetric distance matrix.

Distance estimation reports each unordered pair once, in whatever orientation
the pair enumeration produced. Tree solvers and the PHYLIP writer need every
(i, j) cell, so the matrix is built here by bidirectional lookup. Row order is
the first-seen order of identifiers in the distance set, which keeps the
output reproducible for a given input order.
"""

from __future__ import annotations

from dataclasses import dataclass
from itertools import product
from pathlib import Path
from typing import Iterable, Mapping

import numpy as np

from sketchtree.core.distances import PairwiseDistance
from sketchtree.exceptions import AssemblyInconsistency
from sketchtree.paths import canonical_identifier
from sketchtree.utils.io import write_text


@dataclass(frozen=True, slots=True, eq=False)
class DistanceMatrix:
    """Square, read-only distance matrix with row/column labels."""

    names: tuple[str, ...]
    values: np.ndarray

    def __post_init__(self) -> None:
        values = np.array(self.values, dtype=np.float64)
        size = len(self.names)
        if values.shape != (size, size):
            raise ValueError(f"Matrix shape {values.shape} does not match {size} names")
        values.flags.writeable = False
        object.__setattr__(self, "names", tuple(self.names))
        object.__setattr__(self, "values", values)

    def __len__(self) -> int:
        return len(self.names)

    @property
    def size(self) -> int:
        return len(self.names)

    def lower_triangle(self) -> list[list[float]]:
        """Row i holds columns 0..i, the layout Biopython expects."""

        return [[float(self.values[i, j]) for j in range(i + 1)] for i in range(self.size)]


def _lookup(table: Mapping[tuple[str, str], float], left: str, right: str) -> float | None:
    value = table.get((left, right))
    if value is None:
        value = table.get((right, left))
    return value


def distance_to_matrix(distances: Iterable[PairwiseDistance]) -> DistanceMatrix:
    """Fill an N x N matrix from a non-redundant set of pairwise distances.

    Raises AssemblyInconsistency when an off-diagonal cell has no distance in
    either orientation. Missing diagonal cells are self-distances and become 0.
    """

    table: dict[tuple[str, str], float] = {}
    names: list[str] = []
    seen: set[str] = set()

    for distance in distances:
        query = canonical_identifier(distance.query_name)
        reference = canonical_identifier(distance.reference_name)
        for name in (query, reference):
            if name not in seen:
                seen.add(name)
                names.append(name)
        if query == reference:
            continue
        table.pop((reference, query), None)
        table[(query, reference)] = float(distance.value)

    if not names:
        raise AssemblyInconsistency("No pairwise distances available to assemble a matrix.")

    size = len(names)
    values = np.zeros((size, size), dtype=np.float64)
    for i, j in product(range(size), repeat=2):
        found = _lookup(table, names[i], names[j])
        if found is None:
            if i == j:
                continue
            raise AssemblyInconsistency(
                f"No distance between {names[i]} and {names[j]}; the pairwise distance set is incomplete.",
                pair=(names[i], names[j]),
            )
        values[i, j] = found

    return DistanceMatrix(names=tuple(names), values=values)


def format_distance(value: float) -> str:
    return np.format_float_positional(float(value) + 0.0, trim="-")


def phylip_text(matrix: DistanceMatrix) -> str:
    lines = [str(matrix.size)]
    for name, row in zip(matrix.names, matrix.values):
        lines.append(" ".join([name, *(format_distance(value) for value in row)]))
    return "\n".join(lines) + "\n"


def write_phylip(matrix: DistanceMatrix, path: Path, *, force: bool = False) -> Path:
    """Write a square PHYLIP distance file: taxon count, then one labelled row per taxon."""

    return write_text(path, phylip_text(matrix), force=force)
