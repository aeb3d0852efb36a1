"""Neighbor joining with a chunked, thread-parallel Q-criterion search.

Each iteration splits the rows of the Q matrix into chunks, finds the minimum
of every chunk on a worker thread and reduces the chunk minima by
``(q, i, j)``. Ties therefore resolve exactly as a row-major scan of the full
matrix would, and the tree does not depend on the chunk size or thread count.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from functools import partial

import numpy as np
from Bio.Phylo.BaseTree import Clade, Tree

from sketchtree.core.matrix import DistanceMatrix


def _chunk_minimum(
    distances: np.ndarray,
    row_sums: np.ndarray,
    start: int,
    stop: int,
) -> tuple[float, int, int]:
    n_active = distances.shape[0]
    rows = np.arange(start, stop)
    block = (n_active - 2) * distances[start:stop] - row_sums[start:stop, None] - row_sums[None, :]
    # Only the strict upper triangle holds candidate pairs.
    block = np.where(np.arange(n_active)[None, :] > rows[:, None], block, np.inf)
    flat = int(np.argmin(block))
    row, col = divmod(flat, n_active)
    return float(block[row, col]), start + row, col


class ChunkedNeighborJoining:
    def __init__(self, matrix: DistanceMatrix, *, chunk_size: int = 1, threads: int = 1) -> None:
        self.matrix = matrix
        self.chunk_size = max(chunk_size, 1)
        self.threads = max(threads, 1)

    def _closest_pair(
        self,
        pool: ThreadPoolExecutor,
        distances: np.ndarray,
        row_sums: np.ndarray,
    ) -> tuple[int, int]:
        n_active = distances.shape[0]
        bounds = [(start, min(start + self.chunk_size, n_active)) for start in range(0, n_active, self.chunk_size)]
        search = partial(_chunk_minimum, distances, row_sums)
        minima = list(pool.map(lambda bound: search(*bound), bounds))
        _, i, j = min(minima)
        return i, j

    def solve(self) -> Tree:
        if self.matrix.size < 3:
            raise ValueError(f"Neighbor joining needs at least 3 taxa, got {self.matrix.size}")

        distances = np.array(self.matrix.values, dtype=np.float64)
        clades = [Clade(name=name) for name in self.matrix.names]

        with ThreadPoolExecutor(max_workers=self.threads) as pool:
            while len(clades) > 3:
                n_active = len(clades)
                row_sums = distances.sum(axis=1)
                i, j = self._closest_pair(pool, distances, row_sums)

                d_ij = distances[i, j]
                limb_i = 0.5 * d_ij + (row_sums[i] - row_sums[j]) / (2.0 * (n_active - 2))
                limb_j = d_ij - limb_i
                clades[i].branch_length = max(float(limb_i), 0.0)
                clades[j].branch_length = max(float(limb_j), 0.0)

                merged = 0.5 * (distances[i] + distances[j] - d_ij)
                distances[i, :] = merged
                distances[:, i] = merged
                distances[i, i] = 0.0
                distances = np.delete(np.delete(distances, j, axis=0), j, axis=1)

                clades[i] = Clade(clades=[clades[i], clades[j]])
                del clades[j]

        return self._join_last_three(distances, clades)

    @staticmethod
    def _join_last_three(distances: np.ndarray, clades: list[Clade]) -> Tree:
        first, second, third = clades
        limb_first = 0.5 * (distances[0, 1] + distances[0, 2] - distances[1, 2])
        first.branch_length = max(float(limb_first), 0.0)
        second.branch_length = max(float(distances[0, 1] - limb_first), 0.0)
        third.branch_length = max(float(distances[0, 2] - limb_first), 0.0)
        root = Clade(clades=[first, second, third])
        return Tree(root=root, rooted=False)
