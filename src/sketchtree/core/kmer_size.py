from __future__ import annotations

import math

from sketchtree.exceptions import InvalidParameter

DEFAULT_TARGET_PROBABILITY = 0.01


def select_k(mean_genome_size: float, target_probability: float = DEFAULT_TARGET_PROBABILITY) -> int:
    """Smallest k for which a random k-mer is unlikely to occur in a genome of this size.

    Fofanov et al. (2004): k = ceil(log4(g * (1 - p) / p)), floored at 1.
    """

    if not 0.0 < target_probability < 1.0:
        raise InvalidParameter(f"Target probability must be in (0, 1), got {target_probability}")
    if not mean_genome_size > 0:
        raise InvalidParameter(f"Mean genome size must be positive, got {mean_genome_size}")

    x = mean_genome_size * (1.0 - target_probability) / target_probability
    if x <= 1.0:
        return 1
    return max(1, math.ceil(math.log(x) / math.log(4)))
