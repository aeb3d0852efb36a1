from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import combinations_with_replacement
from typing import Callable, Sequence

from sketchtree.core.sketching import Signature, Sketcher
from sketchtree.exceptions import DistanceEstimationFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PairwiseDistance:
    query_name: str
    reference_name: str
    value: float


def signature_pairs(signatures: Sequence[Signature]) -> list[tuple[Signature, Signature]]:
    """Every unordered pair once, self-pairs included."""

    return list(combinations_with_replacement(signatures, 2))


def is_valid_distance(value: float) -> bool:
    return not math.isnan(value) and value <= 1.0


def _estimate_pair(sketcher: Sketcher, pair: tuple[Signature, Signature]) -> PairwiseDistance:
    query, reference = pair
    try:
        value = float(sketcher.distance(query, reference))
    except Exception as exc:
        raise DistanceEstimationFailure((query.name, reference.name), str(exc) or type(exc).__name__) from exc
    return PairwiseDistance(query_name=query.name, reference_name=reference.name, value=value)


def estimate_distances(
    signatures: Sequence[Signature],
    sketcher: Sketcher,
    *,
    threads: int = 1,
    on_progress: Callable[[], None] | None = None,
) -> tuple[PairwiseDistance, ...]:
    """Estimate all pairwise distances; results follow pair enumeration order.

    Estimates that are NaN or above 1.0 are dropped.
    """

    pairs = signature_pairs(signatures)
    distances: list[PairwiseDistance] = []
    dropped = 0

    with ThreadPoolExecutor(max_workers=max(threads, 1)) as pool:
        futures = [pool.submit(_estimate_pair, sketcher, pair) for pair in pairs]
        try:
            for future in futures:
                distance = future.result()
                if on_progress is not None:
                    on_progress()
                if not is_valid_distance(distance.value):
                    dropped += 1
                    logger.warning(
                        "Discarding out-of-range distance %s between %s and %s",
                        distance.value,
                        distance.query_name,
                        distance.reference_name,
                        extra={"pair": (distance.query_name, distance.reference_name), "stage": "distances"},
                    )
                    continue
                distances.append(distance)
        except DistanceEstimationFailure:
            for future in futures:
                future.cancel()
            raise

    logger.debug("Estimated %d distances (%d discarded)", len(distances), dropped)
    return tuple(distances)
