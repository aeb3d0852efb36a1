from __future__ import annotations

import math

import numpy as np

MAX_KMER_LENGTH = 32
WINDOW_BLOCK = 1 << 22

_MIX_1 = np.uint64(0xFF51AFD7ED558CCD)
_MIX_2 = np.uint64(0xC4CEB9FE1A85EC53)
_SHIFT = np.uint64(33)
_GOLDEN = 0x9E3779B97F4A7C15
_MASK64 = (1 << 64) - 1

_NUCLEOTIDE_CODES = np.full(256, 4, dtype=np.uint8)
for _idx, _base in enumerate(b"ACGT"):
    _NUCLEOTIDE_CODES[_base] = _idx
    _NUCLEOTIDE_CODES[ord(chr(_base).lower())] = _idx


def _fmix64(values: np.ndarray) -> np.ndarray:
    with np.errstate(over="ignore"):
        values = values ^ (values >> _SHIFT)
        values = values * _MIX_1
        values = values ^ (values >> _SHIFT)
        values = values * _MIX_2
        values = values ^ (values >> _SHIFT)
    return values


def seed_mask(seed: int) -> np.uint64:
    mixed = _fmix64(np.array([(seed + _GOLDEN) & _MASK64], dtype=np.uint64))
    return np.uint64(mixed[0])


def encode_sequence(sequence: str | bytes) -> np.ndarray:
    """2-bit codes (A=0, C=1, G=2, T=3); anything else is 4."""

    raw = sequence.encode("ascii", errors="replace") if isinstance(sequence, str) else sequence
    return _NUCLEOTIDE_CODES[np.frombuffer(raw, dtype=np.uint8)]


def canonical_kmers(codes: np.ndarray, k: int) -> np.ndarray:
    """Integer-packed canonical k-mers (min of forward and reverse complement) of valid windows."""

    if not 1 <= k <= MAX_KMER_LENGTH:
        raise ValueError(f"k-mer length must be between 1 and {MAX_KMER_LENGTH}, got {k}")

    n_windows = len(codes) - k + 1
    if n_windows <= 0:
        return np.empty(0, dtype=np.uint64)

    valid = codes < 4
    bases = np.where(valid, codes, 0).astype(np.uint64)
    two = np.uint64(2)
    three = np.uint64(3)

    forward = np.zeros(n_windows, dtype=np.uint64)
    reverse = np.zeros(n_windows, dtype=np.uint64)
    for offset in range(k):
        window_bases = bases[offset : offset + n_windows]
        forward = (forward << two) | window_bases
        reverse = reverse | ((three - window_bases) << np.uint64(2 * offset))

    invalid_prefix = np.concatenate(([0], np.cumsum(~valid, dtype=np.int64)))
    clean = (invalid_prefix[k : k + n_windows] - invalid_prefix[:n_windows]) == 0
    return np.minimum(forward, reverse)[clean]


def hash_kmers(kmers: np.ndarray, seed: int) -> np.ndarray:
    return _fmix64(kmers ^ seed_mask(seed))


def _merge_pool(
    pool_hashes: np.ndarray,
    pool_counts: np.ndarray,
    hashes: np.ndarray,
    counts: np.ndarray,
    pool_size: int,
) -> tuple[np.ndarray, np.ndarray]:
    merged, inverse = np.unique(np.concatenate((pool_hashes, hashes)), return_inverse=True)
    summed = np.bincount(inverse, weights=np.concatenate((pool_counts, counts)).astype(np.float64))
    return merged[:pool_size], summed[:pool_size].astype(np.int64)


def bottom_sketch(
    sequence: str,
    *,
    k: int,
    sketch_size: int,
    seed: int,
    oversketch: int = 1,
    min_abundance: int = 1,
) -> np.ndarray:
    """Bottom-s MinHash sketch of a sequence.

    The ``sketch_size * oversketch`` smallest distinct hashes are tracked with
    their abundances; hashes seen fewer than ``min_abundance`` times are dropped
    before keeping the ``sketch_size`` smallest.
    """

    if sketch_size <= 0:
        return np.empty(0, dtype=np.uint64)

    pool_size = sketch_size * max(oversketch, 1)
    codes = encode_sequence(sequence)
    pool_hashes = np.empty(0, dtype=np.uint64)
    pool_counts = np.empty(0, dtype=np.int64)

    # Blocks overlap by k - 1 bases so that no window is lost or counted twice.
    for start in range(0, max(len(codes) - k + 1, 0), WINDOW_BLOCK):
        block = codes[start : start + WINDOW_BLOCK + k - 1]
        hashes, counts = np.unique(hash_kmers(canonical_kmers(block, k), seed), return_counts=True)
        pool_hashes, pool_counts = _merge_pool(pool_hashes, pool_counts, hashes, counts, pool_size)

    if min_abundance > 1:
        pool_hashes = pool_hashes[pool_counts >= min_abundance]
    return pool_hashes[:sketch_size]


def jaccard_estimate(left: np.ndarray, right: np.ndarray) -> float:
    """Jaccard estimate from the bottom-s union of two sorted sketches."""

    size = min(len(left), len(right))
    if size == 0:
        return 0.0
    union = np.union1d(left, right)[:size]
    shared = np.count_nonzero(np.isin(union, left, assume_unique=True) & np.isin(union, right, assume_unique=True))
    return shared / len(union)


def mash_distance(left: np.ndarray, right: np.ndarray, *, k: int) -> float:
    """Mash distance (Ondov et al. 2016) clamped to [0, 1]."""

    similarity = jaccard_estimate(left, right)
    if similarity <= 0.0:
        return 1.0
    distance = (-1.0 / float(k)) * math.log((2.0 * similarity) / (1.0 + similarity))
    return max(0.0, min(1.0, distance))
