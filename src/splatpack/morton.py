# ABOUTME: Z-order (Morton) reordering of splats for spatial locality
# ABOUTME: Quantizes positions to 21 bits per axis and interleaves them into 63-bit keys

import numpy as np
from typing import Optional

from .gaussian_splat import SplatArray
from .parallel import parallel_for

MORTON_BITS = 21
MORTON_SCALER = np.float32((1 << MORTON_BITS) - 1)
MORTON_BATCH = 4096


def part1by2(v: np.ndarray) -> np.ndarray:
    """Spread the low 21 bits of ``v`` so that bit i lands on bit 3i."""
    x = np.asarray(v, dtype=np.uint64) & np.uint64(0x1fffff)
    x = (x | (x << np.uint64(32))) & np.uint64(0x1f00000000ffff)
    x = (x | (x << np.uint64(16))) & np.uint64(0x1f0000ff0000ff)
    x = (x | (x << np.uint64(8))) & np.uint64(0x100f00f00f00f00f)
    x = (x | (x << np.uint64(4))) & np.uint64(0x10c30c30c30c30c3)
    x = (x | (x << np.uint64(2))) & np.uint64(0x1249249249249249)
    return x


def morton_encode3(ipos: np.ndarray) -> np.ndarray:
    """
    Interleave (N, 3) integer coordinates into Morton codes.

    Bit i of axis a maps to bit 3i + a of the code.
    """
    ipos = np.asarray(ipos, dtype=np.uint64)
    return (part1by2(ipos[..., 0]) |
            (part1by2(ipos[..., 1]) << np.uint64(1)) |
            (part1by2(ipos[..., 2]) << np.uint64(2)))


def quantize_positions(pos: np.ndarray, bounds_min: np.ndarray, bounds_max: np.ndarray) -> np.ndarray:
    """Map positions into [0, 2^21-1] per axis. Zero-extent axes map to 0."""
    bounds_min = np.asarray(bounds_min, dtype=np.float32)
    size = np.asarray(bounds_max, dtype=np.float32) - bounds_min
    inv_size = np.zeros(3, dtype=np.float32)
    np.divide(np.float32(1.0), size, out=inv_size, where=size > 0)

    scaled = (pos - bounds_min) * inv_size * MORTON_SCALER
    scaled = np.clip(scaled, np.float32(0.0), MORTON_SCALER)
    return scaled.astype(np.uint64)


def compute_morton_codes(splats: SplatArray, bounds_min: np.ndarray, bounds_max: np.ndarray,
                         workers: Optional[int] = None) -> np.ndarray:
    codes = np.empty(splats.count, dtype=np.uint64)

    def _kernel(start, end):
        ipos = quantize_positions(splats.pos[start:end], bounds_min, bounds_max)
        codes[start:end] = morton_encode3(ipos)

    parallel_for(splats.count, MORTON_BATCH, _kernel, workers)
    return codes


def morton_order(splats: SplatArray, bounds_min: np.ndarray, bounds_max: np.ndarray,
                 workers: Optional[int] = None) -> np.ndarray:
    """
    Return the permutation sorting splats by ascending Morton code.

    The sort is stable, so identical codes keep their input index order.
    """
    codes = compute_morton_codes(splats, bounds_min, bounds_max, workers)
    return np.argsort(codes, kind='stable')


def reorder_morton(splats: SplatArray, bounds_min: np.ndarray, bounds_max: np.ndarray,
                   workers: Optional[int] = None) -> SplatArray:
    """Materialize a new splat array in Z-order. Later stages index into this array."""
    order = morton_order(splats, bounds_min, bounds_max, workers)
    return splats.take(order)
