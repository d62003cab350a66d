# ABOUTME: Per-chunk quantization envelopes for 256-splat runs
# ABOUTME: Computes chunk min/max and rewrites splat values into chunk-local [0, 1]

import numpy as np
from typing import Optional, Tuple

from .formats import CHUNK_INFO_SIZE, CHUNK_SIZE
from .gaussian_splat import SplatArray
from .parallel import parallel_for

CHUNK_EPSILON = np.float32(1.0e-5)
CHUNKS_PER_UNIT = 8

# 64-byte little-endian record consumed by the renderer
_CHUNK_FIELDS = [
    ('colR', '<u4'), ('colG', '<u4'), ('colB', '<u4'), ('colA', '<u4'),
    ('posX', ('<f4', (2,))), ('posY', ('<f4', (2,))), ('posZ', ('<f4', (2,))),
    ('sclX', '<u4'), ('sclY', '<u4'), ('sclZ', '<u4'),
    ('shR', '<u4'), ('shG', '<u4'), ('shB', '<u4'),
]
CHUNK_DTYPE = np.dtype({
    'names': [name for name, _ in _CHUNK_FIELDS],
    'formats': [fmt for _, fmt in _CHUNK_FIELDS],
    'itemsize': CHUNK_INFO_SIZE,
})


def chunk_count(splat_count: int) -> int:
    return (splat_count + CHUNK_SIZE - 1) // CHUNK_SIZE


def f32_to_f16_bits(values) -> np.ndarray:
    """IEEE binary16 bit patterns (round to nearest even) as uint32."""
    return np.asarray(values, dtype=np.float32).astype(np.float16).view(np.uint16).astype(np.uint32)


def pack_half_pair(lo, hi) -> np.ndarray:
    """Pack two floats as halves into one word: ``lo`` in the low 16 bits."""
    return f32_to_f16_bits(lo) | (f32_to_f16_bits(hi) << np.uint32(16))


def unpack_half_pair(packed) -> Tuple[np.ndarray, np.ndarray]:
    packed = np.asarray(packed, dtype=np.uint32)
    lo = (packed & np.uint32(0xffff)).astype(np.uint16).view(np.float16).astype(np.float32)
    hi = (packed >> np.uint32(16)).astype(np.uint16).view(np.float16).astype(np.float32)
    return lo, hi


def square_centered01(x) -> np.ndarray:
    """
    Opacity remap that spends more precision near 0 and 1.

    ``d = x - 0.5; d = d * |d|; return clamp(d * 2 + 0.5, 0, 1)``
    """
    d = np.asarray(x, dtype=np.float32) - np.float32(0.5)
    d = d * np.abs(d)
    return np.clip(d * np.float32(2.0) + np.float32(0.5), np.float32(0.0), np.float32(1.0))


def _widen(lo: np.ndarray, hi: np.ndarray) -> np.ndarray:
    hi = np.maximum(hi, lo + CHUNK_EPSILON)
    # min + eps can round back to min for large magnitudes
    return np.maximum(hi, np.nextafter(lo, np.float32(np.inf)))


def _process_chunk(splats: SplatArray, begin: int, end: int) -> tuple:
    """Transform, measure and normalize one chunk in place. Returns envelope arrays."""
    scale = np.power(splats.scale[begin:end], np.float32(1.0 / 8.0))
    opacity = square_centered01(splats.opacity[begin:end])

    pos = splats.pos[begin:end]
    col = np.concatenate([splats.dc0[begin:end], opacity[:, None]], axis=1)
    sh = splats.sh[begin:end]

    pos_min, pos_max = pos.min(axis=0), pos.max(axis=0)
    scl_min, scl_max = scale.min(axis=0), scale.max(axis=0)
    col_min, col_max = col.min(axis=0), col.max(axis=0)
    # one envelope per color channel, shared by all 15 SH terms
    sh_min, sh_max = sh.min(axis=(0, 1)), sh.max(axis=(0, 1))

    pos_max = _widen(pos_min, pos_max)
    scl_max = _widen(scl_min, scl_max)
    col_max = _widen(col_min, col_max)
    sh_max = _widen(sh_min, sh_max)

    splats.pos[begin:end] = (pos - pos_min) / (pos_max - pos_min)
    splats.scale[begin:end] = (scale - scl_min) / (scl_max - scl_min)
    col = (col - col_min) / (col_max - col_min)
    splats.dc0[begin:end] = col[:, :3]
    splats.opacity[begin:end] = col[:, 3]
    splats.sh[begin:end] = (sh - sh_min) / (sh_max - sh_min)

    return pos_min, pos_max, scl_min, scl_max, col_min, col_max, sh_min, sh_max


def compute_chunks(splats: SplatArray, workers: Optional[int] = None) -> np.ndarray:
    """
    Build the chunk table and normalize every splat to its chunk envelope.

    Scale is raised to the power 1/8 and opacity goes through
    ``square_centered01`` before the envelopes are measured. After this call
    the position, scale, color, opacity and SH columns of ``splats`` hold
    chunk-local values in [0, 1].

    Args:
        splats: Morton-ordered splats, modified in place
        workers: Thread count for the chunk reduction

    Returns:
        Structured array of ``CHUNK_DTYPE`` with one record per chunk
    """
    n_chunks = chunk_count(splats.count)
    chunks = np.zeros(n_chunks, dtype=CHUNK_DTYPE)

    def _kernel(first, last):
        for idx in range(first, last):
            begin = idx * CHUNK_SIZE
            end = min(begin + CHUNK_SIZE, splats.count)
            (pos_min, pos_max, scl_min, scl_max,
             col_min, col_max, sh_min, sh_max) = _process_chunk(splats, begin, end)

            for axis, name in enumerate(('posX', 'posY', 'posZ')):
                chunks[name][idx] = (pos_min[axis], pos_max[axis])
            for name, packed in zip(('sclX', 'sclY', 'sclZ'), pack_half_pair(scl_min, scl_max)):
                chunks[name][idx] = packed
            for name, packed in zip(('colR', 'colG', 'colB', 'colA'), pack_half_pair(col_min, col_max)):
                chunks[name][idx] = packed
            for name, packed in zip(('shR', 'shG', 'shB'), pack_half_pair(sh_min, sh_max)):
                chunks[name][idx] = packed

    parallel_for(n_chunks, CHUNKS_PER_UNIT, _kernel, workers)
    return chunks
