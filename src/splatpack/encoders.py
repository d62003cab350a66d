# ABOUTME: Bit-exact per-splat encoders for position, other, color and SH buffers
# ABOUTME: Packs normalized values into fixed-width little-endian records

import numpy as np
from typing import Optional

from .clustering import ClusterTable
from .errors import InvalidInputError
from .formats import (
    SHFormat, VectorFormat, get_other_size, get_sh_item_size, get_vector_size,
    next_multiple_of,
)
from .gaussian_splat import SH_TERMS, SplatArray
from .parallel import parallel_for

ENCODE_BATCH = 8192
BUFFER_ALIGNMENT = 8
# Raw float position streams only need word alignment
FLOAT_ALIGNMENT = 4

_SQRT2 = np.float32(np.sqrt(2.0))

# Components kept by smallest-three packing, indexed by the dropped component
_REMAINING = np.array([[1, 2, 3], [0, 2, 3], [0, 1, 3], [0, 1, 2]])


def _saturate(v) -> np.ndarray:
    return np.clip(np.asarray(v, dtype=np.float32), np.float32(0.0), np.float32(1.0))


def _quantize(v: np.ndarray, levels: float, dtype) -> np.ndarray:
    # truncation toward zero after scaling by (2^bits - 1) + 0.5
    return (v * np.float32(levels)).astype(dtype)


def encode_norm16(v) -> np.ndarray:
    """Pack (..., 3) values in [0, 1] as 16-16-16 bits in a uint64 (upper 16 bits unused)."""
    v = _saturate(v)
    return (_quantize(v[..., 0], 65535.5, np.uint64) |
            (_quantize(v[..., 1], 65535.5, np.uint64) << np.uint64(16)) |
            (_quantize(v[..., 2], 65535.5, np.uint64) << np.uint64(32)))


def encode_norm11(v) -> np.ndarray:
    """Pack (..., 3) values in [0, 1] as 11-10-11 bits."""
    v = _saturate(v)
    return (_quantize(v[..., 0], 2047.5, np.uint32) |
            (_quantize(v[..., 1], 1023.5, np.uint32) << np.uint32(11)) |
            (_quantize(v[..., 2], 2047.5, np.uint32) << np.uint32(21)))


def encode_norm655(v) -> np.ndarray:
    """Pack (..., 3) values in [0, 1] as 6-5-5 bits (vector Norm6)."""
    v = _saturate(v)
    return (_quantize(v[..., 0], 63.5, np.uint32) |
            (_quantize(v[..., 1], 31.5, np.uint32) << np.uint32(6)) |
            (_quantize(v[..., 2], 31.5, np.uint32) << np.uint32(11))).astype(np.uint16)


def encode_norm565(v) -> np.ndarray:
    """Pack (..., 3) values in [0, 1] as 5-6-5 bits (SH Norm6)."""
    v = _saturate(v)
    return (_quantize(v[..., 0], 31.5, np.uint32) |
            (_quantize(v[..., 1], 63.5, np.uint32) << np.uint32(5)) |
            (_quantize(v[..., 2], 31.5, np.uint32) << np.uint32(11))).astype(np.uint16)


def _unpack(packed, widths) -> np.ndarray:
    packed = np.asarray(packed).astype(np.uint64)
    out = []
    shift = 0
    for bits in widths:
        mask = (1 << bits) - 1
        field = (packed >> np.uint64(shift)) & np.uint64(mask)
        out.append(field.astype(np.float32) / np.float32(mask))
        shift += bits
    return np.stack(out, axis=-1)


def decode_norm16(packed) -> np.ndarray:
    return _unpack(packed, (16, 16, 16))


def decode_norm11(packed) -> np.ndarray:
    return _unpack(packed, (11, 10, 11))


def decode_norm655(packed) -> np.ndarray:
    return _unpack(packed, (6, 5, 5))


def decode_norm565(packed) -> np.ndarray:
    return _unpack(packed, (5, 6, 5))


def pack_rotation(rot) -> np.ndarray:
    """
    Smallest-three quaternion packing into 10-10-10-2 bits.

    Input quaternions are (w, x, y, z) and need not be normalized. The
    largest-magnitude component of (x, y, z, w) is dropped and its index
    stored in the top two bits; the other three are sign-flipped so the
    dropped one is positive and mapped from [-1/sqrt2, 1/sqrt2] to [0, 1].
    Zero-length quaternions pack as identity.
    """
    q = np.asarray(rot, dtype=np.float32).reshape(-1, 4)
    norm = np.sqrt((q * q).sum(axis=1, keepdims=True))
    degenerate = norm[:, 0] == 0
    q = np.where(degenerate[:, None], np.array([1, 0, 0, 0], dtype=np.float32), q)
    norm = np.where(degenerate[:, None], np.float32(1.0), norm)
    xyzw = (q / norm)[:, [1, 2, 3, 0]]

    index = np.argmax(np.abs(xyzw), axis=1)
    rows = np.arange(len(xyzw))
    three = np.take_along_axis(xyzw, _REMAINING[index], axis=1)
    sign = np.where(xyzw[rows, index] >= 0, np.float32(1.0), np.float32(-1.0))
    three = three * sign[:, None]
    three = _saturate(three * _SQRT2 * np.float32(0.5) + np.float32(0.5))

    return (_quantize(three[:, 0], 1023.5, np.uint32) |
            (_quantize(three[:, 1], 1023.5, np.uint32) << np.uint32(10)) |
            (_quantize(three[:, 2], 1023.5, np.uint32) << np.uint32(20)) |
            (index.astype(np.uint32) << np.uint32(30)))


def unpack_rotation(packed) -> np.ndarray:
    """Inverse of ``pack_rotation``; returns (N, 4) unit quaternions (w, x, y, z)."""
    packed = np.asarray(packed, dtype=np.uint32).reshape(-1)
    three = _unpack(packed, (10, 10, 10))
    three = (three * np.float32(2.0) - np.float32(1.0)) / _SQRT2
    index = (packed >> np.uint32(30)).astype(np.int64)
    largest = np.sqrt(np.maximum(np.float32(0.0), np.float32(1.0) - (three * three).sum(axis=1)))

    xyzw = np.empty((len(packed), 4), dtype=np.float32)
    rows = np.arange(len(packed))
    xyzw[rows, index] = largest
    for slot in range(3):
        xyzw[rows, _REMAINING[index, slot]] = three[:, slot]
    return xyzw[:, [3, 0, 1, 2]]


def encode_vectors(values: np.ndarray, fmt: VectorFormat) -> np.ndarray:
    """Encode (N, 3) values into an (N, vector_size) uint8 array."""
    n = len(values)
    if fmt == VectorFormat.Float32:
        enc = np.ascontiguousarray(values, dtype='<f4')
    elif fmt == VectorFormat.Norm16:
        return encode_norm16(values).astype('<u8').view(np.uint8).reshape(n, 8)[:, :6]
    elif fmt == VectorFormat.Norm11:
        enc = encode_norm11(values).astype('<u4')
    elif fmt == VectorFormat.Norm6:
        enc = encode_norm655(values).astype('<u2')
    else:
        raise InvalidInputError(f"Unknown vector format: {fmt}")
    return enc.view(np.uint8).reshape(n, get_vector_size(fmt))


def decode_vectors(data, fmt: VectorFormat, count: int) -> np.ndarray:
    """Decode ``count`` records of ``fmt`` from the start of ``data``."""
    size = get_vector_size(fmt)
    raw = np.frombuffer(bytes(data), dtype=np.uint8)[:count * size].reshape(count, size)
    if fmt == VectorFormat.Float32:
        return raw.copy().view('<f4').reshape(count, 3).astype(np.float32)
    if fmt == VectorFormat.Norm16:
        padded = np.zeros((count, 8), dtype=np.uint8)
        padded[:, :6] = raw
        return decode_norm16(padded.view('<u8').reshape(count))
    if fmt == VectorFormat.Norm11:
        return decode_norm11(raw.copy().view('<u4').reshape(count))
    return decode_norm655(raw.copy().view('<u2').reshape(count))


def _finish(records: np.ndarray, alignment: int = BUFFER_ALIGNMENT) -> bytes:
    """Flatten records and zero-pad to ``alignment`` bytes."""
    flat = np.ascontiguousarray(records).view(np.uint8).reshape(-1)
    padded = next_multiple_of(len(flat), alignment)
    if padded == len(flat):
        return flat.tobytes()
    out = np.zeros(padded, dtype=np.uint8)
    out[:len(flat)] = flat
    return out.tobytes()


def create_positions_data(splats: SplatArray, fmt: VectorFormat,
                          workers: Optional[int] = None) -> bytes:
    """
    One encoded position per splat.

    Packed formats are zero-padded to 8 bytes. Float32 records are raw
    IEEE floats padded only to 4 bytes, so N splats give exactly 12 * N bytes.
    """
    records = np.zeros((splats.count, get_vector_size(fmt)), dtype=np.uint8)

    def _kernel(start, end):
        records[start:end] = encode_vectors(splats.pos[start:end], fmt)

    parallel_for(splats.count, ENCODE_BATCH, _kernel, workers)
    return _finish(records, FLOAT_ALIGNMENT if fmt == VectorFormat.Float32 else BUFFER_ALIGNMENT)


def create_other_data(splats: SplatArray, scale_format: VectorFormat,
                      sh_indices: Optional[np.ndarray] = None,
                      workers: Optional[int] = None) -> bytes:
    """
    Per splat: packed rotation (4 bytes), encoded scale, optional uint16 SH index.
    """
    record_size = get_other_size(scale_format, with_sh_index=sh_indices is not None)
    scale_size = get_vector_size(scale_format)
    records = np.zeros((splats.count, record_size), dtype=np.uint8)

    def _kernel(start, end):
        rows = records[start:end]
        rows[:, 0:4] = pack_rotation(splats.rot[start:end]).astype('<u4').view(np.uint8).reshape(-1, 4)
        rows[:, 4:4 + scale_size] = encode_vectors(splats.scale[start:end], scale_format)
        if sh_indices is not None:
            idx = np.asarray(sh_indices[start:end]).astype('<u2')
            rows[:, 4 + scale_size:] = idx.view(np.uint8).reshape(-1, 2)

    parallel_for(splats.count, ENCODE_BATCH, _kernel, workers)
    return _finish(records)


def create_color_data(splats: SplatArray, workers: Optional[int] = None) -> bytes:
    """RGBA float32 per splat. The color format tag never changes this layout."""
    records = np.zeros((splats.count, 4), dtype='<f4')

    def _kernel(start, end):
        records[start:end, :3] = splats.dc0[start:end]
        records[start:end, 3] = splats.opacity[start:end]

    parallel_for(splats.count, ENCODE_BATCH, _kernel, workers)
    return _finish(records)


def _sh_records(sh: np.ndarray, fmt: SHFormat) -> np.ndarray:
    n = len(sh)
    if fmt == SHFormat.Float32:
        rows = np.zeros((n, SH_TERMS + 1, 3), dtype='<f4')
        rows[:, :SH_TERMS] = sh
    elif fmt == SHFormat.Float16:
        rows = np.zeros((n, SH_TERMS + 1, 3), dtype='<f2')
        rows[:, :SH_TERMS] = sh
    elif fmt == SHFormat.Norm11:
        rows = encode_norm11(sh).astype('<u4')
    elif fmt == SHFormat.Norm6:
        rows = np.zeros((n, SH_TERMS + 1), dtype='<u2')
        rows[:, :SH_TERMS] = encode_norm565(sh)
    else:
        raise InvalidInputError(f"SH format {fmt.name} has no per-splat encoding")
    return rows.view(np.uint8).reshape(n, -1)


def create_sh_data(splats: SplatArray, fmt: SHFormat,
                   clusters: Optional[ClusterTable] = None,
                   workers: Optional[int] = None) -> bytes:
    """
    Either the half-precision centroid table (when ``clusters`` is given) or
    one record per splat in ``fmt``.
    """
    if clusters is not None:
        if not fmt.is_clustered:
            raise InvalidInputError(f"SH format {fmt.name} does not use a cluster table")
        table = np.zeros((clusters.count, SH_TERMS + 1, 3), dtype='<f2')
        table[:, :SH_TERMS] = clusters.centroids
        return _finish(table.view(np.uint8).reshape(clusters.count, get_sh_item_size(fmt)))

    if fmt.is_clustered:
        raise InvalidInputError(f"SH format {fmt.name} requires a cluster table")

    records = np.zeros((splats.count, get_sh_item_size(fmt)), dtype=np.uint8)

    def _kernel(start, end):
        records[start:end] = _sh_records(splats.sh[start:end], fmt)

    parallel_for(splats.count, ENCODE_BATCH, _kernel, workers)
    return _finish(records)
