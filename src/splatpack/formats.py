# ABOUTME: Format selectors and record size tables shared by every stage
# ABOUTME: Vector, color and spherical harmonics formats plus quality presets

from enum import IntEnum
from typing import Dict, Tuple

FORMAT_VERSION = 20231020
CHUNK_SIZE = 256

# Rotation is always stored as one packed 32-bit word in the "other" buffer
QUAT_SIZE = 4
SH_INDEX_SIZE = 2


class _ParsableEnum(IntEnum):

    @classmethod
    def parse(cls, value):
        """Accept an enum member, its integer value, or its name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.name.lower() == value.strip().lower():
                    return member
            raise ValueError(f"Unknown {cls.__name__}: {value}")
        return cls(value)


class VectorFormat(_ParsableEnum):
    """Encoding used for positions and scales."""
    Float32 = 0
    Norm16 = 1
    Norm11 = 2
    Norm6 = 3


class ColorFormat(_ParsableEnum):
    """Color texture format tag. Metadata only, the color buffer is always float RGBA."""
    Float32x4 = 0
    Float16x4 = 1
    Norm8x4 = 2
    BC7 = 3


class SHFormat(_ParsableEnum):
    """Encoding used for the 15 higher-order SH coefficients."""
    Float32 = 0
    Float16 = 1
    Norm11 = 2
    Norm6 = 3
    Cluster64k = 4
    Cluster32k = 5
    Cluster16k = 6
    Cluster8k = 7
    Cluster4k = 8

    @property
    def is_clustered(self) -> bool:
        return self >= SHFormat.Cluster64k


VECTOR_SIZES: Dict[VectorFormat, int] = {
    VectorFormat.Float32: 12,
    VectorFormat.Norm16: 6,
    VectorFormat.Norm11: 4,
    VectorFormat.Norm6: 2,
}

# Per-splat record sizes. Float32/Float16/Norm6 rows carry one padding slot.
SH_ITEM_SIZES: Dict[SHFormat, int] = {
    SHFormat.Float32: 16 * 3 * 4,
    SHFormat.Float16: 16 * 3 * 2,
    SHFormat.Norm11: 15 * 4,
    SHFormat.Norm6: 16 * 2,
}

CLUSTER_COUNTS: Dict[SHFormat, int] = {
    SHFormat.Cluster64k: 65536,
    SHFormat.Cluster32k: 32768,
    SHFormat.Cluster16k: 16384,
    SHFormat.Cluster8k: 8192,
    SHFormat.Cluster4k: 4096,
}

# Passes over the whole dataset for mini-batch k-means; fewer clusters get more refinement
CLUSTER_PASSES: Dict[SHFormat, float] = {
    SHFormat.Cluster64k: 0.3,
    SHFormat.Cluster32k: 0.4,
    SHFormat.Cluster16k: 0.5,
    SHFormat.Cluster8k: 0.8,
    SHFormat.Cluster4k: 1.2,
}

CHUNK_INFO_SIZE = 64

# Quality presets offered by the import tool: (pos, scale, color, sh)
QUALITY_PRESETS: Dict[str, Tuple[VectorFormat, VectorFormat, ColorFormat, SHFormat]] = {
    'very_high': (VectorFormat.Float32, VectorFormat.Float32, ColorFormat.Float32x4, SHFormat.Float32),
    'high': (VectorFormat.Norm16, VectorFormat.Norm16, ColorFormat.Float16x4, SHFormat.Norm11),
    'medium': (VectorFormat.Norm11, VectorFormat.Norm11, ColorFormat.Norm8x4, SHFormat.Norm6),
    'low': (VectorFormat.Norm11, VectorFormat.Norm6, ColorFormat.Norm8x4, SHFormat.Cluster16k),
    'very_low': (VectorFormat.Norm11, VectorFormat.Norm6, ColorFormat.BC7, SHFormat.Cluster4k),
}


def get_vector_size(fmt: VectorFormat) -> int:
    return VECTOR_SIZES[fmt]


def get_other_size(scale_format: VectorFormat, with_sh_index: bool = False) -> int:
    """Bytes per splat in the "other" buffer: packed rotation, scale, optional SH index."""
    size = QUAT_SIZE + VECTOR_SIZES[scale_format]
    if with_sh_index:
        size += SH_INDEX_SIZE
    return size


def get_sh_count(fmt: SHFormat, splat_count: int) -> int:
    """Number of SH records: one per splat, or the centroid count for cluster tiers."""
    if fmt.is_clustered:
        return CLUSTER_COUNTS[fmt]
    return splat_count


def get_sh_item_size(fmt: SHFormat) -> int:
    if fmt.is_clustered:
        # centroids are stored as half-precision rows
        return SH_ITEM_SIZES[SHFormat.Float16]
    return SH_ITEM_SIZES[fmt]


def next_multiple_of(size: int, multiple: int) -> int:
    return (size + multiple - 1) // multiple * multiple


def uses_chunks(pos_format: VectorFormat, scale_format: VectorFormat,
                color_format: ColorFormat, sh_format: SHFormat) -> bool:
    """Chunk quantization runs unless every selector asks for full float precision."""
    return (pos_format != VectorFormat.Float32 or
            scale_format != VectorFormat.Float32 or
            color_format != ColorFormat.Float32x4 or
            sh_format != SHFormat.Float32)
