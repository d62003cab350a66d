# ABOUTME: Data structures for the raw splat collection fed into the compressor
# ABOUTME: Stores positions, rotations, scales, colors, opacity and SH bands per splat

import numpy as np
from dataclasses import dataclass
from typing import Iterable, Sequence

from .errors import InvalidInputError

SH_TERMS = 15


@dataclass(frozen=True)
class InputSplat:
    """
    A single splat as produced by a file reader.

    Attributes:
        pos: world-space position (x, y, z)
        rot: quaternion (w, x, y, z), not necessarily normalized
        scale: linear per-axis scale
        dc0: base color (r, g, b)
        opacity: opacity in [0, 1]
        sh: 15 higher-order SH coefficients, one RGB triple each
    """
    pos: Sequence[float]
    rot: Sequence[float] = (1.0, 0.0, 0.0, 0.0)
    scale: Sequence[float] = (1.0, 1.0, 1.0)
    dc0: Sequence[float] = (0.0, 0.0, 0.0)
    opacity: float = 1.0
    sh: Sequence[Sequence[float]] = ()


@dataclass
class SplatArray:
    """
    Struct-of-arrays splat buffer owned by one pipeline run.

    The pipeline reorders this buffer and later rewrites its values in place,
    so a single instance must never be shared between concurrent runs.

    Attributes:
        pos: (N, 3) float32 positions
        rot: (N, 4) float32 quaternions (w, x, y, z)
        scale: (N, 3) float32 linear scales
        dc0: (N, 3) float32 base colors
        opacity: (N,) float32 opacity values [0-1]
        sh: (N, 15, 3) float32 spherical harmonics coefficients
    """
    pos: np.ndarray
    rot: np.ndarray
    scale: np.ndarray
    dc0: np.ndarray
    opacity: np.ndarray
    sh: np.ndarray

    def __post_init__(self):
        """Validate shapes and coerce every column to contiguous float32."""
        self.pos = np.ascontiguousarray(self.pos, dtype=np.float32)
        n = len(self.pos)
        if n == 0:
            raise InvalidInputError("Splat array is empty")

        self.rot = np.ascontiguousarray(self.rot, dtype=np.float32)
        self.scale = np.ascontiguousarray(self.scale, dtype=np.float32)
        self.dc0 = np.ascontiguousarray(self.dc0, dtype=np.float32)
        self.opacity = np.ascontiguousarray(self.opacity, dtype=np.float32).reshape(-1)
        self.sh = np.ascontiguousarray(self.sh, dtype=np.float32)

        expected = {
            'pos': (n, 3),
            'rot': (n, 4),
            'scale': (n, 3),
            'dc0': (n, 3),
            'opacity': (n,),
            'sh': (n, SH_TERMS, 3),
        }
        for name, shape in expected.items():
            actual = getattr(self, name).shape
            if actual != shape:
                raise InvalidInputError(f"{name} must have shape {shape}, got {actual}")

    @property
    def count(self) -> int:
        """Return number of splats."""
        return len(self.pos)

    def take(self, indices: np.ndarray) -> 'SplatArray':
        """Return a new array holding the splats at ``indices``, in that order."""
        return SplatArray(
            pos=self.pos[indices],
            rot=self.rot[indices],
            scale=self.scale[indices],
            dc0=self.dc0[indices],
            opacity=self.opacity[indices],
            sh=self.sh[indices],
        )

    def copy(self) -> 'SplatArray':
        return SplatArray(**{k: v.copy() for k, v in self.to_dict().items()})

    def sh_vectors(self) -> np.ndarray:
        """Flatten SH coefficients into (N, 45) vectors for clustering."""
        return self.sh.reshape(self.count, SH_TERMS * 3)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            'pos': self.pos,
            'rot': self.rot,
            'scale': self.scale,
            'dc0': self.dc0,
            'opacity': self.opacity,
            'sh': self.sh,
        }

    @classmethod
    def from_dict(cls, data) -> 'SplatArray':
        """
        Create from a mapping of arrays (dict, ``np.load`` result).

        Missing ``sh`` is treated as all-zero coefficients.
        """
        missing = [k for k in ('pos', 'rot', 'scale', 'dc0', 'opacity') if k not in data]
        if missing:
            raise InvalidInputError(f"Missing splat columns: {', '.join(missing)}")
        pos = np.asarray(data['pos'])
        sh = data['sh'] if 'sh' in data else np.zeros((len(pos), SH_TERMS, 3), dtype=np.float32)
        return cls(
            pos=pos,
            rot=data['rot'],
            scale=data['scale'],
            dc0=data['dc0'],
            opacity=data['opacity'],
            sh=np.asarray(sh).reshape(len(pos), SH_TERMS, 3),
        )

    @classmethod
    def from_splats(cls, splats: Iterable[InputSplat]) -> 'SplatArray':
        """Materialize a list of per-item records into one buffer."""
        splats = list(splats)
        if not splats:
            raise InvalidInputError("Splat array is empty")

        def _sh(s):
            if len(s.sh) == 0:
                return np.zeros((SH_TERMS, 3), dtype=np.float32)
            return s.sh

        return cls(
            pos=[s.pos for s in splats],
            rot=[s.rot for s in splats],
            scale=[s.scale for s in splats],
            dc0=[s.dc0 for s in splats],
            opacity=[s.opacity for s in splats],
            sh=[_sh(s) for s in splats],
        )
