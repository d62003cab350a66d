# ABOUTME: Axis-aligned bounding box of all splat positions
# ABOUTME: Partial min/max per range, reduced once every range is done

import numpy as np
from typing import Optional, Tuple

from .gaussian_splat import SplatArray
from .parallel import parallel_for

BOUNDS_BATCH = 8192


def calc_bounds(splats: SplatArray, workers: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute the componentwise (min, max) of every position.

    The result does not depend on splat order.

    Returns:
        Tuple of float32 (3,) arrays (bounds_min, bounds_max)
    """
    pos = splats.pos

    def _partial(start, end):
        block = pos[start:end]
        return block.min(axis=0), block.max(axis=0)

    partials = parallel_for(splats.count, BOUNDS_BATCH, _partial, workers)
    bounds_min = np.min([p[0] for p in partials], axis=0).astype(np.float32)
    bounds_max = np.max([p[1] for p in partials], axis=0).astype(np.float32)
    return bounds_min, bounds_max
