"""
Shared fixtures for the splatpack test suite.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from splatpack.gaussian_splat import SplatArray


def random_splats(count: int, seed: int = 0, distinct: bool = True) -> SplatArray:
    """Random splats with plausible value ranges."""
    rng = np.random.default_rng(seed)
    if distinct:
        # shuffled lattice points so every position (and Morton code) differs
        side = int(np.ceil(count ** (1.0 / 3.0))) + 1
        grid = np.stack(np.meshgrid(np.arange(side), np.arange(side), np.arange(side),
                                    indexing='ij'), axis=-1).reshape(-1, 3)
        pos = grid[rng.permutation(len(grid))[:count]].astype(np.float32) * 0.5 - 3.0
    else:
        pos = rng.uniform(-10, 10, size=(count, 3))
    rot = rng.normal(size=(count, 4))
    return SplatArray(
        pos=pos,
        rot=rot,
        scale=rng.uniform(0.001, 0.5, size=(count, 3)),
        dc0=rng.uniform(-0.5, 1.5, size=(count, 3)),
        opacity=rng.uniform(0.0, 1.0, size=count),
        sh=rng.normal(scale=0.2, size=(count, 15, 3)),
    )


@pytest.fixture
def make_splats():
    """Factory fixture: ``make_splats(count, seed=0, distinct=True)``."""
    return random_splats
