# ABOUTME: Mini-batch k-means over per-splat spherical harmonics vectors
# ABOUTME: Replaces per-splat SH data with a shared half-precision centroid table plus indices

import logging
import numpy as np
from dataclasses import dataclass
from typing import Callable, Optional

from scipy.cluster.vq import vq
from sklearn.cluster import MiniBatchKMeans

from .errors import InvalidInputError
from .formats import CLUSTER_PASSES, SHFormat, get_sh_count
from .gaussian_splat import SH_TERMS, SplatArray
from .parallel import parallel_for

logger = logging.getLogger('splatpack')

KMEANS_BATCH_SIZE = 2048

# Final full assignment is done in slices to bound the distance matrix size
ASSIGN_SLICE = 65536

ProgressCallback = Callable[[float], object]


@dataclass
class ClusterTable:
    """
    Shared SH centroids and the per-splat index into them.

    Attributes:
        centroids: (K, 15, 3) float16 centroid coefficients
        labels: (N,) int32 centroid index per splat, each in [0, K)
    """
    centroids: np.ndarray
    labels: np.ndarray

    @property
    def count(self) -> int:
        return len(self.centroids)


def assign_clusters(data: np.ndarray, centroids: np.ndarray,
                    workers: Optional[int] = None) -> np.ndarray:
    """Index of the nearest centroid (Euclidean) for every row of ``data``."""
    labels = np.empty(len(data), dtype=np.int32)

    def _kernel(start, end):
        codes, _ = vq(data[start:end], centroids, check_finite=False)
        labels[start:end] = codes

    parallel_for(len(data), ASSIGN_SLICE, _kernel, workers)
    return labels


def kmeans_minibatch(data: np.ndarray,
                     k: int,
                     batch_size: int = KMEANS_BATCH_SIZE,
                     passes: float = 1.0,
                     progress: Optional[ProgressCallback] = None,
                     seed: int = 0,
                     workers: Optional[int] = None):
    """
    Mini-batch k-means with per-centroid learning rates.

    Centroids start at ``k`` distinct samples, each counted once. Every
    iteration draws a random batch and hands it to
    ``MiniBatchKMeans.partial_fit``, which moves each hit centroid toward
    its samples with rate ``1 / count``. The number of iterations is
    ``passes`` full sweeps worth of batches.

    Args:
        data: (N, D) float array
        k: Number of centroids, must be smaller than N
        batch_size: Samples per centroid update
        passes: Fraction of full dataset sweeps to run
        progress: Called with a non-decreasing fraction in [0, 1]
        seed: Seed for the initial centroids and the batch sampler
        workers: Thread count for the final assignment

    Returns:
        Tuple of (centroids (k, D) float32, labels (N,) int32)
    """
    data = np.ascontiguousarray(data, dtype=np.float32)
    n = len(data)
    if k >= n:
        raise InvalidInputError(f"Cluster count {k} must be smaller than sample count {n}")

    rng = np.random.default_rng(seed)
    batch_size = min(batch_size, n)
    iterations = max(1, int(n / batch_size * passes))

    seeds = data[np.sort(rng.choice(n, size=k, replace=False))]
    kmeans = MiniBatchKMeans(
        n_clusters=k,
        init=seeds,
        n_init=1,
        batch_size=batch_size,
        reassignment_ratio=0.0,
        random_state=seed,
    )
    # fitting the seeds themselves leaves them in place with a count of one
    kmeans.partial_fit(seeds)

    for it in range(iterations):
        kmeans.partial_fit(data[rng.choice(n, size=batch_size, replace=False)])
        if progress is not None:
            progress((it + 1) / iterations)

    centroids = np.ascontiguousarray(kmeans.cluster_centers_, dtype=np.float32)
    labels = assign_clusters(data, centroids, workers)
    return centroids, labels


def cluster_shs(splats: SplatArray,
                sh_format: SHFormat,
                progress: Optional[ProgressCallback] = None,
                seed: int = 0,
                workers: Optional[int] = None) -> Optional[ClusterTable]:
    """
    Cluster SH vectors for a cluster-tier format.

    Must run on raw SH values, before chunk normalization.

    Returns:
        ClusterTable, or None when the tier's centroid count is not smaller
        than the splat count (clustering bypassed)
    """
    sh_format = SHFormat.parse(sh_format)
    if not sh_format.is_clustered:
        raise InvalidInputError(f"SH format {sh_format.name} does not use clustering")

    k = get_sh_count(sh_format, splats.count)
    if k >= splats.count:
        logger.debug("Skipping SH clustering: %d clusters >= %d splats", k, splats.count)
        return None

    passes = CLUSTER_PASSES[sh_format]
    logger.info("Clustering %d SH vectors into %d centroids (%.1f passes)",
                splats.count, k, passes)

    centroids, labels = kmeans_minibatch(
        splats.sh_vectors(), k,
        batch_size=KMEANS_BATCH_SIZE,
        passes=passes,
        progress=progress,
        seed=seed,
        workers=workers,
    )
    return ClusterTable(
        centroids=centroids.reshape(k, SH_TERMS, 3).astype(np.float16),
        labels=labels.astype(np.int32),
    )
