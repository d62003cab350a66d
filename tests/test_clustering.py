"""
Tests for mini-batch k-means SH clustering.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from splatpack import clustering
from splatpack.clustering import assign_clusters, cluster_shs, kmeans_minibatch
from splatpack.errors import InvalidInputError
from splatpack.formats import SHFormat


class TestKMeans:
    """Core mini-batch k-means."""

    @pytest.fixture
    def data(self):
        return np.random.default_rng(11).normal(size=(3000, 45)).astype(np.float32)

    def test_labels_cover_valid_range(self, data):
        centroids, labels = kmeans_minibatch(data, 16, passes=2.0)
        assert centroids.shape == (16, 45)
        assert labels.shape == (3000,)
        assert labels.min() >= 0
        assert labels.max() < 16

    def test_labels_are_nearest_centroid(self, data):
        centroids, labels = kmeans_minibatch(data, 8)
        dist = ((data[:, None, :] - centroids[None, :, :]) ** 2).sum(axis=2)
        nearest = dist.min(axis=1)
        chosen = dist[np.arange(len(data)), labels]
        np.testing.assert_allclose(chosen, nearest, rtol=1e-5)

    def test_deterministic_for_seed(self, data):
        a_centroids, a_labels = kmeans_minibatch(data, 8, seed=3)
        b_centroids, b_labels = kmeans_minibatch(data, 8, seed=3)
        np.testing.assert_array_equal(a_centroids, b_centroids)
        np.testing.assert_array_equal(a_labels, b_labels)

    def test_progress_is_monotonic(self, data):
        seen = []
        kmeans_minibatch(data, 4, batch_size=256, passes=1.0, progress=seen.append)
        assert seen == sorted(seen)
        assert seen[-1] == pytest.approx(1.0)

    def test_rejects_too_many_clusters(self, data):
        with pytest.raises(InvalidInputError):
            kmeans_minibatch(data[:10], 10)

    def test_assign_clusters(self):
        centroids = np.array([[0, 0], [10, 10]], dtype=np.float32)
        data = np.array([[1, 1], [9, 8], [-2, 0]], dtype=np.float32)
        np.testing.assert_array_equal(assign_clusters(data, centroids), [0, 1, 0])

    def test_assign_clusters_threaded_slices(self, data, monkeypatch):
        centroids = data[:12].copy()
        serial = assign_clusters(data, centroids, workers=1)
        monkeypatch.setattr(clustering, 'ASSIGN_SLICE', 250)
        threaded = assign_clusters(data, centroids, workers=4)
        np.testing.assert_array_equal(threaded, serial)

    def test_update_is_running_mean(self, data):
        # one centroid, one full batch: the seed counts once, then every sample once
        n = len(data)
        rng = np.random.default_rng(5)
        seed_index = rng.choice(n, size=1, replace=False)[0]

        centroids, labels = kmeans_minibatch(data, 1, batch_size=n, passes=1.0, seed=5)

        expected = (data[seed_index].astype(np.float64) + data.sum(axis=0, dtype=np.float64)) / (n + 1)
        np.testing.assert_allclose(centroids[0], expected, rtol=1e-4, atol=1e-5)
        assert np.all(labels == 0)


class TestClusterSH:
    """Cluster-tier SH compression."""

    def test_bypass_when_tier_exceeds_splats(self, make_splats):
        assert cluster_shs(make_splats(300), SHFormat.Cluster4k) is None

    def test_bypass_when_counts_equal(self, make_splats):
        assert cluster_shs(make_splats(4096), SHFormat.Cluster4k) is None

    def test_non_cluster_format_rejected(self, make_splats):
        with pytest.raises(InvalidInputError, match="does not use clustering"):
            cluster_shs(make_splats(10), SHFormat.Norm6)

    def test_cluster_table(self, make_splats):
        splats = make_splats(4500, distinct=False)
        table = cluster_shs(splats, SHFormat.Cluster4k, seed=1)

        assert table is not None
        assert table.count == 4096
        assert table.centroids.shape == (4096, 15, 3)
        assert table.centroids.dtype == np.float16
        assert table.labels.shape == (4500,)
        assert table.labels.min() >= 0
        assert table.labels.max() < 4096
