# ABOUTME: Main pipeline orchestrator
# ABOUTME: Runs bounds, Morton reorder, SH clustering, chunking and encoders, then assembles the asset

import logging
import time
import traceback
from typing import List, Optional

import numpy as np

from ..asset import AssetWriter, ContentHash, SplatAsset, load_cameras
from ..bounds import calc_bounds
from ..chunks import compute_chunks
from ..clustering import ClusterTable, cluster_shs
from ..encoders import (
    create_color_data, create_other_data, create_positions_data, create_sh_data,
)
from ..errors import InvalidInputError
from ..formats import FORMAT_VERSION, SHFormat, get_sh_count, uses_chunks
from ..gaussian_splat import SplatArray
from ..morton import reorder_morton
from ..utils.logging_utils import ProgressTracker, Timer, TimingStats
from .config import CompressionConfig


class Pipeline:
    """Main pipeline orchestrator for one batch compression run."""

    def __init__(self, config: CompressionConfig):
        """Initialize pipeline with configuration."""
        self.config = config
        self.logger = logging.getLogger('splatpack')
        self.timing_stats: List[TimingStats] = []
        self.writer: Optional[AssetWriter] = None
        self._active_stage: Optional[TimingStats] = None

    def run(self, splats: SplatArray) -> SplatAsset:
        """
        Compress ``splats`` into buffers plus an asset descriptor.

        The input array is not modified; the reordered copy made by the
        Morton stage is the buffer later stages rewrite in place.
        """
        start_time = time.perf_counter()
        self.timing_stats = []
        self.writer = None
        cfg = self.config

        if not isinstance(splats, SplatArray):
            raise InvalidInputError(f"Expected SplatArray, got {type(splats).__name__}")

        self.logger.info("=" * 70)
        self.logger.info("SPLAT COMPRESSION")
        self.logger.info("=" * 70)
        self.logger.info("Splats: %d", splats.count)
        self.logger.info("Output: %s/%s", cfg.output_dir, cfg.base_name)
        self.logger.info("Formats: pos=%s scale=%s color=%s sh=%s",
                         cfg.pos_format.name, cfg.scale_format.name,
                         cfg.color_format.name, cfg.sh_format.name)
        self.logger.info("=" * 70)

        try:
            cameras = self._load_cameras()

            bounds_min, bounds_max = self._run_stage("Bounds", calc_bounds, splats, cfg.workers)
            self.logger.debug("Bounds: min=%s max=%s", bounds_min.tolist(), bounds_max.tolist())

            ordered = self._run_stage("Morton reorder", self._reorder, splats, bounds_min, bounds_max)

            clusters = None
            if cfg.sh_format.is_clustered:
                clusters = self._run_stage("SH clustering", self._cluster, ordered)

            asset = self._run_stage("Encode and write", self._assemble,
                                    ordered, clusters, bounds_min, bounds_max, cameras)

            self._print_summary(start_time, asset)
            return asset

        except Exception as e:
            self.logger.error("")
            self.logger.error("COMPRESSION FAILED: %s", e)
            self.logger.debug("Traceback:\n%s", traceback.format_exc())
            if self.writer is not None and cfg.cleanup_on_failure:
                self.writer.remove_written()
            raise

    def _run_stage(self, name, fn, *args):
        stat = TimingStats(name, 0.0)
        self._active_stage = stat
        try:
            with Timer(name, self.logger) as timer:
                result = fn(*args)
        finally:
            self._active_stage = None
        stat.elapsed = timer.elapsed
        self.timing_stats.append(stat)
        return result

    def _run_substep(self, name, fn, *args):
        """Time one step inside the running stage and record it under that stage."""
        with Timer(name, self.logger) as timer:
            result = fn(*args)
        if self._active_stage is not None:
            self._active_stage.add_substep(name, timer.elapsed)
        return result

    def _load_cameras(self):
        if not self.config.import_cameras:
            return None
        return load_cameras(self.config.source_path)

    def _reorder(self, splats: SplatArray, bounds_min, bounds_max) -> SplatArray:
        return reorder_morton(splats, bounds_min, bounds_max, self.config.workers)

    def _cluster(self, splats: SplatArray) -> Optional[ClusterTable]:
        tracker = ProgressTracker("SH clustering", logger=self.logger)
        clusters = cluster_shs(splats, self.config.sh_format, progress=tracker,
                               seed=self.config.kmeans_seed,
                               workers=self.config.workers)
        if clusters is None:
            self.logger.warning(
                "%s needs more splats than the %d available; storing per-splat Float16 SH instead",
                self.config.sh_format.name, splats.count)
        return clusters

    def _assemble(self, splats: SplatArray, clusters: Optional[ClusterTable],
                  bounds_min: np.ndarray, bounds_max: np.ndarray, cameras) -> SplatAsset:
        cfg = self.config
        workers = cfg.workers

        sh_format = cfg.sh_format
        if sh_format.is_clustered and clusters is None:
            sh_format = SHFormat.Float16

        content_hash = ContentHash(splats.count, FORMAT_VERSION)
        self.writer = AssetWriter(cfg.output_dir, cfg.base_name, content_hash)

        chunk_total = 0
        if uses_chunks(cfg.pos_format, cfg.scale_format, cfg.color_format, cfg.sh_format):
            chunks = self._run_substep("Chunk quantization", compute_chunks, splats, workers)
            chunk_total = len(chunks)
            self.writer.write_buffer('chunk', chunks.tobytes())

        self.writer.write_buffer('position', self._run_substep(
            "Position encoding", create_positions_data, splats, cfg.pos_format, workers))
        self.writer.write_buffer('other', self._run_substep(
            "Rotation and scale encoding", create_other_data, splats, cfg.scale_format,
            clusters.labels if clusters is not None else None, workers))
        self.writer.write_buffer('color', self._run_substep(
            "Color encoding", create_color_data, splats, workers))
        content_hash.append_int(int(cfg.color_format))
        self.writer.write_buffer('sh', self._run_substep(
            "SH encoding", create_sh_data, splats, sh_format, clusters, workers))

        asset = SplatAsset(
            name=cfg.base_name,
            splat_count=splats.count,
            pos_format=cfg.pos_format,
            scale_format=cfg.scale_format,
            color_format=cfg.color_format,
            sh_format=sh_format,
            requested_sh_format=cfg.sh_format,
            bounds_min=bounds_min.tolist(),
            bounds_max=bounds_max.tolist(),
            chunk_count=chunk_total,
            sh_count=clusters.count if clusters is not None else get_sh_count(sh_format, splats.count),
            data_hash=content_hash.hexdigest(),
            cameras=cameras,
        )
        self.writer.write_asset(asset)
        return asset

    def _print_summary(self, start_time: float, asset: SplatAsset):
        """Print performance summary."""
        total_time = time.perf_counter() - start_time

        self.logger.info("")
        self.logger.info("=" * 70)
        self.logger.info("COMPRESSION COMPLETE in %.1fs", total_time)
        self.logger.info("=" * 70)

        if self.timing_stats:
            self.logger.info("TIMING BREAKDOWN:")
            for stat in self.timing_stats:
                self.logger.info(stat.format_tree(total_time))

        self.logger.info("OUTPUT FILES:")
        total_bytes = 0
        for path in self.writer.written.values():
            size = path.stat().st_size
            total_bytes += size
            self.logger.info("  %s (%.2f MB)", path.name, size / 1e6)
        self.logger.info("Total: %.2f MB (%.1f bytes/splat), hash %s",
                         total_bytes / 1e6, total_bytes / asset.splat_count, asset.data_hash)
        self.logger.info("=" * 70)


def compress_splats(splats: SplatArray, config: CompressionConfig) -> SplatAsset:
    """Run the full pipeline once."""
    return Pipeline(config).run(splats)
