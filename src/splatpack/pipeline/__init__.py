"""Compression pipeline - validates settings and drives every stage in order."""

from .config import CompressionConfig
from .orchestrator import Pipeline, compress_splats

__all__ = ['CompressionConfig', 'Pipeline', 'compress_splats']
