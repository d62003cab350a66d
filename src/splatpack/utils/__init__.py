"""Shared helpers: logging, timing and progress reporting."""

from .logging_utils import setup_logging, Timer, TimingStats, ProgressTracker

__all__ = ['setup_logging', 'Timer', 'TimingStats', 'ProgressTracker']
